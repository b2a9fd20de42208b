"""
Launcher scripts and the naming rules derived from a worker id

The title and script name are what the shutdown fallbacks match on, so
both are built here and nowhere else.
"""

import logging
import re
import shlex
import stat
from pathlib import Path
from typing import List, Optional

from .file_utils import atomic_write, ensure_directory


logger = logging.getLogger(__name__)

WORKER_ID_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9._-]*$')


def validate_worker_id(worker_id: str) -> str:
    """Worker ids end up in file names and titles; keep them to a safe alphabet"""
    if not worker_id or not WORKER_ID_PATTERN.match(worker_id):
        raise ValueError(f"Invalid worker id: {worker_id!r}")
    return worker_id


def window_title(worker_id: str, prefix: str = 'panekeeper') -> str:
    """Pane title set by the launcher, e.g. panekeeper-team-snt001"""
    return f"{prefix}-{worker_id}"


def launcher_script_name(worker_id: str, prefix: str = 'panekeeper') -> str:
    """File name of the launcher script, e.g. panekeeper-team-snt001-launcher.sh"""
    return f"{prefix}-{worker_id}-launcher.sh"


class LauncherScripts:
    """Writes and removes per-worker launcher scripts"""
    
    def __init__(self, state_dir: Path, shell: str = '/bin/sh', prefix: str = 'panekeeper'):
        self.scripts_dir = Path(state_dir) / 'launchers'
        self.shell = shell
        self.prefix = prefix
    
    def path_for(self, worker_id: str) -> Path:
        return self.scripts_dir / launcher_script_name(worker_id, self.prefix)
    
    def write(self, worker_id: str, command: List[str],
              initial_input: Optional[str] = None) -> Path:
        """Write the launcher for a worker and return its path
        
        The script runs the worker as a child (not via exec) so the shell,
        whose argv carries the script name, stays alive as the worker's
        parent for the whole session.
        """
        validate_worker_id(worker_id)
        ensure_directory(self.scripts_dir)
        
        argv = list(command)
        if initial_input:
            argv.append(initial_input)
        title = window_title(worker_id, self.prefix)
        
        lines = [
            f"#!{self.shell}",
            f"# {self.prefix} launcher for {worker_id}",
            f"printf '\\033]0;%s\\007' {shlex.quote(title)}",
            f"PANEKEEPER_WORKER_ID={shlex.quote(worker_id)}",
            "export PANEKEEPER_WORKER_ID",
            ' '.join(shlex.quote(arg) for arg in argv),
            "",
        ]
        
        path = self.path_for(worker_id)
        with atomic_write(path) as f:
            f.write('\n'.join(lines))
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IRUSR)
        
        logger.debug(f"Wrote launcher for {worker_id} at {path}")
        return path
    
    def remove(self, worker_id: str) -> bool:
        path = self.path_for(worker_id)
        if not path.exists():
            return False
        path.unlink()
        return True
    
    def cleanup_all(self) -> int:
        """Remove every launcher script; returns how many were removed"""
        if not self.scripts_dir.exists():
            return 0
        
        removed = 0
        for path in self.scripts_dir.glob(f"{self.prefix}-*-launcher.sh"):
            try:
                path.unlink()
                removed += 1
            except OSError as e:
                logger.warning(f"Failed to remove launcher {path}: {e}")
        return removed
