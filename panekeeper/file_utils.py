"""
File utilities for atomic writes, locking and JSON-lines logs
"""

import json
import os
import fcntl
import tempfile
import shutil
import time
import logging
from pathlib import Path
from typing import Dict, Any, Optional, List, Callable
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class FileLock:
    """Cross-process lock held with fcntl.flock on a sidecar lock file

    The kernel drops the flock when its holder exits, so a lock file left
    behind by a killed process does not block later writers.
    """
    
    def __init__(self, path: Path, timeout: float = 30):
        self.path = Path(path)
        self.lock_path = Path(str(self.path) + '.lock')
        self.timeout = timeout
        self.lock_file = None
        self.locked = False
    
    def acquire(self) -> bool:
        """Acquire the lock, polling until the timeout"""
        deadline = time.monotonic() + self.timeout
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        
        while True:
            lock_file = open(self.lock_path, 'a')
            try:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except OSError:
                # Held by another process
                lock_file.close()
                if time.monotonic() >= deadline:
                    return False
                time.sleep(0.05)
                continue
            self.lock_file = lock_file
            self.locked = True
            return True
    
    def release(self):
        """Release the lock; the lock file itself stays"""
        if not (self.locked and self.lock_file):
            return
        try:
            fcntl.flock(self.lock_file.fileno(), fcntl.LOCK_UN)
            self.lock_file.close()
        except OSError as e:
            logger.warning(f"Error releasing lock {self.lock_path}: {e}")
        finally:
            self.locked = False
            self.lock_file = None

    def __enter__(self):
        if not self.acquire():
            raise TimeoutError(f"Could not acquire lock for {self.path}")
        return self
    
    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()


@contextmanager
def atomic_write(path: Path, mode: str = 'w'):
    """Context manager for atomic file writes using temp file + rename"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    
    # Temp file in the same directory so the rename stays on one filesystem
    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix='.tmp_')
    
    try:
        with os.fdopen(fd, mode) as f:
            yield f
        shutil.move(temp_path, path)
    except Exception:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


def read_json_file(path: Path, default: Optional[Any] = None) -> Any:
    """Read JSON file with optional default value"""
    path = Path(path)
    try:
        if not path.exists():
            return default if default is not None else {}
        
        with open(path, 'r') as f:
            return json.load(f)
    except (json.JSONDecodeError, IOError) as e:
        logger.warning(f"Error reading JSON from {path}: {e}")
        return default if default is not None else {}


def write_json_file(path: Path, data: Any, indent: int = 2):
    """Write JSON file atomically"""
    with atomic_write(Path(path)) as f:
        json.dump(data, f, indent=indent, default=str, ensure_ascii=False)


def update_json_file(path: Path, updater: Callable[[Any], Any]) -> Any:
    """Read-modify-write a JSON file under a FileLock"""
    with FileLock(path):
        data = read_json_file(path)
        updated_data = updater(data)
        write_json_file(path, updated_data)
        return updated_data


def ensure_directory(path: Path) -> Path:
    """Ensure directory exists"""
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def append_json_line(path: Path, item: Dict[str, Any]):
    """Append one JSON object as a line, under a FileLock"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    line = json.dumps(item, default=str, ensure_ascii=False)
    
    with FileLock(path):
        with open(path, 'a') as f:
            f.write(line + '\n')


def read_json_lines(path: Path) -> List[Dict[str, Any]]:
    """Read a JSON-lines file, skipping lines that do not parse"""
    path = Path(path)
    if not path.exists():
        return []
    
    items = []
    with open(path, 'r') as f:
        for lineno, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                items.append(json.loads(line))
            except json.JSONDecodeError:
                logger.warning(f"Skipping corrupt line {lineno} in {path}")
    return items


class JSONFileStore:
    """Simple JSON file-based key-value store with locking"""
    
    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
    
    def update(self, key: str, fn: Callable[[Optional[Any]], Any]) -> Any:
        """Replace the value for key with fn(current value) atomically"""
        result = {}
        
        def updater(data):
            if not isinstance(data, dict):
                data = {}
            data[key] = fn(data.get(key))
            result['value'] = data[key]
            return data
        
        update_json_file(self.path, updater)
        return result['value']
    
    def get_all(self) -> Dict[str, Any]:
        """Get all key-value pairs"""
        data = read_json_file(self.path, {})
        return data if isinstance(data, dict) else {}
