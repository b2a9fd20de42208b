"""
Module: spawner
Purpose: Start a worker in a new terminal surface, with a standalone fallback

A worker is started through a launcher script so that its shell can be
found again by name. The primary path asks the running multiplexer server
for a new pane and gets a pane id back; when no server is reachable (the
common case for the very first worker) the worker is started in a detached
top-level session that cannot report a pane id. Pane tracking is an
enhancement only: the OS pid is recorded on both paths and is what the
shutdown fallbacks anchor on.

Key Classes:
    - WorkerConfig: What to launch for a worker
    - SpawnResult: (os_pid, pane_id) of a started worker
    - plan_spawn_target(): Grid slot, tab or window for the next worker pane
    - Spawner: Primary/fallback spawn algorithm

Usage:
    spawner = Spawner(mux, registry, inspector, launchers)
    result = spawner.spawn(WorkerConfig('SNTGreen'), 'team-sntgreen001', '/src/app', 'Fix the build')
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from .control_store import ControlStore, PaneAction, PaneEvent
from .exceptions import (
    MultiplexerError, OperationCancelled, SpawnFailureFallback, SpawnFailurePrimary
)
from .launcher import LauncherScripts, launcher_script_name, validate_worker_id
from .multiplexer import Multiplexer, PaneInfo
from .process_inspector import ProcessInspector
from .registry import UNTRACKED_PANE, WorkerRegistry
from .timing import CancelToken, SystemClock


logger = logging.getLogger(__name__)


@dataclass
class WorkerConfig:
    """Launch description for one kind of worker"""
    name: str
    command: List[str] = field(default_factory=lambda: ['claude', '--dangerously-skip-permissions'])
    model: Optional[str] = None

    def launch_command(self) -> List[str]:
        cmd = list(self.command)
        if self.model:
            cmd.extend(['--model', self.model])
        return cmd

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkerConfig':
        command = data.get('command') or ['claude', '--dangerously-skip-permissions']
        if isinstance(command, str):
            command = command.split()
        return cls(name=data['name'], command=list(command), model=data.get('model'))


@dataclass(frozen=True)
class SpawnResult:
    os_pid: int
    pane_id: int = UNTRACKED_PANE

    @property
    def pane_tracked(self) -> bool:
        return self.pane_id > 0


LAYOUTS = ('grid', 'tab')
GRID_CAPACITY = 9

# Worker panes fill a tab row by row: [0][1][2] / [3][4][5] / [6][7][8].
# Keyed by the number of worker panes already in the tab, with panes
# sorted by (top_row, left_col): (index of the pane to split, direction).
GRID_SPLITS = {
    1: (0, 'right'),
    2: (1, 'right'),
    3: (0, 'bottom'),
    4: (3, 'right'),
    5: (4, 'right'),
    6: (3, 'bottom'),
    7: (6, 'right'),
    8: (7, 'right'),
}


@dataclass(frozen=True)
class SpawnTarget:
    """Where the next worker pane opens"""
    new_window: bool = False
    from_pane: Optional[int] = None  # Pane to split, or whose window gets the new tab
    direction: Optional[str] = None  # Set only for a split

    @property
    def is_split(self) -> bool:
        return self.direction is not None


def plan_spawn_target(panes: List[PaneInfo], worker_panes: Set[int],
                      prefix: str = 'panekeeper') -> SpawnTarget:
    """Pick the split, tab or window for the next worker

    A pane belongs to a worker if it is tracked or carries a worker title.
    The first tab with room is split into the grid; when every tab is full
    a new tab opens next to them, and with no worker panes at all a new
    window is opened.
    """
    title_prefix = f"{prefix}-"
    tabs: Dict[Tuple[int, int], List[PaneInfo]] = {}
    for pane in panes:
        if pane.pane_id in worker_panes or pane.title.startswith(title_prefix):
            tabs.setdefault((pane.window_id, pane.tab_id), []).append(pane)

    if not tabs:
        return SpawnTarget(new_window=True)

    for key in sorted(tabs):
        tab = sorted(tabs[key], key=lambda p: (p.top_row, p.left_col))
        if len(tab) < GRID_CAPACITY:
            index, direction = GRID_SPLITS[len(tab)]
            return SpawnTarget(from_pane=tab[index].pane_id, direction=direction)

    return SpawnTarget(from_pane=tabs[min(tabs)][0].pane_id)


class Spawner:
    """Creates worker terminal surfaces and records their identifiers"""

    def __init__(self, mux: Multiplexer, registry: WorkerRegistry,
                 inspector: ProcessInspector, launchers: LauncherScripts,
                 store: Optional[ControlStore] = None, clock=None,
                 pid_resolve_timeout: float = 5.0, pid_poll_interval: float = 0.1,
                 layout: str = 'tab'):
        if layout not in LAYOUTS:
            raise ValueError(f"Unknown pane layout: {layout}")
        self.mux = mux
        self.registry = registry
        self.inspector = inspector
        self.launchers = launchers
        self.store = store
        self.clock = clock or SystemClock()
        self.pid_resolve_timeout = pid_resolve_timeout
        self.pid_poll_interval = pid_poll_interval
        self.layout = layout
        self._spawn_lock = threading.Lock()  # One spawn at a time

    def spawn(self, config: WorkerConfig, worker_id: str, work_dir,
              initial_input: Optional[str] = None,
              token: Optional[CancelToken] = None) -> SpawnResult:
        """Start a worker; raises SpawnFailureFallback only if both paths fail"""
        validate_worker_id(worker_id)
        work_dir = str(work_dir) if work_dir else None

        with self._spawn_lock:
            script = self.launchers.write(worker_id, config.launch_command(), initial_input)
            program = [self.launchers.shell, str(script)]

            try:
                try:
                    pid, pane_id = self._spawn_primary(worker_id, work_dir, program, token)
                except SpawnFailurePrimary as primary_error:
                    logger.warning(
                        f"Primary spawn failed for {worker_id}: {primary_error}; "
                        f"falling back to a standalone session"
                    )
                    pid = self._spawn_standalone(worker_id, work_dir, program,
                                                 primary_error, token)
                    pane_id = UNTRACKED_PANE
            except (SpawnFailureFallback, OperationCancelled):
                self.launchers.remove(worker_id)
                raise

            self.registry.set_pid(worker_id, pid)
            if pane_id > 0:
                self.registry.set_pane_id(worker_id, pane_id)

            self._record(worker_id, pid, pane_id, work_dir)
            logger.info(f"Worker {worker_id} launched (PID: {pid}, Pane: {pane_id})")
            return SpawnResult(os_pid=pid, pane_id=pane_id)

    def _spawn_primary(self, worker_id: str, work_dir: Optional[str],
                       program: List[str], token: Optional[CancelToken]) -> Tuple[int, int]:
        """New pane on the running server; returns (pid, pane id or sentinel)"""
        try:
            pane_id = self._open_pane(work_dir, program, token)
        except MultiplexerError as e:
            raise SpawnFailurePrimary(str(e)) from e

        if pane_id <= 0:
            logger.warning(f"Server returned non-trackable pane id {pane_id} for {worker_id}")
            pane_id = UNTRACKED_PANE

        try:
            pid = self._resolve_pid(worker_id, token)
        except OperationCancelled:
            self._discard_pane(worker_id, pane_id)
            raise

        if pid is None:
            logger.warning(
                f"No process found for {worker_id} within {self.pid_resolve_timeout}s; "
                f"closing pane {pane_id}"
            )
            self._discard_pane(worker_id, pane_id)
            raise SpawnFailurePrimary(f"Could not resolve OS pid for pane {pane_id}")

        return pid, pane_id

    def _open_pane(self, work_dir: Optional[str], program: List[str],
                   token: Optional[CancelToken]) -> int:
        """New tab, or the next grid slot when the grid layout is on"""
        if self.layout == 'tab':
            return self.mux.spawn(work_dir, program, token=token)

        target = plan_spawn_target(
            self.mux.list_panes(token=token),
            set(self.registry.tracked_panes().values()),
            self.launchers.prefix
        )
        if target.is_split:
            logger.info(f"Splitting pane {target.from_pane} {target.direction}")
            return self.mux.split_pane(program, target.direction, from_pane=target.from_pane,
                                       cwd=work_dir, token=token)
        if target.new_window:
            logger.info("Opening a new worker window")
        else:
            logger.info(f"Worker grid full; opening a new tab beside pane {target.from_pane}")
        return self.mux.spawn(work_dir, program, new_window=target.new_window,
                              from_pane=target.from_pane, token=token)

    def _spawn_standalone(self, worker_id: str, work_dir: Optional[str], program: List[str],
                          primary_error: Exception, token: Optional[CancelToken]) -> int:
        try:
            return self.mux.start_standalone(work_dir, program, token=token)
        except MultiplexerError as e:
            logger.error(f"Standalone spawn failed for {worker_id}: {e}")
            raise SpawnFailureFallback(
                f"Both spawn paths failed for {worker_id}: "
                f"primary: {primary_error}; standalone: {e}"
            ) from e

    def _resolve_pid(self, worker_id: str, token: Optional[CancelToken]) -> Optional[int]:
        """Poll the process table for the shell running this worker's launcher"""
        script_name = launcher_script_name(worker_id, self.launchers.prefix)
        deadline = self.clock.monotonic() + self.pid_resolve_timeout

        while True:
            pids = self.inspector.find_by_argument(script_name)
            if pids:
                # Lowest pid is the launching shell, not one of its children
                return min(pids)
            if self.clock.monotonic() >= deadline:
                return None
            if not self.clock.sleep(self.pid_poll_interval, token):
                raise OperationCancelled(f"Cancelled while resolving pid for {worker_id}")

    def _discard_pane(self, worker_id: str, pane_id: int):
        if pane_id <= 0:
            return
        # No token: a kill is never preempted
        try:
            self.mux.kill_pane(pane_id)
        except MultiplexerError as e:
            logger.warning(f"Failed to close orphan pane {pane_id} of {worker_id}: {e}")

    def _record(self, worker_id: str, pid: int, pane_id: int, work_dir: Optional[str]):
        if not self.store:
            return

        tracked = pane_id > 0
        try:
            self.store.record_spawn(worker_id, pid, pane_id if tracked else None, work_dir or '')
            self.store.log_pane_event(PaneEvent(
                worker_id=worker_id,
                pane_id=pane_id if tracked else None,
                action=PaneAction.SPAWNED,
                status_after='running',
                details=f"pane {pane_id}" if tracked else "standalone session (pane untracked)",
            ))
        except Exception as e:
            # The worker is already running; losing the record is not fatal
            logger.warning(f"Failed to persist spawn of {worker_id}: {e}")
