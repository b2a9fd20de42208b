"""
Module: supervisor
Purpose: Public entry point for worker pane lifecycle supervision

Wires the executor, multiplexer adapter, registry, process inspector,
launcher scripts, control store, spawner and shutdown sequencer together
and exposes the operations callers use. Nothing here interprets worker
output or decides when to start or stop a worker; callers do.

Key Classes:
    - WorkerSupervisor: Facade over spawn / stop / pane operations

Usage:
    supervisor = WorkerSupervisor.from_config(Config.load(path))
    supervisor.reconcile()
    result = supervisor.spawn(WorkerConfig('SNTGreen'), work_dir='/src/app')
    supervisor.stop(worker_id, reason='task complete')
"""

import logging
from typing import Dict, List, Optional, Sequence

from .config import Config
from .control_store import ControlStore, FileControlStore, PaneEvent
from .exceptions import PaneNotTracked, PanekeeperError, RecordNotFound
from .executor import CommandExecutor, CommandRunner, SubprocessRunner
from .launcher import LauncherScripts
from .multiplexer import Multiplexer, PaneInfo, WeztermMultiplexer
from .process_inspector import ProcessInspector, default_inspector
from .reconcile import ReconcileReport, reconcile
from .registry import WorkerRegistry, WorkerSession
from .shutdown import ShutdownSequencer, StopReport
from .spawner import SpawnResult, Spawner, WorkerConfig
from .timing import CancelToken, SystemClock


logger = logging.getLogger(__name__)


class WorkerSupervisor:
    """Spawns, tracks and stops worker panes"""

    def __init__(self, mux: Multiplexer, registry: WorkerRegistry,
                 inspector: ProcessInspector, launchers: LauncherScripts,
                 store: Optional[ControlStore] = None, clock=None,
                 config: Optional[Config] = None):
        self.config = config or Config()
        self.mux = mux
        self.registry = registry
        self.inspector = inspector
        self.launchers = launchers
        self.store = store
        self.clock = clock or SystemClock()

        self.spawner = Spawner(
            mux, registry, inspector, launchers,
            store=store,
            clock=self.clock,
            pid_resolve_timeout=self.config.pid_resolve_timeout,
            pid_poll_interval=self.config.pid_poll_interval,
            layout=self.config.pane_layout
        )
        self.sequencer = ShutdownSequencer(
            mux, registry, inspector,
            store=store,
            launchers=launchers,
            clock=self.clock,
            interrupt_grace=self.config.interrupt_grace,
            exit_grace=self.config.exit_grace,
            batch_pause=self.config.batch_pause
        )

    @classmethod
    def from_config(cls, config: Config, store: Optional[ControlStore] = None,
                    runner: Optional[CommandRunner] = None,
                    inspector: Optional[ProcessInspector] = None,
                    clock=None) -> 'WorkerSupervisor':
        """Build a supervisor with real adapters unless overridden"""
        config.validate()
        clock = clock or SystemClock()

        executor = CommandExecutor(
            runner or SubprocessRunner(config.multiplexer_command),
            min_interval=config.min_op_interval,
            timeout=config.command_timeout,
            clock=clock
        )
        if store is None:
            store = FileControlStore(config.state_dir)

        return cls(
            WeztermMultiplexer(executor),
            WorkerRegistry(),
            inspector or default_inspector(),
            LauncherScripts(config.state_dir, config.shell, config.title_prefix),
            store=store,
            clock=clock,
            config=config
        )

    # Lifecycle

    def spawn(self, worker: WorkerConfig, worker_id: Optional[str] = None,
              work_dir=None, initial_input: Optional[str] = None,
              token: Optional[CancelToken] = None) -> SpawnResult:
        """Start a worker; an id is generated from the worker's name if omitted"""
        if worker_id is None:
            worker_id = self.generate_worker_id(worker.name)
        logger.info(f"Spawning worker {worker_id} ({worker.name}) in {work_dir}")
        return self.spawner.spawn(worker, worker_id, work_dir, initial_input, token)

    def stop(self, worker_id: str, reason: str = 'manual stop',
             token: Optional[CancelToken] = None) -> StopReport:
        return self.sequencer.stop(worker_id, reason, token)

    def stop_many(self, worker_ids: Sequence[str], reason: str = 'batch stop',
                  token: Optional[CancelToken] = None) -> List[PanekeeperError]:
        return self.sequencer.stop_many(worker_ids, reason, token)

    def stop_all(self, reason: str = 'stop all',
                 token: Optional[CancelToken] = None) -> List[PanekeeperError]:
        """Stop every worker the registry knows about"""
        worker_ids = sorted(self.registry.running_workers())
        logger.info(f"Stopping {len(worker_ids)} workers")
        return self.stop_many(worker_ids, reason, token)

    def remove_worker(self, worker_id: str) -> Optional[WorkerSession]:
        """Forget a worker without killing anything"""
        return self.registry.remove_worker(worker_id)

    def reconcile(self, log_events: bool = True) -> ReconcileReport:
        """Rebuild the registry from the control store and live state"""
        if not self.store:
            return ReconcileReport()
        return reconcile(self.store, self.mux, self.registry, self.inspector,
                         log_events=log_events)

    # Tracking

    def get_pane_id(self, worker_id: str) -> Optional[int]:
        return self.registry.get_pane_id(worker_id)

    def set_pane_id(self, worker_id: str, pane_id: int) -> bool:
        """Track a pane for a worker, e.g. after a caller re-discovers it"""
        if not self.registry.set_pane_id(worker_id, pane_id):
            return False
        if self.store:
            try:
                self.store.update_pane_id(worker_id, pane_id)
            except RecordNotFound:
                logger.debug(f"No stored record for {worker_id}; pane {pane_id} tracked in memory only")
        return True

    def set_companion_pid(self, worker_id: str, pid: int):
        self.registry.set_companion_pid(worker_id, pid)

    def generate_worker_id(self, kind: str) -> str:
        """Next free id for a worker kind, skipping ids already on record"""
        while True:
            worker_id = self.registry.generate_worker_id(kind)
            if self.registry.get(worker_id) is None and not self._has_record(worker_id):
                return worker_id

    def running_workers(self) -> Dict[str, int]:
        return self.registry.running_workers()

    def is_running(self, pid: int) -> bool:
        return self.inspector.is_running(pid)

    def pane_history(self, worker_id: str, limit: int = 50) -> List[PaneEvent]:
        if not self.store:
            return []
        return self.store.get_pane_history(worker_id, limit)

    # Pane operations

    def send_input(self, worker_id: str, text: str, execute: bool = True,
                   token: Optional[CancelToken] = None):
        """Type text into a worker's pane"""
        self.mux.send_text(self._require_pane(worker_id), text, execute=execute, token=token)

    def read_output(self, worker_id: str, lines: Optional[int] = None,
                    token: Optional[CancelToken] = None) -> str:
        """Rendered text of a worker's pane; the last `lines` lines if given"""
        start_line = -lines if lines else None
        return self.mux.get_text(self._require_pane(worker_id), start_line=start_line, token=token)

    def focus(self, worker_id: str, token: Optional[CancelToken] = None):
        self.mux.activate_pane(self._require_pane(worker_id), token=token)

    def list_panes(self, token: Optional[CancelToken] = None) -> List[PaneInfo]:
        return self.mux.list_panes(token=token)

    def close_panes(self, pane_ids: Sequence[int], graceful: bool = True,
                    token: Optional[CancelToken] = None) -> Dict[int, PanekeeperError]:
        """Close panes by id; returns failures keyed by pane id"""
        if graceful:
            return self.sequencer.graceful_kill_panes(pane_ids, token)
        return self.sequencer.kill_panes(pane_ids, token)

    def cleanup_launchers(self) -> int:
        """Remove launcher scripts of workers no longer tracked"""
        active = set(self.registry.running_workers())
        removed = 0
        for path in sorted(self.launchers.scripts_dir.glob(f"{self.launchers.prefix}-*-launcher.sh")):
            worker_id = path.name[len(self.launchers.prefix) + 1:-len('-launcher.sh')]
            if worker_id not in active and self.launchers.remove(worker_id):
                removed += 1
        if removed:
            logger.info(f"Removed {removed} stale launcher scripts")
        return removed

    def _require_pane(self, worker_id: str) -> int:
        pane_id = self.registry.get_pane_id(worker_id)
        if pane_id is None:
            raise PaneNotTracked(f"No pane tracked for worker {worker_id}")
        return pane_id

    def _has_record(self, worker_id: str) -> bool:
        return bool(self.store) and self.store.get_record(worker_id) is not None
