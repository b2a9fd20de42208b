"""
Module: shutdown
Purpose: Best-effort, multi-stage termination of a worker

Stopping a worker runs an ordered list of independent stages. No stage
is skipped because an earlier one failed or succeeded: each one covers a
different way the worker can survive (cooperative exit ignored, pane id
lost, server gone, pid reused, stray launcher shells). The registry entry
is removed before any kill is attempted so a retried or concurrent stop
never acts on stale identifiers.

Stages:
    1. shutdown_flag     - cooperative flag in the control store
    2. companion         - kill the worker's auxiliary process
    3. mark_stopped      - mark the worker stopped in the control store
    4. registry_removal  - drop pid/pane/companion from the registry
    5. pane_kill         - graceful pane kill (Ctrl+C, exit, kill-pane)
    6. pid_kill          - kill the tracked pid and its children
    7. title_match       - close panes titled after the worker
    8. launcher_match    - kill shells running the worker's launcher script

Key Classes:
    - ShutdownSequencer: stop / stop_many / graceful_kill / pane batches
    - StopReport: Per-stage outcomes of one stop
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .control_store import ControlStore, PaneAction, PaneEvent
from .exceptions import (
    KillFailure, MultiplexerError, NotAttempted, OperationCancelled,
    PanekeeperError, StopFailure
)
from .launcher import LauncherScripts, launcher_script_name, window_title
from .multiplexer import Multiplexer
from .process_inspector import ProcessInspector
from .registry import WorkerRegistry, WorkerSession
from .timing import CancelToken, SystemClock


logger = logging.getLogger(__name__)

INTERRUPT = '\x03'


class Stage(Enum):
    SHUTDOWN_FLAG = "shutdown_flag"
    COMPANION = "companion"
    MARK_STOPPED = "mark_stopped"
    REGISTRY_REMOVAL = "registry_removal"
    PANE_KILL = "pane_kill"
    PID_KILL = "pid_kill"
    TITLE_MATCH = "title_match"
    LAUNCHER_MATCH = "launcher_match"


class StageOutcome(Enum):
    OK = "ok"
    FAILED = "failed"
    SKIPPED = "skipped"              # Nothing to act on
    NOT_ATTEMPTED = "not_attempted"  # Cancelled before the stage started


@dataclass
class StageResult:
    stage: Stage
    outcome: StageOutcome
    detail: str = ''
    error: Optional[KillFailure] = None


@dataclass
class StopReport:
    """What happened during one stop"""
    worker_id: str
    reason: str
    results: List[StageResult] = field(default_factory=list)
    survivors: List[int] = field(default_factory=list)

    def outcome(self, stage: Stage) -> Optional[StageOutcome]:
        for result in self.results:
            if result.stage == stage:
                return result.outcome
        return None

    @property
    def attempted(self) -> List[StageResult]:
        return [r for r in self.results
                if r.outcome in (StageOutcome.OK, StageOutcome.FAILED)]

    @property
    def succeeded(self) -> bool:
        """At least one stage did its job"""
        return any(r.outcome == StageOutcome.OK for r in self.results)

    @property
    def failed(self) -> bool:
        """Every attempted stage failed"""
        attempted = self.attempted
        return bool(attempted) and all(r.outcome == StageOutcome.FAILED for r in attempted)

    @property
    def errors(self) -> List[KillFailure]:
        return [r.error for r in self.results if r.error is not None]

    @property
    def confirmed(self) -> bool:
        """No tracked pid was still alive after the last stage"""
        return not self.survivors


StageAction = Callable[[], Tuple[StageOutcome, str]]


class ShutdownSequencer:
    """Graceful-then-forceful termination of workers and panes"""

    def __init__(self, mux: Multiplexer, registry: WorkerRegistry,
                 inspector: ProcessInspector, store: Optional[ControlStore] = None,
                 launchers: Optional[LauncherScripts] = None, clock=None,
                 interrupt_grace: float = 0.3, exit_grace: float = 0.5,
                 batch_pause: float = 0.3, prefix: str = 'panekeeper'):
        self.mux = mux
        self.registry = registry
        self.inspector = inspector
        self.store = store
        self.launchers = launchers
        self.clock = clock or SystemClock()
        self.interrupt_grace = interrupt_grace
        self.exit_grace = exit_grace
        self.batch_pause = batch_pause
        self.prefix = launchers.prefix if launchers else prefix

    # ------------------------------------------------------------------
    # Single worker
    # ------------------------------------------------------------------

    def stop(self, worker_id: str, reason: str = 'manual stop',
             token: Optional[CancelToken] = None) -> StopReport:
        """Run every shutdown stage for a worker

        Returns the report when at least one stage succeeded (or nothing
        needed doing). Raises StopFailure if every attempted stage failed,
        and OperationCancelled if the token fired before any stage ran.
        Termination is best-effort: pids still alive afterwards are listed
        in `report.survivors` rather than turned into an error.
        """
        logger.info(f"Stopping worker {worker_id} with reason: {reason}")
        report = StopReport(worker_id=worker_id, reason=reason)

        initial = self.registry.get(worker_id)
        tracked = {'session': initial}

        def remove_from_registry():
            removed = self.registry.remove_worker(worker_id)
            if removed is None:
                # Another stop got there first and owns the kills
                tracked['session'] = None
                return StageOutcome.SKIPPED, "not tracked"
            tracked['session'] = removed
            return StageOutcome.OK, "removed"

        stages: List[Tuple[Stage, StageAction]] = [
            (Stage.SHUTDOWN_FLAG, lambda: self._set_shutdown_flag(worker_id, reason)),
            (Stage.COMPANION, lambda: self._kill_companion(initial)),
            (Stage.MARK_STOPPED, lambda: self._mark_stopped(worker_id, reason)),
            (Stage.REGISTRY_REMOVAL, remove_from_registry),
            (Stage.PANE_KILL, lambda: self._kill_tracked_pane(worker_id, tracked['session'], reason, token)),
            (Stage.PID_KILL, lambda: self._kill_tracked_pid(worker_id, tracked['session'])),
            (Stage.TITLE_MATCH, lambda: self._kill_by_title(worker_id)),
            (Stage.LAUNCHER_MATCH, lambda: self._kill_by_launcher(worker_id)),
        ]

        for stage, action in stages:
            report.results.append(self._run_stage(worker_id, stage, action, token))

        report.survivors = self._survivors(worker_id, tracked['session'])
        if report.survivors:
            logger.warning(f"Worker {worker_id}: pids still alive after shutdown: {report.survivors}")

        if not report.attempted and token is not None and token.cancelled:
            raise OperationCancelled(f"Stop of {worker_id} cancelled before any stage ran")

        self._remove_launcher(worker_id)
        if report.failed:
            logger.error(f"All shutdown stages failed for worker {worker_id}")
            raise StopFailure(worker_id, report)

        logger.info(
            f"Worker {worker_id} stopped: "
            + ', '.join(f"{r.stage.value}={r.outcome.value}" for r in report.results)
        )
        return report

    def _run_stage(self, worker_id: str, stage: Stage, action: StageAction,
                   token: Optional[CancelToken]) -> StageResult:
        if token is not None and token.cancelled:
            return StageResult(stage, StageOutcome.NOT_ATTEMPTED)
        try:
            outcome, detail = action()
        except Exception as e:
            logger.warning(f"[{worker_id}] {stage.value} failed: {e}")
            return StageResult(stage, StageOutcome.FAILED, str(e), KillFailure(stage.value, str(e)))
        logger.debug(f"[{worker_id}] {stage.value}: {outcome.value} {detail}")
        return StageResult(stage, outcome, detail)

    def _set_shutdown_flag(self, worker_id: str, reason: str):
        if not self.store:
            return StageOutcome.SKIPPED, "no control store"
        self.store.set_shutdown_flag(worker_id, reason)
        return StageOutcome.OK, "flag set"

    def _kill_companion(self, session: Optional[WorkerSession]):
        pid = session.companion_pid if session else None
        if not pid:
            return StageOutcome.SKIPPED, "no companion process"
        if self.inspector.kill(pid):
            return StageOutcome.OK, f"killed companion {pid}"
        return StageOutcome.OK, f"companion {pid} already gone"

    def _mark_stopped(self, worker_id: str, reason: str):
        if not self.store:
            return StageOutcome.SKIPPED, "no control store"
        self.store.mark_stopped(worker_id, reason)
        return StageOutcome.OK, "marked stopped"

    def _kill_tracked_pane(self, worker_id: str, session: Optional[WorkerSession],
                           reason: str, token: Optional[CancelToken]):
        pane_id = session.pane_id if session else None
        if not pane_id:
            return StageOutcome.SKIPPED, "no pane on record"
        self.graceful_kill(pane_id, token)
        self._log_closed(worker_id, pane_id, reason)
        return StageOutcome.OK, f"closed pane {pane_id}"

    def _kill_tracked_pid(self, worker_id: str, session: Optional[WorkerSession]):
        pid = session.os_pid if session else None
        if not pid:
            return StageOutcome.SKIPPED, "no pid on record"
        if not self.inspector.is_running(pid):
            return StageOutcome.OK, f"pid {pid} already gone"

        name = self.inspector.name_of(pid)
        if not self._owns_pid(worker_id, pid):
            logger.warning(f"Pid {pid} ({name}) no longer runs the launcher of {worker_id}; not killing it")
            return StageOutcome.OK, f"pid {pid} reused, not killed"

        logger.info(f"Killing pid {pid} ({name}) and its children")
        killed = self.inspector.kill_tree(pid)
        return StageOutcome.OK, f"killed {killed}"

    def _kill_by_title(self, worker_id: str):
        """Close every pane whose title is exactly the worker's window title"""
        title = window_title(worker_id, self.prefix)
        matches = [pane for pane in self.mux.list_panes() if pane.title == title]
        if not matches:
            return StageOutcome.OK, "no matching panes"

        closed, errors = [], []
        for pane in matches:
            try:
                self.mux.kill_pane(pane.pane_id)
                closed.append(pane.pane_id)
            except MultiplexerError as e:
                errors.append(f"pane {pane.pane_id}: {e}")
        if errors and not closed:
            raise MultiplexerError('; '.join(errors))
        return StageOutcome.OK, f"closed panes {closed}"

    def _kill_by_launcher(self, worker_id: str):
        """Kill every process whose argv names this worker's launcher script"""
        script_name = launcher_script_name(worker_id, self.prefix)
        pids = self.inspector.find_by_argument(script_name)
        if not pids:
            return StageOutcome.OK, "no launcher processes"

        killed = []
        for pid in pids:
            killed.extend(self.inspector.kill_tree(pid))
        return StageOutcome.OK, f"killed {killed}"

    def _owns_pid(self, worker_id: str, pid: int) -> bool:
        """The pid's argv still names this worker's launcher script

        Holds for both spawn paths: the pane shell runs the script, and a
        standalone session carries it after `--` in its own argv.
        """
        return self.inspector.has_argument(pid, launcher_script_name(worker_id, self.prefix))

    def _survivors(self, worker_id: str, session: Optional[WorkerSession]) -> List[int]:
        if session is None:
            return []
        survivors = []
        for pid in (session.os_pid, session.companion_pid):
            try:
                if not (pid and self.inspector.is_running(pid)):
                    continue
                if pid == session.os_pid and not self._owns_pid(worker_id, pid):
                    continue
                survivors.append(pid)
            except Exception as e:
                logger.warning(f"Could not re-check pid {pid}: {e}")
        return survivors

    def _remove_launcher(self, worker_id: str):
        if not self.launchers:
            return
        try:
            self.launchers.remove(worker_id)
        except OSError as e:
            logger.warning(f"Failed to remove launcher for {worker_id}: {e}")

    def _log_closed(self, worker_id: str, pane_id: int, reason: str):
        if not self.store:
            return
        try:
            self.store.log_pane_event(PaneEvent(
                worker_id=worker_id,
                pane_id=pane_id,
                action=PaneAction.CLOSED,
                status_before='running',
                status_after='stopped',
                details=reason,
            ))
        except Exception as e:
            logger.warning(f"Failed to log pane close for {worker_id}: {e}")

    # ------------------------------------------------------------------
    # Pane level
    # ------------------------------------------------------------------

    def graceful_kill(self, pane_id: int, token: Optional[CancelToken] = None):
        """Ctrl+C, wait, `exit`, wait, then kill-pane

        The kill-pane call is issued exactly once whatever happens to the
        earlier steps. Cancellation cuts the grace waits and the `exit`
        step short but never the kill. Raises MultiplexerError only if the
        kill-pane call itself fails.
        """
        logger.info(f"Gracefully closing pane {pane_id}")

        try:
            self.mux.send_text(pane_id, INTERRUPT)
        except MultiplexerError as e:
            logger.warning(f"Interrupt to pane {pane_id} failed: {e}")

        if self.clock.sleep(self.interrupt_grace, token):
            try:
                self.mux.send_text(pane_id, 'exit', execute=True)
            except MultiplexerError as e:
                logger.warning(f"Exit to pane {pane_id} failed: {e}")
            self.clock.sleep(self.exit_grace, token)
        else:
            logger.info(f"Cancelled; skipping grace period for pane {pane_id}")

        self.mux.kill_pane(pane_id)

    def kill_panes(self, pane_ids: Sequence[int],
                   token: Optional[CancelToken] = None) -> Dict[int, PanekeeperError]:
        """Kill panes one by one; returns failures by pane id"""
        return self._pane_batch(pane_ids, self.mux.kill_pane, token)

    def graceful_kill_panes(self, pane_ids: Sequence[int],
                            token: Optional[CancelToken] = None) -> Dict[int, PanekeeperError]:
        """Run the full graceful sub-protocol per pane, one pane at a time"""
        return self._pane_batch(pane_ids, lambda pane_id: self.graceful_kill(pane_id, token), token)

    def _pane_batch(self, pane_ids: Sequence[int], kill: Callable[[int], None],
                    token: Optional[CancelToken]) -> Dict[int, PanekeeperError]:
        failures: Dict[int, PanekeeperError] = {}
        pane_ids = list(pane_ids)

        for index, pane_id in enumerate(pane_ids):
            if not self._settle(index, token):
                for remaining in pane_ids[index:]:
                    failures[remaining] = NotAttempted(f"pane {remaining}")
                logger.warning(f"Pane batch cancelled; {len(pane_ids) - index} panes not attempted")
                break
            try:
                kill(pane_id)
            except MultiplexerError as e:
                logger.warning(f"Failed to close pane {pane_id}: {e}")
                failures[pane_id] = e

        return failures

    # ------------------------------------------------------------------
    # Batches of workers
    # ------------------------------------------------------------------

    def stop_many(self, worker_ids: Sequence[str], reason: str = 'batch stop',
                  token: Optional[CancelToken] = None) -> List[PanekeeperError]:
        """Stop workers sequentially, pausing between them

        Returns one error per worker whose stop failed overall, plus a
        NotAttempted for every worker left untouched by cancellation.
        """
        errors: List[PanekeeperError] = []
        worker_ids = list(worker_ids)

        for index, worker_id in enumerate(worker_ids):
            if not self._settle(index, token):
                errors.extend(NotAttempted(remaining) for remaining in worker_ids[index:])
                logger.warning(f"Batch stop cancelled; {len(worker_ids) - index} workers not attempted")
                break
            try:
                self.stop(worker_id, reason, token)
            except StopFailure as e:
                errors.append(e)
            except OperationCancelled:
                errors.append(NotAttempted(worker_id))

        return errors

    def _settle(self, index: int, token: Optional[CancelToken]) -> bool:
        """Pause between batch items; False if the batch was cancelled"""
        if index > 0 and not self.clock.sleep(self.batch_pause, token):
            return False
        return not (token is not None and token.cancelled)
