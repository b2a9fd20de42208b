"""
Cold-start reconciliation of persisted worker records against live state

The registry lives in process memory. When a new process (for example a
fresh CLI invocation) takes over, the running records in the control store
are compared with what the multiplexer and the process table report, and
the registry is rebuilt from whatever is still alive.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Set

from .control_store import ControlStore, PaneAction, PaneEvent, WorkerRecord, WorkerStatus
from .exceptions import MultiplexerError
from .multiplexer import Multiplexer
from .process_inspector import ProcessInspector
from .registry import WorkerRegistry


logger = logging.getLogger(__name__)


@dataclass
class ReconcileReport:
    """Worker ids by reconciliation outcome"""
    reattached: List[str] = field(default_factory=list)  # Pane still live
    detached: List[str] = field(default_factory=list)    # Pane gone, pid alive
    crashed: List[str] = field(default_factory=list)     # Nothing left
    server_reachable: bool = True

    @property
    def restored(self) -> List[str]:
        return self.reattached + self.detached


def reconcile(store: ControlStore, mux: Multiplexer, registry: WorkerRegistry,
              inspector: ProcessInspector, log_events: bool = True) -> ReconcileReport:
    """Rebuild the registry from running records

    A record's pane counts as live only if the server lists it. When the
    server cannot be reached no pane is live, so tracked panes are
    reported as detached (or crashed if their pid is gone too).
    """
    report = ReconcileReport()
    live_panes = _live_pane_ids(mux, report)

    for record in store.all_records():
        if record.status != WorkerStatus.RUNNING:
            continue

        pane_live = record.pane_id is not None and record.pane_id in live_panes
        pid_alive = bool(record.os_pid) and inspector.is_running(record.os_pid)

        if pane_live:
            if record.os_pid:
                registry.set_pid(record.worker_id, record.os_pid)
            registry.set_pane_id(record.worker_id, record.pane_id)
            report.reattached.append(record.worker_id)
            if log_events:
                _log(store, record, PaneAction.REATTACHED, 'running', 'running',
                     f"pane {record.pane_id} still live")
        elif pid_alive:
            registry.set_pid(record.worker_id, record.os_pid)
            report.detached.append(record.worker_id)
            # Only a pane that went away is news; standalone workers never had one
            if record.pane_id is not None:
                if log_events:
                    _log(store, record, PaneAction.DETACHED, 'running', 'running',
                         f"pane {record.pane_id} gone, pid {record.os_pid} alive")
                store.update_pane_id(record.worker_id, None)
        else:
            logger.warning(f"Worker {record.worker_id} is gone (pid {record.os_pid}, pane {record.pane_id})")
            store.mark_stopped(record.worker_id, 'crashed')
            report.crashed.append(record.worker_id)
            _log(store, record, PaneAction.CRASHED, 'running', 'stopped',
                 "pane and pid gone at reconciliation")

    if report.reattached or report.detached or report.crashed:
        logger.info(
            f"Reconciled: {len(report.reattached)} reattached, "
            f"{len(report.detached)} detached, {len(report.crashed)} crashed"
        )
    return report


def _live_pane_ids(mux: Multiplexer, report: ReconcileReport) -> Set[int]:
    try:
        return {pane.pane_id for pane in mux.list_panes()}
    except MultiplexerError as e:
        logger.info(f"Multiplexer server not reachable during reconcile: {e}")
        report.server_reachable = False
        return set()


def _log(store: ControlStore, record: WorkerRecord, action: PaneAction,
         before: str, after: str, details: Optional[str] = None):
    try:
        store.log_pane_event(PaneEvent(
            worker_id=record.worker_id,
            pane_id=record.pane_id,
            action=action,
            status_before=before,
            status_after=after,
            details=details or '',
        ))
    except Exception as e:
        logger.warning(f"Failed to log {action.value} event for {record.worker_id}: {e}")
