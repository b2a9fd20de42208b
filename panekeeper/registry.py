"""
Identifier registry: worker id -> OS pid, pane id and companion pid
"""

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Optional

logger = logging.getLogger(__name__)

# Returned by spawn when a worker runs outside the multiplexer server.
# Never stored: an untracked worker simply has no pane entry.
UNTRACKED_PANE = -1


@dataclass(frozen=True)
class WorkerSession:
    """Snapshot of everything tracked for one worker"""
    worker_id: str
    os_pid: Optional[int] = None
    pane_id: Optional[int] = None
    companion_pid: Optional[int] = None
    
    @property
    def pane_tracked(self) -> bool:
        return self.pane_id is not None


class WorkerRegistry:
    """Thread-safe worker tracking
    
    Uses its own lock so lookups never wait on an in-flight CLI call.
    """
    
    def __init__(self):
        self._lock = threading.RLock()
        self._pids: Dict[str, int] = {}
        self._panes: Dict[str, int] = {}
        self._companions: Dict[str, int] = {}
        self._counters: Dict[str, int] = {}
    
    def set_pane_id(self, worker_id: str, pane_id: int) -> bool:
        """Track a pane; non-positive ids are ignored. Returns True if stored"""
        if pane_id is None or pane_id <= 0:
            logger.debug(f"Ignoring non-positive pane id {pane_id} for {worker_id}")
            return False
        with self._lock:
            self._panes[worker_id] = pane_id
        return True
    
    def get_pane_id(self, worker_id: str) -> Optional[int]:
        with self._lock:
            return self._panes.get(worker_id)
    
    def set_pid(self, worker_id: str, pid: int):
        with self._lock:
            self._pids[worker_id] = pid
    
    def get_pid(self, worker_id: str) -> Optional[int]:
        with self._lock:
            return self._pids.get(worker_id)
    
    def set_companion_pid(self, worker_id: str, pid: int):
        """Track an auxiliary process (heartbeat, monitor) owned by the worker"""
        with self._lock:
            self._companions[worker_id] = pid
    
    def get_companion_pid(self, worker_id: str) -> Optional[int]:
        with self._lock:
            return self._companions.get(worker_id)
    
    def get(self, worker_id: str) -> Optional[WorkerSession]:
        """Snapshot of a worker, or None if nothing is tracked for it"""
        with self._lock:
            return self._snapshot(worker_id)
    
    def remove_worker(self, worker_id: str) -> Optional[WorkerSession]:
        """Drop every identifier for a worker at once
        
        Idempotent: unknown ids return None. The removed snapshot is
        returned so callers can act on it after the lock is released.
        """
        with self._lock:
            session = self._snapshot(worker_id)
            self._pids.pop(worker_id, None)
            self._panes.pop(worker_id, None)
            self._companions.pop(worker_id, None)
        return session
    
    def next_sequence(self, kind: str) -> int:
        """Increment and return the counter for a worker kind"""
        with self._lock:
            self._counters[kind] = self._counters.get(kind, 0) + 1
            return self._counters[kind]
    
    def peek_sequence(self, kind: str) -> int:
        """The value next_sequence would return, without consuming it"""
        with self._lock:
            return self._counters.get(kind, 0) + 1
    
    def generate_worker_id(self, kind: str) -> str:
        """Human-readable id such as team-sntgreen001"""
        seq = self.next_sequence(kind)
        return f"team-{kind.lower()}{seq:03d}"
    
    def running_workers(self) -> Dict[str, int]:
        """Copy of worker id -> OS pid"""
        with self._lock:
            return dict(self._pids)
    
    def tracked_panes(self) -> Dict[str, int]:
        """Copy of worker id -> pane id"""
        with self._lock:
            return dict(self._panes)
    
    def worker_by_pid(self, pid: int) -> Optional[str]:
        with self._lock:
            for worker_id, worker_pid in self._pids.items():
                if worker_pid == pid:
                    return worker_id
        return None
    
    def _snapshot(self, worker_id: str) -> Optional[WorkerSession]:
        if (worker_id not in self._pids and worker_id not in self._panes
                and worker_id not in self._companions):
            return None
        return WorkerSession(
            worker_id=worker_id,
            os_pid=self._pids.get(worker_id),
            pane_id=self._panes.get(worker_id),
            companion_pid=self._companions.get(worker_id),
        )
