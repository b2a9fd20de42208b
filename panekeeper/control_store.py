"""
Module: control_store
Purpose: Control flags, worker records and the pane lifecycle log

The lifecycle manager reads and writes a small amount of state that is
owned by an external store: a cooperative shutdown flag the worker polls,
a stopped marker, the worker's pane id and pid, and an append-only log of
pane lifecycle events used for cold-start reconciliation.

Key Classes:
    - ControlStore: Interface the supervisor depends on
    - FileControlStore: JSON records + JSON-lines event log on disk
    - MemoryControlStore: In-process store for embedding and tests
    - WorkerRecord / PaneEvent: Data models

Usage:
    store = FileControlStore(config.state_dir)
    store.record_spawn('team-snt001', os_pid=4242, pane_id=7, work_dir='/src')
    store.log_pane_event(PaneEvent('team-snt001', 7, PaneAction.SPAWNED))
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from .exceptions import RecordNotFound
from .file_utils import JSONFileStore, append_json_line, read_json_lines, ensure_directory


logger = logging.getLogger(__name__)


class PaneAction(Enum):
    SPAWNED = "spawned"
    CLOSED = "closed"
    CRASHED = "crashed"
    DETACHED = "detached"
    REATTACHED = "reattached"


class WorkerStatus(Enum):
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass
class WorkerRecord:
    """Persisted view of one worker"""
    worker_id: str
    status: WorkerStatus = WorkerStatus.RUNNING
    os_pid: Optional[int] = None
    pane_id: Optional[int] = None
    work_dir: str = ''
    shutdown_flag: bool = False
    shutdown_reason: str = ''
    spawned_at: datetime = field(default_factory=datetime.now)
    stopped_at: Optional[datetime] = None
    stop_reason: str = ''
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        data = asdict(self)
        data['status'] = self.status.value
        data['spawned_at'] = self.spawned_at.isoformat()
        if self.stopped_at:
            data['stopped_at'] = self.stopped_at.isoformat()
        return data
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkerRecord':
        """Create from dictionary"""
        data = dict(data)
        data['status'] = WorkerStatus(data.get('status', 'running'))
        data['spawned_at'] = datetime.fromisoformat(data['spawned_at'])
        if data.get('stopped_at'):
            data['stopped_at'] = datetime.fromisoformat(data['stopped_at'])
        return cls(**data)


@dataclass
class PaneEvent:
    """One entry of the pane lifecycle log"""
    worker_id: str
    pane_id: Optional[int]
    action: PaneAction
    status_before: str = ''
    status_after: str = ''
    details: str = ''
    timestamp: datetime = field(default_factory=datetime.now)
    
    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['action'] = self.action.value
        data['timestamp'] = self.timestamp.isoformat()
        return data
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PaneEvent':
        data = dict(data)
        data['action'] = PaneAction(data['action'])
        data['timestamp'] = datetime.fromisoformat(data['timestamp'])
        return cls(**data)


class ControlStore(ABC):
    """External state the lifecycle manager reads and writes but does not own"""
    
    @abstractmethod
    def set_shutdown_flag(self, worker_id: str, reason: str):
        """Ask the worker's own poll loop to exit"""
    
    @abstractmethod
    def clear_shutdown_flag(self, worker_id: str):
        pass
    
    @abstractmethod
    def check_shutdown_flag(self, worker_id: str) -> Tuple[bool, str]:
        """(flag set, reason)"""
    
    @abstractmethod
    def mark_stopped(self, worker_id: str, reason: str):
        pass
    
    @abstractmethod
    def record_spawn(self, worker_id: str, os_pid: int, pane_id: Optional[int],
                     work_dir: str = ''):
        """Create or replace the record for a freshly spawned worker"""
    
    @abstractmethod
    def update_pane_id(self, worker_id: str, pane_id: Optional[int]):
        pass
    
    @abstractmethod
    def get_record(self, worker_id: str) -> Optional[WorkerRecord]:
        pass
    
    @abstractmethod
    def all_records(self) -> List[WorkerRecord]:
        pass
    
    @abstractmethod
    def log_pane_event(self, event: PaneEvent):
        pass
    
    @abstractmethod
    def get_pane_history(self, worker_id: str, limit: int = 50) -> List[PaneEvent]:
        """Events for a worker, newest first"""


class _RecordStore(ControlStore):
    """Shared record logic; subclasses supply storage"""
    
    @abstractmethod
    def _update(self, worker_id: str, fn: Callable[[Optional[Dict[str, Any]]], Dict[str, Any]]):
        """Atomically replace the raw record for worker_id with fn(current)"""
    
    @abstractmethod
    def _raw_records(self) -> Dict[str, Dict[str, Any]]:
        pass
    
    @abstractmethod
    def _append_event(self, data: Dict[str, Any]):
        pass
    
    @abstractmethod
    def _raw_events(self) -> List[Dict[str, Any]]:
        pass
    
    def _modify(self, worker_id: str, **changes):
        def apply(current):
            if current is None:
                raise RecordNotFound(f"Worker not found: {worker_id}")
            record = WorkerRecord.from_dict(current)
            for key, value in changes.items():
                setattr(record, key, value)
            return record.to_dict()
        
        self._update(worker_id, apply)
    
    def set_shutdown_flag(self, worker_id, reason):
        self._modify(worker_id, shutdown_flag=True, shutdown_reason=reason)
        logger.info(f"Shutdown flag set for {worker_id}: {reason}")
    
    def clear_shutdown_flag(self, worker_id):
        self._modify(worker_id, shutdown_flag=False, shutdown_reason='')
    
    def check_shutdown_flag(self, worker_id):
        record = self.get_record(worker_id)
        if record is None:
            raise RecordNotFound(f"Worker not found: {worker_id}")
        return record.shutdown_flag, record.shutdown_reason
    
    def mark_stopped(self, worker_id, reason):
        self._modify(worker_id, status=WorkerStatus.STOPPED,
                     stopped_at=datetime.now(), stop_reason=reason)
    
    def record_spawn(self, worker_id, os_pid, pane_id, work_dir=''):
        record = WorkerRecord(
            worker_id=worker_id,
            os_pid=os_pid,
            pane_id=pane_id if pane_id and pane_id > 0 else None,
            work_dir=str(work_dir or ''),
        )
        self._update(worker_id, lambda current: record.to_dict())
    
    def update_pane_id(self, worker_id, pane_id):
        self._modify(worker_id, pane_id=pane_id if pane_id and pane_id > 0 else None)
    
    def get_record(self, worker_id):
        data = self._raw_records().get(worker_id)
        return WorkerRecord.from_dict(data) if data else None
    
    def all_records(self):
        return [WorkerRecord.from_dict(data) for data in self._raw_records().values()]
    
    def log_pane_event(self, event):
        self._append_event(event.to_dict())
    
    def get_pane_history(self, worker_id, limit=50):
        events = [PaneEvent.from_dict(data) for data in self._raw_events()
                  if data.get('worker_id') == worker_id]
        # Stable sort keeps append order for equal timestamps
        events.sort(key=lambda e: e.timestamp)
        events.reverse()
        return events[:limit]


class FileControlStore(_RecordStore):
    """Worker records in workers.json, pane events in pane_history.jsonl"""
    
    def __init__(self, state_dir: Path):
        self.state_dir = ensure_directory(Path(state_dir))
        self.records = JSONFileStore(self.state_dir / 'workers.json')
        self.history_path = self.state_dir / 'pane_history.jsonl'
    
    def _update(self, worker_id, fn):
        self.records.update(worker_id, fn)
    
    def _raw_records(self):
        return self.records.get_all()
    
    def _append_event(self, data):
        append_json_line(self.history_path, data)
    
    def _raw_events(self):
        return read_json_lines(self.history_path)


class MemoryControlStore(_RecordStore):
    """Non-durable store kept in process memory"""
    
    def __init__(self):
        self._lock = threading.Lock()
        self._records: Dict[str, Dict[str, Any]] = {}
        self._events: List[Dict[str, Any]] = []
    
    def _update(self, worker_id, fn):
        with self._lock:
            self._records[worker_id] = fn(self._records.get(worker_id))
    
    def _raw_records(self):
        with self._lock:
            return dict(self._records)
    
    def _append_event(self, data):
        with self._lock:
            self._events.append(data)
    
    def _raw_events(self):
        with self._lock:
            return list(self._events)
