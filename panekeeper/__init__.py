"""
Panekeeper - lifecycle supervision for worker processes in terminal multiplexer panes

Spawns long-running worker programs into panes of a running multiplexer
server (falling back to standalone sessions), tracks their pane and OS
process ids, and stops them with a multi-stage, best-effort shutdown.
"""

__version__ = "1.0.0"
__author__ = "Panekeeper Developers"
__description__ = "Worker pane lifecycle supervision for terminal multiplexers"

from .exceptions import (
    PanekeeperError,
    ConfigError,
    MultiplexerError,
    CommandTimeout,
    OperationCancelled,
    SpawnFailure,
    SpawnFailurePrimary,
    SpawnFailureFallback,
    KillFailure,
    StopFailure,
    NotAttempted,
    RecordNotFound,
    PaneNotTracked,
)
from .registry import UNTRACKED_PANE
from .timing import CancelToken
from .spawner import WorkerConfig, SpawnResult
from .shutdown import StopReport, StageOutcome
from .supervisor import WorkerSupervisor

__all__ = [
    "PanekeeperError",
    "ConfigError",
    "MultiplexerError",
    "CommandTimeout",
    "OperationCancelled",
    "SpawnFailure",
    "SpawnFailurePrimary",
    "SpawnFailureFallback",
    "KillFailure",
    "StopFailure",
    "NotAttempted",
    "RecordNotFound",
    "PaneNotTracked",
    "UNTRACKED_PANE",
    "CancelToken",
    "WorkerConfig",
    "SpawnResult",
    "StopReport",
    "StageOutcome",
    "WorkerSupervisor",
]
