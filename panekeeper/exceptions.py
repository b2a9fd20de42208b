"""
Custom exceptions for Panekeeper - worker pane lifecycle supervision
"""


class PanekeeperError(Exception):
    """Base exception for Panekeeper"""
    pass


class ConfigError(PanekeeperError):
    """Error related to configuration"""
    pass


class MultiplexerError(PanekeeperError):
    """A control-plane call failed or returned output we could not parse"""

    def __init__(self, message: str, args=None, output: str = ""):
        super().__init__(message)
        self.command_args = list(args or [])
        self.output = output


class CommandTimeout(MultiplexerError):
    """A control-plane call exceeded its per-call timeout"""
    pass


class OperationCancelled(PanekeeperError):
    """The caller's cancellation token fired before the step started"""
    pass


class SpawnFailure(PanekeeperError):
    """Error related to spawning a worker"""
    pass


class SpawnFailurePrimary(SpawnFailure):
    """Server-attached spawn failed - recoverable, triggers the standalone path"""
    pass


class SpawnFailureFallback(SpawnFailure):
    """Both spawn paths failed"""
    pass


class KillFailure(PanekeeperError):
    """One shutdown stage failed"""

    def __init__(self, stage: str, message: str):
        super().__init__(f"{stage}: {message}")
        self.stage = stage


class StopFailure(PanekeeperError):
    """Every attempted shutdown stage failed for a worker"""

    def __init__(self, worker_id: str, report=None):
        super().__init__(f"All shutdown stages failed for worker {worker_id}")
        self.worker_id = worker_id
        self.report = report


class NotAttempted(PanekeeperError):
    """Batch item skipped because the batch was cancelled"""

    def __init__(self, target):
        super().__init__(f"Not attempted (cancelled): {target}")
        self.target = target


class RecordNotFound(PanekeeperError):
    """The control store has no record for the worker"""
    pass


class PaneNotTracked(PanekeeperError):
    """The worker has no tracked pane (standalone session or unknown id)"""
    pass
