"""
Clocks and cancellation tokens shared by the executor and shutdown sequencer
"""

import threading
import time
from typing import Optional

from .exceptions import OperationCancelled


class CancelToken:
    """Caller-owned cancellation signal with an optional deadline
    
    A token only prevents the *next* step from starting; steps already
    in flight run to completion.
    """
    
    def __init__(self, timeout: Optional[float] = None):
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None
    
    def cancel(self):
        self._event.set()
    
    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline
    
    def wait(self, seconds: float) -> bool:
        """Block up to `seconds`; return True if cancelled meanwhile"""
        if self.cancelled:
            return True
        if self._deadline is not None:
            seconds = min(seconds, max(0.0, self._deadline - time.monotonic()))
        self._event.wait(seconds)
        return self.cancelled
    
    def raise_if_cancelled(self, what: str = "operation"):
        if self.cancelled:
            raise OperationCancelled(f"Cancelled before {what}")


class SystemClock:
    """Real clock; tests inject a fake with the same two methods"""
    
    def monotonic(self) -> float:
        return time.monotonic()
    
    def sleep(self, seconds: float, token: Optional[CancelToken] = None) -> bool:
        """Sleep for `seconds`; return False if the token fired first"""
        if seconds <= 0:
            return not (token and token.cancelled)
        if token is None:
            time.sleep(seconds)
            return True
        return not token.wait(seconds)
