"""
Module: executor
Purpose: Serialized, rate-limited, timeout-bounded access to the multiplexer CLI

The multiplexer corrupts its own state or hangs when its CLI is driven
concurrently or too fast. Every control-plane invocation therefore goes
through one CommandExecutor, which holds a single lock for the duration of
each call, bounds each call with a timeout, and spaces out mutating calls
(spawning and killing panes) by a minimum interval. Read-only queries and
text injection are never delayed.

Key Classes:
    - CommandRunner: Capability interface for running one CLI call
    - SubprocessRunner: Real runner that shells out to the multiplexer binary
    - CommandExecutor: Lock + throttle + timeout wrapper around a runner

Usage:
    executor = CommandExecutor(SubprocessRunner('wezterm'), min_interval=0.5)
    output = executor.execute(['list', '--format', 'json'])
"""

import logging
import subprocess
import threading
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from .exceptions import CommandTimeout, MultiplexerError, OperationCancelled
from .timing import CancelToken, SystemClock


logger = logging.getLogger(__name__)

# Subcommands that create or destroy panes. Only these are throttled.
MUTATING_COMMANDS = frozenset({'spawn', 'split-pane', 'kill-pane'})


class CommandRunner(ABC):
    """Runs a single multiplexer CLI call"""
    
    @abstractmethod
    def run(self, args: List[str], stdin: Optional[str], timeout: float) -> str:
        """Run `<binary> cli <args>` and return stdout
        
        Raises CommandTimeout when the call exceeds `timeout` and
        MultiplexerError on a non-zero exit.
        """
    
    @abstractmethod
    def launch(self, args: List[str], cwd: Optional[str]) -> int:
        """Start `<binary> <args>` detached and return its OS pid"""


class SubprocessRunner(CommandRunner):
    """CommandRunner backed by subprocess"""
    
    def __init__(self, binary: str = 'wezterm'):
        self.binary = binary
    
    def run(self, args: List[str], stdin: Optional[str], timeout: float) -> str:
        cmd = [self.binary, 'cli'] + list(args)
        try:
            result = subprocess.run(
                cmd,
                input=stdin,
                capture_output=True,
                text=True,
                timeout=timeout
            )
        except subprocess.TimeoutExpired:
            raise CommandTimeout(f"{' '.join(cmd)} timed out after {timeout}s", args)
        except OSError as e:
            raise MultiplexerError(f"Failed to run {self.binary}: {e}", args)
        
        if result.returncode != 0:
            output = (result.stdout + result.stderr).strip()
            raise MultiplexerError(
                f"{' '.join(cmd)} exited with {result.returncode}: {output}",
                args, output
            )
        return result.stdout
    
    def launch(self, args: List[str], cwd: Optional[str]) -> int:
        cmd = [self.binary] + list(args)
        try:
            proc = subprocess.Popen(
                cmd,
                cwd=cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True
            )
        except OSError as e:
            raise MultiplexerError(f"Failed to launch {' '.join(cmd)}: {e}", args)
        
        # Reap the child when it exits so it never lingers as a zombie
        threading.Thread(target=proc.wait, daemon=True).start()
        return proc.pid


class CommandExecutor:
    """Serializes and rate-limits multiplexer CLI calls"""
    
    def __init__(self, runner: CommandRunner, min_interval: float = 0.5,
                 timeout: float = 10.0, clock=None):
        self.runner = runner
        self.min_interval = min_interval
        self.timeout = timeout
        self.clock = clock or SystemClock()
        self._lock = threading.Lock()
        self._last_mutation: Optional[float] = None
    
    def execute(self, args: Sequence[str], stdin: Optional[str] = None,
                token: Optional[CancelToken] = None) -> str:
        """Run one control-plane call and return its stdout"""
        args = list(args)
        action = args[0] if args else ''
        mutating = action in MUTATING_COMMANDS
        
        with self._lock:
            if mutating:
                self._wait_for_interval(action, token)
                logger.info(f"[{action}] {' '.join(args[1:])}")
            else:
                if token is not None:
                    token.raise_if_cancelled(action)
                logger.debug(f"[{action}] {' '.join(args[1:])}")
            
            try:
                output = self.runner.run(args, stdin, self.timeout)
            except MultiplexerError as e:
                if mutating:
                    logger.warning(f"[{action}] failed: {e}")
                raise
            
            if mutating:
                logger.info(f"[{action}] succeeded: {output.strip()}")
            return output
    
    def launch(self, args: Sequence[str], cwd: Optional[str] = None,
               token: Optional[CancelToken] = None) -> int:
        """Start a detached multiplexer process; throttled like a spawn"""
        args = list(args)
        with self._lock:
            self._wait_for_interval('launch', token)
            logger.info(f"[launch] {' '.join(args)}")
            try:
                pid = self.runner.launch(args, cwd)
            except MultiplexerError as e:
                logger.warning(f"[launch] failed: {e}")
                raise
            logger.info(f"[launch] succeeded: pid {pid}")
            return pid
    
    def _wait_for_interval(self, action: str, token: Optional[CancelToken]):
        """Sleep out the rest of the minimum interval since the last mutation"""
        if self._last_mutation is not None:
            remaining = self.min_interval - (self.clock.monotonic() - self._last_mutation)
            if remaining > 0:
                logger.debug(f"Throttling {action} for {remaining:.3f}s")
                if not self.clock.sleep(remaining, token):
                    raise OperationCancelled(f"Cancelled while throttling {action}")
        if token is not None:
            token.raise_if_cancelled(action)
        self._last_mutation = self.clock.monotonic()
