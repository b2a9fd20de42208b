"""
OS process-table inspection and force-termination
"""

import logging
import os
from abc import ABC, abstractmethod
from typing import List, Optional

import psutil


logger = logging.getLogger(__name__)


class ProcessInspector(ABC):
    """Liveness, naming and force-kill by OS pid"""
    
    @abstractmethod
    def is_running(self, pid: int) -> bool:
        """True if the pid exists and is not a zombie"""
    
    @abstractmethod
    def name_of(self, pid: int) -> Optional[str]:
        """Executable name of the pid, or None if it does not exist"""
    
    @abstractmethod
    def children(self, pid: int) -> List[int]:
        """All descendant pids, deepest last"""
    
    @abstractmethod
    def kill(self, pid: int) -> bool:
        """Force-terminate a pid
        
        Returns True if a live process was killed, False if none existed.
        Raises PermissionError if the process exists but cannot be killed.
        """
    
    @abstractmethod
    def cmdline(self, pid: int) -> Optional[List[str]]:
        """Argument vector of the pid, or None if it is gone or unreadable"""
    
    @abstractmethod
    def find_by_argument(self, name: str) -> List[int]:
        """Pids with a command-line argument whose basename equals `name`"""
    
    def has_argument(self, pid: int, name: str) -> bool:
        """True if the pid is alive and one of its arguments has basename `name`
        
        Used to confirm a recorded pid still belongs to the same worker
        before killing it; pids are recycled by the OS.
        """
        argv = self.cmdline(pid)
        if not argv:
            return False
        return any(os.path.basename(arg) == name for arg in argv)
    
    def kill_tree(self, pid: int) -> List[int]:
        """Kill the descendants of a pid, then the pid itself
        
        Returns the pids that were actually killed.
        """
        killed = []
        for child in reversed(self.children(pid)):
            try:
                if self.kill(child):
                    killed.append(child)
            except PermissionError as e:
                logger.warning(f"Could not kill child {child} of {pid}: {e}")
        if self.kill(pid):
            killed.append(pid)
        return killed


class PsutilInspector(ProcessInspector):
    """ProcessInspector backed by psutil (Linux, macOS and Windows)"""
    
    def __init__(self, wait_timeout: float = 3.0):
        self.wait_timeout = wait_timeout
    
    def is_running(self, pid: int) -> bool:
        try:
            proc = psutil.Process(pid)
            return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            # Exists, but belongs to someone else
            return True
    
    def name_of(self, pid: int) -> Optional[str]:
        try:
            return psutil.Process(pid).name()
        except psutil.NoSuchProcess:
            return None
        except psutil.AccessDenied:
            logger.debug(f"Access denied reading name of pid {pid}")
            return None
    
    def children(self, pid: int) -> List[int]:
        try:
            return [child.pid for child in psutil.Process(pid).children(recursive=True)]
        except psutil.NoSuchProcess:
            return []
    
    def kill(self, pid: int) -> bool:
        try:
            proc = psutil.Process(pid)
        except psutil.NoSuchProcess:
            return False
        
        try:
            proc.kill()
            proc.wait(timeout=self.wait_timeout)
        except psutil.NoSuchProcess:
            pass
        except psutil.TimeoutExpired:
            logger.warning(f"Pid {pid} still present {self.wait_timeout}s after SIGKILL")
        except psutil.AccessDenied as e:
            raise PermissionError(f"Not permitted to kill pid {pid}: {e}")
        
        logger.info(f"Killed pid {pid}")
        return True
    
    def cmdline(self, pid: int) -> Optional[List[str]]:
        try:
            return psutil.Process(pid).cmdline()
        except (psutil.NoSuchProcess, psutil.ZombieProcess):
            return None
        except psutil.AccessDenied:
            logger.debug(f"Access denied reading cmdline of pid {pid}")
            return None
    
    def find_by_argument(self, name: str) -> List[int]:
        matches = []
        own_pid = os.getpid()
        for proc in psutil.process_iter(['pid', 'cmdline']):
            cmdline = proc.info.get('cmdline') or []
            if proc.info['pid'] == own_pid:
                continue
            if any(os.path.basename(arg) == name for arg in cmdline):
                matches.append(proc.info['pid'])
        return sorted(matches)


def default_inspector() -> ProcessInspector:
    """Inspector for the current platform"""
    return PsutilInspector()
