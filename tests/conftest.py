"""Shared fakes and fixtures.

The multiplexer CLI, the process table and the clock are all replaced by
in-memory fakes so that ordering, throttling and cancellation can be
asserted without a running terminal server or real sleeps.
"""

import os
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import pytest

from panekeeper.config import Config
from panekeeper.control_store import MemoryControlStore
from panekeeper.executor import CommandExecutor, CommandRunner
from panekeeper.launcher import LauncherScripts
from panekeeper.multiplexer import WeztermMultiplexer
from panekeeper.process_inspector import ProcessInspector
from panekeeper.registry import WorkerRegistry
from panekeeper.shutdown import ShutdownSequencer
from panekeeper.spawner import Spawner
from panekeeper.supervisor import WorkerSupervisor


class FakeClock:
    """Monotonic clock that only moves when something sleeps"""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []
        self.on_sleep: Optional[Callable[[float], None]] = None

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds, token=None) -> bool:
        if token is not None and token.cancelled:
            return False
        self.sleeps.append(seconds)
        if seconds > 0:
            self.now += seconds
        if self.on_sleep:
            self.on_sleep(seconds)
        return not (token is not None and token.cancelled)


@dataclass
class Call:
    args: List[str]
    stdin: Optional[str]
    at: float

    @property
    def subcommand(self) -> str:
        return self.args[0]


class ScriptedRunner(CommandRunner):
    """Records every CLI call and answers from per-subcommand queues

    A queued response is either output text, an exception to raise, or a
    callable taking (args, stdin) that returns the output.
    """

    DEFAULTS = {
        'spawn': '1\n',
        'split-pane': '1\n',
        'list': '[]',
        'get-text': '',
    }

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls: List[Call] = []
        self.responses: Dict[str, list] = defaultdict(list)
        self.launches: List[Call] = []
        self.launch_pid = 999
        self.launch_error: Optional[Exception] = None

    def queue(self, subcommand: str, *responses):
        self.responses[subcommand].extend(responses)

    def run(self, args, stdin, timeout):
        self.calls.append(Call(list(args), stdin, self.clock.monotonic()))
        pending = self.responses[args[0]]
        response = pending.pop(0) if pending else self.DEFAULTS.get(args[0], '')
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(args, stdin)
        return response

    def launch(self, args, cwd):
        self.launches.append(Call(list(args), None, self.clock.monotonic()))
        if self.launch_error:
            raise self.launch_error
        return self.launch_pid

    def subcommands(self) -> List[str]:
        return [call.subcommand for call in self.calls]

    def calls_for(self, subcommand: str) -> List[Call]:
        return [call for call in self.calls if call.subcommand == subcommand]


class FakeInspector(ProcessInspector):
    """In-memory process table"""

    def __init__(self):
        self.running = set()
        self.names: Dict[int, str] = {}
        self.arguments: Dict[int, List[str]] = {}
        self.child_map: Dict[int, List[int]] = defaultdict(list)
        self.protected = set()
        self.killed: List[int] = []

    def add(self, pid: int, argv=(), name: str = 'sh', parent: Optional[int] = None):
        self.running.add(pid)
        self.names[pid] = name
        self.arguments[pid] = list(argv)
        if parent is not None:
            self.child_map[parent].append(pid)

    def is_running(self, pid):
        return pid in self.running

    def name_of(self, pid):
        return self.names.get(pid) if pid in self.running else None

    def children(self, pid):
        result = []
        for child in self.child_map.get(pid, []):
            if child in self.running:
                result.append(child)
                result.extend(self.children(child))
        return result

    def kill(self, pid):
        if pid in self.protected:
            raise PermissionError(f"Not permitted to kill pid {pid}")
        if pid not in self.running:
            return False
        self.running.discard(pid)
        self.killed.append(pid)
        return True

    def cmdline(self, pid):
        return list(self.arguments.get(pid, [])) if pid in self.running else None

    def find_by_argument(self, name):
        return sorted(
            pid for pid, argv in self.arguments.items()
            if pid in self.running and any(os.path.basename(arg) == name for arg in argv)
        )


def spawns_process(inspector: FakeInspector, pid: int, pane_id: int):
    """Spawn response that makes the launched shell appear in the process table"""
    def respond(args, stdin):
        program = args[args.index('--') + 1:]
        inspector.add(pid, program)
        return f"{pane_id}\n"
    return respond


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def runner(clock):
    return ScriptedRunner(clock)


@pytest.fixture
def executor(runner, clock):
    return CommandExecutor(runner, min_interval=0.5, timeout=10.0, clock=clock)


@pytest.fixture
def mux(executor):
    return WeztermMultiplexer(executor)


@pytest.fixture
def registry():
    return WorkerRegistry()


@pytest.fixture
def inspector():
    return FakeInspector()


@pytest.fixture
def store():
    return MemoryControlStore()


@pytest.fixture
def config(tmp_path):
    return Config({'state_dir': str(tmp_path / 'state')})


@pytest.fixture
def launchers(config):
    return LauncherScripts(config.state_dir, config.shell, config.title_prefix)


@pytest.fixture
def spawner(mux, registry, inspector, launchers, store, clock):
    return Spawner(mux, registry, inspector, launchers, store=store, clock=clock,
                   pid_resolve_timeout=1.0, pid_poll_interval=0.1)


@pytest.fixture
def sequencer(mux, registry, inspector, store, launchers, clock):
    return ShutdownSequencer(mux, registry, inspector, store=store, launchers=launchers,
                             clock=clock, interrupt_grace=0.3, exit_grace=0.5, batch_pause=0.3)


@pytest.fixture
def supervisor(mux, registry, inspector, launchers, store, clock, config):
    return WorkerSupervisor(mux, registry, inspector, launchers, store=store,
                            clock=clock, config=config)
