"""Tests for the psutil-backed process inspector, against real child processes."""

import os
import subprocess
import sys
import time

import pytest

from conftest import FakeInspector
from panekeeper.process_inspector import PsutilInspector


pytestmark = pytest.mark.skipif(sys.platform == 'win32', reason='uses POSIX sleep')


@pytest.fixture
def sleeper():
    proc = subprocess.Popen(['sleep', '30'])
    yield proc
    if proc.poll() is None:
        proc.kill()
    proc.wait()


class TestPsutilInspector:

    def test_own_process_is_running(self):
        assert PsutilInspector().is_running(os.getpid())

    def test_kill_terminates_process(self, sleeper):
        inspector = PsutilInspector()

        assert inspector.is_running(sleeper.pid)
        assert inspector.kill(sleeper.pid) is True
        sleeper.wait(timeout=5)
        assert not inspector.is_running(sleeper.pid)

    def test_kill_missing_pid_returns_false(self, sleeper):
        sleeper.kill()
        sleeper.wait()

        assert PsutilInspector().kill(sleeper.pid) is False

    def test_find_by_argument_matches_basename(self, tmp_path):
        script = tmp_path / 'panekeeper-team-x001-launcher.sh'
        script.write_text('sleep 30\n')
        proc = subprocess.Popen(['/bin/sh', str(script)])
        try:
            deadline = time.monotonic() + 5
            found = []
            while not found and time.monotonic() < deadline:
                found = PsutilInspector().find_by_argument(script.name)
                time.sleep(0.05)
            assert proc.pid in found
            assert PsutilInspector().find_by_argument('launcher.sh') == []
        finally:
            proc.kill()
            proc.wait()

    def test_has_argument_reads_live_argv(self, sleeper):
        inspector = PsutilInspector()

        assert inspector.cmdline(sleeper.pid) == ['sleep', '30']
        assert inspector.has_argument(sleeper.pid, '30')
        assert not inspector.has_argument(sleeper.pid, 'panekeeper-team-x001-launcher.sh')

    def test_has_argument_for_missing_pid(self, sleeper):
        sleeper.kill()
        sleeper.wait()

        assert PsutilInspector().cmdline(sleeper.pid) is None
        assert not PsutilInspector().has_argument(sleeper.pid, 'sleep')

    def test_name_of_missing_pid(self, sleeper):
        sleeper.kill()
        sleeper.wait()

        assert PsutilInspector().name_of(sleeper.pid) is None


class TestKillTree:

    def test_children_are_killed_before_parent(self):
        inspector = FakeInspector()
        inspector.add(10)
        inspector.add(11, parent=10)
        inspector.add(12, parent=11)

        assert inspector.kill_tree(10) == [12, 11, 10]

    def test_permission_error_on_child_does_not_stop_parent_kill(self):
        inspector = FakeInspector()
        inspector.add(10)
        inspector.add(11, parent=10)
        inspector.protected.add(11)

        assert inspector.kill_tree(10) == [10]
