"""Tests for the WorkerSupervisor facade."""

import pytest

from conftest import FakeInspector, ScriptedRunner, spawns_process
from panekeeper.control_store import MemoryControlStore
from panekeeper.exceptions import ConfigError, MultiplexerError, PaneNotTracked
from panekeeper.spawner import WorkerConfig
from panekeeper.supervisor import WorkerSupervisor


@pytest.fixture
def worker():
    return WorkerConfig('SNTGreen', command=['claude'])


class TestWiring:

    def test_from_config_uses_configured_timings(self, config, clock):
        config.set('min_op_interval', 1.25)
        runner = ScriptedRunner(clock)

        supervisor = WorkerSupervisor.from_config(config, store=MemoryControlStore(),
                                                  runner=runner, inspector=FakeInspector(),
                                                  clock=clock)
        supervisor.close_panes([3, 4], graceful=False)

        first, second = runner.calls_for('kill-pane')
        assert second.at - first.at == pytest.approx(1.25)

    def test_from_config_validates(self, config):
        config.set('command_timeout', -1)

        with pytest.raises(ConfigError):
            WorkerSupervisor.from_config(config, store=MemoryControlStore(),
                                         inspector=FakeInspector())


class TestSpawnAndStop:

    def test_generated_id_skips_ids_on_record(self, supervisor, store, runner, inspector, worker):
        store.record_spawn('team-sntgreen001', 1, None)
        runner.queue('spawn', spawns_process(inspector, 4242, 42))

        supervisor.spawn(worker, work_dir='/src')

        assert supervisor.running_workers() == {'team-sntgreen002': 4242}

    def test_spawn_then_stop_all(self, supervisor, runner, inspector, worker):
        runner.queue('spawn', spawns_process(inspector, 4242, 42),
                     spawns_process(inspector, 4243, 43))
        supervisor.spawn(worker, 'team-a001', '/src')
        supervisor.spawn(worker, 'team-b001', '/src')

        errors = supervisor.stop_all('shutting down')

        assert errors == []
        assert supervisor.running_workers() == {}
        assert not supervisor.is_running(4242) and not supervisor.is_running(4243)

    def test_remove_worker_kills_nothing(self, supervisor, registry, inspector, runner):
        inspector.add(4242)
        registry.set_pid('team-a001', 4242)

        supervisor.remove_worker('team-a001')

        assert supervisor.is_running(4242)
        assert runner.calls == []


class TestPaneAccess:

    def test_set_pane_id_updates_store(self, supervisor, store):
        store.record_spawn('team-a001', 999, None)

        assert supervisor.set_pane_id('team-a001', 12) is True
        assert supervisor.get_pane_id('team-a001') == 12
        assert store.get_record('team-a001').pane_id == 12

    def test_set_pane_id_ignores_sentinel(self, supervisor):
        assert supervisor.set_pane_id('team-a001', -1) is False
        assert supervisor.get_pane_id('team-a001') is None

    def test_set_pane_id_without_record(self, supervisor):
        assert supervisor.set_pane_id('team-a001', 12) is True

    def test_standalone_worker_has_no_pane_to_type_into(self, supervisor, registry):
        registry.set_pid('team-a001', 999)

        with pytest.raises(PaneNotTracked):
            supervisor.send_input('team-a001', 'hello')

    def test_send_read_focus_use_tracked_pane(self, supervisor, registry, runner):
        registry.set_pane_id('team-a001', 12)
        runner.queue('get-text', 'output\n')

        supervisor.send_input('team-a001', 'continue')
        assert supervisor.read_output('team-a001', lines=10) == 'output\n'
        supervisor.focus('team-a001')

        assert [c.args[:3] for c in runner.calls] == [
            ['send-text', '--pane-id', '12'],
            ['get-text', '--pane-id', '12'],
            ['activate-pane', '--pane-id', '12'],
        ]
        assert runner.calls[0].stdin == 'continue\r\n'

    def test_close_panes_graceful_collects_failures(self, supervisor, runner):
        runner.queue('kill-pane', '', MultiplexerError('pane not found'))

        failures = supervisor.close_panes([3, 4])

        assert list(failures) == [4]
        assert runner.subcommands().count('send-text') == 4


class TestHousekeeping:

    def test_cleanup_launchers_keeps_tracked_workers(self, supervisor, launchers, registry):
        launchers.write('team-a001', ['claude'])
        launchers.write('team-b001', ['claude'])
        registry.set_pid('team-a001', 1)

        assert supervisor.cleanup_launchers() == 1
        assert launchers.path_for('team-a001').exists()
        assert not launchers.path_for('team-b001').exists()

    def test_pane_history_without_store(self, mux, registry, inspector, launchers, clock, config):
        supervisor = WorkerSupervisor(mux, registry, inspector, launchers, clock=clock, config=config)

        assert supervisor.pane_history('team-a001') == []
        assert supervisor.reconcile().restored == []
