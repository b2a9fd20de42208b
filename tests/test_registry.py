"""Tests for the worker identifier registry."""

import threading

from panekeeper.registry import UNTRACKED_PANE, WorkerRegistry, WorkerSession


class TestPaneTracking:

    def test_positive_pane_id_is_stored(self, registry):
        assert registry.set_pane_id('team-snt001', 42) is True
        assert registry.get_pane_id('team-snt001') == 42

    def test_sentinel_and_zero_are_never_stored(self, registry):
        assert registry.set_pane_id('team-snt001', UNTRACKED_PANE) is False
        assert registry.set_pane_id('team-snt001', 0) is False
        assert registry.get_pane_id('team-snt001') is None

    def test_unknown_worker_has_no_pane(self, registry):
        assert registry.get_pane_id('team-nobody001') is None

    def test_pid_and_pane_are_independent(self, registry):
        registry.set_pid('team-snt001', 999)

        session = registry.get('team-snt001')
        assert session == WorkerSession('team-snt001', os_pid=999)
        assert not session.pane_tracked


class TestRemoval:

    def test_remove_clears_every_identifier(self, registry):
        registry.set_pid('team-snt001', 4242)
        registry.set_pane_id('team-snt001', 42)
        registry.set_companion_pid('team-snt001', 4300)

        removed = registry.remove_worker('team-snt001')

        assert removed == WorkerSession('team-snt001', 4242, 42, 4300)
        assert registry.get('team-snt001') is None
        assert registry.get_pid('team-snt001') is None
        assert registry.get_companion_pid('team-snt001') is None

    def test_remove_twice_is_a_noop(self, registry):
        registry.set_pid('team-snt001', 4242)

        registry.remove_worker('team-snt001')
        assert registry.remove_worker('team-snt001') is None

    def test_remove_leaves_other_workers_alone(self, registry):
        registry.set_pid('team-snt001', 1)
        registry.set_pid('team-snt002', 2)

        registry.remove_worker('team-snt001')

        assert registry.running_workers() == {'team-snt002': 2}

    def test_concurrent_removal_returns_snapshot_once(self, registry):
        registry.set_pid('team-snt001', 4242)
        registry.set_pane_id('team-snt001', 42)
        results = []

        def remove():
            results.append(registry.remove_worker('team-snt001'))

        threads = [threading.Thread(target=remove) for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len([r for r in results if r is not None]) == 1


class TestIdentifiers:

    def test_generated_ids_use_kind_and_sequence(self, registry):
        assert registry.generate_worker_id('SNTGreen') == 'team-sntgreen001'
        assert registry.generate_worker_id('SNTGreen') == 'team-sntgreen002'
        assert registry.generate_worker_id('Opus') == 'team-opus001'

    def test_peek_does_not_consume(self, registry):
        assert registry.peek_sequence('snt') == 1
        assert registry.next_sequence('snt') == 1
        assert registry.peek_sequence('snt') == 2

    def test_worker_by_pid(self, registry):
        registry.set_pid('team-snt001', 4242)

        assert registry.worker_by_pid(4242) == 'team-snt001'
        assert registry.worker_by_pid(1) is None

    def test_running_workers_is_a_copy(self):
        registry = WorkerRegistry()
        registry.set_pid('team-snt001', 1)

        registry.running_workers()['team-snt002'] = 2

        assert registry.running_workers() == {'team-snt001': 1}
