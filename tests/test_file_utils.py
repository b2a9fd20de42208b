"""Tests for locking, atomic writes and the JSON stores."""

import threading

from panekeeper.control_store import FileControlStore
from panekeeper.file_utils import (
    FileLock, JSONFileStore, append_json_line, read_json_lines, write_json_file
)


class TestJSONFileStore:

    def test_update_returns_new_value(self, tmp_path):
        store = JSONFileStore(tmp_path / 'workers.json')

        assert store.update('team-a001', lambda current: {'os_pid': 1}) == {'os_pid': 1}
        store.update('team-a001', lambda current: dict(current, pane_id=42))

        assert store.get_all() == {'team-a001': {'os_pid': 1, 'pane_id': 42}}

    def test_concurrent_updates_are_not_lost(self, tmp_path):
        store = JSONFileStore(tmp_path / 'counter.json')

        def bump():
            for _ in range(10):
                store.update('count', lambda current: (current or 0) + 1)

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert store.get_all()['count'] == 40

    def test_corrupt_file_reads_as_empty(self, tmp_path):
        path = tmp_path / 'workers.json'
        path.write_text('{not json')

        assert JSONFileStore(path).get_all() == {}


class TestJSONLines:

    def test_append_and_read(self, tmp_path):
        path = tmp_path / 'events.jsonl'

        append_json_line(path, {'action': 'spawned'})
        append_json_line(path, {'action': 'closed'})

        assert [item['action'] for item in read_json_lines(path)] == ['spawned', 'closed']

    def test_corrupt_lines_are_skipped(self, tmp_path):
        path = tmp_path / 'events.jsonl'
        path.write_text('{"action": "spawned"}\ngarbage\n\n{"action": "closed"}\n')

        assert len(read_json_lines(path)) == 2

    def test_missing_file(self, tmp_path):
        assert read_json_lines(tmp_path / 'nope.jsonl') == []


class TestFileLock:

    def test_lock_is_released(self, tmp_path):
        path = tmp_path / 'data.json'

        with FileLock(path):
            write_json_file(path, {'a': 1})

        with FileLock(path, timeout=1):
            pass

    def test_held_lock_blocks_a_second_holder(self, tmp_path):
        path = tmp_path / 'data.json'

        with FileLock(path):
            assert FileLock(path, timeout=0.2).acquire() is False

    def test_leftover_lock_file_does_not_block(self, tmp_path):
        (tmp_path / 'workers.json.lock').write_text('')
        lock = FileLock(tmp_path / 'workers.json', timeout=1)

        assert lock.acquire() is True
        lock.release()

    def test_store_writes_past_a_leftover_lock_file(self, tmp_path):
        (tmp_path / 'workers.json.lock').write_text('')
        store = FileControlStore(tmp_path)

        store.record_spawn('team-a001', 4242, 42)

        assert store.get_record('team-a001').os_pid == 4242
