"""Tests for the key-value stores and file locking."""
import os

import pytest

from workmesh.storage import InMemoryStore, JsonFileStore
from workmesh.storage.file_lock import FileLock, file_lock


@pytest.fixture(params=["memory", "files"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return InMemoryStore()
    return JsonFileStore(str(tmp_path / "data"), lock_timeout=1.0)


class TestKeyValueStore:
    def test_put_get_delete(self, any_store):
        any_store.put("workers", "w1", {"worker_id": "w1", "workload": 0.5})
        assert any_store.get("workers", "w1") == {"worker_id": "w1", "workload": 0.5}
        assert any_store.delete("workers", "w1")
        assert not any_store.delete("workers", "w1")
        assert any_store.get("workers", "w1") is None

    def test_get_returns_a_copy(self, any_store):
        any_store.put("workers", "w1", {"tags": ["a"]})
        record = any_store.get("workers", "w1")
        record["tags"].append("b")
        assert any_store.get("workers", "w1") == {"tags": ["a"]}

    def test_append_is_create_only(self, any_store):
        any_store.append("log_batches", "svc/2024-01-01T00:00:00/000001", {"n": 1})
        with pytest.raises(KeyError):
            any_store.append("log_batches", "svc/2024-01-01T00:00:00/000001", {"n": 2})
        assert any_store.get("log_batches", "svc/2024-01-01T00:00:00/000001") == {"n": 1}

    def test_keys_sorted_per_namespace(self, any_store):
        for key in ("b", "a/1", "c"):
            any_store.put("items", key, {})
        any_store.put("other", "z", {})
        assert any_store.keys("items") == ["a/1", "b", "c"]
        assert dict(any_store.items("other")) == {"z": {}}
        assert any_store.keys("empty") == []


class TestJsonFileStore:
    def test_records_survive_a_new_instance(self, tmp_path):
        JsonFileStore(str(tmp_path)).put("workers", "w1", {"workload": 0.25})
        assert JsonFileStore(str(tmp_path)).get("workers", "w1") == {"workload": 0.25}

    def test_keys_are_quoted_on_disk(self, tmp_path):
        store = JsonFileStore(str(tmp_path))
        store.put("log_batches", "svc/2024-01-01T00:00:00/000001", {})
        names = os.listdir(tmp_path / "log_batches")
        assert len(names) == 1
        assert "/" not in names[0]
        assert names[0].endswith(".json")

    def test_no_temp_files_left_behind(self, tmp_path):
        store = JsonFileStore(str(tmp_path))
        store.put("workers", "w1", {"value": "x"})
        assert [n for n in os.listdir(tmp_path / "workers") if n.endswith(".tmp")] == []

    def test_unserializable_record_leaves_no_file(self, tmp_path):
        store = JsonFileStore(str(tmp_path))
        with pytest.raises(TypeError):
            store.put("workers", "w1", {"value": object()})
        assert os.listdir(tmp_path / "workers") == []


class TestFileLock:
    def test_exclusive(self, tmp_path):
        path = str(tmp_path / "namespace")
        first = FileLock(path, timeout=0.1)
        second = FileLock(path, timeout=0.1)
        assert first.acquire()
        assert not second.acquire(blocking=False)
        first.release()
        assert second.acquire()
        second.release()

    def test_timeout_raises_from_context_manager(self, tmp_path):
        path = str(tmp_path / "namespace")
        with file_lock(path):
            with pytest.raises(TimeoutError):
                with FileLock(path, timeout=0.1):
                    pass

    def test_reacquire_is_noop(self, tmp_path):
        lock = FileLock(str(tmp_path / "x"))
        assert lock.acquire()
        assert lock.acquire()
        assert lock.held
        lock.release()
        lock.release()
        assert not lock.held
