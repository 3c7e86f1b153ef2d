"""
Tests for storage backends, transaction support and record locks
"""

import pytest
import tempfile
import threading
import time
from datetime import datetime, timezone
from pathlib import Path

from resolve_core.storage import (
    InMemoryStorage, SQLiteStorage, parse_datetime, format_datetime,
)


# Test data
test_data = {
    "id": "cmp_001",
    "title": "Broken heater",
    "status": "Open",
    "is_completed": False,
    "created_at": datetime.now(timezone.utc).isoformat(),
    "updated_at": datetime.now(timezone.utc).isoformat()
}


@pytest.fixture(params=["memory", "sqlite"])
def any_storage(request):
    """Each backend in turn"""
    if request.param == "memory":
        storage = InMemoryStorage()
        yield storage
        storage.close()
    else:
        with tempfile.TemporaryDirectory() as temp_dir:
            storage = SQLiteStorage(Path(temp_dir) / "test.db")
            yield storage
            storage.close()


class TestStorageInterface:
    """Test CRUD operations shared by every backend"""

    def test_basic_operations(self, any_storage):
        any_storage.save("complaints", "cmp_001", test_data)
        assert any_storage.load("complaints", "cmp_001") == test_data
        assert any_storage.exists("complaints", "cmp_001")
        assert not any_storage.exists("complaints", "missing")

        any_storage.save("complaints", "cmp_002", {"id": "cmp_002", "status": "Closed", "is_completed": True})
        assert len(any_storage.load_all("complaints")) == 2
        assert any_storage.count("complaints") == 2

        assert any_storage.delete("complaints", "cmp_001")
        assert not any_storage.delete("complaints", "cmp_001")
        assert any_storage.load("complaints", "cmp_001") is None

    def test_find_matches_every_filter(self, any_storage):
        any_storage.save("complaints", "a", {"id": "a", "status": "Open", "is_completed": False})
        any_storage.save("complaints", "b", {"id": "b", "status": "Open", "is_completed": True})
        any_storage.save("complaints", "c", {"id": "c", "status": "Closed", "is_completed": True})

        assert [r["id"] for r in any_storage.find("complaints", {"status": "Open", "is_completed": True})] == ["b"]
        assert len(any_storage.find("complaints", {})) == 3
        assert any_storage.find("complaints", {"missing_key": 1}) == []

    def test_find_one(self, any_storage):
        any_storage.save("complaints", "a", {"id": "a", "status": "Open"})
        assert any_storage.find_one("complaints", {"status": "Open"})["id"] == "a"
        assert any_storage.find_one("complaints", {"status": "Closed"}) is None

    def test_saved_data_is_copied(self, any_storage):
        record = {"id": "a", "tags": ["heating"]}
        any_storage.save("complaints", "a", record)
        record["tags"].append("plumbing")
        loaded = any_storage.load("complaints", "a")
        loaded["tags"].append("electrical")
        assert any_storage.load("complaints", "a")["tags"] == ["heating"]

    def test_clear_table(self, any_storage):
        any_storage.save("complaints", "a", {"id": "a"})
        any_storage.clear_table("complaints")
        assert any_storage.count("complaints") == 0


class TestTransactionSupport:
    """Test atomic transaction support"""

    def test_atomic_commits(self, any_storage):
        with any_storage.atomic():
            any_storage.save("complaints", "a", {"id": "a"})
            any_storage.save("complaints", "b", {"id": "b"})
        assert any_storage.count("complaints") == 2

    def test_atomic_reraises(self, any_storage):
        with pytest.raises(ValueError):
            with any_storage.atomic():
                raise ValueError("Simulated error")

    def test_sqlite_rollback(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            storage = SQLiteStorage(Path(temp_dir) / "test.db")
            storage.save("complaints", "a", {"id": "a"})

            with pytest.raises(ValueError):
                with storage.atomic():
                    storage.save("complaints", "b", {"id": "b"})
                    raise ValueError("Simulated error")

            assert storage.count("complaints") == 1
            assert not storage.exists("complaints", "b")
            storage.close()


class TestRecordLock:
    """Test per-record locks"""

    def test_lock_is_reentrant(self):
        storage = InMemoryStorage()
        with storage.record_lock("workflow_instances", "wf_1"):
            with storage.record_lock("workflow_instances", "wf_1"):
                storage.save("workflow_instances", "wf_1", {"id": "wf_1"})
        assert storage.exists("workflow_instances", "wf_1")

    def test_lock_serializes_threads(self):
        storage = InMemoryStorage()
        storage.save("workflow_instances", "wf_1", {"id": "wf_1", "version": 0})

        def bump():
            with storage.record_lock("workflow_instances", "wf_1"):
                data = storage.load("workflow_instances", "wf_1")
                time.sleep(0.001)
                data["version"] += 1
                storage.save("workflow_instances", "wf_1", data)

        threads = [threading.Thread(target=bump) for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert storage.load("workflow_instances", "wf_1")["version"] == 10

    def test_released_locks_are_dropped(self):
        storage = InMemoryStorage()
        for i in range(100):
            with storage.record_lock("workflow_instances", f"wf_{i}"):
                assert ("workflow_instances", f"wf_{i}") in storage._record_locks
        assert len(storage._record_locks) == 0

    def test_different_records_do_not_block(self):
        storage = InMemoryStorage()
        acquired = threading.Event()

        def other():
            with storage.record_lock("workflow_instances", "wf_2"):
                acquired.set()

        with storage.record_lock("workflow_instances", "wf_1"):
            thread = threading.Thread(target=other)
            thread.start()
            assert acquired.wait(timeout=2)
            thread.join()


class TestDatetimeHelpers:
    """Test timestamp formatting"""

    def test_round_trip(self):
        moment = datetime(2026, 1, 5, 9, 30, tzinfo=timezone.utc)
        assert parse_datetime(format_datetime(moment)) == moment

    def test_none_passes_through(self):
        assert format_datetime(None) is None
        assert parse_datetime(None) is None
