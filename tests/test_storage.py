"""
Tests for storage backends and transaction support
"""

import threading

import pytest

from securebank.storage import (
    InMemoryStorage, SQLiteStorage, StorageError, create_storage,
)


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(tmp_path / "test.db")
    yield backend
    backend.close()


def record(record_id, **fields):
    data = {"id": record_id, "created_at": "2025-01-01T00:00:00+00:00",
            "updated_at": "2025-01-01T00:00:00+00:00"}
    data.update(fields)
    return data


class TestBasicOperations:
    """CRUD behaviour shared by both backends"""

    def test_save_load_exists(self, storage):
        storage.save("items", "a", record("a", amount="100.50"))
        assert storage.load("items", "a")["amount"] == "100.50"
        assert storage.exists("items", "a")
        assert not storage.exists("items", "missing")
        assert storage.load("items", "missing") is None

    def test_find_count_delete(self, storage):
        storage.save("items", "a", record("a", owner="x"))
        storage.save("items", "b", record("b", owner="y"))
        storage.save("items", "c", record("c", owner="x"))

        assert storage.count("items") == 3
        assert {r["id"] for r in storage.find("items", {"owner": "x"})} == {"a", "c"}
        assert storage.delete("items", "a")
        assert not storage.delete("items", "a")
        assert storage.count("items") == 2

    def test_clear_table(self, storage):
        storage.save("items", "a", record("a"))
        storage.clear_table("items")
        assert storage.count("items") == 0

    def test_loaded_records_are_copies(self, storage):
        """Mutating a loaded dict does not change what is stored"""
        storage.save("items", "a", record("a", owner="x"))
        loaded = storage.load("items", "a")
        loaded["owner"] = "changed"
        assert storage.load("items", "a")["owner"] == "x"


class TestAtomic:
    """All-or-nothing and nesting semantics of atomic()"""

    def test_commit_persists(self, storage):
        with storage.atomic():
            storage.save("items", "a", record("a"))
        assert storage.exists("items", "a")
        assert not storage.in_transaction

    def test_failure_rolls_back_inserts_updates_and_deletes(self, storage):
        storage.save("items", "keep", record("keep", value=1))
        storage.save("items", "gone", record("gone", value=2))

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("items", "new", record("new"))
                storage.save("items", "keep", record("keep", value=99))
                storage.delete("items", "gone")
                raise RuntimeError("boom")

        assert not storage.exists("items", "new")
        assert storage.load("items", "keep")["value"] == 1
        assert storage.load("items", "gone")["value"] == 2

    def test_inner_failure_rolls_back_outer_work(self, storage):
        """A failure propagating out of a nested block undoes the whole unit"""
        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("items", "outer", record("outer"))
                with storage.atomic():
                    storage.save("items", "inner", record("inner"))
                    raise RuntimeError("boom")

        assert not storage.exists("items", "outer")
        assert not storage.exists("items", "inner")

    def test_swallowed_inner_failure_prevents_commit(self, storage):
        """An inner rollback marks the unit rollback-only even if the error is caught"""
        with pytest.raises(StorageError):
            with storage.atomic():
                storage.save("items", "outer", record("outer"))
                try:
                    with storage.atomic():
                        storage.save("items", "inner", record("inner"))
                        raise ValueError("inner")
                except ValueError:
                    pass

        assert not storage.exists("items", "outer")
        assert not storage.exists("items", "inner")

    def test_nested_commit_deferred_to_outer(self, storage):
        with storage.atomic():
            with storage.atomic():
                storage.save("items", "a", record("a"))
            assert storage.in_transaction
        assert storage.exists("items", "a")

    def test_other_threads_wait_for_commit(self, storage):
        """Writes from another thread are not interleaved with an open unit"""
        seen = []
        started = threading.Event()

        def reader():
            started.set()
            seen.append(storage.exists("items", "a"))

        with storage.atomic():
            storage.save("items", "a", record("a"))
            thread = threading.Thread(target=reader)
            thread.start()
            started.wait()
            assert seen == []
        thread.join(timeout=5)
        assert seen == [True]


class TestCreateStorage:
    def test_memory_url(self):
        assert isinstance(create_storage("memory"), InMemoryStorage)

    def test_sqlite_url(self, tmp_path):
        backend = create_storage(f"sqlite:///{tmp_path / 'bank.db'}")
        assert isinstance(backend, SQLiteStorage)
        backend.close()

    def test_unknown_url(self):
        with pytest.raises(ValueError, match="Unsupported database URL"):
            create_storage("postgresql://localhost/bank")

    def test_sqlite_persists_across_connections(self, tmp_path):
        path = tmp_path / "bank.db"
        first = SQLiteStorage(path)
        first.save("items", "a", record("a", owner="x"))
        first.close()

        second = SQLiteStorage(path)
        assert second.load("items", "a")["owner"] == "x"
        second.close()
