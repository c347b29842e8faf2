"""
Tests for storage backends: document CRUD, unique keys and versioned saves
"""

import pytest

from pocket_bank.config import PocketBankConfig
from pocket_bank.errors import ConcurrencyError, DuplicateKeyError
from pocket_bank.storage import InMemoryStorage, SQLiteStorage, create_storage


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(tmp_path / "test.db")
    yield backend
    backend.close()


class TestDocumentOperations:
    """Basic operations shared by every backend"""

    def test_insert_and_load(self, storage):
        storage.insert("accounts", "a1", {"id": "a1", "email": "a@x.com", "version": 1})

        loaded = storage.load("accounts", "a1")
        assert loaded == {"id": "a1", "email": "a@x.com", "version": 1}
        assert storage.exists("accounts", "a1")
        assert not storage.exists("accounts", "missing")
        assert storage.load("accounts", "missing") is None

    def test_loaded_documents_are_copies(self, storage):
        storage.insert("accounts", "a1", {"id": "a1", "tags": ["x"]})

        loaded = storage.load("accounts", "a1")
        loaded["tags"].append("y")

        assert storage.load("accounts", "a1")["tags"] == ["x"]

    def test_find_and_find_one(self, storage):
        storage.insert("transactions", "t1", {"id": "t1", "account_id": "a1"})
        storage.insert("transactions", "t2", {"id": "t2", "account_id": "a2"})
        storage.insert("transactions", "t3", {"id": "t3", "account_id": "a1"})

        found = storage.find("transactions", {"account_id": "a1"})
        assert [r["id"] for r in found] == ["t1", "t3"]
        assert storage.find_one("transactions", {"account_id": "a2"})["id"] == "t2"
        assert storage.find_one("transactions", {"account_id": "zz"}) is None

    def test_load_all_preserves_insertion_order(self, storage):
        for i in range(5):
            storage.insert("events", f"e{i}", {"id": f"e{i}"})

        assert [r["id"] for r in storage.load_all("events")] == ["e0", "e1", "e2", "e3", "e4"]

    def test_load_last(self, storage):
        assert storage.load_last("events") is None

        for i in range(3):
            storage.insert("events", f"e{i}", {"id": f"e{i}"})

        assert storage.load_last("events") == {"id": "e2"}

    def test_count_and_clear(self, storage):
        storage.insert("accounts", "a1", {"id": "a1"})
        storage.insert("accounts", "a2", {"id": "a2"})
        assert storage.count("accounts") == 2

        storage.clear_table("accounts")
        assert storage.count("accounts") == 0


class TestUniqueKeys:
    """Uniqueness constraint enforced on insert"""

    def test_duplicate_id_rejected(self, storage):
        storage.insert("accounts", "a1", {"id": "a1"})

        with pytest.raises(DuplicateKeyError):
            storage.insert("accounts", "a1", {"id": "a1"})

    def test_duplicate_unique_value_rejected_case_insensitively(self, storage):
        storage.insert("accounts", "a1", {"id": "a1", "email": "a@x.com"}, unique_keys=("email",))

        with pytest.raises(DuplicateKeyError) as exc_info:
            storage.insert("accounts", "a2", {"id": "a2", "email": "A@X.com"}, unique_keys=("email",))

        assert exc_info.value.key == "email"
        assert storage.count("accounts") == 1

    def test_distinct_values_accepted(self, storage):
        keys = ("email", "account_number")
        storage.insert("accounts", "a1", {"id": "a1", "email": "a@x.com", "account_number": "KB1"}, unique_keys=keys)
        storage.insert("accounts", "a2", {"id": "a2", "email": "b@x.com", "account_number": "KB2"}, unique_keys=keys)

        assert storage.count("accounts") == 2

    def test_insert_without_unique_keys_skips_table_scan(self, storage, monkeypatch):
        storage.insert("transactions", "t1", {"id": "t1"})

        def scan_forbidden(*args, **kwargs):
            raise AssertionError("table scanned")

        monkeypatch.setattr(storage, "_check_unique", scan_forbidden)
        storage.insert("transactions", "t2", {"id": "t2"})

        with pytest.raises(DuplicateKeyError):
            storage.insert("transactions", "t2", {"id": "t2"})
        assert storage.count("transactions") == 2


class TestVersionedSave:
    """Optimistic concurrency on a single document"""

    def test_save_with_matching_version(self, storage):
        storage.insert("accounts", "a1", {"id": "a1", "balance": "0", "version": 1})

        storage.save("accounts", "a1", {"id": "a1", "balance": "10", "version": 2}, expected_version=1)

        assert storage.load("accounts", "a1")["balance"] == "10"

    def test_stale_version_rejected(self, storage):
        storage.insert("accounts", "a1", {"id": "a1", "balance": "0", "version": 1})
        storage.save("accounts", "a1", {"id": "a1", "balance": "10", "version": 2}, expected_version=1)

        # A second writer that also loaded version 1 loses
        with pytest.raises(ConcurrencyError):
            storage.save("accounts", "a1", {"id": "a1", "balance": "5", "version": 2}, expected_version=1)

        assert storage.load("accounts", "a1")["balance"] == "10"

    def test_versioned_save_of_missing_document_rejected(self, storage):
        with pytest.raises(ConcurrencyError):
            storage.save("accounts", "ghost", {"id": "ghost", "version": 2}, expected_version=1)

    def test_unversioned_save_overwrites(self, storage):
        storage.save("settings", "s1", {"id": "s1", "value": 1})
        storage.save("settings", "s1", {"id": "s1", "value": 2})

        assert storage.load("settings", "s1")["value"] == 2


class TestSQLitePersistence:

    def test_data_survives_reopen(self, tmp_path):
        db_path = tmp_path / "persist.db"
        storage = SQLiteStorage(db_path)
        storage.insert("accounts", "a1", {"id": "a1", "email": "a@x.com"})
        storage.close()

        reopened = SQLiteStorage(db_path)
        assert reopened.load("accounts", "a1") == {"id": "a1", "email": "a@x.com"}
        reopened.close()


class TestCreateStorage:

    def test_memory_backend(self):
        config = PocketBankConfig(storage_backend="memory")
        assert isinstance(create_storage(config), InMemoryStorage)

    def test_sqlite_backend(self, tmp_path):
        config = PocketBankConfig(storage_backend="sqlite", sqlite_path=str(tmp_path / "x.db"))
        backend = create_storage(config)
        assert isinstance(backend, SQLiteStorage)
        backend.close()

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_storage(PocketBankConfig(storage_backend="mongo"))
