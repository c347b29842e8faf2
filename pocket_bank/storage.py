"""
Storage Backend Module

Provides the document storage interface used by every service, with an
in-memory implementation (testing) and a SQLite implementation (persistence).
Records are JSON documents; monetary values are stored as Decimal strings.

Each document may carry an integer ``version`` field. ``save`` accepts an
``expected_version`` and refuses to overwrite a document whose stored version
differs, which gives callers optimistic concurrency on a single document.
There are no multi-document transactions.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Iterable, Union
from decimal import Decimal
from datetime import datetime, timezone
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from enum import Enum
from pathlib import Path

from .errors import ConcurrencyError, DuplicateKeyError


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        result['created_at'] = self.created_at.isoformat()
        result['updated_at'] = self.updated_at.isoformat()
        for key, value in result.items():
            if isinstance(value, Decimal):
                result[key] = str(value)
            elif isinstance(value, Enum):
                result[key] = value.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from dictionary"""
        data = dict(data)
        if 'created_at' in data and isinstance(data['created_at'], str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        if 'updated_at' in data and isinstance(data['updated_at'], str):
            data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        return cls(**data)


def _unique_value(value: Any) -> Any:
    """Normalise a value for uniqueness comparison"""
    if isinstance(value, str):
        return value.strip().lower()
    return value


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for key, value in filters.items():
        if key not in record or record[key] != value:
            return False
    return True


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def insert(
        self,
        table: str,
        record_id: str,
        data: Dict[str, Any],
        unique_keys: Iterable[str] = ()
    ) -> None:
        """
        Insert a new record.

        Raises DuplicateKeyError if the id already exists or another record
        shares a value for any of ``unique_keys`` (strings compared
        case-insensitively).
        """
        pass

    @abstractmethod
    def save(
        self,
        table: str,
        record_id: str,
        data: Dict[str, Any],
        expected_version: Optional[int] = None
    ) -> None:
        """
        Save a record.

        When ``expected_version`` is given the stored record must exist and
        carry that version, otherwise ConcurrencyError is raised and nothing
        is written.
        """
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table in insertion order"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        return self.load(table, record_id) is not None

    def find_one(self, table: str, filters: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Return the first record matching filters, or None"""
        results = self.find(table, filters)
        return results[0] if results else None

    @abstractmethod
    def load_last(self, table: str) -> Optional[Dict[str, Any]]:
        """Most recently inserted record of a table, or None when it is empty"""
        pass

    @staticmethod
    def _check_version(
        table: str,
        record_id: str,
        current: Optional[Dict[str, Any]],
        expected_version: Optional[int]
    ) -> None:
        if expected_version is None:
            return
        if current is None:
            raise ConcurrencyError(f"{table}/{record_id} no longer exists")
        if current.get('version', 0) != expected_version:
            raise ConcurrencyError(
                f"{table}/{record_id} was modified concurrently "
                f"(expected version {expected_version}, found {current.get('version', 0)})"
            )

    @staticmethod
    def _check_unique(
        table: str,
        record_id: str,
        data: Dict[str, Any],
        existing: Iterable[Dict[str, Any]],
        unique_keys: Iterable[str]
    ) -> None:
        keys = list(unique_keys)
        for record in existing:
            if record.get('id') == record_id:
                raise DuplicateKeyError(table, 'id', record_id)
            for key in keys:
                if data.get(key) is None:
                    continue
                if _unique_value(record.get(key)) == _unique_value(data[key]):
                    raise DuplicateKeyError(table, key, data[key])


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()

    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        return self._data.setdefault(table, {})

    def insert(self, table, record_id, data, unique_keys=()):
        with self._lock:
            rows = self._table(table)
            if record_id in rows:
                raise DuplicateKeyError(table, 'id', record_id)
            if unique_keys:
                self._check_unique(table, record_id, data, rows.values(), unique_keys)
            # Deep copy to prevent external mutation
            rows[record_id] = json.loads(json.dumps(data, default=str))

    def save(self, table, record_id, data, expected_version=None):
        with self._lock:
            rows = self._table(table)
            self._check_version(table, record_id, rows.get(record_id), expected_version)
            rows[record_id] = json.loads(json.dumps(data, default=str))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._table(table).get(record_id)
            if record is not None:
                return json.loads(json.dumps(record))
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [json.loads(json.dumps(record)) for record in self._table(table).values()]

    def load_last(self, table: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            rows = self._table(table)
            if not rows:
                return None
            return json.loads(json.dumps(next(reversed(rows.values()))))

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                json.loads(json.dumps(record))
                for record in self._table(table).values()
                if _matches(record, filters)
            ]

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._table(table))

    def clear_table(self, table: str) -> None:
        with self._lock:
            self._data[table] = {}

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._tables: set = set()

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        self._connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._connection.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{table}_created_at
            ON {table}(created_at)
        """)
        self._connection.commit()
        self._tables.add(table)

    def _rows(self, table: str) -> List[Dict[str, Any]]:
        cursor = self._connection.execute(
            f"SELECT data FROM {table} ORDER BY created_at, rowid"
        )
        return [json.loads(row['data']) for row in cursor.fetchall()]

    def insert(self, table, record_id, data, unique_keys=()):
        with self._lock:
            self._ensure_table(table)
            # The primary key rejects duplicate ids; other keys need a scan
            if unique_keys:
                self._check_unique(table, record_id, data, self._rows(table), unique_keys)
            now = datetime.now(timezone.utc).isoformat()
            try:
                self._connection.execute(
                    f"INSERT INTO {table} (id, data, created_at, updated_at) VALUES (?, ?, ?, ?)",
                    (record_id, json.dumps(data, default=str), now, now)
                )
            except sqlite3.IntegrityError:
                self._connection.rollback()
                raise DuplicateKeyError(table, 'id', record_id)
            self._connection.commit()

    def save(self, table, record_id, data, expected_version=None):
        with self._lock:
            self._ensure_table(table)
            self._check_version(table, record_id, self.load(table, record_id), expected_version)

            now = datetime.now(timezone.utc).isoformat()
            self._connection.execute(f"""
                INSERT OR REPLACE INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?,
                    COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?),
                    ?)
            """, (record_id, json.dumps(data, default=str), record_id, now, now))
            self._connection.commit()

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(
                f"SELECT data FROM {table} WHERE id = ?", (record_id,)
            )
            row = cursor.fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            return self._rows(table)

    def load_last(self, table: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(
                f"SELECT data FROM {table} ORDER BY created_at DESC, rowid DESC LIMIT 1"
            )
            row = cursor.fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters (simple JSON key matching)"""
        with self._lock:
            self._ensure_table(table)
            return [record for record in self._rows(table) if _matches(record, filters)]

    def count(self, table: str) -> int:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"SELECT COUNT(*) AS count FROM {table}")
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        with self._lock:
            self._ensure_table(table)
            self._connection.execute(f"DELETE FROM {table}")
            self._connection.commit()

    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(config) -> StorageInterface:
    """Build the storage backend selected by configuration"""
    if config.storage_backend == "memory":
        return InMemoryStorage()
    if config.storage_backend == "sqlite":
        return SQLiteStorage(config.sqlite_path)
    raise ValueError(f"Unknown storage backend: {config.storage_backend}")
