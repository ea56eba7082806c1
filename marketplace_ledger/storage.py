"""
Storage Backend Module

Provides the storage interface every ledger component receives by injection,
with an in-memory implementation (tests, fakes) and a SQLite implementation
(persistence). Money is stored as Decimal strings, never floats.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union
from decimal import Decimal
from datetime import date, datetime, timezone
from enum import Enum
import copy
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager, nullcontext


def serialize_value(value: Any) -> Any:
    """Convert a value to its JSON-safe storage form"""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: serialize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize_value(v) for v in value]
    return value


def parse_datetime(value: Optional[Union[str, datetime]]) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def parse_date(value: Optional[Union[str, date]]) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(value)


def parse_decimal(value: Optional[Union[str, int, Decimal]]) -> Optional[Decimal]:
    if value is None or isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {k: serialize_value(v) for k, v in asdict(self).items()}


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    _atomic_depth = 0

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to storage"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records whose top-level fields equal the filter values"""
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
    def next_sequence(self, scope: str) -> int:
        """
        Atomically increment and return the counter for a scope.
        The first value handed out for a scope is 1.
        """
        pass

    @abstractmethod
    def compare_and_set(
        self,
        table: str,
        record_id: str,
        expected: Dict[str, Any],
        data: Dict[str, Any]
    ) -> bool:
        """
        Replace a record only if every field in `expected` still holds
        the given value. Returns False (and writes nothing) otherwise.
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def begin_transaction(self) -> None:
        """Start a database transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    def _transaction_lock(self):
        return nullcontext()

    @contextmanager
    def atomic(self):
        """
        Context manager for atomic operations.

        Blocks nest: only the outermost block begins, commits or rolls back,
        so a voucher operation called from inside an auto-voucher handler
        joins the handler's transaction.
        """
        with self._transaction_lock():
            depth = self._atomic_depth
            if depth == 0:
                self.begin_transaction()
            self._atomic_depth = depth + 1
            try:
                yield
            except BaseException:
                self._atomic_depth = depth
                if depth == 0:
                    self.rollback()
                raise
            else:
                self._atomic_depth = depth
                if depth == 0:
                    self.commit()

    @property
    def in_transaction(self) -> bool:
        return self._atomic_depth > 0


class InMemoryStorage(StorageInterface):
    """
    In-memory storage implementation for testing.

    Transactions are real: begin takes a snapshot and rollback restores it.
    The storage lock is held for the whole transaction, so concurrent
    transactions are serialized.
    """

    SEQUENCES_TABLE = "_sequences"

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._snapshot: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None

    def _ensure_table(self, table: str) -> None:
        if table not in self._data:
            self._data[table] = {}

    @staticmethod
    def _copy(data: Any) -> Any:
        # JSON round trip doubles as a deep copy and a serializability check
        return json.loads(json.dumps(data, default=str))

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._ensure_table(table)
            self._data[table][record_id] = self._copy(data)

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                return self._copy(record)
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            return [self._copy(record) for record in self._data[table].values()]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            if record_id in self._data[table]:
                del self._data[table][record_id]
                return True
            return False

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            return record_id in self._data[table]

    @staticmethod
    def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
        for key, value in filters.items():
            if record.get(key) != value:
                return False
        return True

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            return [
                self._copy(record)
                for record in self._data[table].values()
                if self._matches(record, filters)
            ]

    def count(self, table: str) -> int:
        with self._lock:
            self._ensure_table(table)
            return len(self._data[table])

    def clear_table(self, table: str) -> None:
        with self._lock:
            self._data[table] = {}

    def next_sequence(self, scope: str) -> int:
        with self._lock:
            self._ensure_table(self.SEQUENCES_TABLE)
            counters = self._data[self.SEQUENCES_TABLE]
            current = counters.get(scope, {"value": 0})["value"]
            counters[scope] = {"value": current + 1}
            return current + 1

    def compare_and_set(self, table, record_id, expected, data) -> bool:
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record is None or not self._matches(record, expected):
                return False
            self._data[table][record_id] = self._copy(data)
            return True

    def begin_transaction(self) -> None:
        self._snapshot = copy.deepcopy(self._data)

    def commit(self) -> None:
        self._snapshot = None

    def rollback(self) -> None:
        if self._snapshot is not None:
            self._data = self._snapshot
            self._snapshot = None

    def _transaction_lock(self):
        return self._lock

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass

    def get_all_data(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        """Get all data for debugging/inspection"""
        with self._lock:
            return self._copy(self._data)


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        # Autocommit mode; transactions are opened explicitly with BEGIN IMMEDIATE
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._tables: set = set()

        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")

        self._connection.execute("""
            CREATE TABLE IF NOT EXISTS _sequences (
                scope TEXT PRIMARY KEY,
                value INTEGER NOT NULL
            )
        """)

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        with self._lock:
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
            self._tables.add(table)

    @staticmethod
    def _sql_value(value: Any) -> Any:
        # json_extract yields 1/0 for JSON booleans
        if isinstance(value, bool):
            return int(value)
        return value

    def _where(self, filters: Dict[str, Any]):
        conditions = []
        params: List[Any] = []
        for key, value in filters.items():
            conditions.append("json_extract(data, ?) IS ?")
            params.extend([f"$.{key}", self._sql_value(value)])
        return conditions, params

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            data_json = json.dumps(data, default=str)
            self._connection.execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
            """, (record_id, data_json, now, now))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            row = self._connection.execute(
                f"SELECT data FROM {table} WHERE id = ?", (record_id,)
            ).fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(
                f"SELECT data FROM {table} ORDER BY created_at, rowid"
            )
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(
                f"DELETE FROM {table} WHERE id = ?", (record_id,)
            )
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(
                f"SELECT 1 FROM {table} WHERE id = ? LIMIT 1", (record_id,)
            )
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            conditions, params = self._where(filters)
            where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
            cursor = self._connection.execute(
                f"SELECT data FROM {table} {where_clause} ORDER BY created_at, rowid",
                params
            )
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def count(self, table: str) -> int:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"SELECT COUNT(*) as count FROM {table}")
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        with self._lock:
            self._ensure_table(table)
            self._connection.execute(f"DELETE FROM {table}")

    def next_sequence(self, scope: str) -> int:
        with self._lock:
            row = self._connection.execute("""
                INSERT INTO _sequences (scope, value) VALUES (?, 1)
                ON CONFLICT(scope) DO UPDATE SET value = value + 1
                RETURNING value
            """, (scope,)).fetchone()
            return row['value']

    def compare_and_set(self, table, record_id, expected, data) -> bool:
        with self._lock:
            self._ensure_table(table)
            conditions, params = self._where(expected)
            conditions.insert(0, "id = ?")
            now = datetime.now(timezone.utc).isoformat()
            cursor = self._connection.execute(
                f"UPDATE {table} SET data = ?, updated_at = ? WHERE {' AND '.join(conditions)}",
                [json.dumps(data, default=str), now, record_id] + params
            )
            return cursor.rowcount == 1

    def begin_transaction(self) -> None:
        self._connection.execute("BEGIN IMMEDIATE")

    def commit(self) -> None:
        self._connection.execute("COMMIT")

    def rollback(self) -> None:
        self._connection.execute("ROLLBACK")
        # Tables created inside the rolled-back transaction are gone too
        self._tables.clear()

    def _transaction_lock(self):
        return self._lock

    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Build a storage backend from a URL.

    Supported: "memory://", "sqlite://" (in-memory SQLite) and
    "sqlite:///path/to/file.db".
    """
    if database_url == "memory://":
        return InMemoryStorage()
    if database_url.startswith("sqlite://"):
        path = database_url[len("sqlite://"):]
        if path.startswith("/"):
            path = path[1:]
        return SQLiteStorage(path or ":memory:")
    raise ValueError(f"Unsupported database URL: {database_url}")
