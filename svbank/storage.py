"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing)
and SQLite (persistence). All monetary values stored as Decimal strings.

Every backend supports atomic units of work scoped to the calling thread:
writes made inside ``atomic()`` become visible to other threads together on
commit, or not at all.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union, Tuple
from datetime import datetime, timezone
from pathlib import Path
from contextlib import contextmanager
from dataclasses import dataclass, asdict
from decimal import Decimal
from enum import Enum
import itertools
import sqlite3
import json
import threading
import weakref

from .errors import StoreUnavailable
from .logging_config import get_logger


logger = get_logger("svbank.storage")


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


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    # Exceptions that signal a transient infrastructure failure
    infrastructure_errors: Tuple[type, ...] = ()

    def __init__(self):
        self._local = threading.local()

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save (insert or replace) a record"""
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
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records whose fields equal all filter values"""
        pass

    @abstractmethod
    def count(self, table: str, filters: Optional[Dict[str, Any]] = None) -> int:
        """Count records in table, optionally matching filters"""
        pass

    @abstractmethod
    def next_sequence(self, name: str) -> int:
        """Return the next value of a monotonic named sequence (starts at 1)"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    @abstractmethod
    def begin_transaction(self) -> None:
        """Start a transaction for the calling thread"""
        pass

    @abstractmethod
    def commit(self) -> None:
        """Commit the calling thread's transaction"""
        pass

    @abstractmethod
    def rollback(self) -> None:
        """Discard the calling thread's transaction"""
        pass

    @property
    def in_transaction(self) -> bool:
        """True if the calling thread is inside an atomic unit"""
        return getattr(self._local, 'depth', 0) > 0

    @contextmanager
    def atomic(self):
        """
        Context manager for atomic operations.

        Nested calls join the enclosing unit; only the outermost unit commits.
        Any exception rolls the whole unit back. Infrastructure failures are
        re-raised as StoreUnavailable.
        """
        depth = getattr(self._local, 'depth', 0)
        if depth:
            self._local.depth = depth + 1
            try:
                yield
            finally:
                self._local.depth = depth
            return

        with self.translate_errors():
            self.begin_transaction()
        self._local.depth = 1
        try:
            yield
            self.commit()
        except self.infrastructure_errors as exc:
            self._abort()
            logger.error("Atomic unit rolled back after storage failure", exc_info=True)
            raise StoreUnavailable("Storage is temporarily unavailable, please retry") from exc
        except BaseException:
            self._abort()
            raise
        finally:
            self._local.depth = 0

    @contextmanager
    def translate_errors(self):
        """Re-raise infrastructure failures of read paths as StoreUnavailable"""
        try:
            yield
        except self.infrastructure_errors as exc:
            logger.error("Storage read failed", exc_info=True)
            raise StoreUnavailable("Storage is temporarily unavailable, please retry") from exc

    def _abort(self) -> None:
        try:
            self.rollback()
        except self.infrastructure_errors:
            logger.error("Rollback failed", exc_info=True)


def _copy(record: Dict[str, Any]) -> Dict[str, Any]:
    # Deep copy to prevent external mutation
    return json.loads(json.dumps(record, default=str))


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for key, value in filters.items():
        if key not in record or record[key] != value:
            return False
    return True


class InMemoryStorage(StorageInterface):
    """
    In-memory storage implementation for testing.

    A transaction stages its writes in a per-thread overlay that only the
    owning thread can read; commit publishes the overlay under the data lock.
    """

    def __init__(self):
        super().__init__()
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._sequences: Dict[str, itertools.count] = {}

    def _pending(self) -> Optional[Dict[str, Dict[str, Dict[str, Any]]]]:
        return getattr(self._local, 'pending', None)

    def _merged(self, table: str) -> Dict[str, Dict[str, Any]]:
        """Committed rows overlaid with the calling thread's staged rows"""
        with self._lock:
            rows = dict(self._data.get(table, {}))
        pending = self._pending()
        if pending and table in pending:
            rows.update(pending[table])
        return rows

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        record = _copy(data)
        pending = self._pending()
        if pending is not None:
            pending.setdefault(table, {})[record_id] = record
            return
        with self._lock:
            self._data.setdefault(table, {})[record_id] = record

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        pending = self._pending()
        if pending and record_id in pending.get(table, {}):
            return _copy(pending[table][record_id])
        with self._lock:
            record = self._data.get(table, {}).get(record_id)
            if record:
                return _copy(record)
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        return [_copy(record) for record in self._merged(table).values()]

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        return record_id in self._merged(table)

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        return [
            _copy(record) for record in self._merged(table).values()
            if _matches(record, filters)
        ]

    def count(self, table: str, filters: Optional[Dict[str, Any]] = None) -> int:
        """Count records in table"""
        rows = self._merged(table).values()
        if not filters:
            return len(rows)
        return sum(1 for record in rows if _matches(record, filters))

    def next_sequence(self, name: str) -> int:
        """Sequence values are never reused, even when a unit rolls back"""
        with self._lock:
            if name not in self._sequences:
                self._sequences[name] = itertools.count(1)
            return next(self._sequences[name])

    def begin_transaction(self) -> None:
        self._local.pending = {}

    def commit(self) -> None:
        pending = self._pending()
        if pending is None:
            return
        with self._lock:
            for table, rows in pending.items():
                self._data.setdefault(table, {}).update(rows)
        self._local.pending = None

    def rollback(self) -> None:
        self._local.pending = None

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


def _release_connection(connection: sqlite3.Connection, registry: Dict, lock) -> None:
    with lock:
        if registry.pop(connection, None) is None:
            return
    connection.close()


class _ThreadConnection:
    """
    Thread-local holder of one SQLite connection.

    The holder dies with its thread's local storage; the finalizer then
    closes the connection.
    """

    def __init__(self, connection: sqlite3.Connection, registry: Dict, lock):
        self.connection = connection
        weakref.finalize(self, _release_connection, connection, registry, lock)


class SQLiteStorage(StorageInterface):
    """
    SQLite storage implementation for persistence.

    Each thread gets its own connection so that atomic units never share a
    transaction. Units start with BEGIN IMMEDIATE, so writers queue on the
    database write lock for up to ``timeout`` seconds instead of failing
    mid-unit.
    """

    infrastructure_errors = (sqlite3.OperationalError, sqlite3.DatabaseError)

    DEFAULT_TABLES = ("users", "accounts", "transactions", "loans", "audit_events")

    def __init__(
        self,
        db_path: Union[str, Path],
        timeout: float = 30.0,
        tables: Tuple[str, ...] = DEFAULT_TABLES
    ):
        super().__init__()
        self.db_path = str(db_path)
        if self.db_path == ":memory:":
            raise ValueError("SQLiteStorage needs a database file; use InMemoryStorage for tests")
        self.timeout = timeout
        # Open connection -> owning thread
        self._connections: Dict[sqlite3.Connection, threading.Thread] = {}
        self._lock = threading.RLock()
        self._known_tables: set = set()

        connection = self._connection()
        # WAL lets readers proceed while a unit holds the write lock
        connection.execute("PRAGMA journal_mode = WAL")
        connection.execute("""
            CREATE TABLE IF NOT EXISTS _sequences (
                name TEXT PRIMARY KEY,
                value INTEGER NOT NULL
            )
        """)
        for table in tables:
            self._ensure_table(table)

    def _connection(self) -> sqlite3.Connection:
        """Connection owned by the calling thread"""
        holder = getattr(self._local, 'holder', None)
        if holder is None:
            self._release_dead_threads()
            # isolation_level=None: transactions are opened explicitly
            connection = sqlite3.connect(
                self.db_path,
                timeout=self.timeout,
                isolation_level=None,
                check_same_thread=False
            )
            connection.row_factory = sqlite3.Row
            connection.execute("PRAGMA synchronous = NORMAL")
            with self._lock:
                self._connections[connection] = threading.current_thread()
            holder = self._local.holder = _ThreadConnection(connection, self._connections, self._lock)
        return holder.connection

    def _release_dead_threads(self) -> None:
        """Close connections whose owning thread has exited"""
        with self._lock:
            dead = [c for c, thread in self._connections.items() if not thread.is_alive()]
            for connection in dead:
                del self._connections[connection]
        for connection in dead:
            connection.close()

    def open_connections(self) -> int:
        """Number of connections held for live threads"""
        self._release_dead_threads()
        with self._lock:
            return len(self._connections)

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._known_tables:
            return
        connection = self._connection()
        connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        connection.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{table}_created_at
            ON {table}(created_at)
        """)
        # DDL inside a unit is undone by a rollback, so only remember it once durable
        if not connection.in_transaction:
            with self._lock:
                self._known_tables.add(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite, keeping the original created_at"""
        self._ensure_table(table)
        now = datetime.now(timezone.utc).isoformat()
        self._connection().execute(f"""
            INSERT INTO {table} (id, data, created_at, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                data = excluded.data,
                updated_at = excluded.updated_at
        """, (record_id, json.dumps(data, default=str), now, now))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        self._ensure_table(table)
        row = self._connection().execute(f"""
            SELECT data FROM {table} WHERE id = ?
        """, (record_id,)).fetchone()
        if row:
            return json.loads(row['data'])
        return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        self._ensure_table(table)
        cursor = self._connection().execute(f"""
            SELECT data FROM {table} ORDER BY created_at, rowid
        """)
        return [json.loads(row['data']) for row in cursor.fetchall()]

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        self._ensure_table(table)
        row = self._connection().execute(f"""
            SELECT 1 FROM {table} WHERE id = ? LIMIT 1
        """, (record_id,)).fetchone()
        return row is not None

    def _where(self, filters: Optional[Dict[str, Any]]) -> Tuple[str, List[Any]]:
        if not filters:
            return "", []
        conditions = []
        params: List[Any] = []
        for key, value in filters.items():
            conditions.append("json_extract(data, ?) = ?")
            params.extend([f"$.{key}", value])
        return "WHERE " + " AND ".join(conditions), params

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters using JSON field extraction"""
        self._ensure_table(table)
        where_clause, params = self._where(filters)
        cursor = self._connection().execute(f"""
            SELECT data FROM {table} {where_clause}
            ORDER BY created_at, rowid
        """, params)
        return [json.loads(row['data']) for row in cursor.fetchall()]

    def count(self, table: str, filters: Optional[Dict[str, Any]] = None) -> int:
        """Count records in table"""
        self._ensure_table(table)
        where_clause, params = self._where(filters)
        row = self._connection().execute(f"""
            SELECT COUNT(*) as count FROM {table} {where_clause}
        """, params).fetchone()
        return row['count']

    def next_sequence(self, name: str) -> int:
        """Increment a named sequence; joins the caller's unit if there is one"""
        with self.atomic():
            connection = self._connection()
            connection.execute("""
                INSERT INTO _sequences (name, value) VALUES (?, 1)
                ON CONFLICT(name) DO UPDATE SET value = value + 1
            """, (name,))
            row = connection.execute(
                "SELECT value FROM _sequences WHERE name = ?", (name,)
            ).fetchone()
            return row['value']

    def begin_transaction(self) -> None:
        """Start a write transaction, waiting for the database write lock"""
        self._connection().execute("BEGIN IMMEDIATE")

    def commit(self) -> None:
        connection = self._connection()
        if connection.in_transaction:
            connection.execute("COMMIT")

    def rollback(self) -> None:
        connection = self._connection()
        if connection.in_transaction:
            connection.execute("ROLLBACK")

    def close(self) -> None:
        """Close every thread's SQLite connection"""
        with self._lock:
            connections = list(self._connections)
            self._connections.clear()
        for connection in connections:
            connection.close()
        self._local = threading.local()


def create_storage(backend: str = "sqlite", database_path: str = "svbank.db",
                   timeout: float = 30.0) -> StorageInterface:
    """Build a storage backend by name ("sqlite" or "memory")"""
    if backend == "memory":
        return InMemoryStorage()
    if backend == "sqlite":
        return SQLiteStorage(database_path, timeout=timeout)
    raise ValueError(f"Unknown storage backend: {backend}")
