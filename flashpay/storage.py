"""
Record storage backends

Table-oriented JSON record stores used by every FlashPay store: an in-memory
backend for tests and a SQLite backend for persistence. Amounts are kept as
Decimal strings.

Every record carries an integer ``version``. ``compare_and_save`` only writes
when the stored version still matches the one the caller read, and
``atomic()`` groups writes into a single all-or-nothing unit.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Union
from decimal import Decimal
from datetime import datetime, timezone
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager

from .exceptions import ConcurrentUpdateConflict, StoreUnavailable
from .logging_config import get_logger


logger = get_logger("flashpay.storage")

DEFAULT_TIMEOUT_SECONDS = 5.0


@dataclass
class StorageRecord:
    """Common identity and timestamp fields of a stored record"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready dict; Decimals and datetimes become strings"""
        result = asdict(self)
        result['created_at'] = self.created_at.isoformat()
        result['updated_at'] = self.updated_at.isoformat()
        for key, value in result.items():
            if isinstance(value, Decimal):
                result[key] = str(value)
            elif isinstance(value, datetime):
                result[key] = value.isoformat()
        return result


class StorageInterface(ABC):
    """Operations every storage backend provides"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record unconditionally"""
        pass

    @abstractmethod
    def compare_and_save(self, table: str, record_id: str, data: Dict[str, Any],
                         expected_version: Optional[int]) -> int:
        """
        Save a record only if it has not changed since it was read

        Args:
            table: Table name
            record_id: Record ID
            data: Record data; its ``version`` key is overwritten
            expected_version: Version the caller read, or None to require
                that the record does not exist yet

        Returns:
            The new version of the record

        Raises:
            ConcurrentUpdateConflict: If the stored version differs
        """
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

    def begin_transaction(self) -> None:
        """Start a database transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """Run the enclosed writes as one all-or-nothing unit"""
        self.begin_transaction()
        try:
            yield
            self.commit()
        except Exception:
            self.rollback()
            raise


class InMemoryStorage(StorageInterface):
    """
    In-memory storage implementation for testing

    Writes made inside ``atomic()`` are buffered per thread and applied under
    the lock at commit time, after every compare-and-save expectation in the
    unit has been checked. Reads inside a unit see committed data only.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._local = threading.local()
        self.timeout = timeout

    @contextmanager
    def _locked(self):
        if not self._lock.acquire(timeout=self.timeout):
            raise StoreUnavailable(f"Timed out after {self.timeout}s waiting for in-memory store")
        try:
            yield
        finally:
            self._lock.release()

    @staticmethod
    def _copy(record: Dict[str, Any]) -> Dict[str, Any]:
        return json.loads(json.dumps(record, default=str))

    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        if table not in self._data:
            self._data[table] = {}
        return self._data[table]

    @property
    def _pending(self) -> Optional[List[tuple]]:
        return getattr(self._local, 'pending', None)

    def _depth(self) -> int:
        return getattr(self._local, 'depth', 0)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        record = self._copy(data)
        record.setdefault('version', 1)
        if self._pending is not None:
            self._pending.append(('save', table, record_id, record, None))
            return
        with self._locked():
            self._table(table)[record_id] = record

    def compare_and_save(self, table: str, record_id: str, data: Dict[str, Any],
                         expected_version: Optional[int]) -> int:
        new_version = 1 if expected_version is None else expected_version + 1
        record = self._copy(data)
        record['version'] = new_version
        if self._pending is not None:
            self._pending.append(('cas', table, record_id, record, expected_version))
            return new_version
        with self._locked():
            self._check_version(self._table(table).get(record_id), table, record_id, expected_version)
            self._table(table)[record_id] = record
        return new_version

    @staticmethod
    def _check_version(current: Optional[Dict[str, Any]], table: str, record_id: str,
                       expected_version: Optional[int]) -> None:
        if expected_version is None:
            if current is not None:
                raise ConcurrentUpdateConflict(f"{table}:{record_id} already exists", table=table)
        elif current is None or current.get('version') != expected_version:
            raise ConcurrentUpdateConflict(
                f"{table}:{record_id} changed since it was read",
                expected_version=expected_version,
                actual_version=current.get('version') if current else None
            )

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._locked():
            record = self._table(table).get(record_id)
            if record:
                return self._copy(record)
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._locked():
            return [self._copy(record) for record in self._table(table).values()]

    def delete(self, table: str, record_id: str) -> bool:
        if self._pending is not None:
            self._pending.append(('delete', table, record_id, None, None))
            return self.exists(table, record_id)
        with self._locked():
            return self._table(table).pop(record_id, None) is not None

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._locked():
            return record_id in self._table(table)

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._locked():
            results = []
            for record in self._table(table).values():
                if all(key in record and record[key] == value for key, value in filters.items()):
                    results.append(self._copy(record))
            return results

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._locked():
            return len(self._table(table))

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._locked():
            self._data[table] = {}

    def close(self) -> None:
        pass

    def begin_transaction(self) -> None:
        """Start buffering writes for the current thread"""
        depth = self._depth()
        if depth == 0:
            self._local.pending = []
        self._local.depth = depth + 1

    def commit(self) -> None:
        """Apply buffered writes all-or-nothing"""
        depth = self._depth()
        if depth == 0:
            return
        self._local.depth = depth - 1
        if depth > 1:
            return

        pending = self._pending or []
        self._local.pending = None
        with self._locked():
            # Validate every expectation against a staged view before touching data
            staged: Dict[tuple, Optional[Dict[str, Any]]] = {}
            for op, table, record_id, record, expected_version in pending:
                key = (table, record_id)
                current = staged[key] if key in staged else self._table(table).get(record_id)
                if op == 'cas':
                    self._check_version(current, table, record_id, expected_version)
                staged[key] = None if op == 'delete' else record

            for (table, record_id), record in staged.items():
                if record is None:
                    self._table(table).pop(record_id, None)
                else:
                    self._table(table)[record_id] = record

    def rollback(self) -> None:
        """Discard buffered writes"""
        self._local.pending = None
        self._local.depth = 0


class SQLiteStorage(StorageInterface):
    """
    SQLite backend

    One shared connection guarded by a lock. Each table stores the record JSON
    next to its version so compare-and-save is a single guarded UPDATE.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:",
                 timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self.db_path = str(db_path)
        self.timeout = timeout
        # Autocommit mode; atomic() issues explicit BEGIN IMMEDIATE / COMMIT
        self._connection = sqlite3.connect(
            self.db_path, check_same_thread=False, isolation_level=None, timeout=timeout
        )
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._tables = set()
        self._tx_depth = 0

        # WAL lets readers proceed while a unit holds the write lock
        if self.db_path != ":memory:":
            with self._guard():
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")

    @contextmanager
    def _guard(self):
        """Serialize access to the connection and map driver errors"""
        if not self._lock.acquire(timeout=self.timeout):
            raise StoreUnavailable(f"Timed out after {self.timeout}s waiting for SQLite connection")
        try:
            yield
        except sqlite3.OperationalError as e:
            logger.error(f"SQLite operational error: {e}")
            raise StoreUnavailable(f"SQLite unavailable: {e}") from e
        finally:
            self._lock.release()

    def _ensure_table(self, table: str) -> None:
        if table in self._tables:
            return
        self._connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._connection.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{table}_created_at
            ON {table}(created_at)
        """)
        self._tables.add(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._guard():
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            record = dict(data)
            record.setdefault('version', 1)
            self._connection.execute(f"""
                INSERT OR REPLACE INTO {table} (id, data, version, created_at, updated_at)
                VALUES (?, ?, ?,
                    COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?),
                    ?)
            """, (record_id, json.dumps(record, default=str), record['version'], record_id, now, now))

    def compare_and_save(self, table: str, record_id: str, data: Dict[str, Any],
                         expected_version: Optional[int]) -> int:
        """Compare-and-save a record using a version-guarded write"""
        new_version = 1 if expected_version is None else expected_version + 1
        record = dict(data)
        record['version'] = new_version
        data_json = json.dumps(record, default=str)

        with self._guard():
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            if expected_version is None:
                try:
                    self._connection.execute(f"""
                        INSERT INTO {table} (id, data, version, created_at, updated_at)
                        VALUES (?, ?, ?, ?, ?)
                    """, (record_id, data_json, new_version, now, now))
                except sqlite3.IntegrityError:
                    raise ConcurrentUpdateConflict(f"{table}:{record_id} already exists", table=table)
            else:
                cursor = self._connection.execute(f"""
                    UPDATE {table} SET data = ?, version = ?, updated_at = ?
                    WHERE id = ? AND version = ?
                """, (data_json, new_version, now, record_id, expected_version))
                if cursor.rowcount == 0:
                    raise ConcurrentUpdateConflict(
                        f"{table}:{record_id} changed since it was read",
                        expected_version=expected_version
                    )
        return new_version

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._guard():
            self._ensure_table(table)
            row = self._connection.execute(
                f"SELECT data FROM {table} WHERE id = ?", (record_id,)
            ).fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._guard():
            self._ensure_table(table)
            cursor = self._connection.execute(f"SELECT data FROM {table} ORDER BY created_at")
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        with self._guard():
            self._ensure_table(table)
            cursor = self._connection.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        with self._guard():
            self._ensure_table(table)
            cursor = self._connection.execute(
                f"SELECT 1 FROM {table} WHERE id = ? LIMIT 1", (record_id,)
            )
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._guard():
            self._ensure_table(table)
            cursor = self._connection.execute(f"SELECT data FROM {table} ORDER BY created_at")
            results = []
            for row in cursor.fetchall():
                record = json.loads(row['data'])
                if all(key in record and record[key] == value for key, value in filters.items()):
                    results.append(record)
            return results

    def count(self, table: str) -> int:
        with self._guard():
            self._ensure_table(table)
            cursor = self._connection.execute(f"SELECT COUNT(*) AS count FROM {table}")
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        with self._guard():
            self._ensure_table(table)
            self._connection.execute(f"DELETE FROM {table}")

    def begin_transaction(self) -> None:
        """Start a database transaction, holding the connection until commit/rollback"""
        if not self._lock.acquire(timeout=self.timeout):
            raise StoreUnavailable(f"Timed out after {self.timeout}s waiting for SQLite connection")
        if self._tx_depth == 0:
            try:
                self._connection.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as e:
                self._lock.release()
                raise StoreUnavailable(f"SQLite unavailable: {e}") from e
        self._tx_depth += 1

    def commit(self) -> None:
        """Commit current transaction"""
        if self._tx_depth == 0:
            return
        self._tx_depth -= 1
        try:
            if self._tx_depth == 0:
                try:
                    self._connection.execute("COMMIT")
                except sqlite3.OperationalError as e:
                    if self._connection.in_transaction:
                        self._connection.execute("ROLLBACK")
                    raise StoreUnavailable(f"SQLite commit failed: {e}") from e
        finally:
            self._lock.release()

    def rollback(self) -> None:
        """Rollback current transaction, releasing every nested hold"""
        depth = self._tx_depth
        if depth == 0:
            return
        self._tx_depth = 0
        try:
            if self._connection.in_transaction:
                self._connection.execute("ROLLBACK")
        except sqlite3.OperationalError as e:
            raise StoreUnavailable(f"SQLite rollback failed: {e}") from e
        finally:
            for _ in range(depth):
                self._lock.release()

    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
