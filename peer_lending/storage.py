"""
Storage Backend Module

Provides the abstract storage interface the lending core reads and writes
through, plus implementations for in-memory (testing) and SQLite
(persistence). All monetary values stored as Decimal strings.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union
from decimal import Decimal
from datetime import datetime, date
from enum import Enum
import copy
import sqlite3
import json
import threading
from dataclasses import dataclass, fields
from pathlib import Path
from contextlib import contextmanager


def serialize_value(value: Any) -> Any:
    """Convert a value to a JSON-compatible form for storage"""
    if isinstance(value, Decimal):
        return str(value)
    elif isinstance(value, datetime):
        return value.isoformat()
    elif isinstance(value, date):
        return value.isoformat()
    elif isinstance(value, Enum):
        return value.value if isinstance(value.value, str) else value.name
    elif hasattr(value, 'to_dict'):
        return value.to_dict()
    elif isinstance(value, dict):
        return {k: serialize_value(v) for k, v in value.items()}
    elif isinstance(value, (set, frozenset)):
        return sorted(serialize_value(v) for v in value)
    elif isinstance(value, (list, tuple)):
        return [serialize_value(v) for v in value]
    return value


def matches_filters(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    """Check that every filter key is present in the record with an equal value"""
    for key, value in filters.items():
        if key not in record or record[key] != value:
            return False
    return True


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {f.name: serialize_value(getattr(self, f.name)) for f in fields(self)}
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from dictionary"""
        data = dict(data)
        # Convert ISO strings back to datetime objects
        if 'created_at' in data and isinstance(data['created_at'], str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        if 'updated_at' in data and isinstance(data['updated_at'], str):
            data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        
        return cls(**data)


class StorageInterface(ABC):
    """Abstract interface for storage backends"""
    
    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to storage"""
        pass
    
    @abstractmethod
    def save_if(self, table: str, record_id: str, data: Dict[str, Any],
                expected: Dict[str, Any]) -> bool:
        """
        Conditionally save a record.
        
        The write lands only if the currently stored record exists and
        matches every key/value in ``expected``.
        
        Returns:
            True if the record was written
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
        """Context manager for atomic operations"""
        self.begin_transaction()
        try:
            yield
            self.commit()
        except Exception:
            self.rollback()
            raise


def _clone(record: Dict[str, Any]) -> Dict[str, Any]:
    """JSON round-trip so callers never share state with the store"""
    return json.loads(json.dumps(record, default=str))


class InMemoryStorage(StorageInterface):
    """
    Dict-backed storage for tests and local runs.
    
    A transaction deep-copies the store when the outermost block opens and
    puts the copy back on rollback; inner blocks only bump the depth.
    """
    
    def __init__(self):
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._snapshot: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None
        self._depth = 0
    
    def _table(self, name: str) -> Dict[str, Dict[str, Any]]:
        return self._tables.setdefault(name, {})
    
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._table(table)[record_id] = _clone(data)
    
    def save_if(self, table: str, record_id: str, data: Dict[str, Any],
                expected: Dict[str, Any]) -> bool:
        with self._lock:
            rows = self._table(table)
            current = rows.get(record_id)
            if current is None or not matches_filters(current, expected):
                return False
            rows[record_id] = _clone(data)
            return True
    
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._table(table).get(record_id)
            return _clone(record) if record is not None else None
    
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [_clone(record) for record in self._table(table).values()]
    
    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            return self._table(table).pop(record_id, None) is not None
    
    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            return record_id in self._table(table)
    
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                _clone(record) for record in self._table(table).values()
                if matches_filters(record, filters)
            ]
    
    def count(self, table: str) -> int:
        with self._lock:
            return len(self._table(table))
    
    def clear_table(self, table: str) -> None:
        with self._lock:
            self._tables[table] = {}
    
    def begin_transaction(self) -> None:
        with self._lock:
            if self._depth == 0:
                self._snapshot = copy.deepcopy(self._tables)
            self._depth += 1
    
    def commit(self) -> None:
        with self._lock:
            if self._depth == 0:
                return
            self._depth -= 1
            if self._depth == 0:
                self._snapshot = None
    
    def rollback(self) -> None:
        """Restore the store as it was when the outermost block opened"""
        with self._lock:
            if self._depth == 0:
                return
            self._depth = 0
            if self._snapshot is not None:
                self._tables = self._snapshot
            self._snapshot = None
    
    def close(self) -> None:
        pass


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""
    
    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        # Manual transaction control via DEFERRED isolation
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        self._tables: set = set()
        
        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()
    
    @property
    def _in_transaction(self) -> bool:
        return self._depth > 0
    
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
            if not self._in_transaction:
                self._connection.commit()
            self._tables.add(table)
    
    def _write(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        now = datetime.now().astimezone().isoformat()
        data_json = json.dumps(data, default=str)
        
        # Use INSERT OR REPLACE to handle updates
        self._connection.execute(f"""
            INSERT OR REPLACE INTO {table} (id, data, created_at, updated_at)
            VALUES (?, ?, 
                COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?),
                ?)
        """, (record_id, data_json, record_id, now, now))
        
        # Only commit if not in transaction
        if not self._in_transaction:
            self._connection.commit()
    
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._lock:
            self._ensure_table(table)
            self._write(table, record_id, data)
    
    def save_if(self, table: str, record_id: str, data: Dict[str, Any],
                expected: Dict[str, Any]) -> bool:
        """Save a record only if the stored copy matches expected values"""
        with self._lock:
            current = self.load(table, record_id)
            if current is None or not matches_filters(current, expected):
                return False
            self._write(table, record_id, data)
            return True
    
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} WHERE id = ?
            """, (record_id,))
            row = cursor.fetchone()
            if row:
                return json.loads(row['data'])
            return None
    
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} ORDER BY created_at
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]
    
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                DELETE FROM {table} WHERE id = ?
            """, (record_id,))
            
            if not self._in_transaction:
                self._connection.commit()
            return cursor.rowcount > 0
    
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None
    
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters (simple JSON key matching)"""
        return [record for record in self.load_all(table) if matches_filters(record, filters)]
    
    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """)
            return cursor.fetchone()['count']
    
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._ensure_table(table)
            self._connection.execute(f"DELETE FROM {table}")
            
            if not self._in_transaction:
                self._connection.commit()
    
    def begin_transaction(self) -> None:
        """Start a database transaction"""
        with self._lock:
            # DEFERRED isolation opens the transaction on the first write
            self._depth += 1
    
    def commit(self) -> None:
        """Commit current transaction"""
        with self._lock:
            if self._depth == 0:
                return
            self._depth -= 1
            if self._depth == 0:
                self._connection.commit()
    
    def rollback(self) -> None:
        """Rollback current transaction"""
        with self._lock:
            if self._depth == 0:
                return
            self._depth = 0
            self._connection.rollback()
            # Tables created inside the transaction are gone too
            self._tables.clear()
    
    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
