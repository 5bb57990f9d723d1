"""
Async Storage Backend Module

Async storage interface used by every lending manager, with a thread-offloading
adapter over the sync backends and a production async PostgreSQL backend
using asyncpg. All monetary values stored as Decimal strings.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional
from contextlib import asynccontextmanager
from contextvars import ContextVar
import asyncio
import json
import logging

from .storage import StorageInterface, InMemoryStorage, SQLiteStorage

logger = logging.getLogger("peer_lending.storage")


class AsyncStorageInterface(ABC):
    """Abstract interface for async storage backends"""
    
    @abstractmethod
    async def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to storage"""
        pass
    
    @abstractmethod
    async def save_if(self, table: str, record_id: str, data: Dict[str, Any],
                      expected: Dict[str, Any]) -> bool:
        """Save a record only if the stored copy matches ``expected``"""
        pass
    
    @abstractmethod
    async def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass
    
    @abstractmethod
    async def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        pass
    
    @abstractmethod
    async def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass
    
    @abstractmethod
    async def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass
    
    @abstractmethod
    async def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        pass
    
    @abstractmethod
    async def count(self, table: str) -> int:
        """Count records in table"""
        pass
    
    @abstractmethod
    async def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pass
    
    async def close(self) -> None:
        """Close storage connection (default no-op)"""
        pass
    
    async def begin_transaction(self) -> None:
        """Start a database transaction (default no-op)"""
        pass
    
    async def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass
    
    async def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass
    
    def on_commit(self, callback: Callable[[], None]) -> None:
        """
        Run ``callback`` once the outermost open transaction commits
        
        Runs it immediately when no transaction is open. Callbacks queued
        by a transaction that rolls back are dropped.
        """
        callback()
    
    @asynccontextmanager
    async def atomic(self):
        """Context manager for atomic operations"""
        await self.begin_transaction()
        try:
            yield
            await self.commit()
        except Exception:
            await self.rollback()
            raise


class AsyncStorageAdapter(AsyncStorageInterface):
    """
    Async wrapper around a sync StorageInterface.
    
    Each call runs in a worker thread. Transactions are serialized across
    tasks; a task that opens ``atomic()`` inside its own transaction joins
    the outer one. Calls from other tasks wait until the open transaction
    finishes, so they never interleave with it or get rolled back by it.
    """
    
    def __init__(self, sync_storage: StorageInterface):
        self._sync_storage = sync_storage
        self._tx_lock = asyncio.Lock()
        self._tx_owner: Optional[asyncio.Task] = None
        self._on_commit: List[Callable[[], None]] = []
    
    @property
    def sync_storage(self) -> StorageInterface:
        return self._sync_storage
    
    def _owns_transaction(self) -> bool:
        task = asyncio.current_task()
        return task is not None and self._tx_owner is task
    
    async def _run(self, func: Callable, *args):
        if self._owns_transaction():
            return await asyncio.to_thread(func, *args)
        async with self._tx_lock:
            return await asyncio.to_thread(func, *args)
    
    async def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        await self._run(self._sync_storage.save, table, record_id, data)
    
    async def save_if(self, table: str, record_id: str, data: Dict[str, Any],
                      expected: Dict[str, Any]) -> bool:
        return await self._run(self._sync_storage.save_if, table, record_id, data, expected)
    
    async def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        return await self._run(self._sync_storage.load, table, record_id)
    
    async def load_all(self, table: str) -> List[Dict[str, Any]]:
        return await self._run(self._sync_storage.load_all, table)
    
    async def delete(self, table: str, record_id: str) -> bool:
        return await self._run(self._sync_storage.delete, table, record_id)
    
    async def exists(self, table: str, record_id: str) -> bool:
        return await self._run(self._sync_storage.exists, table, record_id)
    
    async def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        return await self._run(self._sync_storage.find, table, filters)
    
    async def count(self, table: str) -> int:
        return await self._run(self._sync_storage.count, table)
    
    async def clear_table(self, table: str) -> None:
        await self._run(self._sync_storage.clear_table, table)
    
    async def close(self) -> None:
        await asyncio.to_thread(self._sync_storage.close)
    
    async def begin_transaction(self) -> None:
        await asyncio.to_thread(self._sync_storage.begin_transaction)
    
    async def commit(self) -> None:
        await asyncio.to_thread(self._sync_storage.commit)
    
    async def rollback(self) -> None:
        await asyncio.to_thread(self._sync_storage.rollback)
    
    def on_commit(self, callback: Callable[[], None]) -> None:
        if self._owns_transaction():
            self._on_commit.append(callback)
        else:
            callback()
    
    @asynccontextmanager
    async def atomic(self):
        """Context manager for atomic operations"""
        if self._owns_transaction():
            # Nested block joins the enclosing transaction
            yield
            return
        
        async with self._tx_lock:
            self._tx_owner = asyncio.current_task()
            self._on_commit = []
            try:
                await self.begin_transaction()
                try:
                    yield
                    await self.commit()
                except Exception:
                    await self.rollback()
                    raise
            finally:
                self._tx_owner = None
                callbacks, self._on_commit = self._on_commit, []
        
        # Reached only after a successful commit
        for callback in callbacks:
            callback()


class AsyncInMemoryStorage(AsyncStorageAdapter):
    """Async in-memory storage for tests and local runs"""
    
    def __init__(self, sync_storage: Optional[InMemoryStorage] = None):
        super().__init__(sync_storage or InMemoryStorage())


class AsyncPostgreSQLStorage(AsyncStorageInterface):
    """True async PostgreSQL using asyncpg, one JSONB document per record"""
    
    def __init__(self, connection_string: str, pool_size: int = 10):
        self.connection_string = connection_string
        self.pool_size = pool_size
        self.pool = None
        self._tables: set = set()
        self._tx_conn: ContextVar = ContextVar(f"pg_tx_conn_{id(self)}", default=None)
        self._pending: ContextVar = ContextVar(f"pg_on_commit_{id(self)}", default=None)
    
    async def initialize(self):
        """Create the connection pool; call on app startup"""
        import asyncpg
        self.pool = await asyncpg.create_pool(
            self.connection_string,
            min_size=2,
            max_size=self.pool_size,
            command_timeout=60
        )
    
    async def close(self):
        """Close the pool on app shutdown"""
        if self.pool:
            await self.pool.close()
    
    @asynccontextmanager
    async def _connection(self):
        """Yield the transaction connection if one is open, else a pooled one"""
        if not self.pool:
            raise RuntimeError("Pool not initialized. Call initialize() first.")
        
        conn = self._tx_conn.get()
        if conn is not None:
            yield conn
        else:
            async with self.pool.acquire() as conn:
                yield conn
    
    async def _ensure_table(self, conn, table: str) -> None:
        """Ensure table exists"""
        if table in self._tables:
            return
        await conn.execute(f'''
            CREATE TABLE IF NOT EXISTS "{table}" (
                id TEXT PRIMARY KEY,
                data JSONB NOT NULL,
                created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
                updated_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
            )
        ''')
        self._tables.add(table)
    
    @staticmethod
    def _decode(row) -> Dict[str, Any]:
        data = row['data']
        if isinstance(data, str):
            data = json.loads(data)
        return data
    
    async def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to PostgreSQL"""
        async with self._connection() as conn:
            await self._ensure_table(conn, table)
            await conn.execute(f'''
                INSERT INTO "{table}" (id, data, updated_at)
                VALUES ($1, $2::jsonb, NOW())
                ON CONFLICT (id)
                DO UPDATE SET data = $2::jsonb, updated_at = NOW()
            ''', record_id, json.dumps(data, default=str))
    
    async def save_if(self, table: str, record_id: str, data: Dict[str, Any],
                      expected: Dict[str, Any]) -> bool:
        """Conditional update keyed on JSONB containment of the expected values"""
        async with self._connection() as conn:
            await self._ensure_table(conn, table)
            result = await conn.execute(f'''
                UPDATE "{table}" SET data = $2::jsonb, updated_at = NOW()
                WHERE id = $1 AND data @> $3::jsonb
            ''', record_id, json.dumps(data, default=str), json.dumps(expected, default=str))
            return result != 'UPDATE 0'
    
    async def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from PostgreSQL"""
        async with self._connection() as conn:
            await self._ensure_table(conn, table)
            query = f'SELECT data FROM "{table}" WHERE id = $1'
            if self._tx_conn.get() is not None:
                # Lock rows read for a read-modify-write until the transaction ends
                query += " FOR UPDATE"
            row = await conn.fetchrow(query, record_id)
            return self._decode(row) if row else None
    
    async def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        async with self._connection() as conn:
            await self._ensure_table(conn, table)
            rows = await conn.fetch(f'SELECT data FROM "{table}" ORDER BY created_at')
            return [self._decode(row) for row in rows]
    
    async def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        async with self._connection() as conn:
            await self._ensure_table(conn, table)
            result = await conn.execute(f'DELETE FROM "{table}" WHERE id = $1', record_id)
            return result != 'DELETE 0'
    
    async def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        async with self._connection() as conn:
            await self._ensure_table(conn, table)
            row = await conn.fetchrow(f'SELECT 1 FROM "{table}" WHERE id = $1', record_id)
            return row is not None
    
    async def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records whose document contains every filter value"""
        async with self._connection() as conn:
            await self._ensure_table(conn, table)
            rows = await conn.fetch(
                f'SELECT data FROM "{table}" WHERE data @> $1::jsonb ORDER BY created_at',
                json.dumps(filters, default=str)
            )
            return [self._decode(row) for row in rows]
    
    async def count(self, table: str) -> int:
        """Count records in table"""
        async with self._connection() as conn:
            await self._ensure_table(conn, table)
            row = await conn.fetchrow(f'SELECT COUNT(*) FROM "{table}"')
            return row[0]
    
    async def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        async with self._connection() as conn:
            await self._ensure_table(conn, table)
            await conn.execute(f'DELETE FROM "{table}"')
    
    def on_commit(self, callback: Callable[[], None]) -> None:
        pending = self._pending.get()
        if pending is None:
            callback()
        else:
            pending.append(callback)
    
    @asynccontextmanager
    async def atomic(self):
        """Run the block on one connection inside a transaction (savepoint when nested)"""
        conn = self._tx_conn.get()
        if conn is not None:
            pending = self._pending.get()
            mark = len(pending)
            try:
                async with conn.transaction():
                    yield
            except Exception:
                # Savepoint rolled back; drop what it queued
                del pending[mark:]
                raise
            return
        
        if not self.pool:
            raise RuntimeError("Pool not initialized")
        callbacks: List[Callable[[], None]] = []
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                token = self._tx_conn.set(conn)
                pending_token = self._pending.set(callbacks)
                try:
                    yield
                finally:
                    self._pending.reset(pending_token)
                    self._tx_conn.reset(token)
        
        for callback in callbacks:
            callback()


def create_async_storage(
    storage_type: Optional[str] = None,
    connection_string: Optional[str] = None,
    pool_size: Optional[int] = None
) -> AsyncStorageInterface:
    """Factory function to create async storage instances from configuration"""
    from .config import get_config
    config = get_config()
    
    storage_type = (storage_type or config.storage_type).lower()
    connection_string = connection_string or config.database_url
    pool_size = pool_size or config.database_pool_size
    
    if storage_type == 'postgresql':
        logger.info("Using PostgreSQL storage")
        return AsyncPostgreSQLStorage(connection_string, pool_size)
    if storage_type == 'sqlite':
        db_path = connection_string
        if db_path.startswith("sqlite:///"):
            db_path = db_path[len("sqlite:///"):]
        logger.info(f"Using SQLite storage at {db_path}")
        return AsyncStorageAdapter(SQLiteStorage(db_path))
    
    return AsyncInMemoryStorage()
