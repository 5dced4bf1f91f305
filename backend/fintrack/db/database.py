import aiosqlite
import logging
from typing import Any, Dict, List, Optional, Sequence, Union

logger = logging.getLogger(__name__)

Params = Union[Sequence[Any], Dict[str, Any]]


class Database:
    """A long-lived aiosqlite connection to one database file"""

    def __init__(self, db_path: str, timeout: float = 5.0):
        self.db_path = db_path
        self.timeout = timeout
        self._connection: Optional[aiosqlite.Connection] = None

    async def connect(self):
        """Create database connection"""
        if not self._connection:
            self._connection = await aiosqlite.connect(self.db_path, timeout=self.timeout)
            self._connection.row_factory = aiosqlite.Row
            await self._connection.execute("PRAGMA foreign_keys = ON")

    async def disconnect(self):
        """Close database connection"""
        if self._connection:
            connection, self._connection = self._connection, None
            await connection.close()

    async def execute(self, query: str, params: Params = ()):
        """Execute a query"""
        if not self._connection:
            await self.connect()
        return await self._connection.execute(query, params)

    async def execute_script(self, script: str):
        if not self._connection:
            await self.connect()
        return await self._connection.executescript(script)

    async def fetch_one(self, query: str, params: Params = ()) -> Optional[Dict[str, Any]]:
        """Fetch one row"""
        cursor = await self.execute(query, params)
        row = await cursor.fetchone()
        return dict(row) if row else None

    async def fetch_all(self, query: str, params: Params = ()) -> List[Dict[str, Any]]:
        """Fetch all rows"""
        cursor = await self.execute(query, params)
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def commit(self):
        """Commit transaction"""
        if self._connection:
            await self._connection.commit()

    async def rollback(self):
        """Rollback transaction"""
        if self._connection:
            await self._connection.rollback()

    async def ping(self) -> bool:
        """Liveness check used before handing out a cached connection"""
        if not self._connection:
            return False
        try:
            cursor = await self._connection.execute("SELECT 1")
            return (await cursor.fetchone()) is not None
        except (aiosqlite.Error, ValueError) as e:
            logger.warning(f"Database ping failed for {self.db_path}: {e}")
            return False
