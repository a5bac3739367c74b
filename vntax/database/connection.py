"""
SQLite database connection management
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

import aiosqlite

from ..core.config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA_FILE = Path(__file__).parent / "schema.sql"


class DatabaseManager:
    """Manages the SQLite connection backing the rule store"""

    def __init__(self, db_path: Path, max_retries: int = 3, retry_delay: float = 0.1):
        self.db_path = Path(db_path)
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._connection: Optional[aiosqlite.Connection] = None
        self._schema_initialized = False

    async def connect(self) -> None:
        """Create database connection"""
        if self._connection is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

            self._connection = await aiosqlite.connect(
                str(self.db_path),
                isolation_level=None,  # Autocommit mode
                timeout=30.0,
            )
            self._connection.row_factory = aiosqlite.Row
            await self._connection.execute("PRAGMA journal_mode=WAL")
            await self._connection.execute("PRAGMA busy_timeout=30000")
            logger.info(f"Connected to database: {self.db_path}")

            await self._ensure_schema()

    async def disconnect(self) -> None:
        """Close database connection"""
        if self._connection:
            await self._connection.close()
            self._connection = None
            self._schema_initialized = False
            logger.info("Disconnected from database")

    async def _ensure_schema(self) -> None:
        if self._schema_initialized:
            return
        await self.initialize_schema(SCHEMA_FILE)
        self._schema_initialized = True

    async def get_connection(self) -> aiosqlite.Connection:
        """Get database connection"""
        if self._connection is None:
            await self.connect()
        return self._connection

    async def _retry(self, operation: Callable[[aiosqlite.Connection], Awaitable[T]]) -> T:
        """Run operation, retrying while SQLite reports a locked database"""
        for attempt in range(self.max_retries):
            try:
                conn = await self.get_connection()
                return await operation(conn)
            except aiosqlite.OperationalError as e:
                if "database is locked" in str(e).lower() and attempt < self.max_retries - 1:
                    logger.debug(f"Database locked, retrying (attempt {attempt + 1})")
                    await asyncio.sleep(self.retry_delay * (attempt + 1))
                    continue
                raise

    async def execute(self, query: str, params: Optional[tuple] = None) -> aiosqlite.Cursor:
        """Execute a query"""
        return await self._retry(lambda conn: conn.execute(query, params or ()))

    async def fetchone(self, query: str, params: Optional[tuple] = None) -> Optional[Any]:
        """Fetch one row"""
        async def run(conn: aiosqlite.Connection):
            cursor = await conn.execute(query, params or ())
            return await cursor.fetchone()
        return await self._retry(run)

    async def fetchall(self, query: str, params: Optional[tuple] = None) -> List[Any]:
        """Fetch all rows"""
        async def run(conn: aiosqlite.Connection):
            cursor = await conn.execute(query, params or ())
            return await cursor.fetchall()
        return await self._retry(run)

    async def initialize_schema(self, schema_file: Path) -> None:
        """Initialize database schema from SQL file"""
        conn = self._connection or await self.get_connection()
        schema_sql = Path(schema_file).read_text(encoding="utf-8")
        await conn.executescript(schema_sql)
        logger.info("Database schema initialized")


_db_manager: Optional[DatabaseManager] = None


def get_db_manager(db_path: Optional[Path] = None) -> DatabaseManager:
    """Get global database manager"""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager(db_path or get_settings().db_path)
    return _db_manager
