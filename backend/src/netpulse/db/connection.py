"""Database connection management with aiosqlite."""

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite
import structlog

from ..config import get_settings

log = structlog.get_logger()


class DatabaseConnection:
    """Async SQLite connection manager with WAL mode support."""

    def __init__(self, db_path: Path | None = None):
        settings = get_settings()
        self.db_path = Path(db_path or settings.database.path)
        self.wal_mode = settings.database.wal_mode
        self._initialized = False
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize database with schema and settings."""
        async with self._lock:
            if self._initialized:
                return

            async with aiosqlite.connect(self.db_path) as db:
                if self.wal_mode:
                    await db.execute("PRAGMA journal_mode=WAL")
                    await db.execute("PRAGMA synchronous=NORMAL")
                    log.info("database_wal_enabled", path=str(self.db_path))

                await self._create_schema(db)
                await db.commit()

            self._initialized = True
            log.info("database_initialized", path=str(self.db_path))

    async def _create_schema(self, db: aiosqlite.Connection) -> None:
        """Create the results table and its index."""
        # Append-only: rows are never updated or deleted
        await db.execute("""
            CREATE TABLE IF NOT EXISTS tests (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp DATETIME DEFAULT CURRENT_TIMESTAMP,
                latency INTEGER,
                download_speed REAL,
                isp TEXT,
                ip TEXT,
                location TEXT
            )
        """)

        await db.execute("""
            CREATE INDEX IF NOT EXISTS idx_tests_timestamp
            ON tests(timestamp)
        """)

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Get a database connection context manager."""
        if not self._initialized:
            await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            yield db

    async def is_connected(self) -> bool:
        """Check if database is accessible."""
        try:
            async with self.connection() as db:
                await db.execute("SELECT 1")
            return True
        except Exception as e:
            log.error("database_connection_check_failed", error=str(e))
            return False

    async def get_stats(self) -> dict:
        """Get database statistics."""
        async with self.connection() as db:
            stats = {}

            cursor = await db.execute("SELECT COUNT(*) FROM tests")
            row = await cursor.fetchone()
            stats["tests_count"] = row[0] if row else 0

            if self.db_path.exists():
                stats["file_size_bytes"] = self.db_path.stat().st_size

            cursor = await db.execute("SELECT MIN(timestamp), MAX(timestamp) FROM tests")
            row = await cursor.fetchone()
            if row and row[0]:
                stats["oldest_test"] = row[0]
                stats["newest_test"] = row[1]

            return stats


# Global database instance
_db: DatabaseConnection | None = None


def get_db() -> DatabaseConnection:
    """Get the global database connection instance."""
    global _db
    if _db is None:
        _db = DatabaseConnection()
    return _db


def reset_db() -> None:
    """Drop the global instance so the next get_db() picks up current settings."""
    global _db
    _db = None
