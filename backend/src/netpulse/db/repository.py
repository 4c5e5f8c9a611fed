"""Repository classes for data access."""

import structlog

from ..config import get_settings
from ..models import TestResultCreate
from .connection import DatabaseConnection, get_db

log = structlog.get_logger()


class TestResultRepository:
    """Append-only repository for speed test results."""

    __test__ = False

    def __init__(self, db: DatabaseConnection | None = None):
        self.db = db or get_db()

    async def insert(self, result: TestResultCreate) -> int:
        """Insert one result as given. Returns the row ID.

        The timestamp column is left to its database default.
        """
        async with self.db.connection() as db:
            cursor = await db.execute(
                """
                INSERT INTO tests (latency, download_speed, isp, ip, location)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    result.latency,
                    result.download_speed,
                    result.isp,
                    result.ip,
                    result.location,
                ),
            )
            await db.commit()
            return cursor.lastrowid or 0

    async def get_recent(self, limit: int | None = None) -> list[dict]:
        """Get the most recent results, newest first.

        CURRENT_TIMESTAMP has one-second resolution, so rows inserted within
        the same second are ordered by id.
        """
        if limit is None:
            limit = get_settings().database.history_limit

        async with self.db.connection() as db:
            cursor = await db.execute(
                """
                SELECT * FROM tests
                ORDER BY timestamp DESC, id DESC
                LIMIT ?
                """,
                (limit,),
            )
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]

    async def count(self) -> int:
        """Count stored results."""
        async with self.db.connection() as db:
            cursor = await db.execute("SELECT COUNT(*) FROM tests")
            row = await cursor.fetchone()
            return row[0] if row else 0
