"""Tests for the SQLite result store."""
import asyncio
import re

import aiosqlite

from netpulse.db import TestResultRepository
from netpulse.models import TestResultCreate


def _insert_many(repository: TestResultRepository, count: int) -> list[int]:
    async def run():
        return [
            await repository.insert(
                TestResultCreate(latency=i, download_speed=float(i), isp="ISP", ip="10.0.0.1", location="A, B")
            )
            for i in range(count)
        ]

    return asyncio.run(run())


class TestTestResultRepository:
    def test_insert_assigns_timestamp(self, repository):
        _insert_many(repository, 1)
        rows = asyncio.run(repository.get_recent())

        assert len(rows) == 1
        row = rows[0]
        assert row["latency"] == 0
        assert row["isp"] == "ISP"
        assert re.fullmatch(r"\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}", row["timestamp"])

    def test_missing_fields_stored_as_null(self, repository):
        asyncio.run(repository.insert(TestResultCreate(latency=12)))
        row = asyncio.run(repository.get_recent())[0]

        assert row["latency"] == 12
        assert row["download_speed"] is None
        assert row["isp"] is None
        assert row["location"] is None

    def test_recent_is_capped_at_fifty(self, repository):
        _insert_many(repository, 55)
        rows = asyncio.run(repository.get_recent())

        assert len(rows) == 50
        assert asyncio.run(repository.count()) == 55

    def test_recent_is_newest_first(self, repository):
        ids = _insert_many(repository, 5)
        rows = asyncio.run(repository.get_recent())

        assert [row["id"] for row in rows] == list(reversed(ids))

    def test_timestamp_orders_before_id(self, repository, settings_env):
        async def run():
            await repository.db.initialize()
            async with aiosqlite.connect(settings_env.database.path) as db:
                await db.execute(
                    "INSERT INTO tests (timestamp, latency) VALUES ('2024-05-01 12:00:00', 1)"
                )
                await db.execute(
                    "INSERT INTO tests (timestamp, latency) VALUES ('2024-04-01 12:00:00', 2)"
                )
                await db.commit()
            return await repository.get_recent()

        rows = asyncio.run(run())
        assert [row["latency"] for row in rows] == [1, 2]

    def test_stats_counts_rows(self, repository):
        _insert_many(repository, 3)
        stats = asyncio.run(repository.db.get_stats())

        assert stats["tests_count"] == 3
        assert stats["file_size_bytes"] > 0

    def test_explicit_limit_is_respected(self, repository):
        _insert_many(repository, 5)

        assert len(asyncio.run(repository.get_recent(limit=2))) == 2
        assert asyncio.run(repository.get_recent(limit=0)) == []
