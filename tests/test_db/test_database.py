"""Tests for the connection pool, transactions and savepoints."""

import asyncio
from pathlib import Path

import pytest

from listing_hub.db.database import Database, savepoint


class TestDatabaseLifecycle:
    async def test_open_creates_schema(self, db: Database) -> None:
        async with db.connection() as conn:
            cursor = await conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name"
            )
            tables = {row["name"] for row in await cursor.fetchall()}
        assert {
            "raw_listings",
            "listing_regions",
            "listing_cities",
            "listing_areas",
            "properties",
            "listings",
            "price_change_log",
            "user_favorites",
            "reconciliation_runs",
        } <= tables

    async def test_open_is_idempotent(self, tmp_path: Path) -> None:
        path = str(tmp_path / "nested" / "listings.db")
        first = Database(path)
        await first.open()
        await first.close()

        second = Database(path)
        await second.open()
        await second.close()
        assert (tmp_path / "nested" / "listings.db").exists()

    async def test_memory_database_uses_single_connection(self) -> None:
        database = Database(":memory:", pool_size=8)
        assert database.pool_size == 1

    async def test_connection_after_close_raises(self) -> None:
        database = Database(":memory:")
        await database.open()
        await database.close()
        with pytest.raises(RuntimeError, match="closed"):
            async with database.connection():
                pass

    async def test_foreign_keys_enforced(self, db: Database) -> None:
        import aiosqlite

        with pytest.raises(aiosqlite.IntegrityError):
            async with db.connection() as conn:
                await conn.execute(
                    "INSERT INTO listing_cities (listing_city_id, city, region_id) "
                    "VALUES ('C-1', 'Nowhere', 999)"
                )


class TestTransaction:
    async def test_commits_on_success(self, db: Database) -> None:
        async with db.transaction() as conn:
            await conn.execute(
                "INSERT INTO listing_regions (listing_region_id, region) VALUES ('R-1', 'NCR')"
            )
        async with db.connection() as conn:
            cursor = await conn.execute("SELECT COUNT(*) FROM listing_regions")
            assert (await cursor.fetchone())[0] == 1

    async def test_rolls_back_on_exception(self, db: Database) -> None:
        with pytest.raises(ValueError):
            async with db.transaction() as conn:
                await conn.execute(
                    "INSERT INTO listing_regions (listing_region_id, region) VALUES ('R-1', 'NCR')"
                )
                raise ValueError("boom")
        async with db.connection() as conn:
            assert not conn.in_transaction
            cursor = await conn.execute("SELECT COUNT(*) FROM listing_regions")
            assert (await cursor.fetchone())[0] == 0

    async def test_leaked_transaction_is_rolled_back_on_release(self, db: Database) -> None:
        async with db.connection() as conn:
            await conn.execute("BEGIN")
            await conn.execute(
                "INSERT INTO listing_regions (listing_region_id, region) VALUES ('R-1', 'NCR')"
            )
        async with db.connection() as conn:
            assert not conn.in_transaction
            cursor = await conn.execute("SELECT COUNT(*) FROM listing_regions")
            assert (await cursor.fetchone())[0] == 0

    async def test_immediate_transactions_serialize_writers(self, file_db: Database) -> None:
        order: list[str] = []
        first_started = asyncio.Event()

        async def first() -> None:
            async with file_db.transaction():
                order.append("first_begin")
                first_started.set()
                await asyncio.sleep(0.2)
                order.append("first_end")

        async def second() -> None:
            await first_started.wait()
            async with file_db.transaction():
                order.append("second_begin")

        await asyncio.gather(first(), second())
        assert order == ["first_begin", "first_end", "second_begin"]


class TestSavepoint:
    async def test_failure_undoes_only_the_savepoint(self, db: Database) -> None:
        async with db.transaction() as conn:
            await conn.execute(
                "INSERT INTO listing_regions (listing_region_id, region) VALUES ('R-1', 'NCR')"
            )
            with pytest.raises(ValueError):
                async with savepoint(conn, "sp_test"):
                    await conn.execute(
                        "INSERT INTO listing_regions (listing_region_id, region) "
                        "VALUES ('R-2', 'Calabarzon')"
                    )
                    raise ValueError("record failed")
            assert conn.in_transaction

        async with db.connection() as conn:
            cursor = await conn.execute("SELECT listing_region_id FROM listing_regions")
            assert [row[0] for row in await cursor.fetchall()] == ["R-1"]

    async def test_success_keeps_work(self, db: Database) -> None:
        async with db.transaction() as conn:
            async with savepoint(conn, "sp_test"):
                await conn.execute(
                    "INSERT INTO listing_regions (listing_region_id, region) VALUES ('R-1', 'NCR')"
                )
        async with db.connection() as conn:
            cursor = await conn.execute("SELECT COUNT(*) FROM listing_regions")
            assert (await cursor.fetchone())[0] == 1
