"""SQLite connection pool, schema and transaction scopes."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Final

import aiosqlite

from listing_hub.logging import get_logger

logger = get_logger(__name__)

_MEMORY_PATH: Final = ":memory:"

# Millisecond-resolution ISO timestamps so "newest first" ordering is stable
_NOW_SQL: Final = "(strftime('%Y-%m-%dT%H:%M:%f', 'now'))"

_SCHEMA: Final[tuple[str, ...]] = (
    f"""
    CREATE TABLE IF NOT EXISTS raw_listings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        json_data TEXT NOT NULL,
        listing_url TEXT,
        images TEXT NOT NULL DEFAULT '[]',
        is_processed INTEGER NOT NULL DEFAULT 0,
        processed_at TEXT,
        process_outcome TEXT,
        process_error TEXT,
        created_at TEXT NOT NULL DEFAULT {_NOW_SQL}
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_raw_listings_pending
    ON raw_listings(is_processed, id)
    """,
    f"""
    CREATE TABLE IF NOT EXISTS listing_regions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        listing_region_id TEXT NOT NULL UNIQUE,
        region TEXT NOT NULL,
        created_at TEXT NOT NULL DEFAULT {_NOW_SQL}
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS listing_cities (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        listing_city_id TEXT NOT NULL UNIQUE,
        city TEXT NOT NULL,
        region_id INTEGER NOT NULL REFERENCES listing_regions(id),
        created_at TEXT NOT NULL DEFAULT {_NOW_SQL}
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS listing_areas (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        listing_area_id TEXT NOT NULL UNIQUE,
        area TEXT NOT NULL,
        city_id INTEGER,
        created_at TEXT NOT NULL DEFAULT {_NOW_SQL}
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS properties (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        property_type_id INTEGER NOT NULL DEFAULT 5,
        floor_size REAL NOT NULL DEFAULT 0,
        lot_size REAL NOT NULL DEFAULT 0,
        land_size REAL NOT NULL DEFAULT 0,
        building_size REAL NOT NULL DEFAULT 0,
        rooms_total INTEGER NOT NULL DEFAULT 0,
        no_of_bedrooms INTEGER NOT NULL DEFAULT 0,
        no_of_bathrooms INTEGER NOT NULL DEFAULT 0,
        no_of_parking_spaces INTEGER NOT NULL DEFAULT 0,
        ceiling_height REAL NOT NULL DEFAULT 0,
        year_built INTEGER NOT NULL DEFAULT 0,
        longitude REAL,
        latitude REAL,
        primary_image_url TEXT,
        images TEXT NOT NULL DEFAULT '[]',
        amenities TEXT NOT NULL DEFAULT '{{}}',
        indoor_features TEXT NOT NULL DEFAULT '{{}}',
        outdoor_features TEXT NOT NULL DEFAULT '{{}}',
        property_features TEXT NOT NULL DEFAULT '{{}}',
        address TEXT NOT NULL DEFAULT '-',
        project_name TEXT,
        agent_name TEXT,
        product_owner_name TEXT,
        region_id INTEGER NOT NULL REFERENCES listing_regions(id),
        city_id INTEGER NOT NULL REFERENCES listing_cities(id),
        area_id INTEGER REFERENCES listing_areas(id),
        ai_generated_description TEXT,
        created_at TEXT NOT NULL DEFAULT {_NOW_SQL},
        updated_at TEXT NOT NULL DEFAULT {_NOW_SQL}
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_properties_missing_description
    ON properties(property_type_id, created_at)
    WHERE ai_generated_description IS NULL
    """,
    f"""
    CREATE TABLE IF NOT EXISTS listings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        url TEXT NOT NULL,
        project_name TEXT,
        description TEXT NOT NULL DEFAULT '',
        is_scraped INTEGER NOT NULL DEFAULT 1,
        address TEXT,
        price INTEGER NOT NULL,
        price_formatted TEXT,
        offer_type_id INTEGER,
        property_id INTEGER NOT NULL REFERENCES properties(id),
        created_at TEXT NOT NULL DEFAULT {_NOW_SQL},
        updated_at TEXT NOT NULL DEFAULT {_NOW_SQL},
        deleted_at TEXT
    )
    """,
    # At most one active listing per URL
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_listings_active_url
    ON listings(url) WHERE deleted_at IS NULL
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_listings_title ON listings(title)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_listings_property ON listings(property_id)
    """,
    f"""
    CREATE TABLE IF NOT EXISTS price_change_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        listing_id INTEGER NOT NULL REFERENCES listings(id),
        old_price INTEGER,
        new_price INTEGER,
        old_price_formatted TEXT,
        new_price_formatted TEXT,
        changed_at TEXT NOT NULL DEFAULT {_NOW_SQL}
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_price_change_log_listing
    ON price_change_log(listing_id, changed_at)
    """,
    """
    CREATE TRIGGER IF NOT EXISTS trg_listings_price_change
    AFTER UPDATE OF price ON listings
    WHEN OLD.price IS NOT NEW.price
    BEGIN
        INSERT INTO price_change_log
            (listing_id, old_price, new_price, old_price_formatted, new_price_formatted)
        VALUES (NEW.id, OLD.price, NEW.price, OLD.price_formatted, NEW.price_formatted);
    END
    """,
    f"""
    CREATE TABLE IF NOT EXISTS user_favorites (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        listing_id INTEGER NOT NULL REFERENCES listings(id),
        created_at TEXT NOT NULL DEFAULT {_NOW_SQL},
        UNIQUE(user_id, listing_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reconciliation_runs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        batch_id TEXT NOT NULL UNIQUE,
        started_at TEXT NOT NULL,
        completed_at TEXT,
        status TEXT NOT NULL DEFAULT 'running',
        attempted_ids TEXT NOT NULL DEFAULT '[]',
        created_count INTEGER NOT NULL DEFAULT 0,
        updated_count INTEGER NOT NULL DEFAULT 0,
        rejected_count INTEGER NOT NULL DEFAULT 0,
        skipped_count INTEGER NOT NULL DEFAULT 0,
        error_message TEXT,
        duration_seconds REAL
    )
    """,
)


class Database:
    """Bounded pool of aiosqlite connections with explicit open/close lifecycle.

    Connections run in autocommit mode; transactions are opened explicitly
    through :meth:`transaction` so their scope is always visible at the
    call site.
    """

    def __init__(
        self,
        db_path: str,
        *,
        pool_size: int = 5,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the pool without connecting.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory.
            pool_size: Maximum number of concurrently open connections.
                In-memory databases are private to one connection, so they
                always use a pool of one.
            busy_timeout_ms: How long a connection waits for a lock.
        """
        self.db_path = db_path
        self.pool_size = 1 if db_path == _MEMORY_PATH else pool_size
        self._busy_timeout_ms = busy_timeout_ms
        self._idle: asyncio.Queue[aiosqlite.Connection] = asyncio.Queue()
        self._slots = asyncio.Semaphore(self.pool_size)
        self._connections: list[aiosqlite.Connection] = []
        self._closed = False
        self._ensure_directory()

    def _ensure_directory(self) -> None:
        """Ensure the directory for the database exists."""
        if self.db_path != _MEMORY_PATH:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    async def _connect(self) -> aiosqlite.Connection:
        conn = await aiosqlite.connect(self.db_path, isolation_level=None)
        conn.row_factory = aiosqlite.Row
        if self.db_path != _MEMORY_PATH:
            await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute(f"PRAGMA busy_timeout={int(self._busy_timeout_ms)}")
        await conn.execute("PRAGMA synchronous=NORMAL")
        await conn.execute("PRAGMA foreign_keys=ON")
        self._connections.append(conn)
        return conn

    async def open(self) -> None:
        """Create the schema. Safe to call on an existing database."""
        self._closed = False
        async with self.connection() as conn:
            for statement in _SCHEMA:
                await conn.execute(statement)
        logger.info("database_opened", path=self.db_path, pool_size=self.pool_size)

    async def close(self) -> None:
        """Close every pooled connection."""
        self._closed = True
        while not self._idle.empty():
            self._idle.get_nowait()
        connections, self._connections = self._connections, []
        for conn in connections:
            with contextlib.suppress(ValueError):
                await conn.close()
        if connections:
            logger.info("database_closed", path=self.db_path)

    async def _release(self, conn: aiosqlite.Connection) -> None:
        if self._closed or conn not in self._connections:
            return
        if conn.in_transaction:
            # A caller leaked an open transaction; never hand it to the next user
            try:
                await conn.execute("ROLLBACK")
            except (aiosqlite.Error, ValueError):
                logger.warning("pooled_connection_discarded", exc_info=True)
                self._connections.remove(conn)
                with contextlib.suppress(aiosqlite.Error, ValueError):
                    await conn.close()
                return
        self._idle.put_nowait(conn)

    @contextlib.asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Borrow a connection for the duration of the block.

        The connection goes back to the pool on every exit path.
        """
        if self._closed:
            raise RuntimeError("Database is closed")
        await self._slots.acquire()
        try:
            try:
                conn = self._idle.get_nowait()
            except asyncio.QueueEmpty:
                conn = await self._connect()
            try:
                yield conn
            finally:
                await self._release(conn)
        finally:
            self._slots.release()

    @contextlib.asynccontextmanager
    async def transaction(self, *, immediate: bool = True) -> AsyncIterator[aiosqlite.Connection]:
        """Run the block in a single transaction.

        ``immediate`` takes the database write lock up front, so no other
        writer can read-then-claim the same rows until this transaction ends.
        Commits on normal exit and rolls back on any exception.
        """
        async with self.connection() as conn:
            await conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            try:
                yield conn
            except BaseException:
                with contextlib.suppress(aiosqlite.Error, ValueError):
                    await conn.execute("ROLLBACK")
                raise
            await conn.execute("COMMIT")


@contextlib.asynccontextmanager
async def savepoint(conn: aiosqlite.Connection, name: str) -> AsyncIterator[None]:
    """Scope a nested unit of work inside an open transaction.

    On exception the work since the savepoint is undone and the exception
    propagates; the enclosing transaction stays open.
    """
    await conn.execute(f"SAVEPOINT {name}")
    try:
        yield
    except BaseException:
        await conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
        await conn.execute(f"RELEASE SAVEPOINT {name}")
        raise
    await conn.execute(f"RELEASE SAVEPOINT {name}")
