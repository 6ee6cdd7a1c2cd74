"""Shared pytest fixtures."""

import copy
import gc
import os
import sys
import threading
from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from hypothesis import HealthCheck, settings

from listing_hub.config import Settings
from listing_hub.db.database import Database
from listing_hub.db.raw_records import insert_raw_record


def pytest_configure(config: pytest.Config) -> None:
    """Force line-buffered stdout when piped."""
    if hasattr(sys.stdout, "reconfigure") and not sys.stdout.isatty():
        sys.stdout.reconfigure(line_buffering=True)
    if hasattr(sys.stderr, "reconfigure") and not sys.stderr.isatty():
        sys.stderr.reconfigure(line_buffering=True)


# Hypothesis settings profiles for different environments
settings.register_profile("fast", max_examples=10)
settings.register_profile(
    "ci",
    max_examples=200,
    suppress_health_check=[HealthCheck.too_slow],
)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "fast"))


@pytest.fixture(autouse=True)
def _isolate_settings_from_dotenv(monkeypatch: pytest.MonkeyPatch) -> None:
    """Prevent the local .env file from leaking into test Settings instances."""
    monkeypatch.setattr(
        Settings,
        "model_config",
        {**Settings.model_config, "env_file": None},
    )


@pytest.fixture(autouse=True)
def _cleanup_aiosqlite_threads():
    """Safety net: detect and stop leaked aiosqlite worker threads.

    aiosqlite creates a non-daemon worker thread per connection. If a test
    leaks a connection (doesn't close its Database), the thread prevents
    clean process exit.
    """
    yield

    from aiosqlite.core import _STOP_RUNNING_SENTINEL, Connection

    leaked = False

    gc.collect()
    for obj in gc.get_objects():
        if isinstance(obj, Connection) and obj._connection is not None:
            leaked = True
            obj.stop()

    for thread in threading.enumerate():
        if "_connection_worker_thread" in (thread.name or "") and thread.is_alive():
            leaked = True
            tx = getattr(thread, "_args", (None,))[0]
            if tx is not None and hasattr(tx, "put_nowait"):
                tx.put_nowait((None, lambda: _STOP_RUNNING_SENTINEL))
                thread.join(timeout=1.0)

    if leaked:
        import warnings

        warnings.warn(
            "Test leaked aiosqlite connection(s); add 'await db.close()' to fixture teardown",
            ResourceWarning,
            stacklevel=1,
        )


_SAMPLE_PAGE: dict[str, Any] = {
    "listingUrl": "https://www.lamudi.com.ph/condo-bgc-1.html",
    "images": [
        {"src": "https://static.lamudi.com.ph/img/1.jpg"},
        {"src": "https://static.lamudi.com.ph/img/2.jpg"},
    ],
    "dataLayer": {
        "title": "Modern 2BR Condo in BGC",
        "agent_name": "Maria Santos",
        "description": {"text": "Bright corner unit \U0001f31e with   city views."},
        "location": {"region": "Metro Manila", "city": "Taguig", "rooms_total": 3},
        "attributes": {
            "listing_region_id": "R-NCR",
            "listing_city_id": "C-TAGUIG",
            "listing_area_id": "A-BGC",
            "listing_area": "Bonifacio Global City",
            "listing_address": "5th Avenue, BGC",
            "price": 6000000,
            "price_formatted": "₱6,000,000",
            "offer_type": "Buy",
            "product_owner_name": "Ayala Land Premier",
            "project_name": "One Serendra",
            "urlkey_details": "condo-bgc-1.html",
            "attribute_set_name": "Condominium",
            "subcategory": "Condominium",
            "bedrooms": 2,
            "bathrooms": 2,
            "car_spaces": 1,
            "floor_size": 85.5,
            "location_latitude": 14.5507,
            "location_longitude": 121.0509,
            "image_url": "https://static.lamudi.com.ph/img/1.jpg",
            "indoor_features": ["Balcony", "Walk-in closet"],
            "outdoor_features": None,
            "other_features": {"gym": True},
        },
    },
}

_MISSING = object()


def make_raw_page(
    *,
    url_key: str = "condo-bgc-1.html",
    title: str | None = None,
    price: Any = 6000000,
    region: tuple[str, str] | None = ("R-NCR", "Metro Manila"),
    city: tuple[str, str] | None = ("C-TAGUIG", "Taguig"),
    area: tuple[str, str] | None = ("A-BGC", "Bonifacio Global City"),
    location: Any = _MISSING,
    **attributes: Any,
) -> dict[str, Any]:
    """Build a scraped page payload, overriding the sample where asked."""
    page = copy.deepcopy(_SAMPLE_PAGE)
    page["listingUrl"] = f"https://www.lamudi.com.ph/{url_key}"
    data_layer = page["dataLayer"]
    attrs = data_layer["attributes"]
    attrs["urlkey_details"] = url_key
    attrs["price"] = price
    if title is not None:
        data_layer["title"] = title

    loc = data_layer["location"]
    for natural_key, name_field, value in (
        ("listing_region_id", "region", region),
        ("listing_city_id", "city", city),
    ):
        if value is None:
            attrs.pop(natural_key)
            loc.pop(name_field)
        else:
            attrs[natural_key], loc[name_field] = value
    if area is None:
        attrs.pop("listing_area_id")
        attrs.pop("listing_area")
    else:
        attrs["listing_area_id"], attrs["listing_area"] = area

    if location is None:
        data_layer.pop("location")
    elif location is not _MISSING:
        data_layer["location"] = location

    attrs.update(attributes)
    return page


@pytest.fixture
def raw_page() -> Callable[..., dict[str, Any]]:
    """Factory for scraped page payloads."""
    return make_raw_page


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[Database, None]:
    """In-memory database with the schema created."""
    database = Database(":memory:")
    await database.open()
    yield database
    await database.close()


@pytest_asyncio.fixture
async def file_db(tmp_path: Path) -> AsyncGenerator[Database, None]:
    """File-backed database, for tests that need several connections."""
    database = Database(str(tmp_path / "listings.db"), pool_size=4)
    await database.open()
    yield database
    await database.close()


@pytest.fixture
def ingest(db: Database) -> Callable[..., Awaitable[list[int]]]:
    """Insert scraped pages as raw records, returning their ids."""

    async def _ingest(*pages: dict[str, Any]) -> list[int]:
        async with db.transaction() as conn:
            return [await insert_raw_record(conn, page) for page in pages]

    return _ingest


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings pointing at a temporary database with no external services."""
    return Settings(
        database_path=str(tmp_path / "listings.db"),
        anthropic_api_key="",
        queue_delay_seconds=0,
        queue_backoff_schedule="0",
        ai_group_delay_seconds=0,
    )


async def _count_rows(db: Database, table: str) -> int:
    async with db.connection() as conn:
        cursor = await conn.execute(f"SELECT COUNT(*) FROM {table}")
        row = await cursor.fetchone()
    return row[0]


@pytest.fixture
def count_rows() -> Callable[[Database, str], Awaitable[int]]:
    """Count the rows of a table."""
    return _count_rows
