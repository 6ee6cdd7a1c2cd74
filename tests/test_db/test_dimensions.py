"""Tests for region/city/area resolution."""

import asyncio

import pytest

from listing_hub.db.database import Database
from listing_hub.db.dimensions import resolve_location, verify_location
from listing_hub.errors import DimensionResolutionError
from listing_hub.models import LocationIds


async def _resolve(db: Database, **overrides: str | None) -> LocationIds:
    kwargs: dict[str, str | None] = {
        "region_key": "R-NCR",
        "region_name": "Metro Manila",
        "city_key": "C-TAGUIG",
        "city_name": "Taguig",
        "area_key": "A-BGC",
        "area_name": "Bonifacio Global City",
    }
    kwargs.update(overrides)
    async with db.transaction() as conn:
        return await resolve_location(conn, **kwargs)  # type: ignore[arg-type]


class TestResolveLocation:
    async def test_creates_all_levels(self, db: Database, count_rows) -> None:
        location = await _resolve(db)

        assert location.region_id > 0
        assert location.city_id > 0
        assert location.area_id is not None
        assert await count_rows(db, "listing_regions") == 1
        assert await count_rows(db, "listing_cities") == 1
        assert await count_rows(db, "listing_areas") == 1

    async def test_links_children_to_parents(self, db: Database) -> None:
        location = await _resolve(db)
        async with db.connection() as conn:
            cursor = await conn.execute(
                "SELECT region_id FROM listing_cities WHERE id = ?", (location.city_id,)
            )
            assert (await cursor.fetchone())["region_id"] == location.region_id
            cursor = await conn.execute(
                "SELECT city_id FROM listing_areas WHERE id = ?", (location.area_id,)
            )
            assert (await cursor.fetchone())["city_id"] == location.city_id

    async def test_same_natural_keys_return_same_ids(self, db: Database, count_rows) -> None:
        first = await _resolve(db)
        second = await _resolve(db)
        assert first == second
        assert await count_rows(db, "listing_regions") == 1

    async def test_existing_rows_are_not_renamed(self, db: Database) -> None:
        await _resolve(db)
        await _resolve(db, region_name="National Capital Region")
        async with db.connection() as conn:
            cursor = await conn.execute("SELECT region FROM listing_regions")
            assert (await cursor.fetchone())["region"] == "Metro Manila"

    async def test_area_skipped_without_key(self, db: Database, count_rows) -> None:
        location = await _resolve(db, area_key=None, area_name=None)
        assert location.area_id is None
        assert await count_rows(db, "listing_areas") == 0

    async def test_new_city_under_existing_region(self, db: Database, count_rows) -> None:
        taguig = await _resolve(db)
        makati = await _resolve(db, city_key="C-MAKATI", city_name="Makati", area_key=None)
        assert makati.region_id == taguig.region_id
        assert makati.city_id != taguig.city_id
        assert await count_rows(db, "listing_cities") == 2

    async def test_concurrent_consumers_share_one_region(
        self, file_db: Database, count_rows
    ) -> None:
        results = await asyncio.gather(*(_resolve(file_db) for _ in range(8)))

        assert len({r.region_id for r in results}) == 1
        assert len({r.city_id for r in results}) == 1
        assert len({r.area_id for r in results}) == 1
        assert await count_rows(file_db, "listing_regions") == 1
        assert await count_rows(file_db, "listing_areas") == 1

    async def test_insert_race_is_absorbed(self, file_db: Database) -> None:
        """A row created by another writer between select and insert is reused."""
        async with file_db.connection() as other:
            await other.execute(
                "INSERT INTO listing_regions (listing_region_id, region) VALUES ('R-NCR', 'NCR')"
            )
            cursor = await other.execute("SELECT id FROM listing_regions")
            existing_id = (await cursor.fetchone())["id"]

        location = await _resolve(file_db)
        assert location.region_id == existing_id


class TestVerifyLocation:
    async def test_passes_for_resolved_ids(self, db: Database) -> None:
        location = await _resolve(db)
        async with db.connection() as conn:
            await verify_location(conn, location)

    async def test_missing_id_raises(self, db: Database) -> None:
        location = await _resolve(db)
        async with db.connection() as conn:
            with pytest.raises(DimensionResolutionError, match="listing_cities"):
                await verify_location(
                    conn, LocationIds(region_id=location.region_id, city_id=9999)
                )
