"""Region/City/Area dimension resolution with insert-or-fetch semantics."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

import aiosqlite

from listing_hub.errors import DimensionResolutionError
from listing_hub.logging import get_logger
from listing_hub.models import LocationIds

logger = get_logger(__name__)


@dataclass(frozen=True)
class _Dimension:
    """Table layout of one dimension level."""

    table: str
    key_column: str
    name_column: str
    parent_column: str | None


REGION: Final = _Dimension("listing_regions", "listing_region_id", "region", None)
CITY: Final = _Dimension("listing_cities", "listing_city_id", "city", "region_id")
AREA: Final = _Dimension("listing_areas", "listing_area_id", "area", "city_id")


async def _select_id(conn: aiosqlite.Connection, dim: _Dimension, key: str) -> int | None:
    cursor = await conn.execute(
        f"SELECT id FROM {dim.table} WHERE {dim.key_column} = ?",
        (key,),
    )
    row = await cursor.fetchone()
    return row["id"] if row else None


async def _insert_or_fetch(
    conn: aiosqlite.Connection,
    dim: _Dimension,
    key: str,
    name: str,
    parent_id: int | None = None,
) -> int:
    """Return the surrogate id for a natural key, creating the row if unseen.

    The insert is a no-op when the key already exists (including when a
    concurrent writer created it first); the follow-up select then reads
    whichever row won. Existing rows are never renamed or re-parented.
    """
    existing = await _select_id(conn, dim, key)
    if existing is not None:
        return existing

    if dim.parent_column:
        cursor = await conn.execute(
            f"""
            INSERT INTO {dim.table} ({dim.key_column}, {dim.name_column}, {dim.parent_column})
            VALUES (?, ?, ?)
            ON CONFLICT({dim.key_column}) DO NOTHING
            """,
            (key, name, parent_id),
        )
    else:
        cursor = await conn.execute(
            f"""
            INSERT INTO {dim.table} ({dim.key_column}, {dim.name_column})
            VALUES (?, ?)
            ON CONFLICT({dim.key_column}) DO NOTHING
            """,
            (key, name),
        )

    if cursor.rowcount == 0:
        logger.debug("dimension_insert_conflict", table=dim.table, key=key)
    else:
        logger.info("dimension_created", table=dim.table, key=key, name=name)

    resolved = await _select_id(conn, dim, key)
    if resolved is None:
        raise DimensionResolutionError(f"{dim.table} row for {key!r} missing after insert")
    return resolved


async def resolve_location(
    conn: aiosqlite.Connection,
    *,
    region_key: str,
    region_name: str,
    city_key: str,
    city_name: str,
    area_key: str | None = None,
    area_name: str | None = None,
) -> LocationIds:
    """Resolve or create the region, city and area rows for a listing.

    Area resolution is skipped when ``area_key`` is empty.

    Args:
        conn: Connection with an open transaction.
        region_key: Source site's region identifier.
        region_name: Human-readable region name.
        city_key: Source site's city identifier.
        city_name: Human-readable city name.
        area_key: Source site's area identifier, if any.
        area_name: Human-readable area name.

    Returns:
        Surrogate ids of the resolved rows.
    """
    region_id = await _insert_or_fetch(conn, REGION, region_key, region_name)
    city_id = await _insert_or_fetch(conn, CITY, city_key, city_name, region_id)
    area_id = None
    if area_key:
        area_id = await _insert_or_fetch(conn, AREA, area_key, area_name or area_key, city_id)
    return LocationIds(region_id=region_id, city_id=city_id, area_id=area_id)


async def verify_location(conn: aiosqlite.Connection, location: LocationIds) -> None:
    """Re-read every resolved dimension id before it is referenced.

    Raises:
        DimensionResolutionError: A resolved id no longer exists.
    """
    checks = [(REGION, location.region_id), (CITY, location.city_id)]
    if location.area_id is not None:
        checks.append((AREA, location.area_id))
    for dim, dim_id in checks:
        cursor = await conn.execute(f"SELECT 1 FROM {dim.table} WHERE id = ?", (dim_id,))
        if await cursor.fetchone() is None:
            raise DimensionResolutionError(f"{dim.table} id {dim_id} not found")
