"""Listing deduplication and the Property/Listing writer."""

from __future__ import annotations

import json

import aiosqlite

from listing_hub.logging import get_logger
from listing_hub.models import ExistingListing, LocationIds, NormalizedListing, WriteResult

logger = get_logger(__name__)


def _dump(value: object) -> str:
    return json.dumps(value, ensure_ascii=False)


async def find_existing_listing(
    conn: aiosqlite.Connection,
    url: str,
    title: str,
    *,
    match_title: bool = False,
) -> ExistingListing | None:
    """Find the active listing a raw record corresponds to.

    URL equality is the primary key. With ``match_title`` an exact title
    match also counts, since listings are sometimes re-surfaced under a new
    URL. When several rows match, the URL match wins, then the lowest id,
    and the ambiguity is logged as a data-integrity warning.

    Args:
        conn: Open connection.
        url: Canonical listing URL.
        title: Listing title as scraped.
        match_title: Whether to fall back to title equality.

    Returns:
        The matched listing, or None if the record is new.
    """
    if match_title:
        cursor = await conn.execute(
            """
            SELECT id, property_id, url, title, price FROM listings
            WHERE deleted_at IS NULL AND (url = ? OR title = ?)
            ORDER BY (url = ?) DESC, id ASC
            """,
            (url, title, url),
        )
    else:
        cursor = await conn.execute(
            """
            SELECT id, property_id, url, title, price FROM listings
            WHERE deleted_at IS NULL AND url = ?
            ORDER BY id ASC
            """,
            (url,),
        )
    rows = await cursor.fetchall()
    if not rows:
        return None
    if len(rows) > 1:
        logger.warning(
            "duplicate_listing_candidates",
            url=url,
            title=title,
            listing_ids=[row["id"] for row in rows],
            chosen_id=rows[0]["id"],
        )
    row = rows[0]
    return ExistingListing(
        id=row["id"],
        property_id=row["property_id"],
        url=row["url"],
        title=row["title"],
        price=row["price"],
    )


async def create_property_and_listing(
    conn: aiosqlite.Connection,
    listing: NormalizedListing,
    location: LocationIds,
) -> WriteResult:
    """Insert a new Property and the Listing that offers it.

    Both inserts run on the caller's transaction; ids come from SQLite.

    Args:
        conn: Connection with an open transaction.
        listing: Normalized raw record.
        location: Resolved dimension ids.

    Returns:
        Ids of the new rows.
    """
    cursor = await conn.execute(
        """
        INSERT INTO properties (
            property_type_id, floor_size, lot_size, land_size, building_size,
            rooms_total, no_of_bedrooms, no_of_bathrooms, no_of_parking_spaces,
            ceiling_height, year_built, longitude, latitude, primary_image_url,
            images, amenities, indoor_features, outdoor_features, property_features,
            address, project_name, agent_name, product_owner_name,
            region_id, city_id, area_id
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            int(listing.property_type),
            listing.floor_size,
            listing.lot_size,
            listing.land_size,
            listing.building_size,
            listing.rooms_total,
            listing.bedrooms,
            listing.bathrooms,
            listing.parking_spaces,
            listing.ceiling_height,
            listing.year_built,
            listing.longitude,
            listing.latitude,
            listing.primary_image_url,
            _dump(listing.images),
            _dump(listing.amenities),
            _dump(listing.indoor_features),
            _dump(listing.outdoor_features),
            _dump(listing.property_features),
            listing.address,
            listing.project_name,
            listing.agent_name,
            listing.product_owner_name,
            location.region_id,
            location.city_id,
            location.area_id,
        ),
    )
    property_id: int = cursor.lastrowid  # type: ignore[assignment]

    cursor = await conn.execute(
        """
        INSERT INTO listings (
            title, url, project_name, description, is_scraped, address,
            price, price_formatted, offer_type_id, property_id
        ) VALUES (?, ?, ?, ?, 1, ?, ?, ?, ?, ?)
        """,
        (
            listing.title,
            listing.url,
            listing.project_name,
            listing.description,
            listing.address,
            listing.price,
            listing.price_formatted,
            int(listing.offer_type) if listing.offer_type else None,
            property_id,
        ),
    )
    listing_id: int = cursor.lastrowid  # type: ignore[assignment]

    logger.info(
        "property_and_listing_created",
        raw_id=listing.raw_id,
        property_id=property_id,
        listing_id=listing_id,
    )
    return WriteResult(property_id=property_id, listing_id=listing_id)


async def update_property_and_listing(
    conn: aiosqlite.Connection,
    existing: ExistingListing,
    listing: NormalizedListing,
) -> None:
    """Refresh a matched listing from re-scraped data.

    Only pricing on the Listing and images/attribution on the Property are
    touched; the originally stored features, geometry and descriptions
    stay authoritative. Price changes are logged by a database trigger.

    Args:
        conn: Connection with an open transaction.
        existing: The matched listing.
        listing: Normalized re-scraped record.
    """
    await conn.execute(
        """
        UPDATE listings
        SET price = ?, price_formatted = ?,
            updated_at = strftime('%Y-%m-%dT%H:%M:%f', 'now')
        WHERE id = ?
        """,
        (listing.price, listing.price_formatted, existing.id),
    )
    await conn.execute(
        """
        UPDATE properties
        SET images = ?, agent_name = ?, product_owner_name = ?, project_name = ?,
            updated_at = strftime('%Y-%m-%dT%H:%M:%f', 'now')
        WHERE id = ?
        """,
        (
            _dump(listing.images),
            listing.agent_name,
            listing.product_owner_name,
            listing.project_name,
            existing.property_id,
        ),
    )
    logger.info(
        "property_and_listing_updated",
        raw_id=listing.raw_id,
        listing_id=existing.id,
        property_id=existing.property_id,
        price_changed=existing.price != listing.price,
    )
