"""Listing query service: read-side queries, favorites and AI descriptions."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Final

import aiosqlite

from listing_hub.db.database import Database
from listing_hub.logging import get_logger
from listing_hub.models import OfferType, PropertyType

if TYPE_CHECKING:
    from listing_hub.web.filters import PropertyFilter

logger = get_logger(__name__)

_SORT_SQL: Final = {
    "newest": "l.created_at DESC, l.id DESC",
    "price_asc": "l.price ASC, l.id ASC",
    "price_desc": "l.price DESC, l.id DESC",
}

_JSON_OBJECT_FIELDS: Final = (
    "amenities",
    "indoor_features",
    "outdoor_features",
    "property_features",
)

_LISTING_COLUMNS: Final = """
    l.id, l.title, l.url, l.price, l.price_formatted, l.offer_type_id,
    l.created_at, l.property_id, p.property_type_id, p.no_of_bedrooms,
    p.no_of_bathrooms, p.floor_size, p.lot_size, p.primary_image_url,
    r.region, c.city, a.area
"""

_LISTING_JOINS: Final = """
    FROM listings l
    JOIN properties p ON l.property_id = p.id
    JOIN listing_regions r ON p.region_id = r.id
    JOIN listing_cities c ON p.city_id = c.id
    LEFT JOIN listing_areas a ON p.area_id = a.id
"""

DESCRIPTION_PROPERTY_TYPES: Final = (PropertyType.CONDOMINIUM, PropertyType.WAREHOUSE)


def build_filter_clauses(
    filters: PropertyFilter,
) -> tuple[str, list[Any]]:
    """Build WHERE clause and params for listing filtering.

    Values are always bound as parameters.

    Args:
        filters: Validated filter parameters.

    Returns:
        Tuple of (where_sql, params).
    """
    where_clauses: list[str] = ["l.deleted_at IS NULL"]
    params: list[Any] = []

    if filters.min_price is not None:
        where_clauses.append("l.price >= ?")
        params.append(filters.min_price)
    if filters.max_price is not None:
        where_clauses.append("l.price <= ?")
        params.append(filters.max_price)
    if filters.bedrooms is not None:
        where_clauses.append("p.no_of_bedrooms = ?")
        params.append(filters.bedrooms)
    if filters.bathrooms is not None:
        where_clauses.append("p.no_of_bathrooms = ?")
        params.append(filters.bathrooms)
    if filters.property_type is not None:
        where_clauses.append("p.property_type_id = ?")
        params.append(int(filters.property_type))
    if filters.offer_type is not None:
        where_clauses.append("l.offer_type_id = ?")
        params.append(int(filters.offer_type))
    if filters.region_id is not None:
        where_clauses.append("p.region_id = ?")
        params.append(filters.region_id)
    if filters.city_id is not None:
        where_clauses.append("p.city_id = ?")
        params.append(filters.city_id)
    if filters.area_id is not None:
        where_clauses.append("p.area_id = ?")
        params.append(filters.area_id)
    if filters.search:
        escaped = filters.search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        where_clauses.append("l.title LIKE ? ESCAPE '\\'")
        params.append(f"%{escaped}%")

    where_sql = " AND ".join(where_clauses)
    return where_sql, params


def _load_json(value: str | None, default: Any) -> Any:
    if not value:
        return default
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return default


def _offer_label(offer_type_id: int | None) -> str | None:
    if offer_type_id is None or offer_type_id not in OfferType._value2member_map_:
        return None
    return OfferType(offer_type_id).name.lower()


def _row_to_listing_item(row: aiosqlite.Row) -> dict[str, Any]:
    property_type = PropertyType(row["property_type_id"])
    return {
        "id": row["id"],
        "title": row["title"],
        "url": row["url"],
        "price": row["price"],
        "price_formatted": row["price_formatted"],
        "offer_type": _offer_label(row["offer_type_id"]),
        "created_at": row["created_at"],
        "property_id": row["property_id"],
        "property_type": property_type.display_name,
        "bedrooms": row["no_of_bedrooms"],
        "bathrooms": row["no_of_bathrooms"],
        "floor_size": row["floor_size"],
        "lot_size": row["lot_size"],
        "primary_image_url": row["primary_image_url"],
        "region": row["region"],
        "city": row["city"],
        "area": row["area"],
    }


class ListingQueryService:
    """Read-side queries for the HTTP API, plus the few writes it owns."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def get_properties_paginated(
        self,
        filters: PropertyFilter,
        *,
        page: int = 1,
        per_page: int = 20,
    ) -> tuple[list[dict[str, Any]], int]:
        """Get one page of active listings matching the filters.

        Args:
            filters: Validated filter parameters.
            page: 1-based page number.
            per_page: Items per page.

        Returns:
            Tuple of (items, total matching count).
        """
        where_sql, params = build_filter_clauses(filters)
        order_sql = _SORT_SQL.get(filters.sort, _SORT_SQL["newest"])
        offset = (max(page, 1) - 1) * per_page

        async with self._db.connection() as conn:
            cursor = await conn.execute(
                f"SELECT COUNT(*) {_LISTING_JOINS} WHERE {where_sql}",
                params,
            )
            row = await cursor.fetchone()
            total = row[0] if row else 0

            cursor = await conn.execute(
                f"""
                SELECT {_LISTING_COLUMNS}
                {_LISTING_JOINS}
                WHERE {where_sql}
                ORDER BY {order_sql}
                LIMIT ? OFFSET ?
                """,
                [*params, per_page, offset],
            )
            rows = await cursor.fetchall()

        return [_row_to_listing_item(r) for r in rows], total

    async def get_property_detail(self, property_id: int) -> dict[str, Any] | None:
        """Get a property with its active listing, location names and price history.

        Returns:
            Detail dict, or None if the property does not exist.
        """
        async with self._db.connection() as conn:
            cursor = await conn.execute(
                """
                SELECT p.*, r.region, r.listing_region_id, c.city, c.listing_city_id,
                       a.area, a.listing_area_id
                FROM properties p
                JOIN listing_regions r ON p.region_id = r.id
                JOIN listing_cities c ON p.city_id = c.id
                LEFT JOIN listing_areas a ON p.area_id = a.id
                WHERE p.id = ?
                """,
                (property_id,),
            )
            prop = await cursor.fetchone()
            if prop is None:
                return None

            cursor = await conn.execute(
                """
                SELECT id, title, url, description, address, price, price_formatted,
                       offer_type_id, created_at, updated_at
                FROM listings
                WHERE property_id = ? AND deleted_at IS NULL
                ORDER BY id ASC
                LIMIT 1
                """,
                (property_id,),
            )
            listing_row = await cursor.fetchone()

            price_history: list[dict[str, Any]] = []
            if listing_row is not None:
                cursor = await conn.execute(
                    """
                    SELECT old_price, new_price, old_price_formatted,
                           new_price_formatted, changed_at
                    FROM price_change_log
                    WHERE listing_id = ?
                    ORDER BY changed_at DESC, id DESC
                    """,
                    (listing_row["id"],),
                )
                price_history = [dict(r) for r in await cursor.fetchall()]

        detail = dict(prop)
        detail["property_type"] = PropertyType(detail.pop("property_type_id")).display_name
        detail["images"] = _load_json(detail["images"], [])
        for key in _JSON_OBJECT_FIELDS:
            detail[key] = _load_json(detail[key], {})
        detail["ai_generated_description"] = _load_json(detail["ai_generated_description"], None)
        detail["location"] = {
            "region": {"id": detail.pop("region_id"), "key": detail.pop("listing_region_id"),
                       "name": detail.pop("region")},
            "city": {"id": detail.pop("city_id"), "key": detail.pop("listing_city_id"),
                     "name": detail.pop("city")},
            "area": (
                {"id": detail["area_id"], "key": detail["listing_area_id"], "name": detail["area"]}
                if detail["area_id"] is not None
                else None
            ),
        }
        for key in ("area_id", "listing_area_id", "area"):
            detail.pop(key)

        if listing_row is not None:
            listing = dict(listing_row)
            listing["offer_type"] = _offer_label(listing.pop("offer_type_id"))
            listing["price_history"] = price_history
            detail["listing"] = listing
        else:
            detail["listing"] = None
        return detail

    async def get_cities(self) -> list[dict[str, Any]]:
        """Get every city with its region and active listing count."""
        async with self._db.connection() as conn:
            cursor = await conn.execute(
                """
                SELECT c.id, c.city, c.listing_city_id, r.id AS region_id, r.region,
                       COUNT(l.id) AS listing_count
                FROM listing_cities c
                JOIN listing_regions r ON c.region_id = r.id
                LEFT JOIN properties p ON p.city_id = c.id
                LEFT JOIN listings l ON l.property_id = p.id AND l.deleted_at IS NULL
                GROUP BY c.id
                ORDER BY c.city ASC
                """
            )
            rows = await cursor.fetchall()
        return [dict(r) for r in rows]

    # -- favorites --

    async def add_favorite(self, user_id: str, listing_id: int) -> dict[str, Any] | None:
        """Favorite a listing for a user. Re-adding is a no-op.

        Returns:
            The favorite row, or None if the listing does not exist.
        """
        async with self._db.connection() as conn:
            cursor = await conn.execute(
                "SELECT 1 FROM listings WHERE id = ? AND deleted_at IS NULL",
                (listing_id,),
            )
            if await cursor.fetchone() is None:
                return None
            await conn.execute(
                """
                INSERT INTO user_favorites (user_id, listing_id) VALUES (?, ?)
                ON CONFLICT(user_id, listing_id) DO NOTHING
                """,
                (user_id, listing_id),
            )
            cursor = await conn.execute(
                """
                SELECT id, user_id, listing_id, created_at FROM user_favorites
                WHERE user_id = ? AND listing_id = ?
                """,
                (user_id, listing_id),
            )
            row = await cursor.fetchone()
        logger.info("favorite_added", user_id=user_id, listing_id=listing_id)
        return dict(row) if row else None

    async def remove_favorite(self, user_id: str, listing_id: int) -> bool:
        """Remove a favorite. Returns False if it did not exist."""
        async with self._db.connection() as conn:
            cursor = await conn.execute(
                "DELETE FROM user_favorites WHERE user_id = ? AND listing_id = ?",
                (user_id, listing_id),
            )
        return cursor.rowcount > 0

    async def list_favorites(self, user_id: str) -> list[dict[str, Any]]:
        """Get a user's favorited active listings, most recently favorited first."""
        async with self._db.connection() as conn:
            cursor = await conn.execute(
                f"""
                SELECT {_LISTING_COLUMNS}, f.created_at AS favorited_at
                {_LISTING_JOINS}
                JOIN user_favorites f ON f.listing_id = l.id
                WHERE f.user_id = ? AND l.deleted_at IS NULL
                ORDER BY f.created_at DESC, f.id DESC
                """,
                (user_id,),
            )
            rows = await cursor.fetchall()
        items = []
        for row in rows:
            item = _row_to_listing_item(row)
            item["favorited_at"] = row["favorited_at"]
            items.append(item)
        return items

    # -- AI descriptions --

    async def get_properties_missing_description(
        self,
        limit: int,
        property_types: tuple[PropertyType, ...] = DESCRIPTION_PROPERTY_TYPES,
    ) -> list[int]:
        """Ids of properties of the given types without a description, newest first."""
        placeholders = ",".join("?" for _ in property_types)
        async with self._db.connection() as conn:
            cursor = await conn.execute(
                f"""
                SELECT id FROM properties
                WHERE ai_generated_description IS NULL
                  AND property_type_id IN ({placeholders})
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                [*(int(t) for t in property_types), limit],
            )
            rows = await cursor.fetchall()
        return [row["id"] for row in rows]

    async def save_ai_description(self, property_id: int, paragraphs: list[str]) -> bool:
        """Store generated description paragraphs. Returns False if the property is gone."""
        async with self._db.connection() as conn:
            cursor = await conn.execute(
                """
                UPDATE properties
                SET ai_generated_description = ?,
                    updated_at = strftime('%Y-%m-%dT%H:%M:%f', 'now')
                WHERE id = ?
                """,
                (json.dumps(paragraphs, ensure_ascii=False), property_id),
            )
        return cursor.rowcount == 1
