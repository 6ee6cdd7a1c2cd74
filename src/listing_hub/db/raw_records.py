"""Raw scrape staging table: ingestion, batch fetch and processed flags."""

from __future__ import annotations

import json
from typing import Any

import aiosqlite

from listing_hub.logging import get_logger
from listing_hub.models import RawRecord, RecordOutcome

logger = get_logger(__name__)


async def insert_raw_record(conn: aiosqlite.Connection, payload: dict[str, Any]) -> int:
    """Persist one scraped page verbatim.

    Args:
        conn: Open connection.
        payload: Scraped page with ``listingUrl``, ``images`` and ``dataLayer``.

    Returns:
        Id of the new raw record.
    """
    cursor = await conn.execute(
        """
        INSERT INTO raw_listings (json_data, listing_url, images)
        VALUES (?, ?, ?)
        """,
        (
            json.dumps(payload, ensure_ascii=False),
            payload.get("listingUrl"),
            json.dumps(payload.get("images") or [], ensure_ascii=False),
        ),
    )
    raw_id: int = cursor.lastrowid  # type: ignore[assignment]
    logger.debug("raw_record_inserted", raw_id=raw_id, listing_url=payload.get("listingUrl"))
    return raw_id


async def count_pending(conn: aiosqlite.Connection) -> int:
    """Count raw records not yet reconciled."""
    cursor = await conn.execute("SELECT COUNT(*) FROM raw_listings WHERE is_processed = 0")
    row = await cursor.fetchone()
    return row[0] if row else 0


def _row_to_raw_record(row: aiosqlite.Row) -> RawRecord:
    try:
        data = json.loads(row["json_data"])
    except json.JSONDecodeError:
        data = {}
    return RawRecord(
        id=row["id"],
        json_data=data if isinstance(data, dict) else {},
        listing_url=row["listing_url"],
        is_processed=bool(row["is_processed"]),
    )


async def fetch_pending_batch(conn: aiosqlite.Connection, limit: int) -> list[RawRecord]:
    """Select up to ``limit`` unprocessed raw records, oldest first.

    Must run inside a write-locking transaction so concurrent consumers
    never claim the same rows.
    """
    cursor = await conn.execute(
        """
        SELECT id, json_data, listing_url, is_processed FROM raw_listings
        WHERE is_processed = 0
        ORDER BY id ASC
        LIMIT ?
        """,
        (limit,),
    )
    rows = await cursor.fetchall()
    return [_row_to_raw_record(row) for row in rows]


async def mark_processed(
    conn: aiosqlite.Connection,
    raw_id: int,
    outcome: RecordOutcome,
    *,
    error: str | None = None,
) -> bool:
    """Flip a raw record to processed.

    Guarded on ``is_processed = 0`` so a record is never processed twice.

    Returns:
        True if this call claimed the record, False if it was already processed.
    """
    cursor = await conn.execute(
        """
        UPDATE raw_listings
        SET is_processed = 1,
            processed_at = strftime('%Y-%m-%dT%H:%M:%f', 'now'),
            process_outcome = ?,
            process_error = ?
        WHERE id = ? AND is_processed = 0
        """,
        (outcome.value, error, raw_id),
    )
    return cursor.rowcount == 1


async def is_processed(conn: aiosqlite.Connection, raw_id: int) -> bool:
    """Whether a raw record has already been reconciled."""
    cursor = await conn.execute("SELECT is_processed FROM raw_listings WHERE id = ?", (raw_id,))
    row = await cursor.fetchone()
    return bool(row and row["is_processed"])
