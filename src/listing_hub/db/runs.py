"""Reconciliation run tracking.

Runs are written on their own connection, outside the batch transaction, so
a rolled-back batch still leaves a record of what it attempted.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

from listing_hub.db.database import Database
from listing_hub.logging import get_logger
from listing_hub.models import BatchResult, RecordOutcome

logger = get_logger(__name__)


class RunRepository:
    """Database operations for reconciliation run history."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def record_run(
        self,
        result: BatchResult,
        status: str,
        *,
        error_message: str | None = None,
    ) -> int:
        """Record a finished batch.

        Args:
            result: The batch summary.
            status: Final status ('committed' or 'rolled_back').
            error_message: Error text if the batch was rolled back.

        Returns:
            The ID of the run row.
        """
        now = datetime.now(UTC)
        duration = (now - result.started_at).total_seconds()
        async with self._db.connection() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO reconciliation_runs (
                    batch_id, started_at, completed_at, status, attempted_ids,
                    created_count, updated_count, rejected_count, skipped_count,
                    error_message, duration_seconds
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    result.batch_id,
                    result.started_at.isoformat(),
                    now.isoformat(),
                    status,
                    json.dumps(result.raw_ids),
                    result.created,
                    result.updated,
                    result.rejected,
                    result.count(RecordOutcome.SKIPPED),
                    error_message,
                    duration,
                ),
            )
        return cursor.lastrowid  # type: ignore[return-value]

    async def get_last_run(self) -> dict[str, Any] | None:
        """Get the most recent run.

        Returns:
            Dict with run data (attempted_ids parsed), or None if no runs exist.
        """
        async with self._db.connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM reconciliation_runs ORDER BY id DESC LIMIT 1"
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        run = dict(row)
        run["attempted_ids"] = json.loads(run["attempted_ids"])
        return run
