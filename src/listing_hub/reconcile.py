"""Raw-data reconciliation pipeline.

Turns pending raw scrape records into canonical Property/Listing rows, one
bounded batch per transaction::

    idle -> batch_fetching -> record_processing -> committing -> committed
                                                              \\-> rolled_back

Record-level failures (bad raw data, a dimension that cannot be re-read, a
constraint violation while writing one record) are rolled back to a
per-record savepoint and the record is marked processed with its error.
Anything else aborts the batch: the whole transaction rolls back, including
processed flags, so the batch is retried verbatim on the next run.
Retries are safe because listings are deduplicated by URL.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import TYPE_CHECKING, Final

import aiosqlite

from listing_hub.db.database import Database, savepoint
from listing_hub.db.dimensions import resolve_location, verify_location
from listing_hub.db.listings import (
    create_property_and_listing,
    find_existing_listing,
    update_property_and_listing,
)
from listing_hub.db.raw_records import fetch_pending_batch, mark_processed
from listing_hub.db.runs import RunRepository
from listing_hub.errors import BatchAbortedError, RecordRejectedError
from listing_hub.logging import get_logger
from listing_hub.models import BatchResult, PipelineState, RawRecord, RecordOutcome
from listing_hub.normalize import normalize_raw_record

if TYPE_CHECKING:
    from listing_hub.config import Settings

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE: Final = 50
DEFAULT_MIN_PRICE: Final = 5000
DEFAULT_BASE_URL: Final = "https://lamudi.com.ph/"
DEFAULT_BATCH_TIMEOUT: Final = 120.0

# Errors confined to a single record; everything else is structural
_RECORD_LEVEL_ERRORS: Final = (RecordRejectedError, aiosqlite.IntegrityError)


class _ClaimedElsewhere(Exception):
    """The raw record was marked processed by another consumer."""


class ReconciliationPipeline:
    """Reconcile pending raw records into properties and listings."""

    def __init__(
        self,
        db: Database,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        min_price: int = DEFAULT_MIN_PRICE,
        base_url: str = DEFAULT_BASE_URL,
        match_title: bool = False,
        batch_timeout_seconds: float = DEFAULT_BATCH_TIMEOUT,
        runs: RunRepository | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            db: Database pool.
            batch_size: Maximum raw records per transaction.
            min_price: Prices at or below this are rejected as scrape noise.
            base_url: Site base URL for canonical listing URLs.
            match_title: Also deduplicate by exact title.
            batch_timeout_seconds: Upper bound on one batch transaction.
            runs: Run history repository (defaults to one on ``db``).
        """
        self._db = db
        self._batch_size = batch_size
        self._min_price = min_price
        self._base_url = base_url
        self._match_title = match_title
        self._batch_timeout = batch_timeout_seconds
        self._runs = runs or RunRepository(db)
        self._state = PipelineState.IDLE

    @classmethod
    def from_settings(cls, db: Database, settings: Settings) -> ReconciliationPipeline:
        """Build a pipeline configured from application settings."""
        return cls(
            db,
            batch_size=settings.batch_size,
            min_price=settings.min_listing_price,
            base_url=settings.listing_base_url,
            match_title=settings.dedup_match_title,
            batch_timeout_seconds=settings.batch_timeout_seconds,
        )

    @property
    def state(self) -> PipelineState:
        """State of the current (or last) batch."""
        return self._state

    def _transition(self, result: BatchResult, state: PipelineState) -> None:
        self._state = state
        result.state = state
        logger.debug("reconciliation_state", batch_id=result.batch_id, state=state.value)

    async def run_batch(self) -> BatchResult:
        """Reconcile one batch of pending raw records in a single transaction.

        Returns:
            Summary of the committed batch.

        Raises:
            BatchAbortedError: A structural failure (or the batch timeout)
                rolled back the whole batch.
        """
        result = BatchResult(batch_id=uuid.uuid4().hex[:12])
        self._transition(result, PipelineState.IDLE)

        try:
            async with asyncio.timeout(self._batch_timeout):
                async with self._db.transaction() as conn:
                    self._transition(result, PipelineState.BATCH_FETCHING)
                    records = await fetch_pending_batch(conn, self._batch_size)
                    result.raw_ids = [r.id for r in records]
                    if records:
                        logger.info(
                            "reconciliation_batch_started",
                            batch_id=result.batch_id,
                            count=len(records),
                        )

                    self._transition(result, PipelineState.RECORD_PROCESSING)
                    for index, record in enumerate(records):
                        result.outcomes[record.id] = await self._process_record(
                            conn, record, index, result.batch_id
                        )

                    self._transition(result, PipelineState.COMMITTING)
        except Exception as e:
            self._transition(result, PipelineState.ROLLED_BACK)
            logger.error(
                "reconciliation_batch_rolled_back",
                batch_id=result.batch_id,
                raw_ids=result.raw_ids,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            await self._record_run(result, error_message=f"{type(e).__name__}: {e}")
            raise BatchAbortedError(result.batch_id, result.raw_ids, e) from e

        self._transition(result, PipelineState.COMMITTED)
        if not result.raw_ids:
            logger.info("no_pending_raw_records", batch_id=result.batch_id)
            return result

        logger.info(
            "reconciliation_batch_committed",
            batch_id=result.batch_id,
            created=result.created,
            updated=result.updated,
            rejected=result.rejected,
            skipped=result.count(RecordOutcome.SKIPPED),
        )
        await self._record_run(result)
        return result

    async def drain(self, *, max_batches: int = 100) -> list[BatchResult]:
        """Run batches until nothing is pending or ``max_batches`` is reached.

        Raises:
            BatchAbortedError: On the first structural failure.
        """
        results: list[BatchResult] = []
        for _ in range(max_batches):
            result = await self.run_batch()
            results.append(result)
            if len(result.raw_ids) < self._batch_size:
                break
        return results

    async def _process_record(
        self,
        conn: aiosqlite.Connection,
        record: RawRecord,
        index: int,
        batch_id: str,
    ) -> RecordOutcome:
        """Reconcile one record inside its own savepoint."""
        try:
            async with savepoint(conn, f"raw_record_{index}"):
                return await self._reconcile_record(conn, record)
        except _ClaimedElsewhere:
            logger.warning("raw_record_already_processed", batch_id=batch_id, raw_id=record.id)
            return RecordOutcome.SKIPPED
        except _RECORD_LEVEL_ERRORS as e:
            logger.warning(
                "raw_record_rejected",
                batch_id=batch_id,
                raw_id=record.id,
                error=str(e),
                error_type=type(e).__name__,
                field=getattr(e, "field", None),
            )
            await mark_processed(conn, record.id, RecordOutcome.REJECTED, error=str(e))
            return RecordOutcome.REJECTED

    async def _reconcile_record(
        self, conn: aiosqlite.Connection, record: RawRecord
    ) -> RecordOutcome:
        listing = normalize_raw_record(
            record, base_url=self._base_url, min_price=self._min_price
        )

        location = await resolve_location(
            conn,
            region_key=listing.region_key,
            region_name=listing.region_name,
            city_key=listing.city_key,
            city_name=listing.city_name,
            area_key=listing.area_key,
            area_name=listing.area_name,
        )
        await verify_location(conn, location)

        existing = await find_existing_listing(
            conn, listing.url, listing.title, match_title=self._match_title
        )
        if existing is not None:
            await update_property_and_listing(conn, existing, listing)
            outcome = RecordOutcome.UPDATED
        else:
            await create_property_and_listing(conn, listing, location)
            outcome = RecordOutcome.CREATED

        if not await mark_processed(conn, record.id, outcome):
            raise _ClaimedElsewhere(record.id)
        return outcome

    async def _record_run(self, result: BatchResult, *, error_message: str | None = None) -> None:
        status = "rolled_back" if error_message else "committed"
        try:
            await self._runs.record_run(result, status, error_message=error_message)
        except Exception:
            logger.warning("reconciliation_run_not_recorded", batch_id=result.batch_id, exc_info=True)
