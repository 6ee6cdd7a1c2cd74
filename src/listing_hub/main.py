"""Main entry point for the listing hub."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from listing_hub.config import Settings
from listing_hub.db.database import Database
from listing_hub.db.raw_records import count_pending, insert_raw_record
from listing_hub.descriptions import DescriptionGenerator, backfill_descriptions
from listing_hub.errors import BatchAbortedError, InvalidMessageError
from listing_hub.logging import configure_logging, get_logger
from listing_hub.models import MessageSource, MessageType
from listing_hub.queue import parse_message
from listing_hub.reconcile import ReconciliationPipeline

logger = get_logger(__name__)


def _open_database(settings: Settings) -> Database:
    return Database(
        settings.database_path,
        pool_size=settings.db_pool_size,
        busy_timeout_ms=settings.db_busy_timeout_ms,
    )


async def run_ingest(settings: Settings, path: Path) -> int:
    """Load a JSON-lines dump of scraped pages into the raw staging table.

    Lines that are not valid scraped pages are logged and skipped.

    Returns:
        Number of raw records inserted.
    """
    db = _open_database(settings)
    await db.open()
    inserted = 0
    skipped = 0
    try:
        async with db.transaction() as conn:
            with path.open(encoding="utf-8") as f:
                for line_no, line in enumerate(f, start=1):
                    if not line.strip():
                        continue
                    try:
                        message = parse_message(
                            {
                                "type": MessageType.CREATE_RAW_LAMUDI_LISTING_DATA,
                                "source": MessageSource.LAMUDI,
                                "data": json.loads(line),
                            }
                        )
                    except (json.JSONDecodeError, InvalidMessageError) as e:
                        logger.warning("ingest_line_skipped", line=line_no, error=str(e))
                        skipped += 1
                        continue
                    await insert_raw_record(conn, message.data)
                    inserted += 1
            pending = await count_pending(conn)
    finally:
        await db.close()

    logger.info("ingest_complete", path=str(path), inserted=inserted, skipped=skipped, pending=pending)
    return inserted


async def run_reconcile(settings: Settings) -> bool:
    """Reconcile every pending raw record, one batch at a time.

    Returns:
        False if a batch was rolled back.
    """
    db = _open_database(settings)
    await db.open()
    try:
        pipeline = ReconciliationPipeline.from_settings(db, settings)
        results = await pipeline.drain()
    except BatchAbortedError as e:
        logger.error("reconcile_aborted", batch_id=e.batch_id, raw_ids=e.raw_ids)
        return False
    finally:
        await db.close()

    logger.info(
        "reconcile_complete",
        batches=len(results),
        created=sum(r.created for r in results),
        updated=sum(r.updated for r in results),
        rejected=sum(r.rejected for r in results),
    )
    return True


async def run_backfill_descriptions(settings: Settings) -> None:
    """Generate AI descriptions for properties that lack one."""
    db = _open_database(settings)
    await db.open()
    generator = DescriptionGenerator.from_settings(settings)
    try:
        await backfill_descriptions(
            db,
            generator,
            limit=settings.ai_backfill_limit,
            concurrency=settings.ai_concurrency,
            group_delay_seconds=settings.ai_group_delay_seconds,
            timeout_seconds=settings.ai_timeout_seconds,
        )
    finally:
        await generator.close()
        await db.close()


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Listing Hub - reconcile scraped real-estate listings into a property catalog"
    )
    parser.add_argument(
        "--serve",
        action="store_true",
        help="Start web server with background queue consumer",
    )
    parser.add_argument(
        "--no-consumer",
        action="store_true",
        help="With --serve: start web server only, skip the queue consumer",
    )
    parser.add_argument(
        "--reconcile",
        action="store_true",
        help="Reconcile all pending raw records and exit",
    )
    parser.add_argument(
        "--backfill-descriptions",
        action="store_true",
        help="Generate AI descriptions for properties missing one and exit",
    )
    parser.add_argument(
        "--ingest",
        type=Path,
        metavar="FILE",
        default=None,
        help="Load a JSON-lines file of scraped pages into the raw staging table",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug-level logging for troubleshooting",
    )
    args = parser.parse_args()

    try:
        settings = Settings()
    except Exception as e:
        configure_logging(json_output=False)
        logger.error("failed_to_load_settings", error=str(e))
        print(f"Error: Failed to load settings. {e}")
        print("Settings are read from LISTING_HUB_* environment variables or a .env file.")
        sys.exit(1)

    configure_logging(
        json_output=settings.log_json,
        level=logging.DEBUG if args.debug else logging.INFO,
    )

    logger.info(
        "starting_listing_hub",
        database=settings.database_path,
        batch_size=settings.batch_size,
        min_price=settings.min_listing_price,
    )

    if args.serve:
        import uvicorn

        from listing_hub.web.app import create_app

        app = create_app(settings, run_consumer=not args.no_consumer)
        uvicorn.run(app, host=settings.web_host, port=settings.web_port, log_level="info")
        return

    if not (args.ingest or args.reconcile or args.backfill_descriptions):
        parser.print_help()
        sys.exit(2)

    if args.ingest:
        if not args.ingest.is_file():
            print(f"Error: {args.ingest} is not a file")
            sys.exit(1)
        asyncio.run(run_ingest(settings, args.ingest))
    if args.reconcile and not asyncio.run(run_reconcile(settings)):
        sys.exit(1)
    if args.backfill_descriptions:
        if not settings.anthropic_api_key.get_secret_value():
            print("Error: LISTING_HUB_ANTHROPIC_API_KEY is required for --backfill-descriptions")
            sys.exit(1)
        asyncio.run(run_backfill_descriptions(settings))


if __name__ == "__main__":
    main()
