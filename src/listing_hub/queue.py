"""In-process message queue and the consumer that dispatches its work.

Messages may be delivered with a delay. A handler failure re-delivers the
message after the next delay in the backoff schedule; once the schedule is
exhausted the message is moved to the dead-letter list.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

from pydantic import ValidationError

from listing_hub.db.raw_records import insert_raw_record
from listing_hub.descriptions import backfill_descriptions
from listing_hub.errors import InvalidMessageError
from listing_hub.logging import get_logger
from listing_hub.models import MessageType, QueueMessage

if TYPE_CHECKING:
    from listing_hub.config import Settings
    from listing_hub.db.database import Database
    from listing_hub.descriptions import DescriptionGenerator
    from listing_hub.reconcile import ReconciliationPipeline

logger = get_logger(__name__)

DEFAULT_BACKOFF_SCHEDULE: Final = (1.0, 5.0, 10.0)

MessageHandler = Callable[[QueueMessage], Awaitable[None]]


def parse_message(payload: Any) -> QueueMessage:
    """Validate an untrusted payload into a queue message.

    Raises:
        InvalidMessageError: The payload is not a valid message.
    """
    try:
        return QueueMessage.model_validate(payload)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'message'}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidMessageError(errors) from e


@dataclass
class _Delivery:
    message: QueueMessage
    attempt: int = 0


class MessageQueue:
    """Asyncio-backed queue with delayed delivery, retries and dead letters."""

    def __init__(self, *, backoff_schedule: tuple[float, ...] = DEFAULT_BACKOFF_SCHEDULE) -> None:
        self._backoff_schedule = backoff_schedule
        self._queue: asyncio.Queue[_Delivery] = asyncio.Queue()
        self._timers: set[asyncio.Task[None]] = set()
        self._listener: asyncio.Task[None] | None = None
        self.dead_letters: list[QueueMessage] = []

    @property
    def running(self) -> bool:
        return self._listener is not None and not self._listener.done()

    async def start(self, handler: MessageHandler) -> None:
        """Start delivering messages to ``handler``."""
        if self.running:
            raise RuntimeError("Queue listener already running")
        self._listener = asyncio.create_task(self._listen(handler))
        logger.info("queue_started", backoff_schedule=list(self._backoff_schedule))

    async def close(self) -> None:
        """Stop the listener and drop pending delayed deliveries."""
        timers, self._timers = self._timers, set()
        for timer in timers:
            timer.cancel()
        listener, self._listener = self._listener, None
        if listener is not None:
            listener.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await listener
        if timers or listener is not None:
            logger.info("queue_closed", dropped_delayed=len(timers), queued=self._queue.qsize())

    async def enqueue(self, message: QueueMessage, *, delay: float = 0.0) -> None:
        """Schedule a message for delivery after ``delay`` seconds."""
        self._schedule(_Delivery(message), delay)
        logger.debug("message_enqueued", type=message.type.value, delay=delay)

    async def join(self) -> None:
        """Wait until every enqueued message (including retries) has been handled."""
        while True:
            if self._timers:
                await asyncio.gather(*self._timers, return_exceptions=True)
            await self._queue.join()
            if not self._timers:
                return

    def _schedule(self, delivery: _Delivery, delay: float) -> None:
        if delay <= 0:
            self._queue.put_nowait(delivery)
            return

        async def _deliver_later() -> None:
            await asyncio.sleep(delay)
            self._queue.put_nowait(delivery)

        timer = asyncio.create_task(_deliver_later())
        self._timers.add(timer)
        timer.add_done_callback(self._timers.discard)

    async def _listen(self, handler: MessageHandler) -> None:
        while True:
            delivery = await self._queue.get()
            try:
                await handler(delivery.message)
            except Exception as e:
                self._retry_or_dead_letter(delivery, e)
            finally:
                self._queue.task_done()

    def _retry_or_dead_letter(self, delivery: _Delivery, error: Exception) -> None:
        message = delivery.message
        if delivery.attempt < len(self._backoff_schedule):
            delay = self._backoff_schedule[delivery.attempt]
            logger.warning(
                "message_handler_failed",
                type=message.type.value,
                attempt=delivery.attempt + 1,
                retry_in=delay,
                error=str(error),
                error_type=type(error).__name__,
            )
            self._schedule(_Delivery(message, delivery.attempt + 1), delay)
            return

        self.dead_letters.append(message)
        logger.error(
            "message_dead_lettered",
            type=message.type.value,
            attempts=delivery.attempt + 1,
            error=str(error),
            error_type=type(error).__name__,
        )


class QueueConsumer:
    """Dispatch queue messages to ingestion, reconciliation or description backfill."""

    def __init__(
        self,
        db: Database,
        pipeline: ReconciliationPipeline,
        generator: DescriptionGenerator | None = None,
        *,
        ai_backfill_limit: int = 10,
        ai_concurrency: int = 2,
        ai_group_delay_seconds: float = 2.0,
        ai_timeout_seconds: float = 60.0,
    ) -> None:
        self._db = db
        self._pipeline = pipeline
        self._generator = generator
        self._ai_backfill_limit = ai_backfill_limit
        self._ai_concurrency = ai_concurrency
        self._ai_group_delay_seconds = ai_group_delay_seconds
        self._ai_timeout_seconds = ai_timeout_seconds

    @classmethod
    def from_settings(
        cls,
        db: Database,
        pipeline: ReconciliationPipeline,
        generator: DescriptionGenerator | None,
        settings: Settings,
    ) -> QueueConsumer:
        return cls(
            db,
            pipeline,
            generator,
            ai_backfill_limit=settings.ai_backfill_limit,
            ai_concurrency=settings.ai_concurrency,
            ai_group_delay_seconds=settings.ai_group_delay_seconds,
            ai_timeout_seconds=settings.ai_timeout_seconds,
        )

    async def handle(self, message: QueueMessage) -> None:
        """Process one message. Exceptions propagate so the queue can retry."""
        log = logger.bind(message_type=message.type.value, source=message.source.value)
        match message.type:
            case MessageType.CREATE_RAW_LAMUDI_LISTING_DATA:
                async with self._db.transaction() as conn:
                    raw_id = await insert_raw_record(conn, message.data)
                log.info("raw_record_ingested", raw_id=raw_id)
            case MessageType.CREATE_LISTING_FROM_RAW_LAMUDI_DATA:
                result = await self._pipeline.run_batch()
                log.info(
                    "reconciliation_message_handled",
                    batch_id=result.batch_id,
                    records=len(result.raw_ids),
                )
            case MessageType.CREATE_AI_GENERATED_DESCRIPTION:
                if self._generator is None:
                    log.warning("ai_description_skipped", reason="no_api_key")
                    return
                await backfill_descriptions(
                    self._db,
                    self._generator,
                    limit=self._ai_backfill_limit,
                    concurrency=self._ai_concurrency,
                    group_delay_seconds=self._ai_group_delay_seconds,
                    timeout_seconds=self._ai_timeout_seconds,
                )
