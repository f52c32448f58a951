"""Book event stream on Redis Streams.

The API publishes a ``BookAdded`` envelope after a book is committed. A
single consumer, running either inside the API process or as the standalone
worker, reads the stream through a consumer group and hands each new book to
the mailing notifier.
"""

import asyncio
import logging
from typing import Any, Protocol

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError, ResponseError

from library_api.core.config import Settings
from library_api.core.exceptions import EventPublishError
from library_api.schemas.events import BOOK_ADDED, BookEvent, BookPayload

logger = logging.getLogger(__name__)

PAYLOAD_FIELD = "payload"
DEDUP_PREFIX = "book-events:processed"


class EventPublisher(Protocol):
    async def publish(self, event: BookEvent) -> str: ...


class BookNotifier(Protocol):
    async def notify(self, book: BookPayload) -> Any: ...


class BookEventPublisher:
    """Publish book events to a Redis stream."""

    def __init__(
        self,
        redis_client: Redis,
        stream: str,
        max_len: int = 10000,
        min_replicas: int = 0,
        replica_wait_ms: int = 1000,
    ):
        self._redis = redis_client
        self.stream = stream
        self._max_len = max_len
        self._min_replicas = min_replicas
        self._replica_wait_ms = replica_wait_ms

    @classmethod
    def from_settings(cls, redis_client: Redis, settings: Settings) -> "BookEventPublisher":
        return cls(
            redis_client,
            stream=settings.book_events_stream,
            max_len=settings.event_stream_max_len,
            min_replicas=settings.event_publish_min_replicas,
            replica_wait_ms=settings.event_publish_wait_ms,
        )

    async def publish(self, event: BookEvent) -> str:
        """Append an event to the stream.

        When ``min_replicas`` is set, the call also waits until that many
        replicas have acknowledged the write.

        Returns:
            Stream entry id

        Raises:
            EventPublishError: If Redis rejects the write or replication falls short
        """
        try:
            message_id = await self._redis.xadd(
                self.stream,
                {PAYLOAD_FIELD: event.model_dump_json()},
                maxlen=self._max_len,
                approximate=True,
            )
            if self._min_replicas > 0:
                acked = await self._redis.wait(self._min_replicas, self._replica_wait_ms)
                if acked < self._min_replicas:
                    raise EventPublishError(
                        f"Only {acked} of {self._min_replicas} replicas acknowledged {message_id}"
                    )
        except RedisError as e:
            raise EventPublishError(f"Failed to publish {event.event}: {e}") from e

        logger.info("Published %s for book %s as %s", event.event, event.data.id, message_id)
        return message_id if isinstance(message_id, str) else message_id.decode()


class BookEventConsumer:
    """Consume book events and trigger new-book notifications.

    Entries are acknowledged once handled, whether or not every email went
    out; malformed and duplicate entries are acknowledged and skipped.
    """

    def __init__(
        self,
        redis_client: Redis,
        notifier: BookNotifier,
        *,
        stream: str,
        group: str,
        consumer_name: str,
        dedup_ttl: int = 3600,
        batch_size: int = 10,
        block_ms: int = 5000,
        retry_delay: float = 5.0,
    ):
        self._redis = redis_client
        self._notifier = notifier
        self.stream = stream
        self.group = group
        self.consumer_name = consumer_name
        self._dedup_ttl = dedup_ttl
        self._batch_size = batch_size
        self._block_ms = block_ms
        self._retry_delay = retry_delay
        self._running = False

    @classmethod
    def from_settings(
        cls, redis_client: Redis, notifier: BookNotifier, settings: Settings
    ) -> "BookEventConsumer":
        return cls(
            redis_client,
            notifier,
            stream=settings.book_events_stream,
            group=settings.book_events_group,
            consumer_name=settings.book_events_consumer,
            dedup_ttl=settings.event_dedup_ttl_seconds,
        )

    async def ensure_group(self) -> None:
        """Create the consumer group at the newest entry so history is not replayed."""
        try:
            await self._redis.xgroup_create(self.stream, self.group, id="$", mkstream=True)
            logger.info("Created consumer group '%s' on stream '%s'", self.group, self.stream)
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

    async def run(self) -> None:
        """Read and handle entries until stopped or cancelled."""
        self._running = True
        await self.ensure_group()
        logger.info("Consuming '%s' as %s/%s", self.stream, self.group, self.consumer_name)
        while self._running:
            try:
                response = await self._redis.xreadgroup(
                    self.group,
                    self.consumer_name,
                    {self.stream: ">"},
                    count=self._batch_size,
                    block=self._block_ms,
                )
            except RedisError as e:
                logger.error("Failed to read from '%s': %s", self.stream, e)
                await asyncio.sleep(self._retry_delay)
                continue

            for _stream, messages in response or []:
                for message_id, fields in messages:
                    try:
                        await self.handle_message(message_id, fields)
                    except Exception:
                        logger.exception("Failed to handle entry %s", message_id)

    def stop(self) -> None:
        self._running = False

    async def handle_message(self, message_id: str, fields: dict) -> bool:
        """Handle one stream entry.

        Returns:
            True if a notification was triggered, False if the entry was skipped
        """
        try:
            return await self._dispatch(message_id, fields)
        finally:
            await self._ack(message_id)

    async def _dispatch(self, message_id: str, fields: dict) -> bool:
        raw = fields.get(PAYLOAD_FIELD)
        if raw is None:
            logger.error("Entry %s has no %s field, skipping", message_id, PAYLOAD_FIELD)
            return False
        try:
            event = BookEvent.model_validate_json(raw)
        except ValidationError as e:
            logger.error("Failed to parse entry %s: %s", message_id, e)
            return False

        logger.info("New event received: %s (%s)", event.event, message_id)
        if event.event != BOOK_ADDED:
            logger.info("Ignoring event kind %s", event.event)
            return False

        if not await self._first_delivery(event):
            logger.info("Duplicate %s, skipping", event.dedup_key)
            return False

        await self._notifier.notify(event.data)
        return True

    async def _first_delivery(self, event: BookEvent) -> bool:
        try:
            created = await self._redis.set(
                f"{DEDUP_PREFIX}:{event.dedup_key}", "1", nx=True, ex=self._dedup_ttl
            )
        except RedisError as e:
            # without the marker a redelivery may send twice
            logger.warning("Dedup check failed for %s: %s", event.dedup_key, e)
            return True
        return bool(created)

    async def _ack(self, message_id: str) -> None:
        try:
            await self._redis.xack(self.stream, self.group, message_id)
        except RedisError as e:
            logger.error("Failed to acknowledge %s: %s", message_id, e)
