"""Standalone book event consumer.

Runs the mailing consumer outside the API process. Start the API with
``RUN_CONSUMER_IN_PROCESS=false`` when using this worker so that only one
consumer reads the stream.
"""

import asyncio
import logging

import redis.asyncio as aioredis

from library_api.core.config import get_settings
from library_api.core.database import async_session_factory
from library_api.core.logging_config import setup_logging
from library_api.services.events import BookEventConsumer
from library_api.services.mailing import NewBookNotifier

logger = logging.getLogger(__name__)


async def run_worker() -> None:
    settings = get_settings()
    redis_client = aioredis.from_url(settings.redis_url, decode_responses=True)
    notifier = NewBookNotifier.from_settings(async_session_factory, settings)
    consumer = BookEventConsumer.from_settings(redis_client, notifier, settings)
    try:
        await consumer.run()
    finally:
        consumer.stop()
        await redis_client.aclose()
        logger.info("Book event consumer stopped")


def main() -> None:
    setup_logging(get_settings().log_level)
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
