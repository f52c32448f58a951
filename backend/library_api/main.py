"""FastAPI application entry point."""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exception_handlers import (
    http_exception_handler,
    request_validation_exception_handler,
)
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from library_api.core.config import get_settings
from library_api.core.database import async_session_factory, ensure_admin_user, init_db
from library_api.core.exceptions import StorageError
from library_api.core.logging_config import setup_logging
from library_api.core.rate_limit import limiter
from library_api.core.sessions import apply_rotated_session
from library_api.routers import auth, books, health, mailing
from library_api.services.events import BookEventConsumer, BookEventPublisher
from library_api.services.mailing import NewBookNotifier

logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan events."""
    setup_logging(settings.log_level)
    settings.validate_required()

    await init_db()
    async with async_session_factory() as session:
        await ensure_admin_user(session, settings.admin_email, settings.admin_password)

    redis_client = None
    consumer_task = None
    app.state.event_publisher = None
    if settings.notifications_enabled:
        redis_client = aioredis.from_url(settings.redis_url, decode_responses=True)
        app.state.event_publisher = BookEventPublisher.from_settings(redis_client, settings)
        if settings.run_consumer_in_process:
            notifier = NewBookNotifier.from_settings(async_session_factory, settings)
            consumer = BookEventConsumer.from_settings(redis_client, notifier, settings)
            consumer_task = asyncio.create_task(consumer.run())
            logger.info("Book event consumer started in-process")
    else:
        logger.warning("Notifications disabled, new books will not be announced")

    yield

    if consumer_task is not None:
        consumer_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await consumer_task
    if redis_client is not None:
        await redis_client.aclose()


app = FastAPI(
    title=settings.app_name,
    description="Library catalog with cookie sessions and new-book mailing",
    version="1.0.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
    response = JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )
    return apply_rotated_session(request, response, settings)


@app.exception_handler(StarletteHTTPException)
async def session_http_exception_handler(request: Request, exc: StarletteHTTPException):
    response = await http_exception_handler(request, exc)
    return apply_rotated_session(request, response, settings)


@app.exception_handler(RequestValidationError)
async def session_validation_exception_handler(request: Request, exc: RequestValidationError):
    response = await request_validation_exception_handler(request, exc)
    return apply_rotated_session(request, response, settings)


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(auth.router, prefix=settings.api_v1_prefix, tags=["auth"])
app.include_router(mailing.router, prefix=settings.api_v1_prefix, tags=["mailing"])
app.include_router(books.router, prefix=settings.api_v1_prefix, tags=["books"])


def run() -> None:
    """Serve the API with uvicorn."""
    uvicorn.run("library_api.main:app", host=settings.host, port=settings.port)
