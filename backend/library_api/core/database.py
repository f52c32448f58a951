"""Async database engine and session management."""

import logging
from collections.abc import AsyncIterator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel, select

from library_api.core.config import get_settings
from library_api.core.security import get_password_hash
from library_api.models import User, UserRole

logger = logging.getLogger(__name__)
settings = get_settings()

engine = create_async_engine(settings.database_url, echo=settings.debug, future=True)

async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

TRIGRAM_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_books_title_trgm ON books USING GIN (title gin_trgm_ops)",
    "CREATE INDEX IF NOT EXISTS idx_books_description_trgm ON books USING GIN (description gin_trgm_ops)",
)


async def get_session() -> AsyncIterator[AsyncSession]:
    """Yield a database session for one request."""
    async with async_session_factory() as session:
        yield session


async def init_db(db_engine: AsyncEngine = engine) -> None:
    """Create tables, plus trigram search support on PostgreSQL."""
    is_postgres = db_engine.dialect.name == "postgresql"
    async with db_engine.begin() as conn:
        if is_postgres:
            await conn.execute(text("CREATE EXTENSION IF NOT EXISTS pg_trgm"))
        await conn.run_sync(SQLModel.metadata.create_all)
        if is_postgres:
            for statement in TRIGRAM_INDEXES:
                await conn.execute(text(statement))
    logger.info("Database schema ready (dialect=%s)", db_engine.dialect.name)


async def ensure_admin_user(session: AsyncSession, email: str | None, password: str | None) -> User | None:
    """Seed the configured admin account if it does not exist yet."""
    if not email or not password:
        return None

    result = await session.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user is not None:
        return user

    user = User(
        name="Administrator",
        email=email,
        hashed_password=get_password_hash(password),
        role=UserRole.ADMIN,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    logger.info("Created admin user %s", email)
    return user
