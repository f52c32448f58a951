"""Authentication endpoints."""

import logging

from fastapi import APIRouter, HTTPException, Request, Response, status
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from library_api.core.config import get_settings
from library_api.core.deps import CurrentClaims, DbSession, Sessions, SettingsDep
from library_api.core.exceptions import SessionError
from library_api.core.rate_limit import limiter
from library_api.core.security import get_password_hash, verify_password
from library_api.core.sessions import (
    REFRESH_COOKIE,
    clear_session_cookies,
    set_session_cookies,
)
from library_api.models import User, UserCreate, UserRead, UserRole
from library_api.schemas.auth import LoginRequest, MeResponse, MessageResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth")


@router.post("/register", response_model=UserRead, status_code=status.HTTP_201_CREATED)
async def register_user(
    user_data: UserCreate,
    session: DbSession,
) -> User:
    """Register a new reader account."""
    result = await session.execute(select(User).where(User.email == user_data.email))
    if result.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered",
        )

    user = User(
        name=user_data.name,
        email=user_data.email,
        hashed_password=get_password_hash(user_data.password),
        role=UserRole.READER,
        mailing=user_data.mailing,
    )
    session.add(user)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered",
        )
    await session.refresh(user)

    logger.info("Registered user %s", user.id)
    return user


@router.post("/login", response_model=MessageResponse)
@limiter.limit(get_settings().login_rate_limit)
async def login(
    request: Request,
    credentials: LoginRequest,
    response: Response,
    session: DbSession,
    sessions: Sessions,
    settings: SettingsDep,
) -> MessageResponse:
    """Check credentials and open a session via the ``jwt``/``refreshToken`` cookies."""
    result = await session.execute(select(User).where(User.email == credentials.email))
    user = result.scalar_one_or_none()

    if user is None or not verify_password(credentials.password, user.hashed_password):
        logger.info("Failed login for %s", credentials.email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
        )

    tokens = await sessions.start(user)
    set_session_cookies(response, tokens, settings)
    logger.info("User %s logged in", user.id)
    return MessageResponse(message="User authorization successfully")


@router.post("/refresh", response_model=MessageResponse)
async def refresh_session(
    request: Request,
    response: Response,
    sessions: Sessions,
    settings: SettingsDep,
) -> MessageResponse:
    """Rotate the refresh token and reissue the access token."""
    try:
        tokens = await sessions.refresh(request.cookies.get(REFRESH_COOKIE))
    except SessionError as e:
        logger.info("Explicit refresh failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid token",
        )
    set_session_cookies(response, tokens, settings)
    return MessageResponse(message="Session refreshed")


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    sessions: Sessions,
    settings: SettingsDep,
) -> MessageResponse:
    """Revoke the refresh token and clear both session cookies."""
    await sessions.end(request.cookies.get(REFRESH_COOKIE))
    clear_session_cookies(response, settings)
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=MeResponse)
async def get_current_user_info(claims: CurrentClaims, session: DbSession) -> MeResponse:
    """Get current user information."""
    user = await session.get(User, claims.user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return MeResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        role=user.role.value,
        mailing=user.mailing,
    )
