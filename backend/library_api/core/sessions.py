"""Refresh-token sessions: login, rotation and logout."""

import logging
from dataclasses import dataclass
from datetime import timedelta

from fastapi import Request, Response
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from library_api.core.config import Settings
from library_api.core.exceptions import (
    ExpiredSessionError,
    NoSessionError,
    StorageError,
    UnknownSessionError,
)
from library_api.core.security import TokenIssuer
from library_api.models import User
from library_api.models.base import as_utc, utc_now

logger = logging.getLogger(__name__)

ACCESS_COOKIE = "jwt"
REFRESH_COOKIE = "refreshToken"


@dataclass
class SessionTokens:
    """Tokens handed to the client after login or refresh."""

    user: User
    access_token: str
    refresh_token: str


class SessionManager:
    """Issue, rotate and revoke refresh-token sessions.

    A user has at most one valid refresh token. Rotation replaces the stored
    value with a compare-and-swap so two concurrent refreshes of the same
    token cannot both succeed.
    """

    def __init__(self, session: AsyncSession, issuer: TokenIssuer, settings: Settings):
        self.session = session
        self.issuer = issuer
        self.refresh_ttl = timedelta(hours=settings.refresh_token_expire_hours)

    async def start(self, user: User) -> SessionTokens:
        """Open a session for a user who just proved their credentials."""
        refresh_token = self.issuer.issue_refresh_token()
        user.refresh_token = refresh_token
        user.refresh_token_expires_at = utc_now() + self.refresh_ttl
        self.session.add(user)
        await self._commit(f"start session for user {user.id}")
        access_token = self.issuer.issue_access_token(user)
        return SessionTokens(user=user, access_token=access_token, refresh_token=refresh_token)

    async def refresh(self, presented: str | None) -> SessionTokens:
        """Exchange a refresh token for a new refresh token and access token.

        Raises:
            NoSessionError: No refresh token presented
            UnknownSessionError: Token is not any user's current token
            ExpiredSessionError: Token found but past its expiry
            StorageError: Rotation could not be persisted
        """
        if not presented:
            raise NoSessionError("Refresh token not found")

        user = await self._find_by_refresh_token(presented)
        if user is None:
            raise UnknownSessionError("Invalid refresh token")

        if user.refresh_token_expires_at is None or as_utc(user.refresh_token_expires_at) < utc_now():
            raise ExpiredSessionError("Refresh token expired")

        user_id = user.id
        new_token = self.issuer.issue_refresh_token()
        expires_at = utc_now() + self.refresh_ttl
        try:
            result = await self.session.execute(
                update(User)
                .where(User.id == user_id, User.refresh_token == presented)
                .values(refresh_token=new_token, refresh_token_expires_at=expires_at)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.session.rollback()
                logger.info("Refresh token for user %s was rotated concurrently", user_id)
                raise UnknownSessionError("Refresh token already rotated")
            await self.session.commit()
            await self.session.refresh(user)
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Failed to rotate refresh token for user %s: %s", user_id, e)
            raise StorageError("Failed to update refresh token") from e

        access_token = self.issuer.issue_access_token(user)
        logger.info("Rotated refresh token for user %s", user_id)
        return SessionTokens(user=user, access_token=access_token, refresh_token=new_token)

    async def end(self, presented: str | None) -> None:
        """Revoke the session bound to a refresh token, if any."""
        if not presented:
            return
        user = await self._find_by_refresh_token(presented)
        if user is None:
            return
        user.refresh_token = None
        user.refresh_token_expires_at = None
        self.session.add(user)
        await self._commit(f"end session for user {user.id}")
        logger.info("Cleared refresh token for user %s", user.id)

    async def _find_by_refresh_token(self, token: str) -> User | None:
        try:
            result = await self.session.execute(select(User).where(User.refresh_token == token))
        except SQLAlchemyError as e:
            logger.error("Failed to look up refresh token: %s", e)
            raise StorageError("Failed to look up refresh token") from e
        return result.scalar_one_or_none()

    async def _commit(self, action: str) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Failed to %s: %s", action, e)
            raise StorageError(f"Failed to {action}") from e


def set_access_cookie(response: Response, access_token: str, settings: Settings) -> None:
    response.set_cookie(
        key=ACCESS_COOKIE,
        value=access_token,
        max_age=settings.access_token_expire_seconds,
        path="/",
        domain=settings.cookie_domain,
        secure=settings.cookie_secure,
        httponly=True,
        samesite="lax",
    )


def set_session_cookies(response: Response, tokens: SessionTokens, settings: Settings) -> None:
    """Set both the access and refresh cookies."""
    set_access_cookie(response, tokens.access_token, settings)
    response.set_cookie(
        key=REFRESH_COOKIE,
        value=tokens.refresh_token,
        max_age=settings.refresh_cookie_max_age,
        path="/",
        domain=settings.cookie_domain,
        secure=settings.cookie_secure,
        httponly=True,
        samesite="lax",
    )


def clear_session_cookies(response: Response, settings: Settings) -> None:
    for key in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(
            key=key,
            path="/",
            domain=settings.cookie_domain,
            secure=settings.cookie_secure,
            httponly=True,
            samesite="lax",
        )


def apply_rotated_session(request: Request, response: Response, settings: Settings) -> Response:
    """Copy cookies from a refresh done earlier in this request onto ``response``."""
    tokens = getattr(request.state, "rotated_session", None)
    if tokens is not None:
        set_session_cookies(response, tokens, settings)
    return response
