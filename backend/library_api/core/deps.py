"""Shared FastAPI dependencies, including the access control gate."""

import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from library_api.core.config import Settings, get_settings
from library_api.core.database import get_session
from library_api.core.exceptions import (
    ForbiddenRoleError,
    InvalidTokenError,
    SessionError,
)
from library_api.core.security import AccessClaims, TokenIssuer
from library_api.core.sessions import (
    ACCESS_COOKIE,
    REFRESH_COOKIE,
    SessionManager,
    set_session_cookies,
)
from library_api.models import UserRole

logger = logging.getLogger(__name__)

DbSession = Annotated[AsyncSession, Depends(get_session)]
SettingsDep = Annotated[Settings, Depends(get_settings)]


def get_token_issuer(settings: SettingsDep) -> TokenIssuer:
    return TokenIssuer(settings)


Issuer = Annotated[TokenIssuer, Depends(get_token_issuer)]


def get_session_manager(session: DbSession, issuer: Issuer, settings: SettingsDep) -> SessionManager:
    return SessionManager(session, issuer, settings)


Sessions = Annotated[SessionManager, Depends(get_session_manager)]


class AccessGate:
    """Authenticate the request from its cookies and authorize it by role.

    A missing, malformed or expired access token falls through to the
    refresh path; only when that also fails is the request rejected.
    """

    def __init__(self, *allowed_roles: UserRole):
        self.allowed_roles = frozenset(role.value for role in allowed_roles)

    async def __call__(
        self,
        request: Request,
        response: Response,
        issuer: Issuer,
        sessions: Sessions,
        settings: SettingsDep,
    ) -> AccessClaims:
        claims = self._claims_from_cookie(request, issuer)
        if claims is None:
            claims = await self._refresh(request, response, issuer, sessions, settings)

        try:
            self._authorize(claims)
        except ForbiddenRoleError as e:
            logger.info("User %s denied: %s", claims.subject, e)
            raise HTTPException(
                status_code=e.status_code,
                detail="You do not have access to this resource",
            )
        return claims

    def _claims_from_cookie(self, request: Request, issuer: TokenIssuer) -> AccessClaims | None:
        token = request.cookies.get(ACCESS_COOKIE)
        if not token:
            logger.debug("No access token cookie, trying refresh")
            return None
        try:
            return issuer.validate_access_token(token)
        except InvalidTokenError as e:
            logger.info("Access token rejected (%s), trying refresh", e)
            return None

    async def _refresh(
        self,
        request: Request,
        response: Response,
        issuer: TokenIssuer,
        sessions: SessionManager,
        settings: Settings,
    ) -> AccessClaims:
        try:
            tokens = await sessions.refresh(request.cookies.get(REFRESH_COOKIE))
        except SessionError as e:
            logger.info("Session refresh failed: %s", e)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Missing or invalid token",
            )
        # error responses must carry the rotated cookies too
        request.state.rotated_session = tokens
        set_session_cookies(response, tokens, settings)
        return issuer.validate_access_token(tokens.access_token)

    def _authorize(self, claims: AccessClaims) -> None:
        if claims.role not in self.allowed_roles:
            raise ForbiddenRoleError(f"role '{claims.role}' not in {sorted(self.allowed_roles)}")


CurrentClaims = Annotated[AccessClaims, Depends(AccessGate(UserRole.ADMIN, UserRole.READER))]
AdminClaims = Annotated[AccessClaims, Depends(AccessGate(UserRole.ADMIN))]
