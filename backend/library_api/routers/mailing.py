"""Mailing subscription endpoints."""

import logging

from fastapi import APIRouter, HTTPException, Response, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from library_api.core.config import Settings
from library_api.core.deps import CurrentClaims, DbSession, Issuer, SettingsDep
from library_api.core.exceptions import InvalidTokenError, StorageError
from library_api.core.security import AccessClaims, TokenIssuer
from library_api.core.sessions import set_access_cookie
from library_api.models import User
from library_api.schemas.auth import MessageResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/mailing")


@router.post("/subscribe", response_model=MessageResponse)
async def subscribe_mailing(
    claims: CurrentClaims,
    response: Response,
    session: DbSession,
    issuer: Issuer,
    settings: SettingsDep,
) -> MessageResponse:
    """Subscribe the current user to new book announcements."""
    return await _set_mailing(True, claims, response, session, issuer, settings)


@router.post("/unsubscribe", response_model=MessageResponse)
async def unsubscribe_mailing(
    claims: CurrentClaims,
    response: Response,
    session: DbSession,
    issuer: Issuer,
    settings: SettingsDep,
) -> MessageResponse:
    """Remove the current user from new book announcements."""
    return await _set_mailing(False, claims, response, session, issuer, settings)


@router.get("/unsubscribe/{token}", response_model=MessageResponse)
async def unsubscribe_by_link(token: str, session: DbSession, issuer: Issuer) -> MessageResponse:
    """One-click unsubscribe from the signed link in new book emails."""
    try:
        user_id = issuer.validate_unsubscribe_token(token)
    except InvalidTokenError as e:
        logger.info("Rejected unsubscribe link: %s", e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid unsubscribe link")

    user = await session.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if not user.mailing:
        return MessageResponse(message="You have already unsubscribed from the mailing list")

    user.mailing = False
    session.add(user)
    try:
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error("Failed to unsubscribe user %s: %s", user_id, e)
        raise StorageError("Failed to change mailing subscription") from e
    logger.info("User %s unsubscribed by link", user_id)
    return MessageResponse(message="You have unsubscribed from the mailing list")


async def _set_mailing(
    subscribe: bool,
    claims: AccessClaims,
    response: Response,
    session: AsyncSession,
    issuer: TokenIssuer,
    settings: Settings,
) -> MessageResponse:
    user = await session.get(User, claims.user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    if user.mailing == subscribe:
        state = "subscribed to" if subscribe else "unsubscribed from"
        return MessageResponse(message=f"You have already {state} the mailing list")

    user.mailing = subscribe
    session.add(user)
    try:
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error("Failed to change mailing for user %s: %s", claims.subject, e)
        raise StorageError("Failed to change mailing subscription") from e

    # the access token embeds the mailing flag, so reissue it
    set_access_cookie(response, issuer.issue_access_token(user), settings)
    logger.info("User %s mailing set to %s", claims.subject, subscribe)
    if subscribe:
        return MessageResponse(message="You have subscribed to the mailing list")
    return MessageResponse(message="You have unsubscribed from the mailing list")
