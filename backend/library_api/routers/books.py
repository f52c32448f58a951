"""Book catalog endpoints."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from library_api.core.deps import AdminClaims, CurrentClaims, DbSession, SettingsDep
from library_api.core.exceptions import EventPublishError
from library_api.models import (
    BookCreate,
    BookListResponse,
    BookRead,
    BookUpdate,
    GenreRead,
)
from library_api.schemas.events import BookEvent
from library_api.services.catalog import CatalogService, book_payload
from library_api.services.events import EventPublisher

logger = logging.getLogger(__name__)

router = APIRouter()


def get_event_publisher(request: Request) -> EventPublisher | None:
    """Publisher created at startup; None when notifications are disabled."""
    return getattr(request.app.state, "event_publisher", None)


Publisher = Annotated[EventPublisher | None, Depends(get_event_publisher)]


@router.get("/books", response_model=BookListResponse)
async def list_books(
    session: DbSession,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort: str | None = Query(None, description="Sort by 'title', 'author' or 'year'"),
) -> BookListResponse:
    """List books with pagination, optionally sorted."""
    return await CatalogService(session).list_books(page, limit, sort)


@router.get("/books/search", response_model=BookListResponse)
async def search_books(
    session: DbSession,
    settings: SettingsDep,
    search: str = Query("", description="Text similar to a title or description"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
) -> BookListResponse:
    """Find books with a title or description similar to the query."""
    return await CatalogService(session).search_books(
        search, page, limit, similarity=settings.search_similarity
    )


@router.get("/books/{book_id}", response_model=BookRead)
async def get_book(book_id: int, claims: CurrentClaims, session: DbSession):
    """Get detailed information about a single book."""
    book = await CatalogService(session).get_book(book_id)
    if book is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Book not found")
    return BookRead.model_validate(book)


@router.post("/books", response_model=BookRead, status_code=status.HTTP_201_CREATED)
async def add_book(
    book_data: BookCreate,
    claims: AdminClaims,
    session: DbSession,
    publisher: Publisher,
):
    """Add a book and announce it to mailing subscribers."""
    book = await CatalogService(session).create_book(book_data)

    # the book is committed; publishing is best effort
    if publisher is None:
        logger.warning("Event publisher not configured, BookAdded for %s not sent", book.id)
    else:
        try:
            await publisher.publish(BookEvent.book_added(book_payload(book)))
        except EventPublishError as e:
            logger.error("Failed to send BookAdded for book %s: %s", book.id, e)

    logger.info("Admin %s added book %s", claims.subject, book.id)
    return BookRead.model_validate(book)


@router.put("/books/{book_id}", response_model=BookRead)
async def modify_book(
    book_id: int,
    book_data: BookUpdate,
    claims: AdminClaims,
    session: DbSession,
):
    """Change a book's fields; a non-empty genre list replaces its genres."""
    service = CatalogService(session)
    book = await service.get_book(book_id)
    if book is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Book not found")
    book = await service.update_book(book, book_data)
    logger.info("Admin %s modified book %s", claims.subject, book_id)
    return BookRead.model_validate(book)


@router.delete("/books/{book_id}")
async def delete_book(book_id: int, claims: AdminClaims, session: DbSession) -> dict:
    """Delete a book from the library."""
    service = CatalogService(session)
    book = await service.get_book(book_id)
    if book is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Book not found")
    title = book.title
    await service.delete_book(book)
    logger.info("Admin %s deleted book %s", claims.subject, book_id)
    return {"message": "Book deleted successfully", "id": book_id, "title": title}


@router.get("/genres", response_model=list[GenreRead])
async def list_genres(session: DbSession):
    """List all genres."""
    return await CatalogService(session).list_genres()
