"""Book and genre persistence."""

import logging
import math

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlmodel import select

from library_api.core.exceptions import StorageError
from library_api.models import Book, BookCreate, BookListResponse, BookSummary, BookUpdate, Genre
from library_api.schemas.events import BookPayload, GenrePayload

logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    "author": Book.author,
    "title": Book.title,
    "year": Book.published_year,
}


def normalize_genre_name(name: str) -> str:
    """Store genres as "Science fiction": first letter upper, the rest lower."""
    return name.strip().capitalize()


def book_payload(book: Book) -> BookPayload:
    """Event representation of a book with its genres loaded."""
    return BookPayload(
        id=book.id,
        title=book.title,
        author=book.author,
        published_year=book.published_year,
        description=book.description,
        genres=[GenrePayload(id=genre.id, name=genre.name) for genre in book.genres],
    )


class CatalogService:
    """Service for reading and writing the book catalog."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_or_create_genres(self, names: list[str]) -> list[Genre]:
        """Resolve genre names to rows, creating the missing ones.

        Created genres are committed individually, so a later failure can
        leave an unused genre behind.
        """
        genres: list[Genre] = []
        seen: set[str] = set()
        for raw_name in names:
            name = normalize_genre_name(raw_name)
            if not name or name in seen:
                continue
            seen.add(name)

            result = await self.session.execute(select(Genre).where(Genre.name == name))
            genre = result.scalar_one_or_none()
            if genre is None:
                genre = Genre(name=name)
                self.session.add(genre)
                await self.session.commit()
                await self.session.refresh(genre)
                logger.info('Genre "%s" was created', name)
            genres.append(genre)
        return genres

    async def create_book(self, data: BookCreate) -> Book:
        """Insert a book with its genres."""
        try:
            genres = await self.get_or_create_genres(data.genre)
            book = Book(
                title=data.title,
                author=data.author,
                published_year=data.published_year,
                description=data.description,
                genres=genres,
            )
            self.session.add(book)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Failed to add book %r: %s", data.title, e)
            raise StorageError("Failed to add book") from e

        logger.info('Book "%s" created with id %s', book.title, book.id)
        return await self.get_book(book.id)

    async def get_book(self, book_id: int) -> Book | None:
        result = await self.session.execute(
            select(Book)
            .options(selectinload(Book.genres))
            .where(Book.id == book_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def update_book(self, book: Book, data: BookUpdate) -> Book:
        """Apply the non-empty fields of ``data``; genres are replaced wholesale."""
        book_id = book.id
        try:
            if data.title:
                book.title = data.title
            if data.author:
                book.author = data.author
            if data.published_year:
                book.published_year = data.published_year
            if data.description:
                book.description = data.description
            if data.genre:
                book.genres = await self.get_or_create_genres(data.genre)
            self.session.add(book)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Failed to update book %s: %s", book_id, e)
            raise StorageError("Failed to update book") from e
        return await self.get_book(book_id)

    async def delete_book(self, book: Book) -> None:
        try:
            await self.session.delete(book)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Failed to delete book: %s", e)
            raise StorageError("Failed to delete book") from e

    async def list_books(self, page: int, limit: int, sort: str | None = None) -> BookListResponse:
        """Return one page of books ordered by ``sort`` (id when unknown)."""
        total = await self.session.scalar(select(func.count()).select_from(Book))
        order = SORT_COLUMNS.get(sort or "", Book.id)
        result = await self.session.execute(
            select(Book)
            .options(selectinload(Book.genres))
            .order_by(order, Book.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return _page(page, limit, total or 0, list(result.scalars().all()))

    async def search_books(
        self,
        search: str,
        page: int,
        limit: int,
        similarity: float = 0.1,
    ) -> BookListResponse:
        """Find books whose title or description resembles ``search``.

        PostgreSQL uses pg_trgm similarity; other databases fall back to
        substring matching.
        """
        needle = search.strip().lower()
        pattern = f"%{needle}%"
        if self.session.bind.dialect.name == "postgresql":
            condition = or_(
                func.similarity(func.lower(Book.title), needle) > similarity,
                func.similarity(func.lower(Book.description), needle) > similarity,
                func.lower(Book.title).like(pattern),
            )
        else:
            condition = or_(
                func.lower(Book.title).like(pattern),
                func.lower(Book.description).like(pattern),
            )

        total = await self.session.scalar(select(func.count()).select_from(Book).where(condition))
        result = await self.session.execute(
            select(Book)
            .options(selectinload(Book.genres))
            .where(condition)
            .order_by(Book.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return _page(page, limit, total or 0, list(result.scalars().all()))

    async def list_genres(self) -> list[Genre]:
        result = await self.session.execute(select(Genre).order_by(Genre.name))
        return list(result.scalars().all())


def _page(page: int, limit: int, total: int, books: list[Book]) -> BookListResponse:
    return BookListResponse(
        page=page,
        limit=limit,
        total_books=total,
        total_pages=math.ceil(total / limit) if limit else 0,
        books=[BookSummary.model_validate(book) for book in books],
    )
