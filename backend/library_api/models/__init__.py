"""SQLModel database models."""

from library_api.models.user import User, UserRole, UserCreate, UserRead
from library_api.models.book import (
    Book,
    BookCreate,
    BookGenreLink,
    BookListResponse,
    BookRead,
    BookSummary,
    BookUpdate,
    Genre,
    GenreRead,
)

__all__ = [
    # User
    "User",
    "UserRole",
    "UserCreate",
    "UserRead",
    # Catalog
    "Book",
    "BookCreate",
    "BookGenreLink",
    "BookListResponse",
    "BookRead",
    "BookSummary",
    "BookUpdate",
    "Genre",
    "GenreRead",
]
