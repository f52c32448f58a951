"""Book and genre models for the catalog."""

from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import Field, Relationship, SQLModel

from library_api.models.base import utc_now


class BookGenreLink(SQLModel, table=True):
    """Association between books and genres."""

    __tablename__ = "book_genres"

    book_id: int | None = Field(default=None, foreign_key="books.id", primary_key=True)
    genre_id: int | None = Field(default=None, foreign_key="genres.id", primary_key=True)


class Genre(SQLModel, table=True):
    """Genre database model."""

    __tablename__ = "genres"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(unique=True, index=True)


class BookBase(SQLModel):
    """Base book fields."""

    title: str = Field(index=True)
    author: str
    published_year: str
    description: str = ""


class Book(BookBase, table=True):
    """Book database model."""

    __tablename__ = "books"

    id: int | None = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))

    # Relationships
    genres: list[Genre] = Relationship(link_model=BookGenreLink)


class GenreRead(SQLModel):
    """Schema for reading a genre."""

    id: int
    name: str


class BookCreate(SQLModel):
    """Schema for adding a book."""

    title: str = Field(min_length=1)
    author: str = Field(min_length=1)
    published_year: str = Field(min_length=1)
    genre: list[str] = Field(min_length=1)
    description: str = ""


class BookUpdate(SQLModel):
    """Schema for modifying a book; omitted fields are left unchanged."""

    title: str | None = None
    author: str | None = None
    published_year: str | None = None
    genre: list[str] | None = None
    description: str | None = None


class BookSummary(SQLModel):
    """Book as shown in list and search results."""

    id: int
    title: str
    author: str
    published_year: str
    genres: list[GenreRead] = []


class BookRead(BookSummary):
    """Schema for reading a single book."""

    description: str
    created_at: datetime


class BookListResponse(SQLModel):
    """Paginated list of books."""

    page: int
    limit: int
    total_books: int
    total_pages: int
    books: list[BookSummary]
