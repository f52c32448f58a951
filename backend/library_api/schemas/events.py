"""Event envelopes published on the book event stream."""

from pydantic import BaseModel

BOOK_ADDED = "BookAdded"


class GenrePayload(BaseModel):
    id: int
    name: str


class BookPayload(BaseModel):
    """Book fields carried by catalog events."""

    id: int
    title: str
    author: str
    published_year: str
    description: str = ""
    genres: list[GenrePayload] = []

    @property
    def genre_names(self) -> str:
        return ", ".join(genre.name for genre in self.genres)


class BookEvent(BaseModel):
    """Envelope: ``{"event": <kind>, "data": <book>}``."""

    event: str
    data: BookPayload

    @classmethod
    def book_added(cls, book: BookPayload) -> "BookEvent":
        return cls(event=BOOK_ADDED, data=book)

    @property
    def dedup_key(self) -> str:
        return f"{self.event}:{self.data.id}"
