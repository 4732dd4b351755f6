from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import List, Optional, Union

from circulation.validators import parse_date, parse_datetime

AVAILABLE = "available"
BORROWED = "borrowed"
OVERDUE = "overdue"


@dataclass(frozen=True)
class Available:
    """Book is on the shelf; it carries no borrower data."""

    status = AVAILABLE


@dataclass(frozen=True)
class Borrowed:
    """Book is checked out. All three loan fields are always present together."""

    borrower_id: str
    borrowed_date: datetime
    due_date: date

    status = BORROWED


BookState = Union[Available, Borrowed]


class Action(str, Enum):
    ADDED = "added"
    UPDATED = "updated"
    DELETED = "deleted"
    CHECKED_OUT = "checked_out"
    CHECKED_IN = "checked_in"


class Book:
    """Kütüphanedeki tek bir kitap öğesini temsil eder."""

    def __init__(self, id: str, title: str, author: str, genre: str | None = None, year: int | None = None,
                 isbn: str | None = None, tags: list | None = None, description: str | None = None,
                 state: BookState | None = None, created_at: str | None = None,
                 updated_at: str | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author = author.strip()
        self.genre = genre
        self.year = year
        self.isbn = isbn
        self.tags: List[str] = list(tags or [])
        self.description = description
        self.state: BookState = state or Available()
        self.created_at = created_at
        self.updated_at = updated_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} ({self.status})"

    def __repr__(self) -> str:
        return f"<Book(id={self.id!r}, title={self.title!r}, status={self.status!r})>"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Book):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    # ------------------------- Yaşam döngüsü görünümleri ------------------------- #
    @property
    def status(self) -> str:
        return self.state.status

    @property
    def is_borrowed(self) -> bool:
        return isinstance(self.state, Borrowed)

    @property
    def borrower_id(self) -> Optional[str]:
        return self.state.borrower_id if isinstance(self.state, Borrowed) else None

    @property
    def borrowed_date(self) -> Optional[datetime]:
        return self.state.borrowed_date if isinstance(self.state, Borrowed) else None

    @property
    def due_date(self) -> Optional[date]:
        return self.state.due_date if isinstance(self.state, Borrowed) else None

    def is_overdue(self, today: date) -> bool:
        """Overdue is derived on read: borrowed and due before ``today``."""
        return isinstance(self.state, Borrowed) and self.state.due_date < today

    # ------------------------- Serileştirme ------------------------- #
    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "genre": self.genre,
            "year": self.year,
            "isbn": self.isbn,
            "tags": list(self.tags),
            "description": self.description,
            "status": self.status,
            "borrower_id": self.borrower_id,
            "borrowed_date": self.borrowed_date.isoformat() if self.borrowed_date else None,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        # SQLite'tan gelen JSON dize etiketlerini Python listesine çevir
        tags = data.get("tags")
        if isinstance(tags, str):
            try:
                tags = json.loads(tags)
            except ValueError:
                tags = [t.strip() for t in tags.split(",") if t.strip()]

        state: BookState = Available()
        if data.get("status") == BORROWED:
            state = Borrowed(
                borrower_id=data["borrower_id"],
                borrowed_date=parse_datetime(data["borrowed_date"]),
                due_date=parse_date(data["due_date"]),
            )

        created_at = data.get("created_at")
        updated_at = data.get("updated_at")
        return Book(
            id=data["id"],
            title=data["title"],
            author=data["author"],
            genre=data.get("genre"),
            year=data.get("year"),
            isbn=data.get("isbn"),
            tags=tags,
            description=data.get("description"),
            state=state,
            created_at=str(created_at) if created_at is not None else None,
            updated_at=str(updated_at) if updated_at is not None else None,
        )


@dataclass
class Borrower:
    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    created_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class ActivityRecord:
    """Immutable log entry for one mutating operation."""

    id: str
    action: Action
    timestamp: datetime
    book_id: Optional[str] = None
    borrower_id: Optional[str] = None
    notes: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "borrower_id": self.borrower_id,
            "action": self.action.value,
            "timestamp": self.timestamp.isoformat(),
            "notes": self.notes,
        }


@dataclass
class BookFilter:
    """Recognized ``list_books`` options; ``None`` means "do not filter"."""

    search: Optional[str] = None
    status: Optional[str] = None
    genre: Optional[str] = None

    def matches(self, book: Book, today: date) -> bool:
        if self.search:
            needle = self.search.lower()
            haystack = [book.title, book.author, book.isbn or ""] + list(book.tags)
            if not any(needle in value.lower() for value in haystack):
                return False
        if self.status:
            if self.status == OVERDUE:
                if not book.is_overdue(today):
                    return False
            elif book.status != self.status:
                return False
        if self.genre and self.genre.lower() not in (book.genre or "").lower():
            return False
        return True
