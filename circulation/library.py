import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

from circulation.activity import DEFAULT_ACTIVITY_LIMIT, ActivityLogger
from circulation.book import AVAILABLE, BORROWED, OVERDUE, Action, Available, Book, BookFilter, Borrowed, Borrower
from circulation.errors import Conflict, InvalidState, NotFound, UniqueViolation, ValidationError
from circulation.search import build_suggestions, fuzzy_search
from circulation.storage import BOOK_FIELDS, BaseStorage
from circulation.telemetry import TelemetryService
from circulation.validators import (
    normalize_email,
    normalize_isbn,
    optional_text,
    parse_date,
    parse_tags,
    parse_year,
    require_text,
)

logger = logging.getLogger(__name__)

STATUS_FILTERS = (AVAILABLE, BORROWED, OVERDUE)
LIFECYCLE_FIELDS = ("status", "state", "borrower_id", "borrowed_date", "due_date")


class Library:
    """Manages the catalog and enforces the checkout/checkin lifecycle.

    A book is either ``Available`` or ``Borrowed``; every mutating call writes
    one activity record once the change itself has been stored.
    """

    def __init__(self, storage: BaseStorage, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.storage = storage
        self.clock = clock or datetime.now
        self.activity = ActivityLogger(storage, clock=self.clock)
        self.telemetry = TelemetryService(storage, clock=self.clock)

    def today(self) -> date:
        return self.clock().date()

    def close(self) -> None:
        self.storage.close()

    # ------------------------- Catalog ------------------------- #
    def add_book(self, title: Optional[str], author: Optional[str], genre: Optional[str] = None,
                 year: Any = None, isbn: Optional[str] = None, tags: Any = None,
                 description: Optional[str] = None) -> Book:
        """Add a new available book. Duplicate ISBNs raise ``Conflict``."""
        fields = self._clean_fields({
            "title": title,
            "author": author,
            "genre": genre,
            "year": year,
            "isbn": isbn,
            "tags": tags,
            "description": description,
        })
        fields["created_at"] = fields["updated_at"] = self.clock().isoformat()
        try:
            book = self.storage.create_book(fields)
        except UniqueViolation as e:
            raise self._conflict(e) from e

        logger.info("Added book %s (%s)", book.id, book.title)
        self.activity.record(Action.ADDED, book_id=book.id, notes="Book added to library")
        return book

    def get_book(self, book_id: str) -> Book:
        book = self.storage.get_book(book_id)
        if book is None:
            raise NotFound("Book not found")
        return book

    def update_book(self, book_id: str, **fields: Any) -> Book:
        """Change only the supplied fields. Lifecycle fields go through checkout/checkin."""
        protected = [key for key in fields if key in LIFECYCLE_FIELDS]
        if protected:
            raise ValidationError(
                f"{', '.join(protected)} cannot be changed directly; use checkout or checkin"
            )
        unknown = [key for key in fields if key not in BOOK_FIELDS]
        if unknown:
            raise ValidationError(f"Unknown book fields: {', '.join(unknown)}")
        if not fields:
            raise ValidationError("Nothing to update. Provide at least one field.")

        self.get_book(book_id)
        changes = self._clean_fields(fields)
        changes["updated_at"] = self.clock().isoformat()
        try:
            book = self.storage.update_book(book_id, changes)
        except UniqueViolation as e:
            raise self._conflict(e) from e
        if book is None:
            raise NotFound("Book not found")

        logger.info("Updated book %s: %s", book_id, ", ".join(sorted(fields)))
        self.activity.record(Action.UPDATED, book_id=book_id, notes="Book information updated")
        return book

    def delete_book(self, book_id: str) -> None:
        book = self.get_book(book_id)
        if book.is_borrowed:
            raise InvalidState("Cannot delete a borrowed book")
        if not self.storage.delete_book(book_id):
            raise NotFound("Book not found")

        logger.info("Deleted book %s (%s)", book_id, book.title)
        self.activity.record(Action.DELETED, book_id=book_id, notes=f"Book removed from library: {book.title}")

    def list_books(self, search: Optional[str] = None, status: Optional[str] = None,
                   genre: Optional[str] = None) -> List[Book]:
        """Books matching every supplied filter, ordered by title.

        ``status`` may be ``available``, ``borrowed`` or the derived ``overdue``.
        """
        status = optional_text(status)
        if status is not None:
            status = status.lower()
            if status not in STATUS_FILTERS:
                raise ValidationError(f"status must be one of: {', '.join(STATUS_FILTERS)}")
        book_filter = BookFilter(search=optional_text(search), status=status, genre=optional_text(genre))
        return self.storage.list_books(book_filter, today=self.today())

    def list_overdue(self) -> List[Book]:
        books = self.list_books(status=OVERDUE)
        return sorted(books, key=lambda b: (b.due_date, b.title.lower()))

    def search(self, query: str, fuzzy: bool = False) -> List[Book]:
        if not fuzzy:
            return self.list_books(search=query)
        return fuzzy_search(self.storage.list_books(today=self.today()), query)

    def suggest(self, query: str, kind: str = "all") -> List[Dict[str, object]]:
        return build_suggestions(self.storage.list_books(today=self.today()), query, kind)

    def get_statistics(self) -> Dict[str, int]:
        today = self.today()
        books = self.storage.list_books(today=today)
        return {
            "totalBooks": len(books),
            "availableBooks": sum(1 for b in books if not b.is_borrowed),
            "borrowedBooks": sum(1 for b in books if b.is_borrowed),
            "overdueBooks": sum(1 for b in books if b.is_overdue(today)),
        }

    # ------------------------- Circulation ------------------------- #
    def checkout(self, book_id: str, borrower_name: Optional[str], due_date: Any,
                 borrower_email: Optional[str] = None, borrower_phone: Optional[str] = None) -> Book:
        """Lend an available book.

        The borrower is reused when the email matches an existing one. The due
        date is taken as given; defaulting it is up to the caller.
        """
        name = require_text(borrower_name, "borrower name")
        due = parse_date(due_date)
        email = normalize_email(borrower_email)
        phone = optional_text(borrower_phone)

        book = self.get_book(book_id)
        if book.is_borrowed:
            raise InvalidState("Book is not available for checkout")

        try:
            borrower = self.storage.upsert_borrower_by_email(name, email, phone)
        except UniqueViolation as e:
            raise self._conflict(e) from e

        now = self.clock()
        state = Borrowed(borrower_id=borrower.id, borrowed_date=now, due_date=due)
        updated = self.storage.update_book(book_id, {"state": state, "updated_at": now.isoformat()})
        if updated is None:
            raise NotFound("Book not found")

        logger.info("Checked out book %s to borrower %s, due %s", book_id, borrower.id, due.isoformat())
        self.activity.record(Action.CHECKED_OUT, book_id=book_id, borrower_id=borrower.id,
                             notes=f"Due: {due.isoformat()}")
        return updated

    def checkin(self, book_id: str) -> Book:
        book = self.get_book(book_id)
        if not book.is_borrowed:
            raise InvalidState("Book is not checked out")

        borrower_id = book.borrower_id
        updated = self.storage.update_book(
            book_id, {"state": Available(), "updated_at": self.clock().isoformat()}
        )
        if updated is None:
            raise NotFound("Book not found")

        logger.info("Checked in book %s from borrower %s", book_id, borrower_id)
        self.activity.record(Action.CHECKED_IN, book_id=book_id, borrower_id=borrower_id, notes="Book returned")
        return updated

    # ------------------------- Borrowers & activity ------------------------- #
    def list_borrowers(self) -> List[Borrower]:
        return self.storage.list_borrowers()

    def get_borrower(self, borrower_id: str) -> Optional[Borrower]:
        return self.storage.get_borrower(borrower_id)

    def list_activity(self, limit: int = DEFAULT_ACTIVITY_LIMIT) -> List[Dict[str, Any]]:
        return self.activity.recent(limit)

    def describe(self, book: Book, borrowers: Optional[Dict[str, Optional[Borrower]]] = None) -> Dict[str, Any]:
        """Book as a dict plus the borrower joined on read and the overdue flag."""
        data = book.to_dict()
        borrower = None
        if book.borrower_id:
            if borrowers is not None and book.borrower_id in borrowers:
                borrower = borrowers[book.borrower_id]
            else:
                borrower = self.storage.get_borrower(book.borrower_id)
                if borrowers is not None:
                    borrowers[book.borrower_id] = borrower
        data["borrower_name"] = borrower.name if borrower else None
        data["borrower_email"] = borrower.email if borrower else None
        data["is_overdue"] = book.is_overdue(self.today())
        return data

    def describe_all(self, books: List[Book]) -> List[Dict[str, Any]]:
        cache: Dict[str, Optional[Borrower]] = {}
        return [self.describe(book, cache) for book in books]

    # ------------------------- Utilities ------------------------- #
    @staticmethod
    def _clean_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
        cleaned: Dict[str, Any] = {}
        for key, value in fields.items():
            if key in ("title", "author"):
                cleaned[key] = require_text(value, key)
            elif key == "year":
                cleaned[key] = parse_year(value)
            elif key == "isbn":
                cleaned[key] = normalize_isbn(value)
            elif key == "tags":
                cleaned[key] = parse_tags(value)
            else:
                cleaned[key] = optional_text(value)
        return cleaned

    @staticmethod
    def _conflict(error: UniqueViolation) -> Conflict:
        if error.field == "isbn":
            return Conflict("ISBN already exists")
        if error.field == "email":
            return Conflict("A borrower with this email already exists")
        return Conflict(f"{error.field} already exists")
