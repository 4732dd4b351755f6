"""Storage adapter contract and the in-memory implementation.

Every adapter must honor the same contract so the lifecycle service can run
against any of them:

- ``create_book`` / ``update_book`` raise ``UniqueViolation`` on a duplicate
  ISBN; ``upsert_borrower_by_email`` never does (it reuses the row instead).
- Books returned by ``list_books`` are ordered by title, case-insensitively.
- ``list_activity`` returns newest records first; records appended within the
  same timestamp come back in reverse insertion order.
- Returned objects are copies: mutating them never changes stored state.
"""

import copy
import uuid
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from circulation.book import ActivityRecord, Book, BookFilter, Borrower
from circulation.errors import UniqueViolation
from circulation.telemetry import PerformanceMetric, TelemetryEvent, TelemetrySession

BOOK_FIELDS = ("title", "author", "genre", "year", "isbn", "tags", "description")


class BaseStorage:
    """Capability set required by the lifecycle service."""

    def get_book(self, book_id: str) -> Optional[Book]:
        raise NotImplementedError

    def list_books(self, book_filter: Optional[BookFilter] = None, today: Optional[date] = None) -> List[Book]:
        raise NotImplementedError

    def create_book(self, fields: Dict[str, Any]) -> Book:
        raise NotImplementedError

    def update_book(self, book_id: str, fields: Dict[str, Any]) -> Optional[Book]:
        """Apply a partial update; ``fields`` may carry ``state`` and ``updated_at``."""
        raise NotImplementedError

    def delete_book(self, book_id: str) -> bool:
        raise NotImplementedError

    def upsert_borrower_by_email(self, name: str, email: Optional[str] = None,
                                 phone: Optional[str] = None) -> Borrower:
        raise NotImplementedError

    def get_borrower(self, borrower_id: str) -> Optional[Borrower]:
        raise NotImplementedError

    def list_borrowers(self) -> List[Borrower]:
        raise NotImplementedError

    def append_activity(self, record: ActivityRecord) -> ActivityRecord:
        raise NotImplementedError

    def list_activity(self, limit: int) -> List[ActivityRecord]:
        raise NotImplementedError

    def create_session(self, session: TelemetrySession) -> TelemetrySession:
        raise NotImplementedError

    def get_session(self, session_id: str) -> Optional[TelemetrySession]:
        raise NotImplementedError

    def count_sessions(self, since: datetime) -> int:
        raise NotImplementedError

    def append_event(self, event: TelemetryEvent) -> TelemetryEvent:
        """Store the event and bump the owning session's count and end time."""
        raise NotImplementedError

    def list_events(self, since: datetime, category: Optional[str] = None, event_name: Optional[str] = None,
                    limit: Optional[int] = None, offset: int = 0) -> List[TelemetryEvent]:
        """Events at or after ``since``, newest first."""
        raise NotImplementedError

    def append_metric(self, metric: PerformanceMetric) -> PerformanceMetric:
        raise NotImplementedError

    def list_metrics(self, since: datetime) -> List[PerformanceMetric]:
        raise NotImplementedError

    def close(self) -> None:
        return None


class MemoryStorage(BaseStorage):
    """Process-local storage used when no database is configured and in tests."""

    def __init__(self) -> None:
        self._books: Dict[str, Book] = {}
        self._borrowers: Dict[str, Borrower] = {}
        self._activity: List[ActivityRecord] = []
        self._sessions: Dict[str, TelemetrySession] = {}
        self._events: List[TelemetryEvent] = []
        self._metrics: List[PerformanceMetric] = []

    # ------------------------- Books ------------------------- #
    def get_book(self, book_id: str) -> Optional[Book]:
        book = self._books.get(book_id)
        return copy.deepcopy(book) if book else None

    def list_books(self, book_filter: Optional[BookFilter] = None, today: Optional[date] = None) -> List[Book]:
        book_filter = book_filter or BookFilter()
        today = today or date.today()
        books = [b for b in self._books.values() if book_filter.matches(b, today)]
        books.sort(key=lambda b: b.title.lower())
        return copy.deepcopy(books)

    def create_book(self, fields: Dict[str, Any]) -> Book:
        self._check_isbn(fields.get("isbn"))
        book = Book(
            id=str(uuid.uuid4()),
            created_at=fields.get("created_at"),
            updated_at=fields.get("updated_at"),
            **{k: fields.get(k) for k in BOOK_FIELDS},
        )
        self._books[book.id] = book
        return copy.deepcopy(book)

    def update_book(self, book_id: str, fields: Dict[str, Any]) -> Optional[Book]:
        book = self._books.get(book_id)
        if book is None:
            return None
        if "isbn" in fields:
            self._check_isbn(fields["isbn"], exclude_id=book_id)
        for key, value in fields.items():
            setattr(book, key, list(value or []) if key == "tags" else value)
        return copy.deepcopy(book)

    def delete_book(self, book_id: str) -> bool:
        return self._books.pop(book_id, None) is not None

    def _check_isbn(self, isbn: Optional[str], exclude_id: Optional[str] = None) -> None:
        if not isbn:
            return
        for other in self._books.values():
            if other.isbn == isbn and other.id != exclude_id:
                raise UniqueViolation("isbn", isbn)

    # ------------------------- Borrowers ------------------------- #
    def upsert_borrower_by_email(self, name: str, email: Optional[str] = None,
                                 phone: Optional[str] = None) -> Borrower:
        if email:
            for borrower in self._borrowers.values():
                if borrower.email == email:
                    borrower.name = name
                    if phone is not None:
                        borrower.phone = phone
                    return copy.deepcopy(borrower)
        borrower = Borrower(
            id=str(uuid.uuid4()),
            name=name,
            email=email,
            phone=phone,
            created_at=datetime.now().isoformat(),
        )
        self._borrowers[borrower.id] = borrower
        return copy.deepcopy(borrower)

    def get_borrower(self, borrower_id: str) -> Optional[Borrower]:
        borrower = self._borrowers.get(borrower_id)
        return copy.deepcopy(borrower) if borrower else None

    def list_borrowers(self) -> List[Borrower]:
        return copy.deepcopy(sorted(self._borrowers.values(), key=lambda b: b.name.lower()))

    # ------------------------- Activity ------------------------- #
    def append_activity(self, record: ActivityRecord) -> ActivityRecord:
        self._activity.append(record)
        return record

    def list_activity(self, limit: int) -> List[ActivityRecord]:
        ordered = sorted(enumerate(self._activity), key=lambda pair: (pair[1].timestamp, pair[0]), reverse=True)
        return [record for _, record in ordered[:limit]]

    # ------------------------- Telemetry ------------------------- #
    def create_session(self, session: TelemetrySession) -> TelemetrySession:
        self._sessions[session.id] = copy.deepcopy(session)
        return session

    def get_session(self, session_id: str) -> Optional[TelemetrySession]:
        session = self._sessions.get(session_id)
        return copy.deepcopy(session) if session else None

    def count_sessions(self, since: datetime) -> int:
        return sum(1 for s in self._sessions.values() if s.start_time >= since)

    def append_event(self, event: TelemetryEvent) -> TelemetryEvent:
        self._events.append(event)
        session = self._sessions.get(event.session_id)
        if session is not None:
            session.events_count += 1
            session.end_time = event.timestamp
        return event

    def list_events(self, since: datetime, category: Optional[str] = None, event_name: Optional[str] = None,
                    limit: Optional[int] = None, offset: int = 0) -> List[TelemetryEvent]:
        matched = [
            (index, e) for index, e in enumerate(self._events)
            if e.timestamp >= since
            and (category is None or e.event_category == category)
            and (event_name is None or e.event_name == event_name)
        ]
        matched.sort(key=lambda pair: (pair[1].timestamp, pair[0]), reverse=True)
        events = [e for _, e in matched[offset:]]
        return copy.deepcopy(events[:limit] if limit is not None else events)

    def append_metric(self, metric: PerformanceMetric) -> PerformanceMetric:
        self._metrics.append(metric)
        return metric

    def list_metrics(self, since: datetime) -> List[PerformanceMetric]:
        return copy.deepcopy([m for m in self._metrics if m.timestamp >= since])
