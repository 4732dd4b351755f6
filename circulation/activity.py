import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from circulation.book import ActivityRecord, Action
from circulation.errors import ValidationError
from circulation.storage import BaseStorage

logger = logging.getLogger(__name__)

DEFAULT_ACTIVITY_LIMIT = 50


class ActivityLogger:
    """Append-only log of every mutating operation.

    Writes are best effort: a failed append is logged and dropped, and the
    operation that triggered it still counts as done.
    """

    def __init__(self, storage: BaseStorage, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.storage = storage
        self.clock = clock or datetime.now

    def record(self, action: Action, book_id: Optional[str] = None, borrower_id: Optional[str] = None,
               notes: Optional[str] = None) -> Optional[ActivityRecord]:
        entry = ActivityRecord(
            id=str(uuid.uuid4()),
            action=action,
            timestamp=self.clock(),
            book_id=book_id,
            borrower_id=borrower_id,
            notes=notes,
        )
        try:
            return self.storage.append_activity(entry)
        except Exception:
            logger.exception("Could not write %s activity for book %s", action.value, book_id)
            return None

    def recent(self, limit: int = DEFAULT_ACTIVITY_LIMIT) -> List[Dict[str, Any]]:
        """Newest records first, with book title and borrower name joined on read."""
        if limit < 1:
            raise ValidationError("limit must be a positive integer")

        titles: Dict[str, Optional[str]] = {}
        names: Dict[str, Optional[str]] = {}
        entries = []
        for record in self.storage.list_activity(limit):
            if record.book_id and record.book_id not in titles:
                book = self.storage.get_book(record.book_id)
                titles[record.book_id] = book.title if book else None
            if record.borrower_id and record.borrower_id not in names:
                borrower = self.storage.get_borrower(record.borrower_id)
                names[record.borrower_id] = borrower.name if borrower else None

            entry = record.to_dict()
            entry["book_title"] = titles.get(record.book_id) if record.book_id else None
            entry["borrower_name"] = names.get(record.borrower_id) if record.borrower_id else None
            entries.append(entry)
        return entries
