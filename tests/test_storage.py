from datetime import date, datetime

import pytest

from circulation.book import ActivityRecord, Action, Available, BookFilter, Borrowed
from circulation.config import Settings
from circulation.database import SQLiteStorage, create_storage
from circulation.errors import UniqueViolation
from circulation.storage import MemoryStorage


def _fields(title, **extra):
    fields = {"title": title, "author": "Author", "genre": None, "year": None, "isbn": None,
              "tags": [], "description": None}
    fields.update(extra)
    return fields


def test_create_and_get_book(storage):
    book = storage.create_book(_fields("Dune", isbn="978-0-441-17271-9", tags=["sci-fi"], year=1965))
    assert book.id
    assert book.status == "available"

    found = storage.get_book(book.id)
    assert found == book
    assert found.tags == ["sci-fi"]
    assert found.year == 1965


def test_get_missing_book_returns_none(storage):
    assert storage.get_book("missing") is None
    assert storage.update_book("missing", {"title": "X"}) is None
    assert storage.delete_book("missing") is False


def test_duplicate_isbn_raises_unique_violation(storage):
    storage.create_book(_fields("One", isbn="123"))
    with pytest.raises(UniqueViolation) as excinfo:
        storage.create_book(_fields("Two", isbn="123"))
    assert excinfo.value.field == "isbn"


def test_null_isbns_do_not_collide(storage):
    storage.create_book(_fields("One"))
    storage.create_book(_fields("Two"))
    assert len(storage.list_books()) == 2


def test_update_state_round_trip(storage):
    book = storage.create_book(_fields("Dune"))
    borrowed_at = datetime(2024, 1, 10, 9, 30)
    state = Borrowed(borrower_id="b-1", borrowed_date=borrowed_at, due_date=date(2024, 1, 24))

    updated = storage.update_book(book.id, {"state": state})
    assert updated.state == state
    assert storage.get_book(book.id).due_date == date(2024, 1, 24)

    returned = storage.update_book(book.id, {"state": Available()})
    assert returned.status == "available"
    assert returned.borrower_id is None
    assert returned.borrowed_date is None


def test_returned_books_are_copies(storage):
    book = storage.create_book(_fields("Dune", tags=["a"]))
    copy = storage.get_book(book.id)
    copy.title = "Changed"
    copy.tags.append("b")

    stored = storage.get_book(book.id)
    assert stored.title == "Dune"
    assert stored.tags == ["a"]


def test_list_books_filters(storage):
    storage.create_book(_fields("Dune", genre="Science Fiction"))
    late = storage.create_book(_fields("Late", genre="Mystery"))
    storage.update_book(late.id, {"state": Borrowed("b-1", datetime(2024, 1, 1), date(2024, 1, 5))})

    today = date(2024, 1, 10)
    assert [b.title for b in storage.list_books(BookFilter(status="overdue"), today)] == ["Late"]
    assert [b.title for b in storage.list_books(BookFilter(status="overdue"), date(2024, 1, 5))] == []
    assert [b.title for b in storage.list_books(BookFilter(genre="science"), today)] == ["Dune"]
    assert [b.title for b in storage.list_books(BookFilter(search="lat", status="borrowed"), today)] == ["Late"]


def test_search_ignores_case_beyond_ascii(storage):
    storage.create_book(_fields("Émile", author="Jean-Jacques Rousseau", genre="Éducation",
                                tags=["Philosophie"]))
    storage.create_book(_fields("zeta", author="ÖZGÜR Yılmaz", tags=["ÇOCUK"]))

    today = date(2024, 1, 10)
    assert [b.title for b in storage.list_books(BookFilter(search="émile"), today)] == ["Émile"]
    assert [b.title for b in storage.list_books(BookFilter(search="özgür"), today)] == ["zeta"]
    assert [b.title for b in storage.list_books(BookFilter(search="çocuk"), today)] == ["zeta"]
    assert [b.title for b in storage.list_books(BookFilter(genre="éduc"), today)] == ["Émile"]
    # Sorted by the lowercased title, so "é" follows "z"
    assert [b.title for b in storage.list_books(None, today)] == ["zeta", "Émile"]


def test_delete_book(storage):
    book = storage.create_book(_fields("Dune"))
    assert storage.delete_book(book.id) is True
    assert storage.get_book(book.id) is None


def test_upsert_borrower_by_email(storage):
    first = storage.upsert_borrower_by_email("John", "john@example.com", "555-0100")
    again = storage.upsert_borrower_by_email("John Smith", "john@example.com")

    assert again.id == first.id
    assert again.name == "John Smith"
    # Phone is kept when the new checkout does not give one
    assert again.phone == "555-0100"
    assert storage.get_borrower(first.id).name == "John Smith"


def test_borrowers_without_email_are_distinct(storage):
    a = storage.upsert_borrower_by_email("Walk-in")
    b = storage.upsert_borrower_by_email("Walk-in")
    assert a.id != b.id
    assert [x.name for x in storage.list_borrowers()] == ["Walk-in", "Walk-in"]


def test_get_missing_borrower(storage):
    assert storage.get_borrower("missing") is None


def test_activity_newest_first_and_limited(storage):
    base = datetime(2024, 1, 10, 9, 0)
    for minute, action in enumerate([Action.ADDED, Action.UPDATED, Action.CHECKED_OUT]):
        storage.append_activity(ActivityRecord(
            id=f"r{minute}", action=action, timestamp=base.replace(minute=minute), book_id="book-1",
        ))

    assert [r.action for r in storage.list_activity(10)] == [Action.CHECKED_OUT, Action.UPDATED, Action.ADDED]
    assert [r.id for r in storage.list_activity(2)] == ["r2", "r1"]


def test_activity_same_timestamp_keeps_reverse_insertion_order(storage):
    when = datetime(2024, 1, 10, 9, 0)
    for i in range(3):
        storage.append_activity(ActivityRecord(id=f"r{i}", action=Action.UPDATED, timestamp=when))
    assert [r.id for r in storage.list_activity(10)] == ["r2", "r1", "r0"]


def test_activity_survives_book_deletion(storage):
    book = storage.create_book(_fields("Dune"))
    storage.append_activity(ActivityRecord(id="r1", action=Action.ADDED, timestamp=datetime(2024, 1, 1),
                                           book_id=book.id, notes="Book added to library"))
    storage.delete_book(book.id)

    records = storage.list_activity(5)
    assert len(records) == 1
    assert records[0].book_id == book.id
    assert records[0].notes == "Book added to library"


def test_sqlite_persists_between_instances(tmp_path):
    db_file = str(tmp_path / "library.db")
    book = SQLiteStorage(db_file).create_book(_fields("Sapiens", isbn="9780099590088"))

    reopened = SQLiteStorage(db_file)
    assert reopened.get_book(book.id).title == "Sapiens"


def test_sqlite_rejects_memory_path():
    with pytest.raises(ValueError):
        SQLiteStorage(":memory:")


def test_create_storage_selects_backend(tmp_path):
    assert isinstance(create_storage(Settings(storage_backend="memory")), MemoryStorage)
    assert isinstance(create_storage(Settings(storage_backend="sqlite", db_file=":memory:")), MemoryStorage)

    sqlite = create_storage(Settings(storage_backend="sqlite", db_file=str(tmp_path / "x.db")))
    assert isinstance(sqlite, SQLiteStorage)

    with pytest.raises(ValueError, match="Unknown storage backend"):
        create_storage(Settings(storage_backend="postgres"))
