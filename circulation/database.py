import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Dict, Iterator, List, Optional

from circulation.book import AVAILABLE, BORROWED, OVERDUE, ActivityRecord, Action, Book, BookFilter, Borrowed, Borrower
from circulation.config import Settings
from circulation.errors import StorageError, UniqueViolation
from circulation.storage import BOOK_FIELDS, BaseStorage, MemoryStorage
from circulation.telemetry import PerformanceMetric, TelemetryEvent, TelemetrySession

logger = logging.getLogger(__name__)

_BOOK_COLUMNS = (
    "id, title, author, genre, year, isbn, tags, description, status, "
    "borrower_id, borrowed_date, due_date, created_at, updated_at"
)


def _like(value: str) -> str:
    escaped = value.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _py_lower(value):
    return value.lower() if isinstance(value, str) else value


class SQLiteStorage(BaseStorage):
    """Storage adapter backed by a SQLite file.

    A short-lived connection is opened per operation. Foreign keys are left
    off so activity rows keep their ``book_id`` after the book is deleted.
    """

    def __init__(self, db_file: str) -> None:
        if db_file == ":memory:":
            raise ValueError("SQLiteStorage needs a file path; use MemoryStorage for in-memory data")
        self.db_file = db_file
        self.create_tables()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_file)
        conn.row_factory = sqlite3.Row
        # SQLite LIKE ve NOCASE yalnızca ASCII harfleri katlar; Python ile aynı küçük harf dönüşümünü kullan
        conn.create_function("py_lower", 1, _py_lower, deterministic=True)
        try:
            yield conn
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            message = str(e)
            if "UNIQUE constraint failed" in message:
                column = message.rsplit(".", 1)[-1]
                raise UniqueViolation(column) from e
            raise StorageError(f"Database integrity error: {message}") from e
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(f"Database error: {e}") from e
        finally:
            conn.close()

    def create_tables(self) -> None:
        """Tabloları ve indeksleri yoksa oluştur."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS books (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    author TEXT NOT NULL,
                    genre TEXT,
                    year INTEGER,
                    isbn TEXT UNIQUE,
                    tags TEXT,
                    description TEXT,
                    status TEXT NOT NULL DEFAULT 'available',
                    borrower_id TEXT,
                    borrowed_date TEXT,
                    due_date TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    CHECK (
                        (status = 'available' AND borrower_id IS NULL
                            AND borrowed_date IS NULL AND due_date IS NULL)
                        OR (status = 'borrowed' AND borrower_id IS NOT NULL
                            AND borrowed_date IS NOT NULL AND due_date IS NOT NULL)
                    )
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS borrowers (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT UNIQUE,
                    phone TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            # Yabancı anahtar yok: geçmiş, andığı kitaplar silindikten sonra da kalır
            conn.execute("""
                CREATE TABLE IF NOT EXISTS activity_log (
                    id TEXT PRIMARY KEY,
                    book_id TEXT,
                    borrower_id TEXT,
                    action TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    notes TEXT
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_books_status_due ON books(status, due_date)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_activity_timestamp ON activity_log(timestamp DESC)")
            self._create_telemetry_tables(conn)

    def _create_telemetry_tables(self, conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS telemetry_sessions (
                id TEXT PRIMARY KEY,
                start_time TEXT NOT NULL,
                end_time TEXT,
                events_count INTEGER NOT NULL DEFAULT 0,
                user_agent TEXT,
                ip_address TEXT,
                referrer TEXT
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS telemetry_events (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL,
                event_type TEXT NOT NULL,
                event_category TEXT NOT NULL,
                event_name TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                user_agent TEXT,
                ip_address TEXT,
                page_url TEXT,
                payload TEXT,
                duration_ms REAL,
                error_message TEXT
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS performance_metrics (
                id TEXT PRIMARY KEY,
                timestamp TEXT NOT NULL,
                metric_type TEXT NOT NULL,
                metric_name TEXT NOT NULL,
                value REAL NOT NULL,
                unit TEXT,
                session_id TEXT,
                additional_data TEXT
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_telemetry_events_timestamp ON telemetry_events(timestamp DESC)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_performance_metrics_timestamp ON performance_metrics(timestamp)")

    # ------------------------- Kitaplar ------------------------- #
    def get_book(self, book_id: str) -> Optional[Book]:
        with self._connect() as conn:
            row = conn.execute(f"SELECT {_BOOK_COLUMNS} FROM books WHERE id = ?", (book_id,)).fetchone()
        return Book.from_dict(dict(row)) if row else None

    def list_books(self, book_filter: Optional[BookFilter] = None, today: Optional[date] = None) -> List[Book]:
        book_filter = book_filter or BookFilter()
        today = today or date.today()
        query = f"SELECT {_BOOK_COLUMNS} FROM books WHERE 1=1"
        params: List[Any] = []

        if book_filter.search:
            pattern = _like(book_filter.search)
            query += (
                " AND (py_lower(title) LIKE ? ESCAPE '\\' OR py_lower(author) LIKE ? ESCAPE '\\'"
                " OR py_lower(isbn) LIKE ? ESCAPE '\\' OR EXISTS (SELECT 1 FROM json_each(books.tags)"
                " WHERE py_lower(json_each.value) LIKE ? ESCAPE '\\'))"
            )
            params.extend([pattern] * 4)

        if book_filter.status == OVERDUE:
            query += " AND status = ? AND due_date < ?"
            params.extend([BORROWED, today.isoformat()])
        elif book_filter.status:
            query += " AND status = ?"
            params.append(book_filter.status)

        if book_filter.genre:
            query += " AND py_lower(genre) LIKE ? ESCAPE '\\'"
            params.append(_like(book_filter.genre))

        query += " ORDER BY py_lower(title), rowid"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [Book.from_dict(dict(row)) for row in rows]

    def create_book(self, fields: Dict[str, Any]) -> Book:
        book_id = str(uuid.uuid4())
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO books (id, title, author, genre, year, isbn, tags, description,
                                   status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    book_id, fields["title"], fields["author"], fields.get("genre"), fields.get("year"),
                    fields.get("isbn"), json.dumps(list(fields.get("tags") or [])), fields.get("description"),
                    AVAILABLE, fields.get("created_at"), fields.get("updated_at"),
                ),
            )
        return self.get_book(book_id)

    def update_book(self, book_id: str, fields: Dict[str, Any]) -> Optional[Book]:
        columns: Dict[str, Any] = {}
        for key, value in fields.items():
            if key == "state":
                columns["status"] = value.status
                borrowed = isinstance(value, Borrowed)
                columns["borrower_id"] = value.borrower_id if borrowed else None
                columns["borrowed_date"] = value.borrowed_date.isoformat() if borrowed else None
                columns["due_date"] = value.due_date.isoformat() if borrowed else None
            elif key == "tags":
                columns["tags"] = json.dumps(list(value or []))
            elif key in BOOK_FIELDS or key == "updated_at":
                columns[key] = value
            else:
                raise ValueError(f"Unknown book field: {key}")

        if not columns:
            return self.get_book(book_id)

        assignments = ", ".join(f"{column} = ?" for column in columns)
        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE books SET {assignments} WHERE id = ?",
                (*columns.values(), book_id),
            )
            if cursor.rowcount == 0:
                return None
        return self.get_book(book_id)

    def delete_book(self, book_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
            return cursor.rowcount > 0

    # ------------------------- Ödünç Alanlar ------------------------- #
    def upsert_borrower_by_email(self, name: str, email: Optional[str] = None,
                                 phone: Optional[str] = None) -> Borrower:
        with self._connect() as conn:
            row = None
            if email:
                row = conn.execute("SELECT id FROM borrowers WHERE email = ?", (email,)).fetchone()
            if row:
                borrower_id = row["id"]
                conn.execute(
                    "UPDATE borrowers SET name = ?, phone = COALESCE(?, phone) WHERE id = ?",
                    (name, phone, borrower_id),
                )
            else:
                borrower_id = str(uuid.uuid4())
                conn.execute(
                    "INSERT INTO borrowers (id, name, email, phone, created_at) VALUES (?, ?, ?, ?, ?)",
                    (borrower_id, name, email, phone, datetime.now().isoformat()),
                )
        return self.get_borrower(borrower_id)

    def get_borrower(self, borrower_id: str) -> Optional[Borrower]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, name, email, phone, created_at FROM borrowers WHERE id = ?", (borrower_id,)
            ).fetchone()
        return Borrower(**dict(row)) if row else None

    def list_borrowers(self) -> List[Borrower]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, name, email, phone, created_at FROM borrowers ORDER BY py_lower(name), rowid"
            ).fetchall()
        return [Borrower(**dict(row)) for row in rows]

    # ------------------------- Etkinlik ------------------------- #
    def append_activity(self, record: ActivityRecord) -> ActivityRecord:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO activity_log (id, book_id, borrower_id, action, timestamp, notes) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (record.id, record.book_id, record.borrower_id, record.action.value,
                 record.timestamp.isoformat(), record.notes),
            )
        return record

    def list_activity(self, limit: int) -> List[ActivityRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, book_id, borrower_id, action, timestamp, notes FROM activity_log "
                "ORDER BY timestamp DESC, rowid DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [
            ActivityRecord(
                id=row["id"],
                action=Action(row["action"]),
                timestamp=datetime.fromisoformat(row["timestamp"]),
                book_id=row["book_id"],
                borrower_id=row["borrower_id"],
                notes=row["notes"],
            )
            for row in rows
        ]

    # ------------------------- Telemetri ------------------------- #
    def create_session(self, session: TelemetrySession) -> TelemetrySession:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO telemetry_sessions (id, start_time, end_time, events_count, user_agent, ip_address, "
                "referrer) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (session.id, session.start_time.isoformat(),
                 session.end_time.isoformat() if session.end_time else None,
                 session.events_count, session.user_agent, session.ip_address, session.referrer),
            )
        return session

    def get_session(self, session_id: str) -> Optional[TelemetrySession]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM telemetry_sessions WHERE id = ?", (session_id,)).fetchone()
        if row is None:
            return None
        return TelemetrySession(
            id=row["id"],
            start_time=datetime.fromisoformat(row["start_time"]),
            end_time=datetime.fromisoformat(row["end_time"]) if row["end_time"] else None,
            events_count=row["events_count"],
            user_agent=row["user_agent"],
            ip_address=row["ip_address"],
            referrer=row["referrer"],
        )

    def count_sessions(self, since: datetime) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS total FROM telemetry_sessions WHERE start_time >= ?", (since.isoformat(),)
            ).fetchone()
        return row["total"]

    def append_event(self, event: TelemetryEvent) -> TelemetryEvent:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO telemetry_events (id, session_id, event_type, event_category, event_name, timestamp,
                                              user_agent, ip_address, page_url, payload, duration_ms, error_message)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.id, event.session_id, event.event_type, event.event_category, event.event_name,
                    event.timestamp.isoformat(), event.user_agent, event.ip_address, event.page_url,
                    json.dumps(event.payload) if event.payload is not None else None,
                    event.duration_ms, event.error_message,
                ),
            )
            conn.execute(
                "UPDATE telemetry_sessions SET events_count = events_count + 1, end_time = ? WHERE id = ?",
                (event.timestamp.isoformat(), event.session_id),
            )
        return event

    def list_events(self, since: datetime, category: Optional[str] = None, event_name: Optional[str] = None,
                    limit: Optional[int] = None, offset: int = 0) -> List[TelemetryEvent]:
        query = "SELECT * FROM telemetry_events WHERE timestamp >= ?"
        params: List[Any] = [since.isoformat()]
        if category is not None:
            query += " AND event_category = ?"
            params.append(category)
        if event_name is not None:
            query += " AND event_name = ?"
            params.append(event_name)
        # LIMIT -1 SQLite'ta sınırsız demektir
        query += " ORDER BY timestamp DESC, rowid DESC LIMIT ? OFFSET ?"
        params.extend([limit if limit is not None else -1, offset])

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            TelemetryEvent(
                id=row["id"],
                session_id=row["session_id"],
                event_type=row["event_type"],
                event_category=row["event_category"],
                event_name=row["event_name"],
                timestamp=datetime.fromisoformat(row["timestamp"]),
                user_agent=row["user_agent"],
                ip_address=row["ip_address"],
                page_url=row["page_url"],
                payload=json.loads(row["payload"]) if row["payload"] else None,
                duration_ms=row["duration_ms"],
                error_message=row["error_message"],
            )
            for row in rows
        ]

    def append_metric(self, metric: PerformanceMetric) -> PerformanceMetric:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO performance_metrics (id, timestamp, metric_type, metric_name, value, unit, session_id, "
                "additional_data) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    metric.id, metric.timestamp.isoformat(), metric.metric_type, metric.metric_name, metric.value,
                    metric.unit, metric.session_id,
                    json.dumps(metric.additional_data) if metric.additional_data is not None else None,
                ),
            )
        return metric

    def list_metrics(self, since: datetime) -> List[PerformanceMetric]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM performance_metrics WHERE timestamp >= ? ORDER BY timestamp, rowid",
                (since.isoformat(),),
            ).fetchall()
        return [
            PerformanceMetric(
                id=row["id"],
                metric_type=row["metric_type"],
                metric_name=row["metric_name"],
                value=row["value"],
                timestamp=datetime.fromisoformat(row["timestamp"]),
                unit=row["unit"],
                session_id=row["session_id"],
                additional_data=json.loads(row["additional_data"]) if row["additional_data"] else None,
            )
            for row in rows
        ]


def create_storage(config: Settings) -> BaseStorage:
    """Yapılandırmada seçilen depolama bağdaştırıcısını oluştur."""
    backend = config.storage_backend
    if backend == "memory" or config.db_file == ":memory:":
        logger.info("Using in-memory storage; data will not survive a restart")
        return MemoryStorage()
    if backend == "sqlite":
        logger.info("Using SQLite storage at %s", config.db_file)
        return SQLiteStorage(config.db_file)
    raise ValueError(f"Unknown storage backend: {backend!r} (expected 'sqlite' or 'memory')")
