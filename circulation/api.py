import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Security
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, ConfigDict, Field

from circulation.config import settings
from circulation.database import create_storage
from circulation.errors import LibraryError, StorageError, ValidationError
from circulation.library import Library

logger = logging.getLogger(__name__)


# --- Modeller ---
class BookModel(BaseModel):
    id: str
    title: str
    author: str
    genre: str | None = None
    year: int | None = None
    isbn: str | None = None
    tags: List[str] = Field(default_factory=list)
    description: str | None = None
    status: str
    borrower_id: str | None = None
    borrowed_date: str | None = None
    due_date: str | None = None
    borrower_name: str | None = None
    borrower_email: str | None = None
    is_overdue: bool = False
    created_at: str | None = None
    updated_at: str | None = None


class BookCreateModel(BaseModel):
    # Zorunlu alanları servis denetler; eksik başlık 400 döner
    title: str | None = None
    author: str | None = None
    genre: str | None = None
    year: Union[int, str, None] = None
    isbn: str | None = None
    tags: Union[List[str], str, None] = None
    description: str | None = None


class BookUpdateModel(BookCreateModel):
    # Fazladan anahtarlar (status, borrower_id, ...) servise ulaşır ve orada reddedilir
    model_config = ConfigDict(extra="allow")


class CheckoutModel(BaseModel):
    borrower_name: str | None = None
    borrower_email: str | None = None
    borrower_phone: str | None = None
    due_date: str | None = None


class BookCreatedModel(BaseModel):
    id: str
    message: str
    book: BookModel


class BookMessageModel(BaseModel):
    message: str
    book: BookModel


class MessageModel(BaseModel):
    message: str


class ActivityModel(BaseModel):
    id: str
    book_id: str | None = None
    borrower_id: str | None = None
    action: str
    timestamp: str
    notes: str | None = None
    book_title: str | None = None
    borrower_name: str | None = None


class StatsModel(BaseModel):
    totalBooks: int
    availableBooks: int
    borrowedBooks: int
    overdueBooks: int


class BorrowerModel(BaseModel):
    id: str
    name: str
    email: str | None = None
    phone: str | None = None
    created_at: str | None = None


class SuggestionModel(BaseModel):
    value: str
    type: str
    category: str
    fuzzy: bool = False


# İstemci telemetrisi camelCase alan adlarıyla gönderir
class TelemetrySessionModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_agent: str | None = Field(None, alias="userAgent")
    ip_address: str | None = Field(None, alias="ipAddress")
    referrer: str | None = None


class TelemetryEventModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str | None = Field(None, alias="sessionId")
    event_type: str | None = Field(None, alias="eventType")
    event_category: str | None = Field(None, alias="eventCategory")
    event_name: str | None = Field(None, alias="eventName")
    user_agent: str | None = Field(None, alias="userAgent")
    ip_address: str | None = Field(None, alias="ipAddress")
    page_url: str | None = Field(None, alias="pageUrl")
    payload: Dict[str, Any] | None = None
    duration: float | None = None
    error_message: str | None = Field(None, alias="errorMessage")


class PerformanceMetricModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str | None = Field(None, alias="sessionId")
    metric_type: str | None = Field(None, alias="metricType")
    metric_name: str | None = Field(None, alias="metricName")
    value: float | None = None
    unit: str | None = None
    additional_data: Dict[str, Any] | None = Field(None, alias="additionalData")


# --- Bağımlılıklar ---
def get_library(request: Request) -> Library:
    """Library bound to the app; built from settings on first use."""
    library = getattr(request.app.state, "library", None)
    if library is None:
        library = Library(create_storage(settings))
        request.app.state.library = library
    return library


api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def get_api_key(api_key: Optional[str] = Security(api_key_header)):
    """Validate X-API-Key on mutating routes when an API key is configured."""
    if not settings.api_key:
        return None
    if api_key == settings.api_key:
        return api_key
    raise HTTPException(status_code=403, detail="Could not validate credentials")


# --- Rotalar ---
router = APIRouter(prefix="/api")


@router.get("/books", response_model=List[BookModel])
def list_books(
    search: Optional[str] = Query(None, description="Substring of title, author, ISBN or tag"),
    status: Optional[str] = Query(None, description="available | borrowed | overdue"),
    genre: Optional[str] = Query(None, description="Substring of genre"),
    library: Library = Depends(get_library),
):
    """List books matching all supplied filters, ordered by title."""
    books = library.list_books(search=search, status=status, genre=genre)
    return library.describe_all(books)


@router.get("/books/overdue", response_model=List[BookModel])
def list_overdue_books(library: Library = Depends(get_library)):
    """Borrowed books whose due date has passed, earliest due first."""
    return library.describe_all(library.list_overdue())


@router.get("/books/{book_id}", response_model=BookModel)
def get_book(book_id: str, library: Library = Depends(get_library)):
    return library.describe(library.get_book(book_id))


@router.post("/books", status_code=201, response_model=BookCreatedModel, dependencies=[Depends(get_api_key)])
def add_book(payload: BookCreateModel, library: Library = Depends(get_library)):
    book = library.add_book(**payload.model_dump())
    return {"id": book.id, "message": "Book added successfully", "book": library.describe(book)}


@router.put("/books/{book_id}", response_model=BookMessageModel, dependencies=[Depends(get_api_key)])
def update_book(book_id: str, payload: BookUpdateModel, library: Library = Depends(get_library)):
    """Partial update: only fields present in the body change."""
    fields = payload.model_dump(exclude_unset=True)
    fields.update(payload.model_extra or {})
    book = library.update_book(book_id, **fields)
    return {"message": "Book updated successfully", "book": library.describe(book)}


@router.delete("/books/{book_id}", response_model=MessageModel, dependencies=[Depends(get_api_key)])
def delete_book(book_id: str, library: Library = Depends(get_library)):
    library.delete_book(book_id)
    return {"message": "Book deleted successfully"}


@router.post("/books/{book_id}/checkout", response_model=BookMessageModel, dependencies=[Depends(get_api_key)])
def checkout_book(book_id: str, payload: CheckoutModel, library: Library = Depends(get_library)):
    if not payload.borrower_name or not payload.borrower_email or not payload.due_date:
        raise ValidationError("Borrower name, email, and due date are required")
    book = library.checkout(
        book_id,
        borrower_name=payload.borrower_name,
        due_date=payload.due_date,
        borrower_email=payload.borrower_email,
        borrower_phone=payload.borrower_phone,
    )
    return {"message": "Book checked out successfully", "book": library.describe(book)}


@router.post("/books/{book_id}/checkin", response_model=BookMessageModel, dependencies=[Depends(get_api_key)])
def checkin_book(book_id: str, library: Library = Depends(get_library)):
    book = library.checkin(book_id)
    return {"message": "Book checked in successfully", "book": library.describe(book)}


@router.get("/activity", response_model=List[ActivityModel])
def list_activity(
    limit: int = Query(settings.activity_limit, ge=1, le=500, description="Maximum number of records"),
    library: Library = Depends(get_library),
):
    """Most recent activity first."""
    return library.list_activity(limit)


@router.get("/stats", response_model=StatsModel)
def get_stats(library: Library = Depends(get_library)):
    return library.get_statistics()


@router.get("/borrowers", response_model=List[BorrowerModel])
def list_borrowers(library: Library = Depends(get_library)):
    return [b.to_dict() for b in library.list_borrowers()]


@router.get("/autocomplete", response_model=List[SuggestionModel])
def autocomplete(
    query: str = Query("", description="At least two characters"),
    kind: str = Query("all", alias="type", description="all | titles | authors | genres"),
    library: Library = Depends(get_library),
):
    return library.suggest(query, kind=kind)


# --- Telemetri ---
def _client_ip(request: Request, supplied: Optional[str]) -> Optional[str]:
    if supplied:
        return supplied
    return request.client.host if request.client else None


@router.post("/telemetry/session")
def start_telemetry_session(payload: TelemetrySessionModel, request: Request,
                            library: Library = Depends(get_library)):
    session = library.telemetry.start_session(
        user_agent=payload.user_agent or request.headers.get("user-agent"),
        ip_address=_client_ip(request, payload.ip_address),
        referrer=payload.referrer,
    )
    return {"sessionId": session.id}


@router.post("/telemetry/event")
def record_telemetry_event(payload: TelemetryEventModel, request: Request,
                           library: Library = Depends(get_library)):
    event = library.telemetry.record_event(
        session_id=payload.session_id,
        event_type=payload.event_type,
        event_category=payload.event_category,
        event_name=payload.event_name,
        user_agent=payload.user_agent,
        ip_address=_client_ip(request, payload.ip_address),
        page_url=payload.page_url,
        payload=payload.payload,
        duration_ms=payload.duration,
        error_message=payload.error_message,
    )
    return {"success": True, "eventId": event.id}


@router.post("/telemetry/performance")
def record_performance_metric(payload: PerformanceMetricModel, library: Library = Depends(get_library)):
    metric = library.telemetry.record_metric(
        session_id=payload.session_id,
        metric_type=payload.metric_type,
        metric_name=payload.metric_name,
        value=payload.value,
        unit=payload.unit,
        additional_data=payload.additional_data,
    )
    return {"success": True, "metricId": metric.id}


@router.get("/telemetry/dashboard")
def telemetry_dashboard(
    time_range: str = Query("7d", alias="timeRange", description="1d | 7d | 30d"),
    library: Library = Depends(get_library),
):
    return library.telemetry.dashboard(time_range)


@router.get("/telemetry/events")
def list_telemetry_events(
    limit: int = Query(50),
    offset: int = Query(0),
    category: Optional[str] = Query(None),
    event_name: Optional[str] = Query(None, alias="eventName"),
    time_range: str = Query("7d", alias="timeRange"),
    library: Library = Depends(get_library),
):
    """Raw events, newest first."""
    return library.telemetry.list_events(limit=limit, offset=offset, category=category,
                                         event_name=event_name, time_range=time_range)


# --- Uygulama ---
async def library_error_handler(request: Request, exc: LibraryError) -> JSONResponse:
    if isinstance(exc, StorageError):
        logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Hatalı tipler de diğer doğrulama hataları gibi 400 ve {"detail": "..."} döner
    problems = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{field}: {error['msg']}" if field else error["msg"])
    return JSONResponse(status_code=400, content={"detail": "; ".join(problems)})


def create_app(library: Optional[Library] = None) -> FastAPI:
    """Build the API. Pass a ``Library`` to bind the app to a specific storage."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            yield
        finally:
            bound = getattr(app.state, "library", None)
            if bound is not None:
                bound.close()

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    app.state.library = library

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(LibraryError, library_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.include_router(router)

    # --- Sağlık Kontrolü ---
    @app.get("/health")
    def health(lib: Library = Depends(get_library)):
        return {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "total_books": len(lib.list_books()),
            "storage": type(lib.storage).__name__,
        }

    return app


app = create_app()
