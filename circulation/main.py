import logging
import subprocess
import sys
import webbrowser
from datetime import timedelta
from functools import wraps
from typing import List, Optional

import typer

from circulation.config import settings
from circulation.database import create_storage
from circulation.errors import LibraryError
from circulation.library import Library
from circulation.sample_data import seed_sample_data
from circulation.ui_helpers import (
    print_activity_result,
    print_book_detail,
    print_borrowers_result,
    print_list_result,
    print_stats_result,
    set_output_mode,
)

logger = logging.getLogger(__name__)

_library: Optional[Library] = None


def get_library() -> Library:
    """Library örneğini al veya ayarlardan oluştur."""
    global _library
    if _library is None:
        _library = Library(create_storage(settings))
    return _library


def handle_errors(func):
    """Kütüphane hatalarını 'Error: ...' olarak yazdır ve 1 koduyla çık."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except LibraryError as e:
            logger.debug("Command %s failed: %s", func.__name__, e)
            typer.echo(f"Error: {e.message}")
            raise typer.Exit(code=1)
    return wrapper


# --- Typer CLI ---
app = typer.Typer(help="Library circulation CLI")


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    )
):
    """CLI için genel seçenekler (ör. çıktı modu)."""
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if output:
        set_output_mode(output)


@app.command("list")
@handle_errors
def cli_list(
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Title, author, ISBN or tag substring"),
    status: Optional[str] = typer.Option(None, "--status", help="available | borrowed | overdue"),
    genre: Optional[str] = typer.Option(None, "--genre", "-g", help="Genre substring"),
):
    """Kitapları listele, isteğe bağlı filtrelerle."""
    lib = get_library()
    books = lib.list_books(search=search, status=status, genre=genre)
    print_list_result(lib.describe_all(books))


@app.command("show")
@handle_errors
def cli_show(book_id: str):
    """Bir kitabı ödünç alanıyla birlikte göster."""
    lib = get_library()
    print_book_detail(lib.describe(lib.get_book(book_id)))


@app.command("add")
@handle_errors
def cli_add(
    title: str,
    author: str,
    genre: Optional[str] = typer.Option(None, "--genre", "-g"),
    year: Optional[int] = typer.Option(None, "--year", "-y"),
    isbn: Optional[str] = typer.Option(None, "--isbn"),
    tags: Optional[str] = typer.Option(None, "--tags", help="Comma separated tags"),
    description: Optional[str] = typer.Option(None, "--description", "-d"),
):
    """Kataloğa bir kitap ekle."""
    book = get_library().add_book(title, author, genre=genre, year=year, isbn=isbn, tags=tags,
                                  description=description)
    typer.echo(f"Successfully added: {book.title} by {book.author} ({book.id})")


@app.command("update")
@handle_errors
def cli_update(
    book_id: str,
    title: Optional[str] = typer.Option(None, "--title", "-t"),
    author: Optional[str] = typer.Option(None, "--author", "-a"),
    genre: Optional[str] = typer.Option(None, "--genre", "-g"),
    year: Optional[int] = typer.Option(None, "--year", "-y"),
    isbn: Optional[str] = typer.Option(None, "--isbn"),
    tags: Optional[str] = typer.Option(None, "--tags", help="Comma separated tags"),
    description: Optional[str] = typer.Option(None, "--description", "-d"),
):
    """Bir kitabın verilen alanlarını güncelle."""
    options = {
        "title": title,
        "author": author,
        "genre": genre,
        "year": year,
        "isbn": isbn,
        "tags": tags,
        "description": description,
    }
    fields = {key: value for key, value in options.items() if value is not None}
    book = get_library().update_book(book_id, **fields)
    typer.echo(f"Updated: {book.title} by {book.author}")


@app.command("remove")
@handle_errors
def cli_remove(book_id: str):
    """Rafta olan bir kitabı kaldır."""
    get_library().delete_book(book_id)
    typer.echo(f"Book {book_id} has been removed.")


@app.command("checkout")
@handle_errors
def cli_checkout(
    book_id: str,
    borrower_name: str,
    email: Optional[str] = typer.Option(None, "--email", "-e"),
    phone: Optional[str] = typer.Option(None, "--phone", "-p"),
    due: Optional[str] = typer.Option(None, "--due", help="Due date (YYYY-MM-DD)"),
    days: Optional[int] = typer.Option(None, "--days", help="Loan length in days when --due is not given"),
):
    """Bir kitabı ödünç ver."""
    lib = get_library()
    due_date = due
    if due_date is None:
        loan_days = days if days is not None else settings.default_loan_days
        due_date = lib.today() + timedelta(days=loan_days)
    book = lib.checkout(book_id, borrower_name, due_date, borrower_email=email, borrower_phone=phone)
    typer.echo(f"Checked out: {book.title} to {borrower_name}, due {book.due_date.isoformat()}")


@app.command("checkin")
@handle_errors
def cli_checkin(book_id: str):
    """Ödünç verilen bir kitabı iade al."""
    book = get_library().checkin(book_id)
    typer.echo(f"Checked in: {book.title}")


@app.command("overdue")
@handle_errors
def cli_overdue():
    """Gecikmiş kitapları listele, en erken teslim tarihi önce."""
    lib = get_library()
    print_list_result(lib.describe_all(lib.list_overdue()), empty_message="No overdue books.")


@app.command("activity")
@handle_errors
def cli_activity(limit: int = typer.Option(settings.activity_limit, "--limit", "-l", help="Maximum entries")):
    """Son etkinlikleri göster, en yenisi önce."""
    print_activity_result(get_library().list_activity(limit))


@app.command("stats")
@handle_errors
def cli_stats():
    """Kütüphane istatistiklerini göster."""
    print_stats_result(get_library().get_statistics())


@app.command("borrowers")
@handle_errors
def cli_borrowers():
    """Kayıtlı ödünç alanları listele."""
    print_borrowers_result([b.to_dict() for b in get_library().list_borrowers()])


@app.command("search")
@handle_errors
def cli_search(
    query: str = typer.Argument(..., help="Search query"),
    fuzzy: bool = typer.Option(False, "--fuzzy", "-f", help="Also match near misses in title and author"),
):
    """Katalogda ara."""
    lib = get_library()
    books = lib.search(query, fuzzy=fuzzy)
    print_list_result(lib.describe_all(books), empty_message="No books match the search.")


@app.command("seed")
@handle_errors
def cli_seed():
    """Boş kütüphaneye örnek kataloğu yükle."""
    result = seed_sample_data(get_library(), loan_days=settings.default_loan_days)
    if not result["books"]:
        typer.echo("Library already has books; nothing to seed.")
        return
    typer.echo(f"Seeded {result['books']} books and {result['borrowers']} borrowers.")


def _uvicorn_args(host: str, port: int, reload: bool) -> List[str]:
    args = [
        sys.executable,
        "-m", "uvicorn",
        "circulation.api:app",
        "--host", host,
        "--port", str(port),
    ]
    if reload:
        args.append("--reload")
    return args


@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default: API_HOST)"),
    port: Optional[int] = typer.Option(None, "--port", help="Port (default: API_PORT)"),
    no_browser: bool = typer.Option(False, "--no-browser", help="Do not open a browser"),
):
    """Uvicorn kullanarak REST API'yi başlat."""
    host = host or settings.api_host
    port = port or int(settings.api_port)
    url = f"http://{host}:{port}/docs"
    typer.echo(f"Starting API on {url}")
    if not no_browser:
        try:
            webbrowser.open(url)
        except webbrowser.Error as e:
            logger.warning("Could not open browser: %s", e)
    subprocess.run(_uvicorn_args(host, port, reload=settings.debug))


if __name__ == "__main__":
    app()
