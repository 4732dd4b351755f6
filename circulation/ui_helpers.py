import json
import os
from typing import Any, Dict, List

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Environment variable that selects the CLI output mode
# İzin verilen değerler: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"
OUTPUT_MODES = {"plain", "json", "rich"}

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in OUTPUT_MODES:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    mode = os.environ.get(OUTPUT_MODE_ENV, "plain").lower()
    return mode if mode in OUTPUT_MODES else "plain"


def _book_line(book: Dict[str, Any]) -> str:
    line = f"{book['id']} - {book['title']} by {book['author']} [{book['status']}]"
    if book.get("status") == "borrowed":
        line += f" due {book.get('due_date')}"
        if book.get("borrower_name"):
            line += f" ({book['borrower_name']})"
        if book.get("is_overdue"):
            line += " OVERDUE"
    return line


def print_list_result(books: List[Dict[str, Any]], empty_message: str = "No books in library.") -> None:
    """Kitap listesini mevcut çıktı moduna göre yazdır.

    - plain: 'ID - Title by Author [status]' lines, or the empty message
    - json: JSON array of the described books
    - rich: Rich table
    """
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps(books, ensure_ascii=False))
        return

    if not books:
        print(empty_message)
        return

    if mode == "rich":
        table = Table(title="Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Status")
        table.add_column("Due")
        for b in books:
            status = b["status"]
            if b.get("is_overdue"):
                status = "[bold red]overdue[/]"
            elif status == "borrowed":
                status = "[yellow]borrowed[/]"
            else:
                status = "[green]available[/]"
            table.add_row(b["id"], b["title"], b["author"], status, b.get("due_date") or "")
        _console.print(table)
    else:
        for b in books:
            print(_book_line(b))


def print_book_detail(book: Dict[str, Any]) -> None:
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps(book, ensure_ascii=False))
        return

    lines = [
        f"Title: {book['title']}",
        f"Author: {book['author']}",
        f"ID: {book['id']}",
        f"Status: {book['status']}",
    ]
    for label, key in (("Genre", "genre"), ("Year", "year"), ("ISBN", "isbn"), ("Description", "description")):
        if book.get(key):
            lines.append(f"{label}: {book[key]}")
    if book.get("tags"):
        lines.append(f"Tags: {', '.join(book['tags'])}")
    if book.get("status") == "borrowed":
        lines.append(f"Borrower: {book.get('borrower_name') or book.get('borrower_id')}")
        lines.append(f"Due: {book.get('due_date')}{' (overdue)' if book.get('is_overdue') else ''}")

    if mode == "rich":
        _console.print(Panel.fit("\n".join(lines), title="Book", border_style="blue"))
    else:
        print("Book Found")
        for line in lines:
            print(line)


def print_stats_result(stats: Dict[str, Any]) -> None:
    """İstatistikleri mevcut çıktı moduna göre yazdır."""
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
        return

    rows = [
        ("Total Books", stats.get("totalBooks", 0)),
        ("Available", stats.get("availableBooks", 0)),
        ("Borrowed", stats.get("borrowedBooks", 0)),
        ("Overdue", stats.get("overdueBooks", 0)),
    ]
    if mode == "rich":
        content = "\n".join(f"[bold]{label}:[/] {value}" for label, value in rows)
        _console.print(Panel.fit(content, title="Stats", border_style="blue"))
    else:
        for label, value in rows:
            print(f"{label}: {value}")


def print_activity_result(entries: List[Dict[str, Any]]) -> None:
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps(entries, ensure_ascii=False))
        return

    if not entries:
        print("No activity recorded.")
        return

    if mode == "rich":
        table = Table(title="Recent activity", header_style="bold cyan")
        table.add_column("When", no_wrap=True)
        table.add_column("Action")
        table.add_column("Book")
        table.add_column("Borrower")
        table.add_column("Notes")
        for e in entries:
            table.add_row(e["timestamp"], e["action"], e.get("book_title") or e.get("book_id") or "",
                          e.get("borrower_name") or "", e.get("notes") or "")
        _console.print(table)
    else:
        for e in entries:
            book = e.get("book_title") or e.get("book_id") or "-"
            who = f" by {e['borrower_name']}" if e.get("borrower_name") else ""
            print(f"{e['timestamp']} {e['action']}: {book}{who} - {e.get('notes') or ''}")


def print_borrowers_result(borrowers: List[Dict[str, Any]]) -> None:
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps(borrowers, ensure_ascii=False))
        return

    if not borrowers:
        print("No borrowers yet.")
        return

    if mode == "rich":
        table = Table(title="Borrowers", header_style="bold cyan")
        table.add_column("Name")
        table.add_column("Email")
        table.add_column("Phone")
        for b in borrowers:
            table.add_row(b["name"], b.get("email") or "", b.get("phone") or "")
        _console.print(table)
    else:
        for b in borrowers:
            print(f"{b['name']} <{b.get('email') or '-'}> {b.get('phone') or ''}".rstrip())
