import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from circulation import main
from circulation.main import app

runner = CliRunner()


@pytest.fixture
def cli_lib(lib, monkeypatch):
    monkeypatch.setattr(main, "get_library", lambda: lib)
    return lib


def test_list_no_books(cli_lib):
    result = runner.invoke(app, ["list"])
    assert result.exit_code == 0
    assert "No books in library." in result.stdout


def test_add_and_list(cli_lib):
    result = runner.invoke(app, ["add", "Dune", "Frank Herbert", "--genre", "Science Fiction",
                                 "--year", "1965", "--tags", "sci-fi,desert"])
    assert result.exit_code == 0
    assert "Successfully added: Dune by Frank Herbert" in result.stdout

    book = cli_lib.list_books()[0]
    assert book.tags == ["sci-fi", "desert"]
    assert book.year == 1965

    result = runner.invoke(app, ["list"])
    assert f"{book.id} - Dune by Frank Herbert [available]" in result.stdout


def test_add_duplicate_isbn_exits_with_error(cli_lib):
    cli_lib.add_book("Dune", "Frank Herbert", isbn="123")
    result = runner.invoke(app, ["add", "Other", "Author", "--isbn", "123"])
    assert result.exit_code == 1
    assert "Error: ISBN already exists" in result.stdout


def test_show_book(cli_lib):
    book = cli_lib.add_book("Dune", "Frank Herbert", isbn="978-0-441-17271-9")
    result = runner.invoke(app, ["show", book.id])
    assert result.exit_code == 0
    assert "Book Found" in result.stdout
    assert "Title: Dune" in result.stdout
    assert "ISBN: 978-0-441-17271-9" in result.stdout


def test_show_missing_book(cli_lib):
    result = runner.invoke(app, ["show", "nonexistent"])
    assert result.exit_code == 1
    assert "Error: Book not found" in result.stdout


def test_checkout_defaults_to_loan_period(cli_lib):
    book = cli_lib.add_book("Dune", "Frank Herbert")
    result = runner.invoke(app, ["checkout", book.id, "John Smith", "--email", "john@example.com"])
    assert result.exit_code == 0
    assert "Checked out: Dune to John Smith, due 2024-01-24" in result.stdout
    assert cli_lib.get_book(book.id).status == "borrowed"


def test_checkout_with_explicit_due_date(cli_lib):
    book = cli_lib.add_book("Dune", "Frank Herbert")
    result = runner.invoke(app, ["checkout", book.id, "John Smith", "--due", "2024-01-15"])
    assert result.exit_code == 0
    assert "due 2024-01-15" in result.stdout


def test_checkout_with_days(cli_lib):
    book = cli_lib.add_book("Dune", "Frank Herbert")
    result = runner.invoke(app, ["checkout", book.id, "John Smith", "--days", "3"])
    assert result.exit_code == 0
    assert "due 2024-01-13" in result.stdout


def test_checkin_and_invalid_checkin(cli_lib):
    book = cli_lib.add_book("Dune", "Frank Herbert")
    cli_lib.checkout(book.id, "John Smith", "2024-01-15")

    result = runner.invoke(app, ["checkin", book.id])
    assert result.exit_code == 0
    assert "Checked in: Dune" in result.stdout

    result = runner.invoke(app, ["checkin", book.id])
    assert result.exit_code == 1
    assert "Error: Book is not checked out" in result.stdout


def test_update_and_remove(cli_lib):
    book = cli_lib.add_book("Dune", "Frank Herbert")

    result = runner.invoke(app, ["update", book.id, "--title", "Dune Messiah"])
    assert result.exit_code == 0
    assert "Updated: Dune Messiah by Frank Herbert" in result.stdout

    result = runner.invoke(app, ["update", book.id])
    assert result.exit_code == 1
    assert "Nothing to update" in result.stdout

    result = runner.invoke(app, ["remove", book.id])
    assert result.exit_code == 0
    assert f"Book {book.id} has been removed." in result.stdout
    assert cli_lib.list_books() == []


def test_remove_borrowed_book(cli_lib):
    book = cli_lib.add_book("Dune", "Frank Herbert")
    cli_lib.checkout(book.id, "John Smith", "2024-01-15")
    result = runner.invoke(app, ["remove", book.id])
    assert result.exit_code == 1
    assert "Error: Cannot delete a borrowed book" in result.stdout


def test_overdue(cli_lib, clock):
    result = runner.invoke(app, ["overdue"])
    assert "No overdue books." in result.stdout

    book = cli_lib.add_book("Dune", "Frank Herbert")
    cli_lib.checkout(book.id, "John Smith", "2024-01-15")
    clock.advance(days=10)

    result = runner.invoke(app, ["overdue"])
    assert result.exit_code == 0
    assert "Dune by Frank Herbert [borrowed] due 2024-01-15 (John Smith) OVERDUE" in result.stdout


def test_list_invalid_status(cli_lib):
    result = runner.invoke(app, ["list", "--status", "lost"])
    assert result.exit_code == 1
    assert "Error: status must be one of" in result.stdout


def test_stats_plain(cli_lib):
    cli_lib.add_book("Dune", "Frank Herbert")
    result = runner.invoke(app, ["stats"])
    assert result.exit_code == 0
    assert "Total Books: 1" in result.stdout
    assert "Available: 1" in result.stdout


def test_stats_json(cli_lib):
    cli_lib.add_book("Dune", "Frank Herbert")
    result = runner.invoke(app, ["--output", "json", "stats"])
    assert result.exit_code == 0
    assert json.loads(result.stdout) == {
        "totalBooks": 1,
        "availableBooks": 1,
        "borrowedBooks": 0,
        "overdueBooks": 0,
    }


def test_list_json(cli_lib):
    cli_lib.add_book("Dune", "Frank Herbert")
    result = runner.invoke(app, ["--output", "json", "list"])
    books = json.loads(result.stdout)
    assert [b["title"] for b in books] == ["Dune"]
    assert books[0]["is_overdue"] is False


def test_activity_and_borrowers(cli_lib):
    book = cli_lib.add_book("Dune", "Frank Herbert")
    cli_lib.checkout(book.id, "John Smith", "2024-01-15", borrower_email="john@example.com")

    result = runner.invoke(app, ["activity", "--limit", "1"])
    assert result.exit_code == 0
    assert "checked_out: Dune by John Smith - Due: 2024-01-15" in result.stdout
    assert "added" not in result.stdout

    result = runner.invoke(app, ["borrowers"])
    assert "John Smith <john@example.com>" in result.stdout


def test_search_fuzzy(cli_lib):
    cli_lib.add_book("Emma", "Jane Austen")
    result = runner.invoke(app, ["search", "Jane Austin"])
    assert "No books match the search." in result.stdout

    result = runner.invoke(app, ["search", "Jane Austin", "--fuzzy"])
    assert "Emma by Jane Austen" in result.stdout


def test_seed(cli_lib):
    result = runner.invoke(app, ["seed"])
    assert result.exit_code == 0
    assert "Seeded 8 books and 2 borrowers." in result.stdout

    result = runner.invoke(app, ["seed"])
    assert "nothing to seed" in result.stdout


@patch("subprocess.run")
@patch("webbrowser.open")
def test_serve_command(mock_webbrowser_open, mock_subprocess_run):
    result = runner.invoke(app, ["serve", "--port", "8123"])
    assert result.exit_code == 0
    assert "Starting API on http://" in result.stdout
    mock_webbrowser_open.assert_called_once()
    args = mock_subprocess_run.call_args[0][0]
    assert "circulation.api:app" in args
    assert args[args.index("--port") + 1] == "8123"


@patch("subprocess.run")
@patch("webbrowser.open")
def test_serve_without_browser(mock_webbrowser_open, mock_subprocess_run):
    result = runner.invoke(app, ["serve", "--no-browser"])
    assert result.exit_code == 0
    mock_webbrowser_open.assert_not_called()
    mock_subprocess_run.assert_called_once()
