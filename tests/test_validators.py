from datetime import date, datetime

import pytest

from circulation.errors import ValidationError
from circulation.validators import (
    normalize_email,
    normalize_isbn,
    parse_date,
    parse_datetime,
    parse_tags,
    parse_year,
    require_text,
)


def test_require_text():
    assert require_text("  Dune ", "title") == "Dune"
    with pytest.raises(ValidationError, match="title is required"):
        require_text("   ", "title")
    with pytest.raises(ValidationError):
        require_text(None, "author")


def test_normalize_isbn_keeps_hyphens():
    assert normalize_isbn(" 978-0-06-112008-4 ") == "978-0-06-112008-4"
    assert normalize_isbn("") is None
    assert normalize_isbn(None) is None


@pytest.mark.parametrize("raw, expected", [
    (None, []),
    ("", []),
    ("classic, fiction ,,", ["classic", "fiction"]),
    (["b", " a "], ["b", "a"]),
])
def test_parse_tags(raw, expected):
    assert parse_tags(raw) == expected


def test_parse_tags_rejects_other_types():
    with pytest.raises(ValidationError):
        parse_tags(42)


def test_parse_year():
    assert parse_year(1965) == 1965
    assert parse_year("2008") == 2008
    assert parse_year("") is None
    assert parse_year(None) is None
    with pytest.raises(ValidationError):
        parse_year("abc")
    with pytest.raises(ValidationError):
        parse_year(True)


def test_parse_date():
    assert parse_date("2024-01-15") == date(2024, 1, 15)
    assert parse_date("2024-01-15T10:30:00.000Z") == date(2024, 1, 15)
    assert parse_date(date(2024, 1, 15)) == date(2024, 1, 15)
    assert parse_date(datetime(2024, 1, 15, 8, 0)) == date(2024, 1, 15)
    with pytest.raises(ValidationError, match="required"):
        parse_date(None)
    with pytest.raises(ValidationError, match="YYYY-MM-DD"):
        parse_date("15/01/2024")
    with pytest.raises(ValidationError, match="YYYY-MM-DD"):
        parse_date("2024-01-15garbage")
    with pytest.raises(ValidationError):
        parse_date("2024-01-15T10:30:00.000Zjunk")


def test_parse_datetime_accepts_sqlite_timestamps():
    assert parse_datetime("2024-01-10 09:00:00") == datetime(2024, 1, 10, 9, 0)
    assert parse_datetime(None) is None


def test_normalize_email():
    assert normalize_email(" John@Example.COM ") == "john@example.com"
    assert normalize_email("") is None
    with pytest.raises(ValidationError):
        normalize_email("john at example.com")
