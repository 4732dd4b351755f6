import re
from datetime import date, datetime
from typing import Any, List, Optional

from circulation.errors import ValidationError

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+$")


def require_text(value: Optional[str], field_name: str) -> str:
    """Return the stripped value or raise when it is missing or blank."""
    if value is None or not str(value).strip():
        raise ValidationError(f"{field_name} is required")
    return str(value).strip()


def optional_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def normalize_isbn(raw: Optional[str]) -> Optional[str]:
    """Strip whitespace; a blank ISBN counts as no ISBN.

    Hyphens are kept as entered, so "978-0-06-112008-4" and "9780061120084"
    are two different ISBNs.
    """
    return optional_text(raw)


def parse_tags(raw: Any) -> List[str]:
    """Accept a list of strings or a comma separated string; keep the order."""
    if raw is None:
        return []
    if isinstance(raw, str):
        items = raw.split(",")
    elif isinstance(raw, (list, tuple)):
        items = [str(item) for item in raw]
    else:
        raise ValidationError("tags must be a list of strings or a comma separated string")
    return [item.strip() for item in items if item and item.strip()]


def parse_year(raw: Any) -> Optional[int]:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return None
    if isinstance(raw, bool):
        raise ValidationError("year must be an integer")
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ValidationError("year must be an integer") from None


def parse_date(raw: Any, field_name: str = "due_date") -> date:
    """Parse a date from a date, datetime, "YYYY-MM-DD" or ISO datetime string."""
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raise ValidationError(f"{field_name} is required")
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    text = str(raw).strip()
    try:
        if len(text) == 10:
            return date.fromisoformat(text)
        # Browsers send Date.toISOString(), e.g. "2024-01-15T00:00:00.000Z"
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return datetime.fromisoformat(text).date()
    except ValueError:
        raise ValidationError(f"{field_name} must be a date in YYYY-MM-DD format") from None


def parse_datetime(raw: Any) -> Optional[datetime]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw
    # SQLite CURRENT_TIMESTAMP uses a space instead of "T"
    return datetime.fromisoformat(str(raw).replace(" ", "T", 1))


def normalize_email(raw: Optional[str]) -> Optional[str]:
    email = optional_text(raw)
    if email is None:
        return None
    email = email.lower()
    if not _EMAIL_RE.match(email):
        raise ValidationError("borrower email is not a valid address")
    return email
