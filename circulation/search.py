"""Fuzzy matching and autocomplete suggestions for the catalog."""

from typing import Dict, Iterable, List

from circulation.book import Book
from circulation.errors import ValidationError

SUGGESTION_KINDS = ("all", "titles", "authors", "genres")
MIN_QUERY_LENGTH = 2
MIN_FUZZY_QUERY_LENGTH = 3
FUZZY_THRESHOLD_RATIO = 0.4
PER_KIND_LIMIT = 5
TOTAL_LIMIT = 8


def levenshtein_distance(a: str, b: str) -> int:
    """Number of single-character insertions, deletions or substitutions between a and b."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def fuzzy_match(text: str, query: str) -> bool:
    """Close-but-not-identical match, tolerating about 40% of the query length in edits."""
    query = query.lower()
    if len(query) < MIN_FUZZY_QUERY_LENGTH:
        return False
    distance = levenshtein_distance(text.lower(), query)
    threshold = int(len(query) * FUZZY_THRESHOLD_RATIO)
    return 0 < distance <= threshold


def fuzzy_search(books: Iterable[Book], query: str) -> List[Book]:
    """Books whose title or author contains the query, or fuzzily matches it."""
    needle = query.lower().strip()
    matched = []
    for book in books:
        fields = (book.title, book.author)
        if any(needle in value.lower() for value in fields) or any(fuzzy_match(value, needle) for value in fields):
            matched.append(book)
    return matched


def _distinct(values: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for value in values:
        if value and value not in seen:
            seen.add(value)
            result.append(value)
    return sorted(result, key=str.lower)


def build_suggestions(books: Iterable[Book], query: str, kind: str = "all") -> List[Dict[str, object]]:
    if kind not in SUGGESTION_KINDS:
        raise ValidationError(f"type must be one of: {', '.join(SUGGESTION_KINDS)}")
    query = (query or "").strip()
    if len(query) < MIN_QUERY_LENGTH:
        return []

    books = list(books)
    needle = query.lower()
    sources = {
        "titles": ("title", "Title", _distinct(b.title for b in books)),
        "authors": ("author", "Author", _distinct(b.author for b in books)),
        "genres": ("genre", "Genre", _distinct(b.genre for b in books if b.genre)),
    }
    wanted = [k for k in ("titles", "authors", "genres") if kind in ("all", k)]

    suggestions: List[Dict[str, object]] = []
    for key in wanted:
        label, category, values = sources[key]
        hits = [v for v in values if needle in v.lower()][:PER_KIND_LIMIT]
        suggestions.extend({"value": v, "type": label, "category": category, "fuzzy": False} for v in hits)

    # Fuzzy matches cover titles and authors only
    for key in wanted:
        if key == "genres":
            continue
        label, category, values = sources[key]
        for value in values:
            if needle not in value.lower() and fuzzy_match(value, needle):
                suggestions.append({"value": value, "type": label, "category": f"{category} (fuzzy)", "fuzzy": True})

    return suggestions[:TOTAL_LIMIT]
