"""Sample catalog used by ``library-cli seed`` to populate an empty library."""

import logging
from datetime import date, timedelta
from typing import Dict, Optional

from circulation.library import Library

logger = logging.getLogger(__name__)

SAMPLE_BOOKS = [
    {
        "title": "To Kill a Mockingbird",
        "author": "Harper Lee",
        "genre": "Classic Literature",
        "year": 1960,
        "isbn": "978-0-06-112008-4",
        "tags": ["classic", "literature", "social justice"],
        "description": "A gripping tale of racial injustice and childhood innocence in the American South.",
    },
    {
        "title": "The Great Gatsby",
        "author": "F. Scott Fitzgerald",
        "genre": "Classic Literature",
        "year": 1925,
        "isbn": "978-0-7432-7356-5",
        "tags": ["classic", "american literature", "1920s"],
        "description": "A critique of the American Dream set in the Jazz Age.",
    },
    {
        "title": "Dune",
        "author": "Frank Herbert",
        "genre": "Science Fiction",
        "year": 1965,
        "isbn": "978-0-441-17271-9",
        "tags": ["sci-fi", "space opera", "politics"],
        "description": "An epic science fiction novel set on the desert planet Arrakis.",
    },
    {
        "title": "Pride and Prejudice",
        "author": "Jane Austen",
        "genre": "Romance",
        "year": 1813,
        "isbn": "978-0-14-143951-8",
        "tags": ["romance", "classic", "regency"],
        "description": "A witty exploration of manners, education, marriage, and money.",
    },
    {
        "title": "1984",
        "author": "George Orwell",
        "genre": "Dystopian Fiction",
        "year": 1949,
        "isbn": "978-0-452-28423-4",
        "tags": ["dystopian", "political", "surveillance"],
        "description": "A chilling prophecy about the future of society under totalitarian rule.",
    },
    {
        "title": "The Lord of the Rings",
        "author": "J.R.R. Tolkien",
        "genre": "Fantasy",
        "year": 1954,
        "isbn": "978-0-544-00341-5",
        "tags": ["fantasy", "adventure", "epic"],
        "description": "An epic high fantasy novel following the quest to destroy the One Ring.",
    },
    {
        "title": "JavaScript: The Good Parts",
        "author": "Douglas Crockford",
        "genre": "Technology",
        "year": 2008,
        "isbn": "978-0-596-51774-8",
        "tags": ["programming", "javascript", "web development"],
        "description": "A guide to the elegant parts of JavaScript programming language.",
    },
    {
        "title": "Clean Code",
        "author": "Robert C. Martin",
        "genre": "Technology",
        "year": 2008,
        "isbn": "978-0-13-235088-4",
        "tags": ["programming", "software engineering", "best practices"],
        "description": "A handbook of agile software craftsmanship.",
    },
]

SAMPLE_BORROWERS = [
    {"name": "John Smith", "email": "john.smith@email.com", "phone": "(555) 123-4567"},
    {"name": "Sarah Johnson", "email": "sarah.johnson@email.com", "phone": "(555) 987-6543"},
]


def seed_sample_data(library: Library, loan_days: int = 14, today: Optional[date] = None) -> Dict[str, int]:
    """Add the sample books and check the first one out to the first borrower.

    Does nothing when the catalog already has books.
    """
    if library.list_books():
        logger.info("Catalog is not empty; skipping sample data")
        return {"books": 0, "borrowers": 0, "checked_out": 0}

    books = [library.add_book(**fields) for fields in SAMPLE_BOOKS]
    for borrower in SAMPLE_BORROWERS:
        library.storage.upsert_borrower_by_email(borrower["name"], borrower["email"], borrower["phone"])

    first = SAMPLE_BORROWERS[0]
    due = (today or library.today()) + timedelta(days=loan_days)
    library.checkout(books[0].id, first["name"], due, borrower_email=first["email"], borrower_phone=first["phone"])

    logger.info("Seeded %d books and %d borrowers", len(books), len(SAMPLE_BORROWERS))
    return {"books": len(books), "borrowers": len(SAMPLE_BORROWERS), "checked_out": 1}
