"""Library Circulation - book lifecycle service

This package contains:
- Domain models and lifecycle state (book.py)
- Circulation rules (library.py) and the activity log (activity.py)
- Storage adapters (storage.py for in-memory, database.py for SQLite)
- REST API (api.py) and CLI (main.py)
"""

__version__ = "1.0.0"
