"""Error taxonomy shared by the lifecycle service, storage adapters and the API."""


class LibraryError(Exception):
    """Base class for every domain error raised by the circulation core."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(LibraryError):
    """A required field is missing or a value cannot be parsed."""

    status_code = 400


class Conflict(LibraryError):
    """A uniqueness rule would be broken (duplicate ISBN, duplicate email)."""

    status_code = 400


class NotFound(LibraryError):
    status_code = 404


class InvalidState(LibraryError):
    """The operation is not allowed in the book's current lifecycle state."""

    status_code = 400


class StorageError(LibraryError):
    """The underlying persistence layer failed."""

    status_code = 500


class UniqueViolation(StorageError):
    """Raised by storage adapters when a unique constraint is hit.

    ``field`` names the offending column so the service can word the
    resulting ``Conflict``.
    """

    def __init__(self, field: str, value: object = None) -> None:
        super().__init__(f"{field} already exists")
        self.field = field
        self.value = value
