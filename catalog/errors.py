"""
Error taxonomy for catalog operations.

Every error carries a stable ``kind`` (and optionally a finer ``reason``)
that clients can check, plus a human-readable message. Internal details
such as driver exceptions are never part of the message.
"""

from typing import Optional


class CatalogError(Exception):
    """Base class for all catalog errors."""

    kind = "error"
    status_code = 500

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason

    def __str__(self) -> str:
        return self.message


class NotFoundError(CatalogError):
    kind = "not_found"
    status_code = 404


class UnauthenticatedError(CatalogError):
    kind = "unauthenticated"
    status_code = 401


class ForbiddenError(CatalogError):
    kind = "forbidden"
    status_code = 403


class InvalidInputError(CatalogError):
    kind = "invalid_input"
    status_code = 400


class ConflictError(CatalogError):
    kind = "conflict"
    status_code = 400


class StorageFailure(CatalogError):
    """Raised when the image backend cannot store or release a file."""

    kind = "storage_failure"
    status_code = 500


class PersistenceFailure(CatalogError):
    """Raised when the document store fails."""

    kind = "persistence_failure"
    status_code = 500
