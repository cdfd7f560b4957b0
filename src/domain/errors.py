"""
Error taxonomy shared by the domain, components and API layer.

Every subclass carries the HTTP status the API maps it to, so the exception
handlers in src.api.main stay a single lookup.
"""

from __future__ import annotations


class MangaError(Exception):
    """Base class for all expected failures."""

    status_code: int = 500
    public_message: str = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.public_message
        super().__init__(self.message)


class ValidationError(MangaError):
    """Malformed input, rejected before any store mutation."""

    status_code = 400
    public_message = "Invalid input"


class AuthenticationError(MangaError):
    """Missing, expired or invalid credential."""

    status_code = 401
    public_message = "Not authenticated"


class AuthorizationError(MangaError):
    """Valid identity without the privilege the action needs."""

    status_code = 403
    public_message = "Forbidden"


class NotFoundError(MangaError):
    """Unknown id, or an item whose existence is concealed from the requester."""

    status_code = 404
    public_message = "Not found"


class ConflictError(MangaError):
    """Page-number collision or duplicate unique field."""

    status_code = 409
    public_message = "Conflict"


class StorageError(MangaError):
    """
    Blob store unavailable or a read/write failed.

    The message is logged with context; clients only see public_message.
    """

    status_code = 500
    public_message = "Storage failure"
