"""Exception types surfaced by the portal services."""
from typing import Optional


class PortalError(Exception):
    """Base error carrying the HTTP status and a caller-safe message."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PortalError):
    """Raised when request input is missing or malformed."""

    status_code = 400


class NotFoundError(PortalError):
    """Raised when a registration id doesn't exist."""

    status_code = 404


class UpstreamError(PortalError):
    """Raised when the database, object store or SMTP relay fails.

    ``message`` is shown to callers; ``detail`` keeps the vendor message
    for the logs.
    """

    status_code = 500

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.detail = detail or message

    def __str__(self):
        return f"{self.message}: {self.detail}" if self.detail != self.message else self.message


class StorageError(UpstreamError):
    """Object store failure."""


class DatabaseError(UpstreamError):
    """Document database failure."""


class ConfigurationError(PortalError):
    """Raised when an SMTP provider is unknown or fails verification."""

    status_code = 500
