"""
Exceptions raised by the card content service.

Each exception carries the HTTP status it maps to; the app turns them into
``{"success": false, "error": ...}`` responses.
"""


class CardServiceError(Exception):
    """Base exception for all card service errors."""

    status_code = 500


class ValidationError(CardServiceError):
    """Raised when a request body or query parameter is malformed."""

    status_code = 400


class AuthorizationError(CardServiceError):
    """Raised when the elevated credential is missing or wrong."""

    status_code = 401


class StoreError(CardServiceError):
    """Raised when the underlying store fails."""

    status_code = 500


class DuplicateIdempotencyKeyError(StoreError):
    """Raised when an audit row reuses an idempotency key already logged."""
