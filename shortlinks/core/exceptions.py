"""
Custom Exceptions

This module defines custom exceptions for better error handling
and more specific error messages.

Hierarchy:
- LinkShortenerException
  - InvalidURLError, InvalidSlugError, InvalidExpirationError
  - SlugConflictError
  - DatabaseError
    - StorageUnavailableError
      - RaceRetryExhaustedError
  - AuthenticationError
  - QuotaExceededError
"""

from datetime import datetime
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from shortlinks.services.rate_limiter import RateLimitResult


class LinkShortenerException(Exception):
    """Base exception for the link shortener service."""
    pass


class InvalidURLError(LinkShortenerException):
    """Raised when URL validation fails."""

    def __init__(self, url: str, reason: str = "Invalid URL format"):
        self.url = url
        self.reason = reason
        super().__init__(f"{reason}: {url}")


class InvalidSlugError(LinkShortenerException):
    """Raised when a custom slug is malformed or reserved."""

    def __init__(self, slug: str, reason: str):
        self.slug = slug
        self.reason = reason
        super().__init__(reason)


class InvalidExpirationError(LinkShortenerException):
    """Raised when a link's expiry is not in the future."""

    def __init__(self, expires_at: datetime):
        self.expires_at = expires_at
        super().__init__("Expiration date must be in the future")


class SlugConflictError(LinkShortenerException):
    """Raised when a custom slug is already taken."""

    def __init__(self, slug: str):
        self.slug = slug
        super().__init__("A link with this slug already exists")


class DatabaseError(LinkShortenerException):
    """Raised when database operations fail."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.original_error = original_error
        super().__init__(f"Database error: {message}")


class StorageUnavailableError(DatabaseError):
    """
    Raised when the credential or counter store cannot be reached.

    Surfaces as a 5xx response; never reported as an auth or quota failure.
    """
    pass


class RaceRetryExhaustedError(StorageUnavailableError):
    """Raised when an atomic counter increment fails again after its single retry."""
    pass


class AuthenticationError(LinkShortenerException):
    """Raised when a presented API key is malformed or matches no credential."""

    reason = "invalid_api_key"

    def __init__(self, message: str = "Invalid API key"):
        super().__init__(message)


class QuotaExceededError(LinkShortenerException):
    """Raised when an API key has used up its quota for the current window."""

    reason = "rate_limit_exceeded"

    def __init__(self, result: "RateLimitResult"):
        self.result = result
        super().__init__("Rate limit exceeded")
