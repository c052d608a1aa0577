"""
Input Validators and Sanitizers

This module provides validation and sanitization functions for user inputs.
These functions help prevent security issues and ensure data integrity.

Security Considerations:
- Input validation prevents injection attacks
- Length limits prevent DoS attacks
- Only http/https destinations are accepted
"""

import re
from typing import Optional
from urllib.parse import urlparse

MAX_URL_LENGTH = 2048
MIN_SLUG_LENGTH = 3
MAX_SLUG_LENGTH = 50

SLUG_PATTERN = re.compile(r'^[a-zA-Z0-9_-]+$')

# Slugs that collide with application routes
RESERVED_SLUGS = frozenset({
    "api",
    "dashboard",
    "login",
    "logout",
    "docs",
    "redoc",
    "health",
    "settings",
    "admin",
})


def sanitize_slug(slug: str) -> Optional[str]:
    """
    Sanitize and validate a slug taken from a request path.

    Args:
        slug: The slug to sanitize

    Returns:
        Sanitized slug if valid, None otherwise
    """
    if not slug or not isinstance(slug, str):
        return None

    slug = slug.strip()

    if len(slug) > MAX_SLUG_LENGTH:
        return None

    if not SLUG_PATTERN.match(slug):
        return None

    return slug


def is_reserved_slug(slug: str) -> bool:
    return slug.lower() in RESERVED_SLUGS


def validate_custom_slug(slug: str) -> Optional[str]:
    """
    Validate a user-chosen slug.

    Returns:
        None if the slug is acceptable, otherwise a human-readable reason
    """
    if len(slug) < MIN_SLUG_LENGTH:
        return f"Slug must be at least {MIN_SLUG_LENGTH} characters"

    if len(slug) > MAX_SLUG_LENGTH:
        return f"Slug must be at most {MAX_SLUG_LENGTH} characters"

    if not SLUG_PATTERN.match(slug):
        return "Slug can only contain letters, numbers, underscores, and hyphens"

    if is_reserved_slug(slug):
        return "This slug is reserved and cannot be used"

    return None


def is_valid_url(url: str) -> bool:
    """
    Validate URL format and security.

    Checks that URL uses http/https, has valid domain, and doesn't contain
    malicious patterns. Prevents javascript:, file:, and other dangerous schemes.

    Args:
        url: The URL string to validate

    Returns:
        True if valid and safe, False otherwise
    """
    if not url or not isinstance(url, str):
        return False

    if len(url) > MAX_URL_LENGTH:
        return False

    try:
        result = urlparse(url)
    except ValueError:
        return False

    if not result.scheme or not result.netloc:
        return False

    if result.scheme.lower() not in {'http', 'https'}:
        return False

    domain = result.netloc.split(':')[0]
    if domain != 'localhost' and '.' not in domain:
        return False

    malicious_patterns = ['javascript:', 'data:', 'file:', 'vbscript:']
    url_lower = url.lower()
    if any(pattern in url_lower for pattern in malicious_patterns):
        return False

    return True
