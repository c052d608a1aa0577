"""
Public Redirect Throttling

IP-based rate limiting for the unauthenticated redirect endpoint.
API-key quotas for /api/v1 are enforced separately by the request gate
(see shortlinks.services.request_gate); this limiter only protects the
public GET /{slug} route from abuse.

Design Decisions:
- Uses slowapi for rate limiting (lightweight, FastAPI-compatible)
- IP-based limiting, in-memory storage per instance
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from shortlinks.core.setting import settings

# Uses IP address for rate limiting
limiter = Limiter(key_func=get_remote_address)

# Format: "count/period" (e.g., "100/minute" means 100 requests per minute)
RATE_LIMITS = {
    "redirect": settings.REDIRECT_RATE_LIMIT,
}
