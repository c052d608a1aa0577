"""
Request Gate

Per-request orchestration of API key validation and rate limiting.

States:
    no credential presented  -> DefaultIdentity, no quota applied
    credential presented     -> validate
        invalid              -> denied, 401
        valid                -> rate check
            exceeded         -> denied, 429 with Retry-After
            within limit     -> allowed, response annotated with quota headers

Exactly one of allowed/denied is reached per request. A denied request never
reaches the downstream handler and performs no writes: the key's
last_used_at is only recorded once the request has been admitted. Storage
failures are not converted into 401/429; they propagate as StorageUnavailableError.

Requests without a credential bypass quota entirely in the current deployment
phase; a malformed or unknown credential is always rejected.
"""

import logging
import math
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from shortlinks.core.exceptions import AuthenticationError, QuotaExceededError
from shortlinks.db.models import ApiKey
from shortlinks.services.api_keys import ApiKeyService, is_well_formed_api_key
from shortlinks.services.rate_limiter import RateLimiter, RateLimitResult, to_epoch_ms

logger = logging.getLogger(__name__)

HEADER_LIMIT = "X-RateLimit-Limit"
HEADER_REMAINING = "X-RateLimit-Remaining"
HEADER_RESET = "X-RateLimit-Reset"
HEADER_RETRY_AFTER = "Retry-After"

CallNext = Callable[[Request], Awaitable[Response]]


@dataclass(frozen=True)
class VerifiedCredential:
    """Request authenticated with a valid API key; quota applies."""
    api_key: ApiKey

    @property
    def user_id(self) -> str:
        return self.api_key.user_id


@dataclass(frozen=True)
class DefaultIdentity:
    """Request without an API key; served as the default user with no quota."""
    user_id: str


Identity = Union[VerifiedCredential, DefaultIdentity]


@dataclass(frozen=True)
class GateDecision:
    """An allowed request: who it runs as and, for credentialed calls, its quota state."""
    identity: Identity
    rate_limit: Optional[RateLimitResult] = None


def extract_api_key(authorization: Optional[str]) -> Optional[str]:
    """
    Pull the API key out of an Authorization header value.

    Returns:
        The key, or None when no credential was presented (absent or blank header)

    Raises:
        AuthenticationError: If a credential is presented but is not "Bearer rlk_<32 hex>"
    """
    if authorization is None or not authorization.strip():
        return None

    parts = authorization.strip().split(None, 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthenticationError("Malformed Authorization header")

    token = parts[1].strip()
    if not is_well_formed_api_key(token):
        raise AuthenticationError("Malformed API key")
    return token


def retry_after_seconds(result: RateLimitResult) -> int:
    return math.ceil((result.retry_after_ms or 0) / 1000)


def apply_rate_limit_headers(response: Response, result: RateLimitResult) -> Response:
    """Add quota headers to a response without touching its status or body."""
    response.headers[HEADER_LIMIT] = str(result.limit)
    response.headers[HEADER_REMAINING] = str(result.remaining)
    response.headers[HEADER_RESET] = str(math.ceil(to_epoch_ms(result.reset_at) / 1000))
    return response


def unauthorized_response(error: AuthenticationError) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"error": "Invalid API key", "reason": error.reason},
        headers={"WWW-Authenticate": "Bearer"},
    )


def rate_limited_response(error: QuotaExceededError) -> JSONResponse:
    retry_after = retry_after_seconds(error.result)
    response = JSONResponse(
        status_code=429,
        content={
            "error": "Rate limit exceeded",
            "reason": error.reason,
            "retryAfter": retry_after,
        },
    )
    response.headers[HEADER_RETRY_AFTER] = str(retry_after)
    return apply_rate_limit_headers(response, error.result)


class RequestGate:
    """Combines ApiKeyService and RateLimiter into an allow/deny decision per request."""

    def __init__(
        self,
        api_keys: ApiKeyService,
        rate_limiter: RateLimiter,
        default_user_id: str
    ):
        self.api_keys = api_keys
        self.rate_limiter = rate_limiter
        self.default_user_id = default_user_id

    async def authorize(self, authorization: Optional[str]) -> GateDecision:
        """
        Decide whether a request may proceed.

        Args:
            authorization: Raw Authorization header value (None if absent)

        Returns:
            GateDecision for an allowed request

        Raises:
            AuthenticationError: Credential malformed or unknown (401)
            QuotaExceededError: Credential valid but out of quota (429)
            StorageUnavailableError: A store could not be reached (5xx)
        """
        plain_key = extract_api_key(authorization)
        if plain_key is None:
            return GateDecision(identity=DefaultIdentity(user_id=self.default_user_id))

        api_key = await self.api_keys.lookup(plain_key)
        if api_key is None:
            raise AuthenticationError()

        result = await self.rate_limiter.check_and_increment(api_key.id)
        if not result.allowed:
            logger.info(f"Rate limit exceeded for API key {api_key.id}")
            raise QuotaExceededError(result)

        await self.api_keys.touch(api_key)

        return GateDecision(identity=VerifiedCredential(api_key=api_key), rate_limit=result)

    async def handle(self, request: Request, call_next: CallNext) -> Response:
        """
        Run the gate around a downstream handler.

        On success the identity is stored on request.state.identity before the
        handler runs, and quota headers are added to whatever it returns.
        """
        try:
            decision = await self.authorize(request.headers.get("Authorization"))
        except AuthenticationError as e:
            logger.info(f"Rejected request to {request.url.path}: {e}")
            return unauthorized_response(e)
        except QuotaExceededError as e:
            return rate_limited_response(e)

        request.state.identity = decision.identity
        response = await call_next(request)

        if decision.rate_limit is not None:
            apply_rate_limit_headers(response, decision.rate_limit)
        return response
