"""
FastAPI Endpoints for API Key Management

Issue, list and revoke API keys, plus a read-only view of the caller's
current rate-limit window. Like every /api/v1 route these run behind the
request gate, so callers without a key act as the default user.
"""

from fastapi import APIRouter, Depends, HTTPException, Response, status

from shortlinks.api.dependencies import get_container, get_identity
from shortlinks.api.schemas import (
    ApiKeyResponse,
    CreateApiKeyRequest,
    CreateApiKeyResponse,
    ListApiKeysResponse,
    RateLimitStatusResponse,
)
from shortlinks.core.container import ServiceContainer
from shortlinks.db.models import ApiKey
from shortlinks.services.request_gate import Identity, VerifiedCredential

router = APIRouter(prefix="/api/v1")


def to_api_key_response(api_key: ApiKey) -> ApiKeyResponse:
    return ApiKeyResponse(
        id=api_key.id,
        name=api_key.name,
        created_at=api_key.created_at,
        last_used_at=api_key.last_used_at,
    )


@router.post(
    "/api-keys",
    response_model=CreateApiKeyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Issue an API key",
    description="Creates a key for the caller. The key is returned once and never again."
)
async def create_api_key(
    body: CreateApiKeyRequest,
    identity: Identity = Depends(get_identity),
    container: ServiceContainer = Depends(get_container)
) -> CreateApiKeyResponse:
    api_key, plain_key = await container.api_keys.issue(identity.user_id, body.name)

    return CreateApiKeyResponse(
        id=api_key.id,
        name=api_key.name,
        key=plain_key,
        created_at=api_key.created_at,
        last_used_at=api_key.last_used_at,
    )


@router.get("/api-keys", response_model=ListApiKeysResponse, summary="List API keys")
async def list_api_keys(
    identity: Identity = Depends(get_identity),
    container: ServiceContainer = Depends(get_container)
) -> ListApiKeysResponse:
    api_keys = await container.api_keys.list_for_user(identity.user_id)
    return ListApiKeysResponse(api_keys=[to_api_key_response(key) for key in api_keys])


@router.delete(
    "/api-keys/{api_key_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Revoke an API key",
    description="Deletes the key permanently; it stops validating immediately"
)
async def revoke_api_key(
    api_key_id: str,
    identity: Identity = Depends(get_identity),
    container: ServiceContainer = Depends(get_container)
) -> Response:
    api_key = await container.api_keys.get(api_key_id)
    if not api_key or api_key.user_id != identity.user_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="API key not found"
        )

    await container.api_keys.revoke(api_key_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/rate-limit",
    response_model=RateLimitStatusResponse,
    summary="Current rate limit status",
    description="Reports the presented API key's usage in the current window"
)
async def get_rate_limit_status(
    identity: Identity = Depends(get_identity),
    container: ServiceContainer = Depends(get_container)
) -> RateLimitStatusResponse:
    if not isinstance(identity, VerifiedCredential):
        return RateLimitStatusResponse(limited=False)

    current = await container.rate_limiter.get_status(identity.api_key.id)
    return RateLimitStatusResponse(
        limited=True,
        limit=current.limit,
        count=current.count,
        remaining=current.remaining,
        reset_at=current.reset_at,
    )
