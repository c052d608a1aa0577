"""
FastAPI Endpoints for Links

This module defines the link REST API and the public redirect with minimal logic.
Endpoints only handle:
- Request validation (Pydantic models)
- Error handling and HTTP responses
- Delegating to the service layer

API key validation and quota enforcement for /api/v1 happen in the request
gate middleware before any of these handlers run; the redirect route is
public and throttled per IP with slowapi instead.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from shortlinks.api.dependencies import get_container, get_identity
from shortlinks.api.schemas import (
    BulkCreateLinksRequest,
    BulkCreateLinksResponse,
    BulkLinkResult,
    BulkSummary,
    CreateLinkRequest,
    LinkResponse,
    LinkStatsResponse,
    ListLinksResponse,
    Pagination,
)
from shortlinks.core.container import ServiceContainer
from shortlinks.core.exceptions import (
    DatabaseError,
    InvalidExpirationError,
    InvalidSlugError,
    InvalidURLError,
    SlugConflictError,
)
from shortlinks.core.rate_limit import RATE_LIMITS, limiter
from shortlinks.core.validators import sanitize_slug
from shortlinks.db.models import Link
from shortlinks.db.session import get_session
from shortlinks.services.background_tasks import increment_click_count_background
from shortlinks.services.link_service import LinkService, NewLink, is_link_expired
from shortlinks.services.request_gate import Identity

router = APIRouter(prefix="/api/v1/links")

redirect_router = APIRouter()


def to_link_response(link: Link, base_url: str) -> LinkResponse:
    return LinkResponse(
        id=link.id,
        slug=link.slug,
        destination_url=link.destination_url,
        short_url=f"{base_url.rstrip('/')}/{link.slug}",
        expires_at=link.expires_at,
        created_at=link.created_at,
        updated_at=link.updated_at,
    )


@router.post(
    "",
    response_model=LinkResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a short link",
    description="Takes a destination URL and returns a short link with a random or custom slug"
)
async def create_link(
    body: CreateLinkRequest,
    identity: Identity = Depends(get_identity),
    container: ServiceContainer = Depends(get_container),
    session: AsyncSession = Depends(get_session)
) -> LinkResponse:
    """
    Create a new short link.

    Raises:
        HTTPException 400: Invalid URL, slug or expiry
        HTTPException 409: Custom slug already taken
        HTTPException 500: Database failure
    """
    link_service = LinkService(session, slug_length=container.settings.SLUG_LENGTH)

    try:
        link = await link_service.create_link(
            user_id=identity.user_id,
            destination_url=body.destination_url,
            slug=body.slug,
            expires_at=body.expires_at,
        )
    except (InvalidURLError, InvalidSlugError, InvalidExpirationError) as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except SlugConflictError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e)
        )
    except DatabaseError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )

    return to_link_response(link, container.settings.BASE_URL)


def bulk_status_code(summary: BulkSummary) -> int:
    """201 when every item succeeded, 207 on a mix, 400 when all failed."""
    if summary.failed and summary.succeeded:
        return status.HTTP_207_MULTI_STATUS
    if summary.failed == summary.total:
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_201_CREATED


@router.post(
    "/bulk",
    response_model=BulkCreateLinksResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create short links in bulk",
    description="Creates up to 100 links; each item succeeds or fails on its own",
    responses={207: {"model": BulkCreateLinksResponse}, 400: {"model": BulkCreateLinksResponse}}
)
async def bulk_create_links(
    body: BulkCreateLinksRequest,
    identity: Identity = Depends(get_identity),
    container: ServiceContainer = Depends(get_container),
    session: AsyncSession = Depends(get_session)
) -> JSONResponse:
    link_service = LinkService(session, slug_length=container.settings.SLUG_LENGTH)
    results = await link_service.bulk_create(
        identity.user_id,
        [
            NewLink(destination_url=item.destination_url, slug=item.slug, expires_at=item.expires_at)
            for item in body.links
        ],
    )

    succeeded = sum(1 for result in results if result.success)
    response = BulkCreateLinksResponse(
        results=[
            BulkLinkResult(
                index=result.index,
                success=result.success,
                link=to_link_response(result.link, container.settings.BASE_URL) if result.link else None,
                error=result.error,
            )
            for result in results
        ],
        summary=BulkSummary(
            total=len(results),
            succeeded=succeeded,
            failed=len(results) - succeeded,
        ),
    )

    return JSONResponse(
        status_code=bulk_status_code(response.summary),
        content=response.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


@router.get(
    "",
    response_model=ListLinksResponse,
    summary="List links",
    description="Returns the caller's links, newest first"
)
async def list_links(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    identity: Identity = Depends(get_identity),
    container: ServiceContainer = Depends(get_container),
    session: AsyncSession = Depends(get_session)
) -> ListLinksResponse:
    link_service = LinkService(session)
    links, total = await link_service.list_links(identity.user_id, limit=limit, offset=offset)

    return ListLinksResponse(
        links=[to_link_response(link, container.settings.BASE_URL) for link in links],
        pagination=Pagination(
            total=total,
            limit=limit,
            offset=offset,
            has_more=offset + len(links) < total,
        ),
    )


@router.get("/{link_id}", response_model=LinkResponse, summary="Get a link")
async def get_link(
    link_id: str,
    identity: Identity = Depends(get_identity),
    container: ServiceContainer = Depends(get_container),
    session: AsyncSession = Depends(get_session)
) -> LinkResponse:
    link = await LinkService(session).get_link(identity.user_id, link_id)
    if not link:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Link '{link_id}' not found"
        )
    return to_link_response(link, container.settings.BASE_URL)


@router.delete(
    "/{link_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a link",
    description="Soft-deletes the link; its slug stops redirecting"
)
async def delete_link(
    link_id: str,
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session)
) -> Response:
    deleted = await LinkService(session).delete_link(identity.user_id, link_id)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Link '{link_id}' not found"
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/{link_id}/stats",
    response_model=LinkStatsResponse,
    summary="Get link statistics",
    description="Returns the click count and creation date of a link"
)
async def get_link_stats(
    link_id: str,
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session)
) -> LinkStatsResponse:
    stats = await LinkService(session).get_stats(identity.user_id, link_id)
    if not stats:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Link '{link_id}' not found"
        )
    return LinkStatsResponse(**stats)


@redirect_router.get(
    "/{slug}",
    status_code=status.HTTP_302_FOUND,
    summary="Redirect to destination URL",
    description="Takes a slug and redirects to the link's destination"
)
@limiter.limit(RATE_LIMITS["redirect"])
async def redirect_to_url(
    slug: str,
    request: Request,  # Required for rate limiting (slowapi expects parameter named 'request')
    background_tasks: BackgroundTasks,
    container: ServiceContainer = Depends(get_container),
    session: AsyncSession = Depends(get_session)
) -> RedirectResponse:
    """
    Redirect to the destination of a slug.

    Raises:
        HTTPException 400: If slug format is invalid
        HTTPException 404: If slug not found or link deleted
        HTTPException 410: If link has expired
        HTTPException 429: If the per-IP redirect limit is exceeded
    """
    sanitized = sanitize_slug(slug)
    if not sanitized:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid slug format: '{slug}'."
        )

    link = await LinkService(session).get_by_slug(sanitized)
    if not link:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Slug '{sanitized}' not found"
        )

    if is_link_expired(link):
        raise HTTPException(
            status_code=status.HTTP_410_GONE,
            detail="This link has expired"
        )

    background_tasks.add_task(
        increment_click_count_background,
        container.session_maker,
        link.id
    )

    return RedirectResponse(
        url=link.destination_url,
        status_code=status.HTTP_302_FOUND
    )
