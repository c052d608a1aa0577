"""
API Request and Response Schemas

This module defines all Pydantic models for API requests and responses.
Separated from endpoints to keep concerns separated and enable reuse.

JSON fields are camelCase on the wire (destinationUrl, createdAt, ...);
snake_case names are accepted on input as well.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateApiKeyRequest(CamelModel):
    """Request model for issuing an API key."""
    name: str = Field(..., min_length=1, max_length=100, description="Label for the key")


class ApiKeyResponse(CamelModel):
    """API key metadata. Never includes the key itself."""
    id: str
    name: str
    created_at: datetime
    last_used_at: Optional[datetime] = None


class CreateApiKeyResponse(ApiKeyResponse):
    """Response for key issuance; the only place the plaintext key is ever returned."""
    key: str = Field(..., description="The API key. Store it now, it cannot be shown again")


class ListApiKeysResponse(CamelModel):
    api_keys: list[ApiKeyResponse]


class RateLimitStatusResponse(CamelModel):
    """Quota state for the presented API key."""
    limited: bool = Field(..., description="False when no API key was presented")
    limit: Optional[int] = None
    count: Optional[int] = None
    remaining: Optional[int] = None
    reset_at: Optional[datetime] = None


class CreateLinkRequest(CamelModel):
    """Request model for link creation."""
    destination_url: str = Field(..., max_length=2048, description="The long URL to shorten")
    slug: Optional[str] = Field(default=None, description="Custom slug (random if omitted)")
    expires_at: Optional[datetime] = Field(default=None, description="Optional expiry")


class LinkResponse(CamelModel):
    id: str
    slug: str
    destination_url: str
    short_url: str
    expires_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class Pagination(CamelModel):
    total: int
    limit: int
    offset: int
    has_more: bool


class ListLinksResponse(CamelModel):
    links: list[LinkResponse]
    pagination: Pagination


class BulkCreateLinksRequest(CamelModel):
    """Request model for creating up to 100 links in one call."""
    links: list[CreateLinkRequest] = Field(..., min_length=1, max_length=100)


class BulkLinkResult(CamelModel):
    index: int
    success: bool
    link: Optional[LinkResponse] = None
    error: Optional[str] = None


class BulkSummary(CamelModel):
    total: int
    succeeded: int
    failed: int


class BulkCreateLinksResponse(CamelModel):
    """Per-item results in request order plus totals."""
    results: list[BulkLinkResult]
    summary: BulkSummary


class LinkStatsResponse(CamelModel):
    """Response model for link statistics."""
    id: str
    slug: str
    destination_url: str
    click_count: int
    created_at: datetime
