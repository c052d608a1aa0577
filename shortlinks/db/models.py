"""
Database Models for the Link Shortener Service

This module defines the SQLModel database schemas for:
- Link: Mapping between a slug and its destination URL
- ApiKey: Hashed API key credentials
- RateLimitWindow: Per-key request counters for fixed time windows

Design Decisions:
- Plaintext API keys are never stored, only their SHA-256 hex digest
- RateLimitWindow uses the natural key (api_key_id, window_start_ms) as its
  primary key so the upsert can target it directly
- Window starts are epoch milliseconds, aligned to the configured window size
- click_count is denormalized on Link for cheap stats
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger, DateTime, ForeignKey, Integer, String, Text
from sqlmodel import Column, Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class Link(SQLModel, table=True):
    """
    Short link owned by a user.

    Indexes:
    - slug: Unique index for redirects (most critical path)
    - user_id: Listing a user's links
    """
    __tablename__ = "links"

    id: str = Field(default_factory=new_id, sa_column=Column(String(36), primary_key=True))
    user_id: str = Field(sa_column=Column(String(64), nullable=False, index=True))
    slug: str = Field(sa_column=Column(String(50), nullable=False, unique=True, index=True))
    destination_url: str = Field(sa_column=Column(Text, nullable=False))
    expires_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    click_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True)
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    deleted_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True)
    )


class ApiKey(SQLModel, table=True):
    """
    API key credential.

    Fields:
    - key_hash: SHA-256 hex digest of the plaintext key (unique lookup column)
    - name: Human label chosen at issuance
    - last_used_at: Updated on every successful validation

    Revocation is a hard delete so a revoked key can never validate again.
    """
    __tablename__ = "api_keys"

    id: str = Field(default_factory=new_id, sa_column=Column(String(36), primary_key=True))
    user_id: str = Field(sa_column=Column(String(64), nullable=False, index=True))
    key_hash: str = Field(sa_column=Column(String(64), nullable=False, unique=True, index=True))
    name: str = Field(sa_column=Column(String(100), nullable=False))
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    last_used_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True)
    )


class RateLimitWindow(SQLModel, table=True):
    """
    Request counter for one API key in one fixed window.

    At most one row exists per (api_key_id, window_start_ms). Rows are created
    at request_count=1 and only ever incremented until the retention sweep
    deletes them.
    """
    __tablename__ = "rate_limit_windows"

    api_key_id: str = Field(
        sa_column=Column(
            String(36),
            ForeignKey("api_keys.id", ondelete="CASCADE"),
            primary_key=True,
        )
    )
    window_start_ms: int = Field(
        sa_column=Column(BigInteger, primary_key=True, index=True)
    )
    request_count: int = Field(default=1, sa_column=Column(Integer, nullable=False, default=1))
