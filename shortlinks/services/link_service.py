"""
Link Service

This service handles the core business logic for short links:
- Creating links with a random or user-chosen slug, singly or in bulk
- Looking links up by id (owner-scoped) or by slug (redirects)
- Listing, soft-deleting and reporting stats
- Counting clicks

Design Decisions:
- Random slugs: 7 characters from [a-zA-Z0-9] drawn with `secrets`
- Collisions on random slugs are retried with a fresh slug; a collision on
  a custom slug is reported to the caller
- Soft delete: deleted links stop redirecting but keep their slug reserved
- Bulk creation is not atomic: each item is committed on its own and failures
  are reported per item
- click_count is incremented with a database-level UPDATE (no read-modify-write)
"""

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shortlinks.core.exceptions import (
    DatabaseError,
    InvalidExpirationError,
    InvalidSlugError,
    InvalidURLError,
    LinkShortenerException,
    SlugConflictError,
)
from shortlinks.core.validators import is_valid_url, validate_custom_slug
from shortlinks.db.models import Link, utcnow

logger = logging.getLogger(__name__)

SLUG_ALPHABET = string.ascii_letters + string.digits
DEFAULT_SLUG_LENGTH = 7
MAX_SLUG_RETRIES = 5
MAX_BULK_LINKS = 100


@dataclass
class NewLink:
    """One link to create in a bulk request."""
    destination_url: str
    slug: Optional[str] = None
    expires_at: Optional[datetime] = None


@dataclass
class BulkCreateResult:
    """Outcome for the item at index in a bulk request."""
    index: int
    link: Optional[Link] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.link is not None


def generate_random_slug(length: int = DEFAULT_SLUG_LENGTH) -> str:
    """
    Generate a random slug.

    Example:
        generate_random_slug() -> "aZ3kQ9x"
    """
    return "".join(secrets.choice(SLUG_ALPHABET) for _ in range(length))


def _as_aware(moment: datetime) -> datetime:
    # SQLite hands back naive datetimes; they are stored as UTC
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def is_link_expired(link: Link, now: Optional[datetime] = None) -> bool:
    if link.expires_at is None:
        return False
    now = now or utcnow()
    return _as_aware(link.expires_at) < _as_aware(now)


class LinkService:
    """
    Link CRUD and click counting.

    Separated from the API layer for testability.
    """

    def __init__(self, session: AsyncSession, slug_length: int = DEFAULT_SLUG_LENGTH):
        """
        Initialize the link service.

        Args:
            session: Database session
            slug_length: Length of generated slugs
        """
        self.session = session
        self.slug_length = slug_length

    async def create_link(
        self,
        user_id: str,
        destination_url: str,
        slug: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        max_retries: int = MAX_SLUG_RETRIES
    ) -> Link:
        """
        Create a new link.

        Args:
            user_id: Owner of the link
            destination_url: Where the slug redirects to
            slug: Custom slug; a random one is generated when omitted
            expires_at: Optional expiry, must be in the future
            max_retries: Attempts at finding a free random slug

        Returns:
            The stored Link

        Raises:
            InvalidURLError: If the destination is not a safe http(s) URL
            InvalidSlugError: If the custom slug is malformed or reserved
            SlugConflictError: If the custom slug is taken
            DatabaseError: If no free slug was found or the insert failed
        """
        if not is_valid_url(destination_url):
            raise InvalidURLError(
                destination_url,
                reason="Invalid URL format. URL must use http:// or https:// and have a valid domain"
            )

        if slug is not None:
            problem = validate_custom_slug(slug)
            if problem:
                raise InvalidSlugError(slug, problem)

        if expires_at is not None and _as_aware(expires_at) <= utcnow():
            raise InvalidExpirationError(expires_at)

        last_error: Optional[Exception] = None
        for attempt in range(max_retries):
            candidate = slug if slug is not None else generate_random_slug(self.slug_length)
            link = Link(
                user_id=user_id,
                slug=candidate,
                destination_url=destination_url,
                expires_at=expires_at,
            )
            try:
                self.session.add(link)
                await self.session.flush()
                await self.session.commit()
                return link
            except IntegrityError as e:
                await self.session.rollback()
                if slug is not None:
                    raise SlugConflictError(slug)
                last_error = e

        raise DatabaseError(
            f"Failed to find a free slug after {max_retries} attempts",
            original_error=last_error
        )

    async def bulk_create(self, user_id: str, items: list[NewLink]) -> list[BulkCreateResult]:
        """
        Create several links, one at a time.

        A failing item does not affect the others: links created before it stay
        committed and the remaining items are still attempted.

        Args:
            user_id: Owner of every link
            items: Links to create (at most MAX_BULK_LINKS)

        Returns:
            One BulkCreateResult per item, in input order
        """
        if len(items) > MAX_BULK_LINKS:
            raise ValueError(f"At most {MAX_BULK_LINKS} links can be created at once")

        results = []
        for index, item in enumerate(items):
            try:
                link = await self.create_link(
                    user_id=user_id,
                    destination_url=item.destination_url,
                    slug=item.slug,
                    expires_at=item.expires_at,
                )
            except LinkShortenerException as e:
                results.append(BulkCreateResult(index=index, error=str(e)))
                continue

            # Detached so a rollback for a later item cannot expire it
            self.session.expunge(link)
            results.append(BulkCreateResult(index=index, link=link))

        failed = sum(1 for result in results if not result.success)
        if failed:
            logger.info(f"Bulk create for {user_id}: {failed} of {len(results)} links failed")
        return results

    async def get_link(self, user_id: str, link_id: str) -> Optional[Link]:
        statement = select(Link).where(
            Link.id == link_id,
            Link.user_id == user_id,
            Link.deleted_at.is_(None),
        )
        result = await self.session.execute(statement)
        return result.scalar_one_or_none()

    async def get_by_slug(self, slug: str) -> Optional[Link]:
        """Look up a live (not deleted) link for redirection."""
        statement = select(Link).where(Link.slug == slug, Link.deleted_at.is_(None))
        result = await self.session.execute(statement)
        return result.scalar_one_or_none()

    async def list_links(
        self,
        user_id: str,
        limit: int = 20,
        offset: int = 0
    ) -> tuple[list[Link], int]:
        """
        Page through a user's live links, newest first.

        Returns:
            (links on this page, total number of live links)
        """
        live = (Link.user_id == user_id, Link.deleted_at.is_(None))

        total_result = await self.session.execute(select(func.count(Link.id)).where(*live))
        total = total_result.scalar() or 0

        statement = (
            select(Link)
            .where(*live)
            .order_by(Link.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(statement)
        return list(result.scalars().all()), total

    async def delete_link(self, user_id: str, link_id: str) -> bool:
        """Soft-delete a link. Returns False if it does not exist or is already deleted."""
        now = utcnow()
        statement = (
            update(Link)
            .where(Link.id == link_id, Link.user_id == user_id, Link.deleted_at.is_(None))
            .values(deleted_at=now, updated_at=now)
        )
        result = await self.session.execute(statement)
        await self.session.commit()
        return result.rowcount > 0

    async def increment_click_count(self, link_id: str) -> None:
        """
        Increment the click count atomically.

        Commit is handled by the caller.
        """
        statement = (
            update(Link)
            .where(Link.id == link_id)
            .values(click_count=Link.click_count + 1)
        )
        await self.session.execute(statement)

    async def get_stats(self, user_id: str, link_id: str) -> Optional[dict]:
        link = await self.get_link(user_id, link_id)
        if not link:
            return None

        return {
            "id": link.id,
            "slug": link.slug,
            "destination_url": link.destination_url,
            "click_count": link.click_count,
            "created_at": link.created_at,
        }
