"""
Tests for the link service and input validators.
"""

from datetime import timedelta

import pytest

from shortlinks.core.exceptions import (
    InvalidExpirationError,
    InvalidSlugError,
    InvalidURLError,
    SlugConflictError,
)
from shortlinks.core.validators import is_valid_url, sanitize_slug, validate_custom_slug
from shortlinks.db.models import Link, utcnow
from shortlinks.services.link_service import (
    MAX_BULK_LINKS,
    SLUG_ALPHABET,
    LinkService,
    NewLink,
    generate_random_slug,
    is_link_expired,
)


class TestSlugGeneration:
    """Test random slug generation."""

    def test_default_length(self):
        for _ in range(50):
            slug = generate_random_slug()
            assert len(slug) == 7
            assert all(char in SLUG_ALPHABET for char in slug)

    def test_custom_length(self):
        assert len(generate_random_slug(12)) == 12


class TestURLValidation:
    """Test URL validation function."""

    def test_valid_urls(self):
        valid_urls = [
            "http://example.com",
            "https://example.com",
            "https://www.example.com/path/to/page",
            "http://subdomain.example.com:8080/path?query=value",
            "http://localhost:3000/",
        ]
        for url in valid_urls:
            assert is_valid_url(url), f"Should be valid: {url}"

    def test_invalid_urls(self):
        invalid_urls = [
            "not-a-url",
            "ftp://example.com",  # FTP not supported
            "example.com",  # Missing scheme
            "",
            "http://",  # Missing domain
            "javascript:alert(1)",
            "https://intranet/page",  # No dot in host
            "https://example.com/" + "a" * 2048,
        ]
        for url in invalid_urls:
            assert not is_valid_url(url), f"Should be invalid: {url}"


class TestSlugValidation:

    def test_sanitize_slug(self):
        assert sanitize_slug("abc1234") == "abc1234"
        assert sanitize_slug(" my-link ") == "my-link"
        assert sanitize_slug("bad/slug") is None
        assert sanitize_slug("a" * 51) is None
        assert sanitize_slug("") is None

    def test_custom_slug_rules(self):
        assert validate_custom_slug("my_link-1") is None
        assert validate_custom_slug("ab") is not None
        assert validate_custom_slug("a" * 51) is not None
        assert validate_custom_slug("has space") is not None

    def test_reserved_slugs_are_rejected_case_insensitively(self):
        for slug in ["api", "Admin", "HEALTH", "docs"]:
            assert validate_custom_slug(slug) is not None, slug


class TestExpiry:

    def test_link_without_expiry_never_expires(self):
        assert not is_link_expired(Link(user_id="u", slug="abc", destination_url="https://a.io"))

    def test_past_and_future_expiry(self):
        now = utcnow()
        expired = Link(user_id="u", slug="abc", destination_url="https://a.io",
                       expires_at=now - timedelta(minutes=1))
        live = Link(user_id="u", slug="abd", destination_url="https://a.io",
                    expires_at=now + timedelta(minutes=1))
        assert is_link_expired(expired, now=now)
        assert not is_link_expired(live, now=now)

    def test_naive_expiry_is_treated_as_utc(self):
        now = utcnow()
        naive = Link(user_id="u", slug="abc", destination_url="https://a.io",
                     expires_at=(now - timedelta(seconds=5)).replace(tzinfo=None))
        assert is_link_expired(naive, now=now)


class TestLinkService:

    @pytest.mark.asyncio
    async def test_create_with_random_slug(self, session):
        link = await LinkService(session, slug_length=9).create_link(
            "user_1", "https://example.com/page"
        )
        assert len(link.slug) == 9
        assert link.click_count == 0
        assert link.user_id == "user_1"

    @pytest.mark.asyncio
    async def test_create_with_custom_slug(self, session):
        service = LinkService(session)
        link = await service.create_link("user_1", "https://example.com", slug="promo-2024")

        found = await service.get_by_slug("promo-2024")
        assert found is not None
        assert found.id == link.id

    @pytest.mark.asyncio
    async def test_duplicate_custom_slug_conflicts(self, session):
        service = LinkService(session)
        await service.create_link("user_1", "https://example.com", slug="taken")

        with pytest.raises(SlugConflictError):
            await service.create_link("user_2", "https://other.com", slug="taken")

    @pytest.mark.asyncio
    async def test_invalid_input_is_rejected(self, session):
        service = LinkService(session)

        with pytest.raises(InvalidURLError):
            await service.create_link("user_1", "ftp://example.com")
        with pytest.raises(InvalidSlugError):
            await service.create_link("user_1", "https://example.com", slug="api")
        with pytest.raises(InvalidExpirationError):
            await service.create_link(
                "user_1", "https://example.com",
                expires_at=utcnow() - timedelta(hours=1)
            )

    @pytest.mark.asyncio
    async def test_list_is_scoped_and_paginated(self, session):
        service = LinkService(session)
        for i in range(3):
            await service.create_link("user_1", f"https://example.com/{i}")
        await service.create_link("user_2", "https://example.com/other")

        links, total = await service.list_links("user_1", limit=2, offset=0)
        assert total == 3
        assert len(links) == 2

        links, total = await service.list_links("user_1", limit=2, offset=2)
        assert len(links) == 1

    @pytest.mark.asyncio
    async def test_delete_is_soft_and_owner_scoped(self, session):
        service = LinkService(session)
        link = await service.create_link("user_1", "https://example.com", slug="gone")

        assert await service.delete_link("user_2", link.id) is False
        assert await service.delete_link("user_1", link.id) is True
        assert await service.delete_link("user_1", link.id) is False

        assert await service.get_by_slug("gone") is None
        assert await service.get_link("user_1", link.id) is None

    @pytest.mark.asyncio
    async def test_click_count_and_stats(self, session):
        service = LinkService(session)
        link = await service.create_link("user_1", "https://example.com", slug="clicky")
        link_id = link.id

        await service.increment_click_count(link_id)
        await service.increment_click_count(link_id)
        await session.commit()
        # Reload from the database instead of the stale identity-map copy
        session.expire_all()

        stats = await service.get_stats("user_1", link_id)
        assert stats["click_count"] == 2
        assert stats["slug"] == "clicky"
        assert await service.get_stats("user_2", link_id) is None


class TestBulkCreate:

    @pytest.mark.asyncio
    async def test_every_item_is_created(self, session):
        service = LinkService(session)
        results = await service.bulk_create("user_1", [
            NewLink(destination_url="https://example.com/a"),
            NewLink(destination_url="https://example.com/b", slug="bee"),
        ])

        assert [result.index for result in results] == [0, 1]
        assert all(result.success for result in results)
        assert results[1].link.slug == "bee"

        links, total = await service.list_links("user_1")
        assert total == 2

    @pytest.mark.asyncio
    async def test_failures_are_reported_per_item(self, session):
        service = LinkService(session)
        results = await service.bulk_create("user_1", [
            NewLink(destination_url="https://example.com/1", slug="first"),
            NewLink(destination_url="ftp://example.com"),
            NewLink(destination_url="https://example.com/2", slug="first"),
            NewLink(destination_url="https://example.com/3"),
        ])

        assert [result.success for result in results] == [True, False, False, True]
        assert "http" in results[1].error
        assert results[2].error == "A link with this slug already exists"
        # Links created before a failed item keep their loaded state
        assert results[0].link.slug == "first"
        assert results[3].link.destination_url == "https://example.com/3"

        _, total = await service.list_links("user_1")
        assert total == 2

    @pytest.mark.asyncio
    async def test_too_many_items_are_rejected(self, session):
        items = [NewLink(destination_url="https://example.com")] * (MAX_BULK_LINKS + 1)
        with pytest.raises(ValueError):
            await LinkService(session).bulk_create("user_1", items)
