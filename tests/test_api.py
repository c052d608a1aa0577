"""
End-to-end tests through the FastAPI application.

The app runs with max_requests=3 and its limiter clock pinned to
2024-01-01T12:00:00Z, so quota headers are deterministic.
"""

import pytest
from fastapi.testclient import TestClient

from shortlinks.core.exceptions import StorageUnavailableError
from shortlinks.main import create_app

from tests.conftest import FIXED_NOW, make_settings

# ceil(epoch seconds) of 2024-01-01T12:01:00Z
RESET_EPOCH_SECONDS = "1704110460"


@pytest.fixture
def app(tmp_path):
    return create_app(make_settings(tmp_path, RATE_LIMIT_MAX=3))


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        app.state.container.rate_limiter.clock = lambda: FIXED_NOW
        yield client


@pytest.fixture
def api_key(client):
    response = client.post("/api/v1/api-keys", json={"name": "integration"})
    assert response.status_code == 201
    return response.json()


def bearer(key: str) -> dict:
    return {"Authorization": f"Bearer {key}"}


class TestHealth:

    def test_health(self, client):
        for path in ["/health", "/api/v1/health"]:
            response = client.get(path)
            assert response.status_code == 200
            assert response.json()["status"] == "healthy"

    def test_health_is_not_gated(self, client):
        response = client.get("/api/v1/health", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 200


class TestApiKeyEndpoints:

    def test_issue_returns_key_once(self, client, api_key):
        assert api_key["key"].startswith("rlk_")
        assert api_key["name"] == "integration"
        assert "createdAt" in api_key

        listed = client.get("/api/v1/api-keys").json()["apiKeys"]
        assert [item["id"] for item in listed] == [api_key["id"]]
        assert "key" not in listed[0]

    def test_issue_requires_name(self, client):
        response = client.post("/api/v1/api-keys", json={})
        assert response.status_code == 400
        assert response.json()["error"] == "Validation failed"

    def test_revoke(self, client, api_key):
        response = client.delete(f"/api/v1/api-keys/{api_key['id']}")
        assert response.status_code == 204

        response = client.get("/api/v1/links", headers=bearer(api_key["key"]))
        assert response.status_code == 401

        response = client.delete(f"/api/v1/api-keys/{api_key['id']}")
        assert response.status_code == 404


class TestGate:

    def test_request_without_key_is_not_limited(self, client):
        for _ in range(5):
            response = client.get("/api/v1/links")
            assert response.status_code == 200
            assert "X-RateLimit-Limit" not in response.headers

    def test_quota_headers_and_429(self, client, api_key):
        headers = bearer(api_key["key"])

        for expected_remaining in ["2", "1", "0"]:
            response = client.get("/api/v1/links", headers=headers)
            assert response.status_code == 200
            assert response.headers["X-RateLimit-Limit"] == "3"
            assert response.headers["X-RateLimit-Remaining"] == expected_remaining
            assert response.headers["X-RateLimit-Reset"] == RESET_EPOCH_SECONDS

        response = client.get("/api/v1/links", headers=headers)
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert response.json() == {
            "error": "Rate limit exceeded",
            "reason": "rate_limit_exceeded",
            "retryAfter": 60,
        }

    def test_invalid_keys_get_401(self, client):
        for value in [
            "Bearer rlk_" + "0" * 32,
            "Bearer not-a-key",
            "Basic dXNlcjpwYXNz",
        ]:
            response = client.get("/api/v1/links", headers={"Authorization": value})
            assert response.status_code == 401
            assert response.json() == {"error": "Invalid API key", "reason": "invalid_api_key"}

    def test_rate_limit_status(self, client, api_key):
        response = client.get("/api/v1/rate-limit")
        assert response.json()["limited"] is False

        response = client.get("/api/v1/rate-limit", headers=bearer(api_key["key"]))
        body = response.json()
        assert body["limited"] is True
        assert body["limit"] == 3
        # The status request itself was charged by the gate
        assert body["count"] == 1
        assert body["remaining"] == 2

    def test_storage_outage_returns_503(self, client, app, api_key, monkeypatch):
        async def unavailable(plain_key):
            raise StorageUnavailableError("database is gone")

        monkeypatch.setattr(app.state.container.api_keys, "lookup", unavailable)

        response = client.get("/api/v1/links", headers=bearer(api_key["key"]))
        assert response.status_code == 503
        assert response.json() == {"error": "Service unavailable", "reason": "storage_unavailable"}


class TestLinks:

    def test_create_and_redirect(self, client):
        response = client.post(
            "/api/v1/links",
            json={"destinationUrl": "https://example.com/landing", "slug": "landing"}
        )
        assert response.status_code == 201
        link = response.json()
        assert link["shortUrl"] == "http://sho.rt/landing"
        assert link["destinationUrl"] == "https://example.com/landing"

        response = client.get("/landing", follow_redirects=False)
        assert response.status_code == 302
        assert response.headers["location"] == "https://example.com/landing"

    def test_links_belong_to_key_owner(self, client, api_key):
        created = client.post(
            "/api/v1/links",
            json={"destinationUrl": "https://example.com"},
            headers=bearer(api_key["key"])
        ).json()

        # Keys issued without a credential belong to the default user
        response = client.get(f"/api/v1/links/{created['id']}")
        assert response.status_code == 200
        assert response.json()["slug"] == created["slug"]

    def test_create_errors(self, client):
        client.post("/api/v1/links", json={"destinationUrl": "https://a.io", "slug": "dupe"})

        conflict = client.post("/api/v1/links", json={"destinationUrl": "https://b.io", "slug": "dupe"})
        assert conflict.status_code == 409

        reserved = client.post("/api/v1/links", json={"destinationUrl": "https://b.io", "slug": "admin"})
        assert reserved.status_code == 400

        bad_url = client.post("/api/v1/links", json={"destinationUrl": "javascript:alert(1)"})
        assert bad_url.status_code == 400

        missing = client.post("/api/v1/links", json={})
        assert missing.status_code == 400
        assert missing.json()["details"][0]["field"] == "destinationUrl"

    def test_list_get_stats_delete(self, client):
        created = client.post("/api/v1/links", json={"destinationUrl": "https://example.com"}).json()

        listing = client.get("/api/v1/links", params={"limit": 10}).json()
        assert listing["pagination"]["total"] == 1
        assert listing["pagination"]["hasMore"] is False

        client.get(f"/{created['slug']}", follow_redirects=False)
        stats = client.get(f"/api/v1/links/{created['id']}/stats").json()
        assert stats["clickCount"] == 1

        assert client.delete(f"/api/v1/links/{created['id']}").status_code == 204
        assert client.get(f"/api/v1/links/{created['id']}").status_code == 404
        assert client.get(f"/{created['slug']}", follow_redirects=False).status_code == 404

    def test_redirect_errors(self, client):
        assert client.get("/does-not-exist", follow_redirects=False).status_code == 404
        assert client.get("/bad.slug", follow_redirects=False).status_code == 400


class TestBulkLinks:

    def test_all_created_returns_201(self, client):
        response = client.post("/api/v1/links/bulk", json={"links": [
            {"destinationUrl": "https://example.com/a", "slug": "bulk-a"},
            {"destinationUrl": "https://example.com/b"},
        ]})

        assert response.status_code == 201
        body = response.json()
        assert body["summary"] == {"total": 2, "succeeded": 2, "failed": 0}
        assert body["results"][0]["link"]["shortUrl"] == "http://sho.rt/bulk-a"
        assert "error" not in body["results"][0]

    def test_partial_failure_returns_207(self, client):
        response = client.post("/api/v1/links/bulk", json={"links": [
            {"destinationUrl": "https://example.com/a", "slug": "twice"},
            {"destinationUrl": "https://example.com/b", "slug": "twice"},
        ]})

        assert response.status_code == 207
        body = response.json()
        assert body["summary"] == {"total": 2, "succeeded": 1, "failed": 1}
        second = body["results"][1]
        assert second == {
            "index": 1,
            "success": False,
            "error": "A link with this slug already exists",
        }

    def test_all_failed_returns_400(self, client):
        response = client.post("/api/v1/links/bulk", json={"links": [
            {"destinationUrl": "ftp://example.com"},
            {"destinationUrl": "https://example.com", "slug": "api"},
        ]})

        assert response.status_code == 400
        assert response.json()["summary"] == {"total": 2, "succeeded": 0, "failed": 2}

    def test_request_shape_is_validated(self, client):
        assert client.post("/api/v1/links/bulk", json={"links": []}).status_code == 400

        too_many = [{"destinationUrl": "https://example.com"}] * 101
        response = client.post("/api/v1/links/bulk", json={"links": too_many})
        assert response.status_code == 400
        assert response.json()["error"] == "Validation failed"

    def test_bulk_create_is_rate_limited(self, client, api_key):
        headers = bearer(api_key["key"])
        payload = {"links": [{"destinationUrl": "https://example.com"}]}

        for _ in range(3):
            assert client.post("/api/v1/links/bulk", json=payload, headers=headers).status_code == 201
        response = client.post("/api/v1/links/bulk", json=payload, headers=headers)
        assert response.status_code == 429
