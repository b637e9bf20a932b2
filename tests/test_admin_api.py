"""Tests for the rate limit admin endpoints."""

import time

from dashboard.app.core.config import settings
from dashboard.app.ratelimit.limiter import make_key


def seed_recent(fake_redis, key: str, n: int) -> None:
    now_ms = int(time.time() * 1000)
    fake_redis.seed(key, [now_ms - 1000 - i for i in range(n)])


class TestRateLimitStatusEndpoint:
    """GET /admin/ratelimit/{config_name}/{identifier}"""

    def test_status(self, app_client, fake_redis, admin_headers):
        seed_recent(fake_redis, make_key("mutation:ip", "10.0.0.1"), 4)

        response = app_client.get(
            "/admin/ratelimit/mutation:ip/10.0.0.1",
            params={"max": 100},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json() == {
            "config": "mutation:ip",
            "identifier": "10.0.0.1",
            "allowed": True,
            "current": 4,
            "limit": 100,
            "remaining": 96,
            "reset_in": settings.rate_limit_window_seconds,
            "retry_after": None,
        }

    def test_status_does_not_record(self, app_client, fake_redis, admin_headers):
        key = make_key("mutation:ip", "10.0.0.1")
        seed_recent(fake_redis, key, 2)

        for _ in range(3):
            app_client.get(
                "/admin/ratelimit/mutation:ip/10.0.0.1",
                params={"max": 100},
                headers=admin_headers,
            )

        assert len(fake_redis.zsets[key]) == 2

    def test_status_custom_window(self, app_client, admin_headers):
        response = app_client.get(
            "/admin/ratelimit/ingest:device/sensor-7",
            params={"max": 5, "window_seconds": 10},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["reset_in"] == 10

    def test_status_requires_max(self, app_client, admin_headers):
        response = app_client.get(
            "/admin/ratelimit/mutation:ip/10.0.0.1", headers=admin_headers
        )
        assert response.status_code == 422

    def test_status_rejects_invalid_window(self, app_client, admin_headers):
        response = app_client.get(
            "/admin/ratelimit/mutation:ip/10.0.0.1",
            params={"max": 10, "window_seconds": 0},
            headers=admin_headers,
        )
        assert response.status_code == 422

    def test_status_with_store_down_fails_open(self, app_client, fake_redis, admin_headers):
        fake_redis.malformed = True

        response = app_client.get(
            "/admin/ratelimit/mutation:ip/10.0.0.1",
            params={"max": 100},
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["allowed"] is True
        assert data["current"] == 0
        assert data["reset_in"] == 0


class TestRateLimitResetEndpoint:
    """DELETE /admin/ratelimit/{config_name}/{identifier}"""

    def test_reset(self, app_client, fake_redis, admin_headers):
        key = make_key("mutation:ip", "10.0.0.1")
        seed_recent(fake_redis, key, 100)

        response = app_client.delete(
            "/admin/ratelimit/mutation:ip/10.0.0.1", headers=admin_headers
        )

        assert response.status_code == 200
        assert response.json() == {
            "config": "mutation:ip",
            "identifier": "10.0.0.1",
            "reset": True,
        }
        assert key not in fake_redis.zsets

    def test_reset_missing_key(self, app_client, admin_headers):
        response = app_client.delete(
            "/admin/ratelimit/read:ip/10.9.9.9", headers=admin_headers
        )
        assert response.json()["reset"] is True

    def test_reset_with_store_down(self, app_client, fake_redis, admin_headers):
        async def broken_delete(*keys):
            raise OSError("Connection reset by peer")

        fake_redis.delete = broken_delete

        response = app_client.delete(
            "/admin/ratelimit/read:ip/10.9.9.9", headers=admin_headers
        )

        assert response.status_code == 200
        assert response.json()["reset"] is False


class TestAdminAuth:
    """Admin endpoints require the admin token."""

    def test_missing_token(self, app_client):
        response = app_client.get("/admin/ratelimit/read:ip/10.0.0.1", params={"max": 1})

        assert response.status_code == 401
        assert response.json()["error"] == "UNAUTHORIZED"

    def test_wrong_token(self, app_client):
        response = app_client.delete(
            "/admin/ratelimit/read:ip/10.0.0.1",
            headers={"Authorization": "Bearer wrong-token"},
        )
        assert response.status_code == 401

    def test_admin_disabled_without_token(self, app_client, admin_headers, monkeypatch):
        monkeypatch.setattr(settings, "admin_token", "")

        response = app_client.delete(
            "/admin/ratelimit/read:ip/10.0.0.1", headers=admin_headers
        )

        assert response.status_code == 503
        assert response.json()["error"] == "SERVICE_UNAVAILABLE"

    def test_limiter_not_initialized(self, app_client, admin_headers):
        app_client.app.state.rate_limiter = None

        response = app_client.delete(
            "/admin/ratelimit/read:ip/10.0.0.1", headers=admin_headers
        )

        assert response.status_code == 503
