"""
Tests for the FastAPI application.

Covers the protected image route and the watermark admin endpoints
against a fully wired ImageGuard.
"""

import time

import pytest
from fastapi.testclient import TestClient

from api.app import create_app
from imageguard.notifications import ErrorType

from tests.conftest import BROWSER_UA


@pytest.fixture
def client(guard):
    """Client without lifespan events: the guard fixture owns start/stop."""
    return TestClient(create_app(guard, start_workers=False), headers={"User-Agent": BROWSER_UA})


@pytest.fixture
def uninitialized_client():
    return TestClient(create_app(None, start_workers=False))


def wait_until(predicate, timeout: float = 5.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


# =============================================================================
# PROTECTED IMAGES
# =============================================================================

class TestProtectedImage:
    """Test GET /protected/image/{token}."""

    def test_serves_watermarked_image(self, client, guard):
        response = client.get(guard.gateway.protected_url("products/a.jpg"))

        assert response.status_code == 200
        assert response.headers["content-type"] == "image/jpeg"
        assert response.headers["cache-control"] == "private, max-age=3600, must-revalidate"
        assert response.headers["x-content-type-options"] == "nosniff"
        assert response.headers["etag"]
        assert response.content[:2] == b"\xff\xd8"

    def test_conditional_request(self, client, guard):
        url = guard.gateway.protected_url("products/a.jpg")
        etag = client.get(url).headers["etag"]

        response = client.get(url, headers={"If-None-Match": etag})

        assert response.status_code == 304
        assert response.content == b""

    def test_target_dimensions_from_query(self, client, guard):
        plain = client.get(guard.gateway.protected_url("products/a.jpg"))
        phone = client.get(guard.gateway.protected_url("products/a.jpg", 375, 667))

        assert phone.status_code == 200
        assert phone.headers["etag"] != plain.headers["etag"]

    def test_range_request(self, client, guard):
        url = guard.gateway.protected_url("products/a.jpg")
        full = client.get(url).content

        response = client.get(url, headers={"Range": "bytes=0-1"})

        assert response.status_code == 206
        assert response.content == full[:2] == b"\xff\xd8"
        assert response.headers["content-range"] == f"bytes 0-1/{len(full)}"

    def test_invalid_token(self, client):
        response = client.get("/protected/image/not-a-token")

        assert response.status_code == 404
        assert response.headers["cache-control"] == "no-store"
        assert "detail" in response.json()

    def test_blocked_user_agent(self, client, guard):
        response = client.get(
            guard.gateway.protected_url("products/a.jpg"),
            headers={"User-Agent": "python-requests/2.31"},
        )
        assert response.status_code == 403

    def test_hotlink_blocked(self, client, guard):
        response = client.get(
            guard.gateway.protected_url("products/a.jpg"),
            headers={"Referer": "https://evil.com/gallery"},
        )
        assert response.status_code == 403

    def test_missing_source(self, client, guard):
        assert client.get(guard.gateway.protected_url("products/missing.jpg")).status_code == 404


# =============================================================================
# ADMIN ENDPOINTS
# =============================================================================

class TestNotificationEndpoints:
    """Test notification admin endpoints."""

    def test_list_and_dismiss(self, client, guard):
        notification = guard.notifications.record(ErrorType.CORRUPTED_IMAGE, {"path": "a.jpg"}, "Unreadable")

        listing = client.get("/api/watermark/notifications").json()
        assert [n["id"] for n in listing["notifications"]] == [notification.id]
        assert listing["counts"]["active"] == 1
        assert listing["health"]["status"] == "healthy"

        response = client.post(f"/api/watermark/notifications/{notification.id}/dismiss")
        assert response.status_code == 200
        assert response.json()["success"] is True

        assert client.get("/api/watermark/notifications").json()["notifications"] == []
        included = client.get("/api/watermark/notifications", params={"include_dismissed": True}).json()
        assert included["notifications"][0]["dismissed"] is True

    def test_dismiss_unknown(self, client):
        assert client.post("/api/watermark/notifications/wm_missing/dismiss").status_code == 404

    def test_clear_old(self, client, guard):
        notification = guard.notifications.record(ErrorType.CORRUPTED_IMAGE, message="Unreadable")
        guard.notifications.dismiss(notification.id)

        response = client.post("/api/watermark/notifications/clear-old", params={"days_old": 0})

        assert response.status_code == 200
        assert response.json()["count"] == 1

    def test_error_report(self, client, guard):
        guard.notifications.record(ErrorType.MISSING_EXTENSIONS, message="No codec")

        report = client.get("/api/watermark/error-report").json()

        assert "missing_extensions" in report["errors_by_type"]
        assert report["recommendations"][0]["title"] == "Install image codec support"
        assert report["health"]["status"] == "warning"


class TestCacheEndpoints:
    """Test cache admin endpoints."""

    def test_stats(self, client, guard):
        guard.service.apply_watermark("products/a.jpg")

        stats = client.get("/api/watermark/cache/stats").json()

        assert stats["count"] == 1
        assert stats["writes"] == 1
        assert "timestamp" in stats

    def test_clear(self, client, guard):
        guard.service.apply_watermark("products/a.jpg")
        guard.service.apply_watermark("products/b.png")

        response = client.post("/api/watermark/cache/clear")

        assert response.json() == {"success": True, "message": "Cleared 2 cached artifacts", "count": 2}
        assert guard.cache_store.stats()["count"] == 0

    def test_cleanup(self, client, guard):
        guard.service.apply_watermark("products/a.jpg")
        response = client.post("/api/watermark/cache/cleanup", params={"days_old": 7})
        assert response.json()["count"] == 0


class TestHealthEndpoints:
    """Test health and the test-watermark endpoint."""

    def test_app_health(self, client):
        assert client.get("/api/health").json()["status"] == "ok"

    def test_watermark_health(self, client):
        health = client.get("/api/watermark/health").json()
        assert health["status"] == "healthy"
        assert health["has_required_codec"] is True

    def test_test_watermark(self, client):
        response = client.post("/api/watermark/test", json={"image_path": "products/a.jpg"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["result_path"].startswith("watermarks/cache/")

    def test_test_watermark_rejects_traversal(self, client):
        response = client.post("/api/watermark/test", json={"image_path": "../etc/passwd"})
        assert response.status_code == 400

    def test_uninitialized(self, uninitialized_client):
        assert uninitialized_client.get("/api/watermark/health").status_code == 503


class TestJobEndpoints:
    """Test job and batch endpoints."""

    def test_job_status(self, client, guard):
        result = guard.service.resolve("products/a.jpg", "low")
        assert wait_until(lambda: result.job.is_finished)

        response = client.get(f"/api/watermark/jobs/{result.cache_key}")

        assert response.status_code == 200
        assert response.json()["state"] == "completed"
        assert response.json()["priority"] == "low"

    def test_list_jobs(self, client, guard):
        result = guard.service.resolve("products/a.jpg", "low")
        assert wait_until(lambda: result.job.is_finished)

        jobs = client.get("/api/watermark/jobs", params={"state": "completed"}).json()
        assert [job["job_key"] for job in jobs] == [result.cache_key]

    def test_list_jobs_bad_state(self, client):
        assert client.get("/api/watermark/jobs", params={"state": "exploded"}).status_code == 400

    def test_unknown_job(self, client):
        assert client.get("/api/watermark/jobs/0123456789abcdef").status_code == 404

    def test_batch_lifecycle(self, client, guard):
        response = client.post("/api/watermark/batches", json={"paths": ["products/a.jpg", "products/b.png"]})
        assert response.status_code == 200
        batch_id = response.json()["batch_id"]
        assert response.json()["total"] == 2

        assert wait_until(lambda: guard.scheduler.batch_status(batch_id).is_finished)
        status = client.get(f"/api/watermark/batches/{batch_id}").json()
        assert status["status"] == "completed"
        assert status["succeeded"] == 2
        assert status["progress_percent"] == 100.0

    def test_empty_batch_rejected(self, client):
        assert client.post("/api/watermark/batches", json={"paths": []}).status_code == 422

    def test_unknown_batch(self, client):
        assert client.get("/api/watermark/batches/batch_missing").status_code == 404
        assert client.post("/api/watermark/batches/batch_missing/cancel").status_code == 404
