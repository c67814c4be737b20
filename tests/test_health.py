from fastapi.testclient import TestClient

from storefront.app.main import app


def test_health():
    client = TestClient(app)
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["components"]["rate_limiter"] == {"status": "ok", "backend": "memory"}
    # Exempt from rate limiting
    assert "X-RateLimit-Limit" not in resp.headers


def test_rate_limit_status():
    client = TestClient(app)
    resp = client.get("/api/rate-limit/status", headers={"X-Real-IP": "192.0.2.1"})
    assert resp.status_code == 200
    stats = resp.json()["stats"]
    assert stats["backend"] == "memory"
    # The status request itself was counted
    assert stats["window_requests"] == 1
    assert resp.headers["X-RateLimit-Limit"] == "50"


def test_lifespan_starts_and_stops_cleanup():
    with TestClient(app) as client:
        assert client.get("/health").status_code == 200
