from fastapi.testclient import TestClient

from app.main import app


def test_healthz():
    client = TestClient(app)
    response = client.get("/api/healthz")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["db"] is True
    assert body["sweep_next_run"] is None


def test_correlation_id_is_echoed():
    client = TestClient(app)
    response = client.get("/api/healthz", headers={"x-correlation-id": "trace-123"})
    assert response.headers["x-correlation-id"] == "trace-123"


def test_correlation_id_is_generated():
    client = TestClient(app)
    response = client.get("/api/healthz")
    assert response.headers["x-correlation-id"]


def test_metrics_exposed():
    client = TestClient(app)
    client.get("/api/healthz")
    response = client.get("/api/metrics")
    assert response.status_code == 200
    assert "http_requests_total" in response.text
