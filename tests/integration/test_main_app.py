from concurrent.futures import ThreadPoolExecutor

from fastapi.testclient import TestClient

from deploy_guard.main import app
from deploy_guard.services.errors import RegistryUnavailableError


def test_health_live_and_ready_endpoints():
    client = TestClient(app)
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/health/live").json() == {"status": "live"}
    assert client.get("/health/ready").json() == {"status": "ready"}


def test_unhandled_exception_handler_returns_problem_json():
    @app.get("/_test/error")
    async def _test_error():
        raise RuntimeError("boom")

    client = TestClient(app, raise_server_exceptions=False)
    response = client.get("/_test/error", headers={"X-Correlation-Id": "corr-err"})
    assert response.status_code == 500
    assert response.headers["content-type"].startswith("application/problem+json")
    body = response.json()
    assert body["title"] == "Internal Server Error"
    assert body["status"] == 500
    assert body["error_code"] == "INTERNAL_ERROR"
    assert "boom" not in body["detail"]


def test_registry_outage_maps_to_503_problem():
    @app.get("/_test/registry-down")
    async def _test_registry_down():
        raise RegistryUnavailableError("registry responded 503: down", upstream_status=503)

    client = TestClient(app)
    response = client.get("/_test/registry-down")
    assert response.status_code == 503
    body = response.json()
    assert body["error_code"] == "REGISTRY_UNAVAILABLE"
    assert body["instance"] == "/_test/registry-down"


def test_health_live_concurrency():
    client = TestClient(app)

    def _call_live() -> int:
        return client.get("/health/live").status_code

    with ThreadPoolExecutor(max_workers=8) as pool:
        statuses = list(pool.map(lambda _: _call_live(), range(32)))

    assert all(status == 200 for status in statuses)


def test_health_ready_returns_503_when_draining():
    app.state.is_draining = True
    client = TestClient(app)
    response = client.get("/health/ready")
    app.state.is_draining = False

    assert response.status_code == 503
    assert response.json() == {"status": "draining"}


def test_lifespan_marks_app_draining_on_shutdown():
    with TestClient(app) as client:
        assert client.get("/health/ready").status_code == 200
    assert app.state.is_draining is True
    app.state.is_draining = False


def test_metrics_endpoint_is_exposed():
    client = TestClient(app)
    client.get("/health")
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "http_requests_total" in response.text
