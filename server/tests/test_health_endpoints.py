# ─────────────────────────────────────────────────────────────────────────────
# Health Endpoint Tests — liveness, readiness, metrics
# ─────────────────────────────────────────────────────────────────────────────
# Demonstrates: dirty-equals (declarative assertions)
# ─────────────────────────────────────────────────────────────────────────────

from dirty_equals import IsInstance, IsNonNegative, IsStr
from fastapi.testclient import TestClient

from commitcast.config import Settings
from conftest import AUTH_HEADERS, VALID_BODY


class TestLivenessProbe:
    """GET /health — near-zero cost, always 200."""

    def test_returns_200(self, client):
        response = client.get("/health")
        assert response.status_code == 200

    def test_minimal_body(self, client):
        assert client.get("/health").json() == {"status": "ok"}


class TestReadinessProbe:
    """GET /health/ready — ready only with a generation key configured."""

    def test_ready_with_key(self, client):
        response = client.get("/health/ready")
        assert response.status_code == 200
        assert response.json() == {
            "status": "ready",
            "generation_configured": True,
            "environment": "test",
        }

    def test_not_ready_without_key(self, app_factory, make_orchestrator, test_settings):
        settings = Settings(_env_file=None, **{**test_settings.model_dump(), "generation_api_key": ""})
        client = TestClient(app_factory(make_orchestrator(settings), settings))
        response = client.get("/health/ready")
        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"

    def test_never_reveals_key(self, client):
        assert "test-generation-key" not in client.get("/health/ready").text


class TestMetricsEndpoint:
    def test_shape(self, client):
        data = client.get("/metrics").json()
        assert data == {
            "requests_total": IsNonNegative,
            "successes_total": IsNonNegative,
            "errors_total": IsNonNegative,
            "drafts_generated": IsNonNegative,
            "requests_by_route": IsInstance(dict),
            "failures_by_kind": IsInstance(dict),
            "latency_p50_ms": IsNonNegative,
            "latency_p95_ms": IsNonNegative,
            "latency_mean_ms": IsNonNegative,
            "uptime_seconds": IsNonNegative,
        }

    def test_counts_pipeline_outcomes(self, client):
        client.post("/generate", json=VALID_BODY, headers=AUTH_HEADERS)
        client.post("/generate", json=VALID_BODY)
        data = client.get("/metrics").json()
        assert data["requests_total"] == 2
        assert data["successes_total"] == 1
        assert data["failures_by_kind"] == {"AuthenticationError": 1}


class TestPrometheusEndpoint:
    def test_text_exposition(self, client):
        client.post("/generate", json=VALID_BODY, headers=AUTH_HEADERS)
        response = client.get("/metrics/prometheus")

        assert response.status_code == 200
        assert response.headers["content-type"] == IsStr(regex=r"text/plain.*")
        assert 'commitcast_requests_total{outcome="success"} 1.0' in response.text
        assert "commitcast_drafts_generated 3.0" in response.text
        assert 'commitcast_failures_total{kind="ValidationError"}' in response.text


class TestLifespan:
    """The real lifespan wires settings, metrics and the orchestrator."""

    def test_startup_populates_state(self, monkeypatch):
        from commitcast.config import get_settings
        from commitcast.main import create_app
        from commitcast.services.pipeline import RequestOrchestrator

        monkeypatch.setenv("GENERATION_API_KEY", "lifespan-key")
        monkeypatch.setenv("LOG_JSON", "false")
        get_settings.cache_clear()

        app = create_app()
        with TestClient(app) as client:
            assert isinstance(app.state.orchestrator, RequestOrchestrator)
            assert client.get("/health/ready").status_code == 200
            # Unauthenticated calls never reach the upstream clients.
            assert client.post("/generate", json=VALID_BODY).status_code == 401
