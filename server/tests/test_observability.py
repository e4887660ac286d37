# ─────────────────────────────────────────────────────────────────────────────
# Tests — metrics, log redaction, settings
# ─────────────────────────────────────────────────────────────────────────────

import logging
from concurrent.futures import ThreadPoolExecutor

import pytest

from commitcast.config import Settings
from commitcast.logging_config import configure_logging, redact_secrets
from commitcast.services.metrics import PipelineMetrics


class TestPipelineMetrics:
    def test_empty(self):
        data = PipelineMetrics().to_dict()
        assert data["requests_total"] == 0
        assert data["latency_p50_ms"] == 0

    def test_success_and_failure_counts(self):
        metrics = PipelineMetrics()
        metrics.record_request("generate", 120.0, drafts=3)
        metrics.record_request("generate", 5.0, error_kind="ValidationError")
        metrics.record_request("repositories", 40.0, error_kind="ValidationError")

        data = metrics.to_dict()
        assert data["requests_total"] == 3
        assert data["successes_total"] == 1
        assert data["errors_total"] == 2
        assert data["drafts_generated"] == 3
        assert data["requests_by_route"] == {"generate": 2, "repositories": 1}
        assert metrics.failures_by_kind() == {"ValidationError": 2}

    def test_latency_percentiles(self):
        metrics = PipelineMetrics()
        for latency in range(1, 101):
            metrics.record_request("generate", float(latency))
        data = metrics.to_dict()
        assert data["latency_p50_ms"] == 51.0
        assert data["latency_p95_ms"] == 96.0
        assert data["latency_mean_ms"] == 50.5

    def test_latency_history_is_bounded(self):
        metrics = PipelineMetrics()
        for _ in range(1_500):
            metrics.record_request("generate", 1.0)
        assert len(metrics._latency_history) == 1_000
        assert metrics.to_dict()["requests_total"] == 1_500

    def test_thread_safe_counting(self):
        metrics = PipelineMetrics()
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda _: metrics.record_request("generate", 1.0), range(400)))
        assert metrics.to_dict()["requests_total"] == 400


class TestRedaction:
    @pytest.mark.parametrize("key", ["authorization", "access_token", "credential", "api_key"])
    def test_secret_fields_redacted(self, key: str):
        event = redact_secrets(None, "info", {"event": "x", key: "ghp_secret"})
        assert event[key] == "[REDACTED]"

    def test_other_fields_untouched(self):
        event = redact_secrets(None, "info", {"event": "x", "user_id": "token:abc"})
        assert event["user_id"] == "token:abc"

    def test_configure_logging_sets_level(self):
        configure_logging(log_level="WARNING", json_output=True)
        assert logging.getLogger().level == logging.WARNING
        assert logging.getLogger("httpx").level == logging.WARNING
        configure_logging(log_level="DEBUG", json_output=False)


class TestSettings:
    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.generate_rate_limit == 10
        assert settings.generate_rate_window_ms == 3_600_000
        assert settings.default_rate_limit == 100
        assert settings.environment == "production"
        assert not settings.debug_errors

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("GENERATION_API_KEY", "from-env")
        monkeypatch.setenv("ENVIRONMENT", "development")
        settings = Settings(_env_file=None)
        assert settings.has_generation_key
        assert settings.debug_errors

    def test_key_hidden_from_repr(self):
        settings = Settings(_env_file=None, generation_api_key="super-secret")
        assert "super-secret" not in repr(settings)
