# ─────────────────────────────────────────────────────────────────────────────
# Settings — Pydantic v2 BaseSettings
# ─────────────────────────────────────────────────────────────────────────────


from functools import lru_cache
from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Server configuration sourced from environment variables.

    Uses pydantic-settings v2 (separate package from pydantic).
    """

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    # ── Runtime ──────────────────────────────────────────────────────────────
    # "development" adds raw upstream/exception messages to error bodies.
    environment: Literal["development", "production", "test"] = "production"
    port: int = 8080

    # ── Generation provider (Gemini) ─────────────────────────────────────────
    # SecretStr prevents the key from leaking into logs, repr(), or
    # model_dump(). Access via settings.generation_api_key.get_secret_value().
    # Empty string = every /generate request fails with ConfigurationError.
    generation_api_key: SecretStr = SecretStr("")
    generation_model: str = "gemini-1.5-pro"
    generation_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    generation_timeout_seconds: float = 60.0
    generation_max_retries: int = 2  # Extra attempts for timeouts / 5xx only
    generation_retry_backoff_seconds: float = 0.5
    max_diff_chars: int = 30_000

    # ── Source control (GitHub) ──────────────────────────────────────────────
    github_api_url: str = "https://api.github.com"
    github_timeout_seconds: float = 15.0

    # ── Rate limits ──────────────────────────────────────────────────────────
    # Strict store guards POST /generate (two paid upstream calls per request).
    generate_rate_limit: int = 10
    generate_rate_window_ms: int = 3_600_000
    # Default store guards the cheaper read endpoints.
    default_rate_limit: int = 100
    default_rate_window_ms: int = 3_600_000
    rate_limit_max_tracked_keys: int = 10_000
    # Outer per-IP flood guard (slowapi format, e.g. "300/minute").
    http_rate_limit: str = "300/minute"

    # ── Security ─────────────────────────────────────────────────────────────
    # Comma-separated origins for CORS (e.g. "https://app.example.com,http://localhost:3000").
    # Empty string = deny all cross-origin requests (secure default).
    allowed_origins: str = ""

    # ── Logging ──────────────────────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool = True  # JSON logs for Cloud Logging

    # ── Tracing ──────────────────────────────────────────────────────────────
    # "console" prints spans to stdout; empty disables the SDK provider.
    otel_exporter: str = ""

    @property
    def debug_errors(self) -> bool:
        """Whether error bodies may include raw diagnostic messages."""
        return self.environment == "development"

    @property
    def has_generation_key(self) -> bool:
        return bool(self.generation_api_key.get_secret_value().strip())


@lru_cache
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
