from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_out_dir() -> str:
    # Keep logs under backend/out by default to avoid polluting the source tree.
    return str(Path(__file__).resolve().parents[1] / "out")


class Settings(BaseSettings):
    """Validated settings (env-driven), keeping provider URLs and keys out of code."""

    model_config = SettingsConfigDict(
        # Support both "repo root/.env" and "backend/.env" (local dev)
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    out_dir: str = Field(default_factory=_default_out_dir, alias="OUT_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Free jurisdiction feeds
    tii_base_url: str = Field(default="https://data.tii.ie", alias="TII_BASE_URL")
    webtris_base_url: str = Field(
        default="https://webtris.nationalhighways.co.uk/api/v1",
        alias="WEBTRIS_BASE_URL",
    )
    provider_timeout_s: float = Field(default=10.0, ge=0.5, le=120.0, alias="PROVIDER_TIMEOUT_S")

    # Commercial fallback (billed per request)
    google_maps_directions_url: str = Field(
        default="https://maps.googleapis.com/maps/api/directions/json",
        alias="GOOGLE_MAPS_DIRECTIONS_URL",
    )
    google_maps_api_key: str = Field(default="", alias="GOOGLE_MAPS_API_KEY")
    commercial_audit_history: int = Field(default=100, ge=1, le=10_000, alias="COMMERCIAL_AUDIT_HISTORY")

    # Per-component TTL caches
    cache_ttl_s: int = Field(default=300, ge=1, le=86_400, alias="CACHE_TTL_S")
    cache_max_entries: int = Field(default=1024, ge=1, alias="CACHE_MAX_ENTRIES")
    cache_sweep_interval_s: float = Field(default=60.0, ge=1.0, alias="CACHE_SWEEP_INTERVAL_S")

    # Segment enrichment backend
    llm_provider: str = Field(default="gemini", alias="LLM_PROVIDER")
    llm_api_key: str = Field(default="", alias="LLM_API_KEY")
    llm_model: str = Field(default="", alias="LLM_MODEL")
    llm_timeout_s: float = Field(default=30.0, ge=1.0, le=300.0, alias="LLM_TIMEOUT_S")
    llm_debug: bool = Field(default=False, alias="LLM_DEBUG")

    # API gating
    api_keys: str = Field(default="demo-key-free,demo-key-pro,demo-key-enterprise", alias="API_KEYS")
    rate_limit_enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    rate_limit_max_requests: int = Field(default=100, ge=1, alias="RATE_LIMIT_MAX_REQUESTS")
    rate_limit_window_s: int = Field(default=900, ge=1, alias="RATE_LIMIT_WINDOW_S")

    # Junction monitor (scheduled trigger)
    junction_call_pause_s: float = Field(default=0.2, ge=0.0, le=10.0, alias="JUNCTION_CALL_PAUSE_S")
    junction_concurrency: int = Field(default=1, ge=1, le=16, alias="JUNCTION_CONCURRENCY")
    junction_notify_min_delay: int = Field(default=5, ge=0, alias="JUNCTION_NOTIFY_MIN_DELAY")
    telegram_api_url: str = Field(default="https://api.telegram.org", alias="TELEGRAM_API_URL")
    telegram_bot_token: str = Field(default="", alias="TELEGRAM_BOT_TOKEN")
    telegram_chat_id: str = Field(default="", alias="TELEGRAM_CHAT_ID")

    @field_validator("llm_provider")
    @classmethod
    def _normalise_provider(cls, value: str) -> str:
        return str(value or "gemini").strip().lower() or "gemini"

    @field_validator("tii_base_url", "webtris_base_url", "telegram_api_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return str(value or "").strip().rstrip("/")

    def api_key_set(self) -> set[str]:
        return {token.strip() for token in self.api_keys.split(",") if token.strip()}


settings = Settings()
