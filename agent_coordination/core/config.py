"""Central runtime configuration for agent coordination."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_LOCK_TTL_SECONDS = 15 * 60
DEFAULT_LOCK_KEY_PREFIX = "run"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    env: str = "development"
    log_level: str = "INFO"
    app_name: str = "agent_coordination"
    app_version: str = "0.1.0"
    redis_url: str = "redis://localhost:6379/0"
    database_url: str = "sqlite+pysqlite:///./data/coordination.sqlite"
    kv_backend: str = "memory"
    lock_key_prefix: str = DEFAULT_LOCK_KEY_PREFIX
    lock_default_ttl_seconds: int = DEFAULT_LOCK_TTL_SECONDS
    orchestration_step_lock_ttl_seconds: int = DEFAULT_LOCK_TTL_SECONDS
    retry_max_retries: int = 3
    retry_base_delay_seconds: float = 1.0
    retry_multiplier: float = 2.0
    retry_max_delay_seconds: float = 30.0
    retry_escalation_threshold: int = 0
    events_enabled: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


def _validate(settings: Settings) -> Settings:
    is_production = settings.env.lower() in {"prod", "production"}
    if is_production and settings.kv_backend.strip().lower() == "memory":
        raise ValueError("KV_BACKEND=memory is not allowed in production; locks must be shared across processes.")
    if settings.kv_backend.strip().lower() not in {"memory", "redis"}:
        raise ValueError("KV_BACKEND must be one of: memory, redis.")
    if settings.kv_backend.strip().lower() == "redis" and not settings.redis_url.strip():
        raise ValueError("REDIS_URL is required when KV_BACKEND=redis.")
    prefix = settings.lock_key_prefix.strip()
    if not prefix or ":" in prefix or any(char.isspace() for char in prefix):
        raise ValueError("LOCK_KEY_PREFIX must be a non-empty token without ':' or whitespace.")
    if settings.lock_default_ttl_seconds <= 0:
        raise ValueError("LOCK_DEFAULT_TTL_SECONDS must be positive.")
    if settings.orchestration_step_lock_ttl_seconds <= 0:
        raise ValueError("ORCHESTRATION_STEP_LOCK_TTL_SECONDS must be positive.")
    if settings.retry_max_retries < 0:
        raise ValueError("RETRY_MAX_RETRIES must be zero or positive.")
    if settings.retry_base_delay_seconds < 0:
        raise ValueError("RETRY_BASE_DELAY_SECONDS must be zero or positive.")
    if settings.retry_multiplier < 1:
        raise ValueError("RETRY_MULTIPLIER must be at least 1.")
    if settings.retry_max_delay_seconds < settings.retry_base_delay_seconds:
        raise ValueError("RETRY_MAX_DELAY_SECONDS must be greater than or equal to RETRY_BASE_DELAY_SECONDS.")
    if settings.retry_escalation_threshold < 0:
        raise ValueError("RETRY_ESCALATION_THRESHOLD must be zero (disabled) or positive.")
    return settings


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return validated settings as a cached singleton."""

    return _validate(Settings())
