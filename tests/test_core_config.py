import pytest

from agent_coordination.core.config import Settings, get_settings


def test_defaults_match_lock_contract(monkeypatch) -> None:
    monkeypatch.delenv("KV_BACKEND", raising=False)
    monkeypatch.delenv("LOCK_KEY_PREFIX", raising=False)
    monkeypatch.setenv("ENV", "development")
    get_settings.cache_clear()

    settings = get_settings()
    assert settings.kv_backend == "memory"
    assert settings.lock_key_prefix == "run"
    assert settings.lock_default_ttl_seconds == 900
    assert settings.orchestration_step_lock_ttl_seconds == 900
    assert settings.retry_max_retries == 3


def test_loads_environment_values(monkeypatch) -> None:
    monkeypatch.setenv("ENV", "development")
    monkeypatch.setenv("KV_BACKEND", "redis")
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/9")
    monkeypatch.setenv("LOCK_DEFAULT_TTL_SECONDS", "60")
    monkeypatch.setenv("RETRY_ESCALATION_THRESHOLD", "2")
    get_settings.cache_clear()

    settings = get_settings()
    assert settings.kv_backend == "redis"
    assert settings.redis_url.endswith("/9")
    assert settings.lock_default_ttl_seconds == 60
    assert settings.retry_escalation_threshold == 2


def test_rejects_memory_backend_in_production(monkeypatch) -> None:
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("KV_BACKEND", "memory")
    get_settings.cache_clear()

    with pytest.raises(ValueError):
        get_settings()


def test_accepts_redis_backend_in_production(monkeypatch) -> None:
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("KV_BACKEND", "redis")
    monkeypatch.setenv("REDIS_URL", "redis://cache:6379/0")
    get_settings.cache_clear()

    assert get_settings().env == "production"


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("KV_BACKEND", "memcached"),
        ("LOCK_KEY_PREFIX", "run:locks"),
        ("LOCK_KEY_PREFIX", " "),
        ("LOCK_DEFAULT_TTL_SECONDS", "0"),
        ("ORCHESTRATION_STEP_LOCK_TTL_SECONDS", "-5"),
        ("RETRY_MAX_RETRIES", "-1"),
        ("RETRY_MULTIPLIER", "0.5"),
        ("RETRY_MAX_DELAY_SECONDS", "0.1"),
        ("RETRY_ESCALATION_THRESHOLD", "-1"),
    ],
)
def test_rejects_invalid_values(monkeypatch, name: str, value: str) -> None:
    monkeypatch.setenv("ENV", "development")
    monkeypatch.setenv(name, value)
    get_settings.cache_clear()

    with pytest.raises(ValueError):
        get_settings()


def test_settings_accept_keyword_overrides() -> None:
    settings = Settings(kv_backend="redis", lock_key_prefix="jobs")
    assert settings.kv_backend == "redis"
    assert settings.lock_key_prefix == "jobs"
