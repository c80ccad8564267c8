from __future__ import annotations

import pytest

from api.app.config import DEFAULT_VENDOR_BASE_URL, load_settings


def test_defaults_use_memory_backend_and_fifteen_minute_interval(monkeypatch) -> None:
    for name in ("DATABASE_URL", "STATUS_CHECK_INTERVAL_S", "VENDOR_BASE_URL", "VENDOR_TIMEOUT_S", "ALERT_WEBHOOK_URL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("APP_ENV", "dev")

    s = load_settings()

    assert s.database_url is None
    assert s.storage_backend == "memory"
    assert s.status_check_interval_s == 900
    assert s.vendor_base_url == DEFAULT_VENDOR_BASE_URL
    assert s.vendor_timeout_s == 30.0
    assert s.alert_webhook_url is None
    assert s.enable_docs is True


def test_postgres_scheme_is_normalized(monkeypatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "postgres://u:p@db:5432/app")

    s = load_settings()

    assert s.database_url == "postgresql://u:p@db:5432/app"
    assert s.storage_backend == "sql"


def test_invalid_webhook_kind_fails_fast(monkeypatch) -> None:
    monkeypatch.setenv("ALERT_WEBHOOK_KIND", "pager")

    with pytest.raises(RuntimeError):
        load_settings()


def test_interval_must_be_positive(monkeypatch) -> None:
    monkeypatch.setenv("STATUS_CHECK_INTERVAL_S", "0")

    with pytest.raises(RuntimeError):
        load_settings()


def test_cors_origins_parsed_from_csv(monkeypatch) -> None:
    monkeypatch.setenv("APP_ENV", "prod")
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://a.example.com, https://b.example.com")

    assert load_settings().cors_allow_origins == ["https://a.example.com", "https://b.example.com"]
