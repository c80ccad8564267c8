from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Literal

from dotenv import load_dotenv


load_dotenv()


def _get_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _get_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return default
    return float(v)


def _get_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return default
    return int(v)


def _get_list(name: str, default: List[str]) -> List[str]:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return default
    return [s.strip() for s in v.split(",") if s.strip()]


def _get_optional_str(name: str) -> str | None:
    v = os.getenv(name)
    if v is None:
        return None
    vv = v.strip()
    return vv or None


StorageBackend = Literal["memory", "sql"]
WebhookKind = Literal["generic", "slack"]

DEFAULT_VENDOR_BASE_URL = "https://iind-team.hikcentralconnect.com"


@dataclass(frozen=True)
class Settings:
    app_env: str
    log_level: str
    log_format: str

    # Persistence: no DATABASE_URL means the in-memory backend (lost on restart).
    database_url: str | None
    storage_backend: StorageBackend
    auto_migrate: bool

    # Background jobs
    enable_scheduler: bool
    status_check_interval_s: int

    # API surface
    enable_docs: bool
    cors_allow_origins: List[str]

    # Vendor portal
    vendor_base_url: str
    vendor_timeout_s: float

    # Alert delivery
    alert_webhook_url: str | None
    alert_webhook_kind: WebhookKind
    alert_webhook_timeout_s: float


def _normalize_database_url(raw: str | None) -> str | None:
    if not raw:
        return None
    # Hosted Postgres often hands out postgres:// but SQLAlchemy needs postgresql://
    if raw.startswith("postgres://"):
        return raw.replace("postgres://", "postgresql://", 1)
    return raw


def load_settings() -> Settings:
    app_env = (os.getenv("APP_ENV", "dev").strip() or "dev").lower()

    database_url = _normalize_database_url(_get_optional_str("DATABASE_URL"))
    storage_backend: StorageBackend = "sql" if database_url else "memory"

    webhook_kind = os.getenv("ALERT_WEBHOOK_KIND", "generic").strip().lower() or "generic"
    if webhook_kind not in {"generic", "slack"}:
        raise RuntimeError("ALERT_WEBHOOK_KIND must be one of: generic, slack")

    status_check_interval_s = _get_int("STATUS_CHECK_INTERVAL_S", 15 * 60)
    if status_check_interval_s < 1:
        raise RuntimeError("STATUS_CHECK_INTERVAL_S must be >= 1")

    cors_default = ["*"] if app_env == "dev" else []

    return Settings(
        app_env=app_env,
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_format=os.getenv("LOG_FORMAT", "text"),
        database_url=database_url,
        storage_backend=storage_backend,
        auto_migrate=_get_bool("AUTO_MIGRATE", app_env == "dev"),
        enable_scheduler=_get_bool("ENABLE_SCHEDULER", True),
        status_check_interval_s=status_check_interval_s,
        enable_docs=_get_bool("ENABLE_DOCS", app_env == "dev"),
        cors_allow_origins=_get_list("CORS_ALLOW_ORIGINS", cors_default),
        vendor_base_url=(os.getenv("VENDOR_BASE_URL", DEFAULT_VENDOR_BASE_URL).strip() or DEFAULT_VENDOR_BASE_URL),
        vendor_timeout_s=_get_float("VENDOR_TIMEOUT_S", 30.0),
        alert_webhook_url=_get_optional_str("ALERT_WEBHOOK_URL"),
        alert_webhook_kind=webhook_kind,  # type: ignore[arg-type]
        alert_webhook_timeout_s=_get_float("ALERT_WEBHOOK_TIMEOUT_S", 5.0),
    )


settings = load_settings()
