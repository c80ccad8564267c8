from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any

import requests

from api.app.services.notifications import AlertNotifier, FleetAlert, evaluate_alerts, mask_webhook_url


def _prefs(**overrides: Any) -> SimpleNamespace:
    state = {
        "enabled": True,
        "email": "ops@example.com",
        "threshold": 3,
        "offline_alert": True,
        "online_alert": False,
    }
    state.update(overrides)
    return SimpleNamespace(**state)


def _settings(**overrides: Any) -> SimpleNamespace:
    state = {
        "alert_webhook_url": "https://hooks.example.com/fleet",
        "alert_webhook_kind": "generic",
        "alert_webhook_timeout_s": 1.0,
    }
    state.update(overrides)
    return SimpleNamespace(**state)


def _alert() -> FleetAlert:
    return FleetAlert(
        alert_type="DEVICES_OFFLINE",
        severity="warning",
        message="3 devices are offline (threshold 3).",
        recipient="ops@example.com",
        offline_count=3,
        threshold=3,
        created_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
    )


def test_offline_alert_fires_only_on_upward_crossing() -> None:
    prefs = _prefs()

    assert [a.alert_type for a in evaluate_alerts(prefs, before_offline=2, after_offline=3)] == ["DEVICES_OFFLINE"]
    assert [a.alert_type for a in evaluate_alerts(prefs, before_offline=0, after_offline=5)] == ["DEVICES_OFFLINE"]
    assert evaluate_alerts(prefs, before_offline=3, after_offline=4) == []
    assert evaluate_alerts(prefs, before_offline=4, after_offline=2) == []
    assert evaluate_alerts(prefs, before_offline=1, after_offline=2) == []


def test_alerts_respect_toggles_and_missing_settings() -> None:
    assert evaluate_alerts(None, before_offline=0, after_offline=10) == []
    assert evaluate_alerts(_prefs(enabled=False), before_offline=0, after_offline=10) == []
    assert evaluate_alerts(_prefs(offline_alert=False), before_offline=0, after_offline=10) == []


def test_online_alert_lists_recovered_devices() -> None:
    alerts = evaluate_alerts(
        _prefs(online_alert=True),
        before_offline=2,
        after_offline=0,
        came_online=["Gate", "Vault"],
    )

    assert len(alerts) == 1
    assert alerts[0].alert_type == "DEVICES_ONLINE"
    assert alerts[0].device_names == ("Gate", "Vault")
    assert "Gate" in alerts[0].message


def test_notifier_without_webhook_suppresses() -> None:
    notifier = AlertNotifier.from_settings(_settings(alert_webhook_url=""))

    result = notifier.notify(_alert())

    assert notifier.adapter is None
    assert result.delivered is False
    assert result.decision == "suppressed_no_adapter"


def test_generic_webhook_payload(monkeypatch) -> None:
    calls: list[dict[str, Any]] = []

    def _fake_post(url: str, json: dict[str, Any], timeout: float) -> SimpleNamespace:
        calls.append({"url": url, "json": json, "timeout": timeout})
        return SimpleNamespace(status_code=204)

    monkeypatch.setattr("api.app.services.notifications.requests.post", _fake_post)

    result = AlertNotifier.from_settings(_settings()).notify(_alert())

    assert result.delivered is True
    assert calls[0]["url"] == "https://hooks.example.com/fleet"
    assert calls[0]["json"]["alert_type"] == "DEVICES_OFFLINE"
    assert calls[0]["json"]["recipient"] == "ops@example.com"
    assert calls[0]["json"]["offline_count"] == 3
    assert calls[0]["timeout"] == 1.0


def test_slack_webhook_payload(monkeypatch) -> None:
    calls: list[dict[str, Any]] = []

    def _fake_post(url: str, json: dict[str, Any], timeout: float) -> SimpleNamespace:  # noqa: ARG001
        calls.append(json)
        return SimpleNamespace(status_code=200)

    monkeypatch.setattr("api.app.services.notifications.requests.post", _fake_post)

    AlertNotifier.from_settings(_settings(alert_webhook_kind="slack")).notify(_alert())

    assert set(calls[0]) == {"text"}
    assert calls[0]["text"].startswith("[WARNING]")


def test_webhook_failures_are_reported_not_raised(monkeypatch) -> None:
    def _down(url: str, json: dict[str, Any], timeout: float) -> SimpleNamespace:  # noqa: ARG001
        raise requests.ConnectionError("refused")

    monkeypatch.setattr("api.app.services.notifications.requests.post", _down)
    result = AlertNotifier.from_settings(_settings()).notify(_alert())
    assert result.decision == "delivery_failed"
    assert result.error_class == "ConnectionError"

    monkeypatch.setattr(
        "api.app.services.notifications.requests.post",
        lambda url, json, timeout: SimpleNamespace(status_code=500),
    )
    result = AlertNotifier.from_settings(_settings()).notify(_alert())
    assert result.delivered is False
    assert result.error_class == "HTTP_500"


def test_mask_webhook_url_hides_path_and_query() -> None:
    assert mask_webhook_url("https://hooks.slack.com/services/T000/B000/SECRET") == "https://hooks.slack.com/***"
    assert mask_webhook_url("") == ""
