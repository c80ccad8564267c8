from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal, Sequence
from urllib.parse import urlsplit

import requests

from ..models import NotificationSettings


logger = logging.getLogger("branchwatch.notifications")

AlertType = Literal["DEVICES_OFFLINE", "DEVICES_ONLINE"]


@dataclass(frozen=True)
class FleetAlert:
    alert_type: AlertType
    severity: str
    message: str
    recipient: str
    offline_count: int
    threshold: int
    device_names: tuple[str, ...] = ()
    created_at: datetime | None = None


@dataclass(frozen=True)
class DeliveryResult:
    delivered: bool
    decision: str
    reason: str
    error_class: str | None = None


def evaluate_alerts(
    settings: NotificationSettings | None,
    *,
    before_offline: int,
    after_offline: int,
    came_online: Sequence[str] = (),
    now: datetime | None = None,
) -> list[FleetAlert]:
    """Decide which fleet alerts a finished status check should raise.

    Offline alerts fire only when the offline count crosses the threshold upward,
    so a fleet that stays above it does not re-alert every tick.
    """

    if settings is None or not settings.enabled:
        return []
    if now is None:
        now = datetime.now(timezone.utc)

    threshold = int(settings.threshold)
    alerts: list[FleetAlert] = []

    if settings.offline_alert and before_offline < threshold <= after_offline:
        alerts.append(
            FleetAlert(
                alert_type="DEVICES_OFFLINE",
                severity="warning",
                message=f"{after_offline} devices are offline (threshold {threshold}).",
                recipient=settings.email,
                offline_count=after_offline,
                threshold=threshold,
                created_at=now,
            )
        )

    if settings.online_alert and came_online:
        names = tuple(came_online)
        alerts.append(
            FleetAlert(
                alert_type="DEVICES_ONLINE",
                severity="info",
                message=f"{len(names)} devices came back online: {', '.join(names[:10])}",
                recipient=settings.email,
                offline_count=after_offline,
                threshold=threshold,
                device_names=names,
                created_at=now,
            )
        )

    return alerts


class WebhookNotificationAdapter:
    def __init__(self, *, webhook_url: str, kind: str, timeout_s: float) -> None:
        self.webhook_url = webhook_url
        self.kind = kind
        self.timeout_s = timeout_s

    def deliver(self, alert: FleetAlert) -> DeliveryResult:
        if self.kind == "slack":
            payload: dict[str, Any] = {"text": f"[{alert.severity.upper()}] {alert.message} (to: {alert.recipient})"}
        else:
            payload = {
                "alert_type": alert.alert_type,
                "severity": alert.severity,
                "message": alert.message,
                "recipient": alert.recipient,
                "offline_count": alert.offline_count,
                "threshold": alert.threshold,
                "device_names": list(alert.device_names),
                "created_at": alert.created_at.isoformat() if alert.created_at else None,
            }

        response = requests.post(self.webhook_url, json=payload, timeout=self.timeout_s)
        if 200 <= response.status_code < 300:
            return DeliveryResult(delivered=True, decision="delivered", reason="webhook delivered")

        return DeliveryResult(
            delivered=False,
            decision="delivery_failed",
            reason="webhook non-success response",
            error_class=f"HTTP_{response.status_code}",
        )


def mask_webhook_url(raw: str) -> str:
    value = (raw or "").strip()
    if not value:
        return ""
    parsed = urlsplit(value)
    host = parsed.hostname or ""
    scheme = parsed.scheme or "https"
    if not host:
        return "***"
    return f"{scheme}://{host}/***"


class AlertNotifier:
    """Sends fleet alerts through the configured webhook (or just logs them)."""

    def __init__(self, adapter: WebhookNotificationAdapter | None = None) -> None:
        self.adapter = adapter

    @classmethod
    def from_settings(cls, settings: Any) -> "AlertNotifier":
        url = (getattr(settings, "alert_webhook_url", None) or "").strip()
        if not url:
            return cls(adapter=None)
        return cls(
            adapter=WebhookNotificationAdapter(
                webhook_url=url,
                kind=settings.alert_webhook_kind,
                timeout_s=settings.alert_webhook_timeout_s,
            )
        )

    def notify(self, alert: FleetAlert) -> DeliveryResult:
        if self.adapter is None:
            result = DeliveryResult(
                delivered=False,
                decision="suppressed_no_adapter",
                reason="no notification adapter configured",
            )
        else:
            try:
                result = self.adapter.deliver(alert)
            except requests.RequestException as e:
                result = DeliveryResult(
                    delivered=False,
                    decision="delivery_failed",
                    reason="webhook request failed",
                    error_class=type(e).__name__,
                )

        log = logger.info if result.delivered else logger.warning
        log(
            "fleet alert %s",
            result.decision,
            extra={
                "fields": {
                    "alert_type": alert.alert_type,
                    "recipient": alert.recipient,
                    "offline_count": alert.offline_count,
                    "threshold": alert.threshold,
                    "reason": result.reason,
                    "error_class": result.error_class,
                    "destination": mask_webhook_url(self.adapter.webhook_url) if self.adapter else None,
                }
            },
        )
        return result
