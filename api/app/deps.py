from __future__ import annotations

from fastapi import Request

from .services.notifications import AlertNotifier
from .services.status_check import GatewayFactory
from .storage.base import Storage


# Wired once in create_app() and stored on app.state; routes receive them via Depends.


def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def get_gateway_factory(request: Request) -> GatewayFactory:
    return request.app.state.gateway_factory


def get_notifier(request: Request) -> AlertNotifier | None:
    return getattr(request.app.state, "notifier", None)
