"""
Shared FastAPI dependencies and the composition root.

build_services() wires the collaborators the lifecycle services use
(gateway adapters, notification sink, loyalty ledger, voucher check,
deferred checks). main.py builds it once in the lifespan and stores it
on app.state; routes receive it through get_services().
"""

from __future__ import annotations

from typing import TypedDict

from fastapi import Query, Request

from config import Settings
from gateways import build_gateways
from middleware.auth import CurrentUser, require_staff, require_user  # noqa: F401
from services.context import ServiceContext
from services.deferred import DeferredChecks
from services.notifications import LoggingNotificationSink, WebhookNotificationSink


class Pagination(TypedDict):
    limit: int
    offset: int


def pagination_params(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0, le=100_000),
) -> Pagination:
    return {"limit": limit, "offset": offset}


def build_services(settings: Settings, *, transport=None, deferred: bool = True) -> ServiceContext:
    if settings.notification_webhook_url:
        notifier = WebhookNotificationSink(settings.notification_webhook_url, transport=transport)
    else:
        notifier = LoggingNotificationSink()

    return ServiceContext(
        gateways=build_gateways(settings, transport=transport),
        notifier=notifier,
        deferred=DeferredChecks() if deferred else None,
    )


def get_services(request: Request) -> ServiceContext:
    return request.app.state.services


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "127.0.0.1"
