"""
Notification sinks: outbound side effects of the order lifecycle.

The sink is built by the composition root (deps.build_services) and passed
to the services that need it. All calls go through `notify()`, which never
raises: a failed notification is logged and forgotten, it must not unwind
the transaction that triggered it.
"""
import logging
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    async def order_placed(self, order) -> None: ...

    async def payment_succeeded(self, attempt, subject) -> None: ...

    async def order_cancelled(self, order, reason: str) -> None: ...


class LoggingNotificationSink:
    """Default sink: writes notifications to the application log."""

    async def order_placed(self, order) -> None:
        logger.info(f"[notify] order {order.id} placed by user {order.user_id} (total {order.total_price:,.0f})")

    async def payment_succeeded(self, attempt, subject) -> None:
        logger.info(
            f"[notify] payment {attempt.id} succeeded for "
            f"{subject.object_type.value} {subject.object_id}"
        )

    async def order_cancelled(self, order, reason: str) -> None:
        logger.info(f"[notify] order {order.id} cancelled: {reason}")


class WebhookNotificationSink:
    """Posts each event as JSON to an HTTP endpoint (mail/push relay)."""

    def __init__(self, url: str, *, timeout: float = 5.0, transport: httpx.AsyncBaseTransport | None = None):
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def _post(self, event: str, payload: dict) -> None:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(self.url, json={"event": event, **payload})
            response.raise_for_status()

    async def order_placed(self, order) -> None:
        await self._post("order_placed", {
            "orderId": order.id,
            "userId": order.user_id,
            "total": order.total_price,
            "paymentMethod": order.payment_method,
        })

    async def payment_succeeded(self, attempt, subject) -> None:
        await self._post("payment_succeeded", {
            "paymentId": attempt.id,
            "objectType": subject.object_type.value,
            "objectId": subject.object_id,
            "amount": attempt.paid_amount,
            "transactionCode": attempt.transaction_code,
        })

    async def order_cancelled(self, order, reason: str) -> None:
        await self._post("order_cancelled", {
            "orderId": order.id,
            "userId": order.user_id,
            "reason": reason,
        })


async def notify(sink: NotificationSink | None, event: str, *args) -> bool:
    """Best-effort dispatch of `event` on `sink`. Returns True if delivered."""
    if sink is None:
        return False
    try:
        await getattr(sink, event)(*args)
        return True
    except Exception as e:
        logger.error(f"Notification '{event}' failed: {e}")
        return False
