"""
Stale-order sweeper: cancels online orders nobody paid for.

Every `sweep_interval_seconds` the loop selects orders that are:
    - paid with an online method (VNPAY, MOMO, MOMO_ATM, CREDIT_CARD, BANKING)
    - payment_status UNPAID, status ORDER_PLACED, order_type ONLINE
    - created more than `unpaid_order_grace_minutes` ago

Each order is cancelled in its own transaction with a conditional UPDATE
that re-checks those conditions. If a payment or a retry landed between
the select and the write, zero rows match and the order is skipped. A
failure on one order is logged and the sweep moves on.

This runs as an asyncio background task during the FastAPI app lifespan.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import async_session, unit_of_work
from db_models import Order, PaymentAttempt
from domain.constants import (
    ONLINE_PAYMENT_METHODS,
    SWEEP_ATTEMPT_FAILURE_REASON,
    SWEEP_CANCEL_REASON,
)
from domain.enums import AttemptStatus, OrderStatus, OrderType, PaymentStatus
from domain.subjects import OrderRef
from services.notifications import NotificationSink, notify
from services.payment_service import latest_attempt

logger = logging.getLogger(__name__)

# Sweeper state
_sweeper_task: Optional[asyncio.Task] = None
_is_running: bool = False
_errors_count: int = 0
_last_run_at: Optional[datetime] = None
_last_result: dict = {}
_total_cancelled: int = 0


def _stale_conditions(cutoff: datetime) -> list:
    return [
        Order.payment_method.in_([m.value for m in ONLINE_PAYMENT_METHODS]),
        Order.payment_status == PaymentStatus.UNPAID.value,
        Order.status == OrderStatus.ORDER_PLACED.value,
        Order.order_type == OrderType.ONLINE.value,
        Order.created_at <= cutoff,
    ]


def _cutoff(now: datetime) -> datetime:
    return now - timedelta(minutes=settings.unpaid_order_grace_minutes)


async def find_stale_order_ids(db: AsyncSession, *, now: datetime) -> list[int]:
    result = await db.execute(
        select(Order.id).where(*_stale_conditions(_cutoff(now))).order_by(Order.created_at)
    )
    return list(result.scalars().all())


async def cancel_stale_order(
    db: AsyncSession,
    *,
    order_id: int,
    notifier: NotificationSink | None,
    now: datetime | None = None,
) -> bool:
    """
    Cancel one stale order and fail its latest attempt.

    Returns False (no changes) if the order no longer qualifies.
    """
    now = now or datetime.utcnow()

    async with unit_of_work(db, name="sweep_cancel_order"):
        result = await db.execute(
            update(Order)
            .where(Order.id == order_id, *_stale_conditions(_cutoff(now)))
            .values(
                status=OrderStatus.CANCELLED.value,
                cancelled_at=now,
                cancelled_reason=SWEEP_CANCEL_REASON,
                updated_at=now,
            )
        )
        if result.rowcount != 1:
            logger.info(f"Sweep skipped order {order_id}: no longer stale")
            return False

        attempt = await latest_attempt(db, OrderRef(order_id))
        if attempt is not None and attempt.status != AttemptStatus.PAID.value:
            await db.execute(
                update(PaymentAttempt)
                .where(
                    PaymentAttempt.id == attempt.id,
                    PaymentAttempt.status != AttemptStatus.PAID.value,
                )
                .values(
                    status=AttemptStatus.FAILED.value,
                    failure_reason=SWEEP_ATTEMPT_FAILURE_REASON,
                    updated_at=now,
                )
            )

    order = (await db.execute(select(Order).where(Order.id == order_id))).scalar_one()
    await db.refresh(order)
    logger.info(f"Order {order_id} cancelled by sweep (unpaid for {settings.unpaid_order_grace_minutes}+ min)")

    await notify(notifier, "order_cancelled", order, SWEEP_CANCEL_REASON)
    return True


async def sweep_once(
    db: AsyncSession,
    *,
    notifier: NotificationSink | None,
    now: datetime | None = None,
) -> dict:
    """One pass over all stale orders. Per-order failures are counted, not raised."""
    now = now or datetime.utcnow()
    order_ids = await find_stale_order_ids(db, now=now)

    cancelled, skipped, failed = 0, 0, 0
    for order_id in order_ids:
        try:
            if await cancel_stale_order(db, order_id=order_id, notifier=notifier, now=now):
                cancelled += 1
            else:
                skipped += 1
        except Exception as e:
            failed += 1
            logger.error(f"Sweep failed for order {order_id}: {e}")

    if order_ids:
        logger.info(
            f"Sweep done: {len(order_ids)} candidate(s), {cancelled} cancelled, "
            f"{skipped} skipped, {failed} failed"
        )
    return {"candidates": len(order_ids), "cancelled": cancelled, "skipped": skipped, "failed": failed}


async def run_deferred_stale_check(order_id: int, *, notifier: NotificationSink | None) -> bool:
    """Entry point for a DeferredChecks timer: re-check one order in a fresh session."""
    async with async_session() as db:
        return await cancel_stale_order(db, order_id=order_id, notifier=notifier)


# ════════════════════════════════════════════════════════════════════
# Background loop
# ════════════════════════════════════════════════════════════════════


async def _sweeper_loop(notifier: NotificationSink | None) -> None:
    global _is_running, _errors_count, _last_run_at, _last_result, _total_cancelled

    interval = settings.sweep_interval_seconds
    logger.info(
        f"Sweeper started (every {interval}s, grace {settings.unpaid_order_grace_minutes} min)"
    )

    while _is_running:
        try:
            await asyncio.sleep(interval)

            async with async_session() as db:
                _last_result = await sweep_once(db, notifier=notifier)

            _last_run_at = datetime.utcnow()
            _total_cancelled += _last_result["cancelled"]

        except asyncio.CancelledError:
            logger.info("Sweeper cancelled")
            break
        except Exception as e:
            _errors_count += 1
            logger.error(f"Sweeper cycle error: {e}")

    _is_running = False
    logger.info("Sweeper stopped")


async def start(notifier: NotificationSink | None = None) -> None:
    """Start the sweeper as a background asyncio task."""
    global _sweeper_task, _is_running

    if _sweeper_task and not _sweeper_task.done():
        logger.warning("Sweeper already running")
        return

    _is_running = True
    _sweeper_task = asyncio.create_task(_sweeper_loop(notifier))


async def stop() -> None:
    """Stop the sweeper task gracefully."""
    global _sweeper_task, _is_running
    _is_running = False

    if _sweeper_task and not _sweeper_task.done():
        _sweeper_task.cancel()
        try:
            await _sweeper_task
        except asyncio.CancelledError:
            pass

    _sweeper_task = None


def get_status() -> dict:
    """Sweeper status for the /sweeper/status endpoint."""
    return {
        "running": _is_running,
        "intervalSeconds": settings.sweep_interval_seconds,
        "graceMinutes": settings.unpaid_order_grace_minutes,
        "lastRunAt": _last_run_at.isoformat() if _last_run_at else None,
        "lastResult": _last_result,
        "totalCancelled": _total_cancelled,
        "errorsCount": _errors_count,
    }
