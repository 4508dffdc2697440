"""
Payment service: dispatch, reconciliation, retry and method change.

Every payment outcome, whether it arrives from a gateway return URL, an
IPN, or a staff member confirming a bank transfer, is applied through
reconcile_payment_success / reconcile_payment_failure. Routes only
extract the payload.

Attempts:
    A new PaymentAttempt row is written on every dispatch. The attempt id
    is the correlation id handed to the gateway. The attempt row is
    committed BEFORE the gateway is called, so a provider failure leaves
    an UNPAID attempt the customer can retry.

Idempotency:
    Success reconciliation marks the attempt PAID with a conditional
    UPDATE (status != 'PAID'). Two concurrent callbacks for the same
    attempt race on that write; the loser affects zero rows and returns
    without side effects.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import unit_of_work
from db_models import Order, PaymentAttempt, Reservation
from domain.constants import (
    CLOSED_ORDER_STATUSES,
    GATEWAY_METHODS,
    NON_RETRYABLE_STATES,
    TXN_CODE_FALLBACK_PREFIX,
    TXN_CODE_PREFIXES,
)
from domain.enums import AttemptStatus, OrderStatus, PaymentMethod, PaymentStatus
from domain.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ReconciliationMismatchError,
    ValidationError,
)
from domain.state_machine import ensure_payment_transition
from domain.subjects import OrderRef, ReservationRef, Subject
from gateways.base import DispatchContext, GatewayCallback
from services import vietqr
from services.context import ServiceContext
from services.notifications import notify

logger = logging.getLogger(__name__)

OPEN_ATTEMPT_STATES = (
    AttemptStatus.UNPAID.value,
    AttemptStatus.PENDING.value,
    AttemptStatus.FAILED.value,
)


def deferred_key(subject: Subject) -> str:
    return f"{subject.object_type.value}:{subject.object_id}"


# ════════════════════════════════════════════════════════════════════
# Transaction codes
# ════════════════════════════════════════════════════════════════════


def generate_transaction_code(method: str, attempt_id: int, *, now: datetime | None = None) -> str:
    """
    {PREFIX}-{YYYYMMDD}-{last 6 of attempt id}, e.g. VNPAY-20250101-000042.

    The attempt id is zero-padded to 6 digits first so short ids still
    yield a fixed-width suffix.
    """
    try:
        prefix = TXN_CODE_PREFIXES[PaymentMethod(method)]
    except ValueError:
        prefix = TXN_CODE_FALLBACK_PREFIX
    day = (now or datetime.utcnow()).strftime("%Y%m%d")
    return f"{prefix}-{day}-{str(attempt_id).zfill(6)[-6:]}"


# ════════════════════════════════════════════════════════════════════
# Subject loading
# ════════════════════════════════════════════════════════════════════


async def _load_subject_row(db: AsyncSession, subject: Subject) -> Order | Reservation:
    if isinstance(subject, OrderRef):
        result = await db.execute(select(Order).where(Order.id == subject.order_id))
        row = result.scalar_one_or_none()
        if not row:
            raise NotFoundError("Order", str(subject.order_id))
        return row

    result = await db.execute(select(Reservation).where(Reservation.id == subject.reservation_id))
    row = result.scalar_one_or_none()
    if not row:
        raise NotFoundError("Reservation", str(subject.reservation_id))
    return row


def _amount_due(row: Order | Reservation) -> float:
    if isinstance(row, Order):
        return row.total_price
    return row.deposit_amount


async def get_attempt(db: AsyncSession, *, attempt_id: int) -> PaymentAttempt:
    result = await db.execute(select(PaymentAttempt).where(PaymentAttempt.id == attempt_id))
    attempt = result.scalar_one_or_none()
    if not attempt:
        raise NotFoundError("Payment attempt", str(attempt_id))
    return attempt


async def latest_attempt(db: AsyncSession, subject: Subject) -> PaymentAttempt | None:
    column = PaymentAttempt.order_id if isinstance(subject, OrderRef) else PaymentAttempt.reservation_id
    result = await db.execute(
        select(PaymentAttempt)
        .where(column == subject.object_id)
        .order_by(PaymentAttempt.created_at.desc(), PaymentAttempt.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


# ════════════════════════════════════════════════════════════════════
# Dispatch
# ════════════════════════════════════════════════════════════════════


def _banking_info(subject: Subject, amount: float) -> dict:
    note = vietqr.transfer_note(subject.object_type.value, subject.object_id)
    return {
        "bankName": settings.bank_name,
        "bankBin": settings.bank_bin,
        "accountNumber": settings.bank_account_number,
        "accountName": settings.bank_account_name,
        "amount": amount,
        "transferNote": note,
        "qrPayload": vietqr.build_payload(
            bank_bin=settings.bank_bin,
            account_number=settings.bank_account_number,
            amount=amount,
            note=note,
        ),
    }


async def dispatch_payment(
    db: AsyncSession,
    *,
    subject: Subject,
    services: ServiceContext,
    client_ip: str = "127.0.0.1",
) -> dict:
    """
    Create a fresh UNPAID attempt for `subject` and hand back how to pay it.

    Returns the uniform payload:
        {type, redirectUrl, bankingInfo, total, paymentId, transactionCode}

    Raises ExternalGatewayError if the provider cannot produce a redirect;
    the attempt stays UNPAID in that case.
    """
    row = await _load_subject_row(db, subject)
    method = PaymentMethod(row.payment_method)
    amount = _amount_due(row)

    async with unit_of_work(db, name="dispatch_payment"):
        attempt = PaymentAttempt.for_subject(
            subject,
            payment_method=method.value,
            status=AttemptStatus.UNPAID.value,
            amount=amount,
        )
        db.add(attempt)
        await db.flush()  # need the id for the transaction code

        attempt.transaction_code = generate_transaction_code(method.value, attempt.id)
        if method == PaymentMethod.BANKING:
            attempt.banking_info = json.dumps(_banking_info(subject, amount))

    logger.info(
        f"Payment attempt {attempt.id} created for {subject.object_type.value} "
        f"{subject.object_id} ({method.value}, {amount:,.0f})"
    )

    payload = {
        "type": "cash",
        "redirectUrl": None,
        "bankingInfo": None,
        "total": amount,
        "paymentId": attempt.id,
        "transactionCode": attempt.transaction_code,
    }

    if method == PaymentMethod.CASH:
        return payload

    if method == PaymentMethod.BANKING:
        payload["type"] = "banking"
        payload["bankingInfo"] = attempt.banking_details
    elif method in GATEWAY_METHODS:
        adapter = services.gateways.get(method)
        context = DispatchContext(object_id=subject.object_id, client_ip=client_ip, method=method)
        try:
            payload["redirectUrl"] = await adapter.create_redirect(
                amount, attempt.id, subject.object_type, context
            )
        except Exception as e:
            logger.warning(f"Gateway dispatch failed for attempt {attempt.id} ({method.value}): {e}")
            raise
        payload["type"] = "redirect"

    _schedule_stale_check(services, subject)
    return payload


def _schedule_stale_check(services: ServiceContext, subject: Subject) -> None:
    if services.deferred is None or not isinstance(subject, OrderRef):
        return
    from services import sweeper_service

    order_id = subject.order_id
    services.deferred.schedule(
        deferred_key(subject),
        settings.unpaid_order_grace_minutes * 60,
        lambda: sweeper_service.run_deferred_stale_check(order_id, notifier=services.notifier),
    )


# ════════════════════════════════════════════════════════════════════
# Reconciliation
# ════════════════════════════════════════════════════════════════════


@dataclass
class ReconcileResult:
    applied: bool
    attempt: PaymentAttempt
    payment_status: str

    def to_dict(self) -> dict:
        return {
            "applied": self.applied,
            "paymentId": self.attempt.id,
            "attemptStatus": self.attempt.status,
            "paymentStatus": self.payment_status,
            "objectType": self.attempt.subject.object_type.value,
            "objectId": self.attempt.subject.object_id,
        }


async def reconcile_payment_success(
    db: AsyncSession,
    *,
    attempt_id: int,
    paid_amount: float,
    provider_txn_ref: str | None = None,
    confirmed_by: int | None = None,
    services: ServiceContext,
) -> ReconcileResult:
    """
    Apply a successful payment to an attempt and its order/reservation.

    No-op (applied=False) if the attempt or its subject is already PAID.
    Raises ReconciliationMismatchError if paid_amount differs from the
    recorded amount by more than the tolerance; nothing is written then.
    """
    attempt = await get_attempt(db, attempt_id=attempt_id)
    subject = attempt.subject
    row = await _load_subject_row(db, subject)

    if attempt.status == AttemptStatus.PAID.value or row.payment_status == PaymentStatus.PAID.value:
        logger.info(f"Attempt {attempt_id} already settled; reconciliation is a no-op")
        return ReconcileResult(applied=False, attempt=attempt, payment_status=row.payment_status)

    tolerance = settings.payment_amount_tolerance
    if abs(attempt.amount - paid_amount) > tolerance:
        logger.warning(
            f"Amount mismatch on attempt {attempt_id}: expected {attempt.amount:,.0f}, "
            f"reported {paid_amount:,.0f} (tolerance {tolerance:,.0f}); left for manual review"
        )
        raise ReconciliationMismatchError(
            "Paid amount does not match the payment amount",
            details={"payment_id": attempt_id, "expected": attempt.amount, "paid": paid_amount},
        )

    ensure_payment_transition(row.payment_status, PaymentStatus.PAID.value)

    refund_note = None
    if isinstance(subject, OrderRef) and row.status in CLOSED_ORDER_STATUSES:
        refund_note = f"paid after order {row.status}; refund required"

    now = datetime.utcnow()
    async with unit_of_work(db, name="reconcile_payment_success"):
        result = await db.execute(
            update(PaymentAttempt)
            .where(
                PaymentAttempt.id == attempt_id,
                PaymentAttempt.status != AttemptStatus.PAID.value,
            )
            .values(
                status=AttemptStatus.PAID.value,
                paid_amount=paid_amount,
                paid_at=now,
                provider_txn_ref=provider_txn_ref,
                confirmed_by=confirmed_by,
                failure_reason=refund_note,
                updated_at=now,
            )
        )
        applied = result.rowcount == 1

        if applied:
            if isinstance(subject, OrderRef):
                await db.execute(
                    update(Order)
                    .where(Order.id == subject.order_id, Order.payment_status != PaymentStatus.PAID.value)
                    .values(payment_status=PaymentStatus.PAID.value, paid_at=now, updated_at=now)
                )
            else:
                await db.execute(
                    update(Reservation)
                    .where(
                        Reservation.id == subject.reservation_id,
                        Reservation.payment_status != PaymentStatus.PAID.value,
                    )
                    .values(payment_status=PaymentStatus.PAID.value, paid_at=now, status="BOOKED")
                )

    await db.refresh(attempt)
    await db.refresh(row)

    if not applied:
        logger.info(f"Attempt {attempt_id} settled concurrently; skipping side effects")
        return ReconcileResult(applied=False, attempt=attempt, payment_status=row.payment_status)

    logger.info(
        f"Payment reconciled: attempt {attempt_id} PAID ({paid_amount:,.0f}) for "
        f"{subject.object_type.value} {subject.object_id}"
        + (f", confirmed by user {confirmed_by}" if confirmed_by else "")
    )
    if refund_note:
        logger.warning(
            f"Attempt {attempt_id} paid {paid_amount:,.0f} on order {subject.object_id} "
            f"already {row.status}; needs manual refund"
        )

    if services.deferred is not None:
        services.deferred.resolve(deferred_key(subject))
    await notify(services.notifier, "payment_succeeded", attempt, subject)

    return ReconcileResult(applied=True, attempt=attempt, payment_status=row.payment_status)


async def reconcile_payment_failure(
    db: AsyncSession,
    *,
    attempt_id: int,
    reason: str,
) -> ReconcileResult:
    """
    Mark an attempt FAILED. The order is NOT cancelled; it stays retryable.
    A PAID attempt is never downgraded.
    """
    attempt = await get_attempt(db, attempt_id=attempt_id)
    subject = attempt.subject
    row = await _load_subject_row(db, subject)

    if attempt.status == AttemptStatus.PAID.value:
        logger.warning(f"Failure callback for already-paid attempt {attempt_id} ignored")
        return ReconcileResult(applied=False, attempt=attempt, payment_status=row.payment_status)

    now = datetime.utcnow()
    async with unit_of_work(db, name="reconcile_payment_failure"):
        result = await db.execute(
            update(PaymentAttempt)
            .where(
                PaymentAttempt.id == attempt_id,
                PaymentAttempt.status != AttemptStatus.PAID.value,
            )
            .values(status=AttemptStatus.FAILED.value, failure_reason=reason, updated_at=now)
        )
        applied = result.rowcount == 1

        model = Order if isinstance(subject, OrderRef) else Reservation
        await db.execute(
            update(model)
            .where(
                model.id == subject.object_id,
                model.payment_status.in_([PaymentStatus.UNPAID.value, PaymentStatus.FAILED.value]),
            )
            .values(payment_status=PaymentStatus.FAILED.value)
        )

    await db.refresh(attempt)
    await db.refresh(row)

    logger.info(f"Payment attempt {attempt_id} FAILED: {reason}")
    return ReconcileResult(applied=applied, attempt=attempt, payment_status=row.payment_status)


async def apply_gateway_callback(
    db: AsyncSession,
    *,
    callback: GatewayCallback,
    services: ServiceContext,
) -> ReconcileResult:
    """Route a verified provider callback into the reconciliation routines."""
    attempt = await get_attempt(db, attempt_id=callback.attempt_id)

    if callback.subject is not None and callback.subject != attempt.subject:
        logger.warning(
            f"{callback.provider} callback for attempt {attempt.id} names "
            f"{callback.subject}, attempt belongs to {attempt.subject}"
        )
        raise ReconciliationMismatchError(
            "Callback does not belong to this payment",
            details={"payment_id": attempt.id},
        )

    if callback.success:
        return await reconcile_payment_success(
            db,
            attempt_id=attempt.id,
            paid_amount=callback.amount if callback.amount is not None else attempt.amount,
            provider_txn_ref=callback.provider_txn_ref,
            services=services,
        )

    return await reconcile_payment_failure(
        db,
        attempt_id=attempt.id,
        reason=f"{callback.provider} result {callback.result_code}: {callback.message or ''}".strip(),
    )


# ════════════════════════════════════════════════════════════════════
# Retry / change method
# ════════════════════════════════════════════════════════════════════


async def _load_owned_order(db: AsyncSession, order_id: int, user_id: int, is_staff: bool) -> Order:
    result = await db.execute(select(Order).where(Order.id == order_id))
    order = result.scalar_one_or_none()
    if not order:
        raise NotFoundError("Order", str(order_id))
    if order.user_id != user_id and not is_staff:
        raise PermissionDeniedError("You do not have access to this order")
    return order


def _ensure_retryable(order: Order) -> None:
    if order.payment_status in NON_RETRYABLE_STATES or order.status in NON_RETRYABLE_STATES:
        raise ValidationError(
            f"Payment cannot be changed for an order that is {order.status}/{order.payment_status}",
            details={"status": order.status, "payment_status": order.payment_status},
        )


async def _reopen_order_payment(db: AsyncSession, order: Order, *, new_method: str | None = None) -> None:
    """
    Put the order back to payment_status UNPAID (optionally with a new method),
    guarded by the status/payment_status read earlier. Zero rows means
    someone else (typically the sweeper) changed the order first.
    """
    values = {"payment_status": PaymentStatus.UNPAID.value, "updated_at": datetime.utcnow()}
    if new_method is not None:
        values["payment_method"] = new_method

    result = await db.execute(
        update(Order)
        .where(
            Order.id == order.id,
            Order.status == order.status,
            Order.payment_status == order.payment_status,
        )
        .values(**values)
    )
    if result.rowcount != 1:
        raise ConflictError(
            "Order changed while updating payment; reload and try again",
            details={"order_id": order.id},
        )


async def retry_payment(
    db: AsyncSession,
    *,
    order_id: int,
    user_id: int,
    is_staff: bool = False,
    services: ServiceContext,
    client_ip: str = "127.0.0.1",
) -> dict:
    order = await _load_owned_order(db, order_id, user_id, is_staff)
    _ensure_retryable(order)
    if order.payment_status not in (PaymentStatus.UNPAID.value, PaymentStatus.FAILED.value):
        raise ValidationError(
            f"Retry is only possible for UNPAID or FAILED payments (current: {order.payment_status})"
        )

    async with unit_of_work(db, name="retry_payment"):
        await _reopen_order_payment(db, order)

    await db.refresh(order)
    logger.info(f"Retrying payment for order {order_id} ({order.payment_method})")
    return await dispatch_payment(db, subject=OrderRef(order.id), services=services, client_ip=client_ip)


async def change_payment_method(
    db: AsyncSession,
    *,
    order_id: int,
    new_method: PaymentMethod,
    user_id: int,
    is_staff: bool = False,
    services: ServiceContext,
    client_ip: str = "127.0.0.1",
) -> dict:
    """
    Switch an unpaid order to another method and dispatch a new attempt.

    The order's method and every open attempt's method change in one
    transaction, so they can never disagree.
    """
    new_method = PaymentMethod(new_method)
    order = await _load_owned_order(db, order_id, user_id, is_staff)
    _ensure_retryable(order)

    previous = order.payment_method
    async with unit_of_work(db, name="change_payment_method"):
        await _reopen_order_payment(db, order, new_method=new_method.value)
        if new_method.value != previous:
            await db.execute(
                update(PaymentAttempt)
                .where(
                    PaymentAttempt.order_id == order.id,
                    PaymentAttempt.status.in_(OPEN_ATTEMPT_STATES),
                )
                .values(payment_method=new_method.value, updated_at=datetime.utcnow())
            )

    await db.refresh(order)
    logger.info(f"Order {order_id} payment method {previous} -> {new_method.value}")
    return await dispatch_payment(db, subject=OrderRef(order.id), services=services, client_ip=client_ip)


async def pay_reservation_deposit(
    db: AsyncSession,
    *,
    reservation_id: int,
    user_id: int,
    is_staff: bool = False,
    services: ServiceContext,
    client_ip: str = "127.0.0.1",
) -> dict:
    """Dispatch the deposit payment of a reservation."""
    subject = ReservationRef(reservation_id)
    row = await _load_subject_row(db, subject)
    if row.user_id != user_id and not is_staff:
        raise PermissionDeniedError("You do not have access to this reservation")
    if row.payment_status == PaymentStatus.PAID.value or row.status == "CANCELLED":
        raise ValidationError(f"Reservation {reservation_id} cannot be paid (status {row.status}/{row.payment_status})")
    return await dispatch_payment(db, subject=subject, services=services, client_ip=client_ip)
