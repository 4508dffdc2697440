"""
Tests for retry_payment / change_payment_method.
"""
import pytest
from sqlalchemy import select, update

from database import unit_of_work
from db_models import Order, PaymentAttempt
from domain.enums import AttemptStatus, OrderStatus, PaymentMethod, PaymentStatus
from domain.errors import ConflictError, PermissionDeniedError, ValidationError
from domain.subjects import OrderRef
from services import payment_service


@pytest.mark.asyncio
async def test_change_method_on_paid_order_rejected(db_session, customer, make_order, services):
    order = await make_order(customer, payment_status=PaymentStatus.PAID)

    with pytest.raises(ValidationError):
        await payment_service.change_payment_method(
            db_session, order_id=order.id, new_method=PaymentMethod.MOMO, user_id=customer.id, services=services
        )

    rows = (await db_session.execute(select(PaymentAttempt))).scalars().all()
    assert rows == []


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [OrderStatus.CANCELLED, OrderStatus.RETURNED])
async def test_retry_rejected_for_closed_orders(db_session, customer, make_order, services, status):
    order = await make_order(customer, status=status)

    with pytest.raises(ValidationError):
        await payment_service.retry_payment(db_session, order_id=order.id, user_id=customer.id, services=services)


@pytest.mark.asyncio
async def test_retry_after_failure_reopens_and_dispatches(db_session, customer, make_order, services, stub_gateway):
    order = await make_order(customer, payment_method=PaymentMethod.VNPAY)
    first = await payment_service.dispatch_payment(db_session, subject=OrderRef(order.id), services=services)
    await payment_service.reconcile_payment_failure(db_session, attempt_id=first["paymentId"], reason="timeout at bank")

    payload = await payment_service.retry_payment(
        db_session, order_id=order.id, user_id=customer.id, services=services
    )

    assert payload["paymentId"] != first["paymentId"]
    assert payload["type"] == "redirect"
    await db_session.refresh(order)
    assert order.payment_status == PaymentStatus.UNPAID.value
    assert len(stub_gateway.calls) == 2


@pytest.mark.asyncio
async def test_retry_requires_ownership(db_session, customer, other_customer, make_order, services):
    order = await make_order(customer)

    with pytest.raises(PermissionDeniedError):
        await payment_service.retry_payment(db_session, order_id=order.id, user_id=other_customer.id, services=services)


@pytest.mark.asyncio
async def test_staff_may_retry_for_customer(db_session, customer, staff, make_order, services):
    order = await make_order(customer, payment_method=PaymentMethod.CASH)

    payload = await payment_service.retry_payment(
        db_session, order_id=order.id, user_id=staff.id, is_staff=True, services=services
    )
    assert payload["type"] == "cash"


@pytest.mark.asyncio
async def test_change_method_updates_order_and_open_attempts(db_session, customer, make_order, services):
    order = await make_order(customer, payment_method=PaymentMethod.VNPAY)
    first = await payment_service.dispatch_payment(db_session, subject=OrderRef(order.id), services=services)

    payload = await payment_service.change_payment_method(
        db_session, order_id=order.id, new_method=PaymentMethod.BANKING, user_id=customer.id, services=services
    )

    await db_session.refresh(order)
    assert order.payment_method == "BANKING"
    assert payload["type"] == "banking"
    assert payload["transactionCode"].startswith("BANKING-")

    old = await payment_service.get_attempt(db_session, attempt_id=first["paymentId"])
    await db_session.refresh(old)
    assert old.payment_method == "BANKING"
    assert old.status == AttemptStatus.UNPAID.value


@pytest.mark.asyncio
async def test_stale_precondition_aborts_cleanly(db_session, customer, make_order):
    order = await make_order(customer, payment_status=PaymentStatus.FAILED)

    # Another worker (e.g. the sweeper) cancels the order after we read it
    await db_session.execute(
        update(Order)
        .where(Order.id == order.id)
        .values(status=OrderStatus.CANCELLED.value)
        .execution_options(synchronize_session=False)
    )
    await db_session.commit()
    assert order.status == OrderStatus.ORDER_PLACED.value  # our stale copy
    order_id = order.id

    with pytest.raises(ConflictError):
        async with unit_of_work(db_session, name="retry_payment"):
            await payment_service._reopen_order_payment(db_session, order)

    fresh = (await db_session.execute(
        select(Order.status, Order.payment_status).where(Order.id == order_id)
    )).one()
    assert fresh == ("CANCELLED", "FAILED")
