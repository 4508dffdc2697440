"""
Tests for payment dispatch: transaction codes, offline instructions,
gateway redirects, and the state left behind by a gateway failure.
"""
from datetime import datetime

import pytest
from sqlalchemy import select

from db_models import PaymentAttempt, Reservation
from domain.enums import AttemptStatus, ObjectType, PaymentMethod
from domain.errors import ExternalGatewayError
from domain.subjects import OrderRef, ReservationRef
from services import payment_service


class TestTransactionCode:

    @pytest.mark.unit
    def test_format_pads_short_ids(self):
        code = payment_service.generate_transaction_code("VNPAY", 42, now=datetime(2025, 1, 15, 9, 30))
        assert code == "VNPAY-20250115-000042"

    @pytest.mark.unit
    def test_takes_last_six_of_long_ids(self):
        code = payment_service.generate_transaction_code("MOMO_ATM", 1234567, now=datetime(2025, 1, 15))
        assert code == "MOMO_ATM-20250115-234567"

    @pytest.mark.unit
    @pytest.mark.parametrize("method,prefix", [
        ("BANKING", "BANKING"),
        ("MOMO", "MOMO"),
        ("CREDIT_CARD", "PAYPAL"),
        ("CASH", "CASH"),
        ("GIFT_CARD", "PAY"),
    ])
    def test_prefixes(self, method, prefix):
        code = payment_service.generate_transaction_code(method, 7, now=datetime(2025, 3, 1))
        assert code == f"{prefix}-20250301-000007"


class TestDispatch:

    @pytest.mark.asyncio
    async def test_banking_returns_qr_instructions(self, db_session, customer, make_order, services, stub_gateway):
        order = await make_order(customer, payment_method=PaymentMethod.BANKING)

        payload = await payment_service.dispatch_payment(db_session, subject=OrderRef(order.id), services=services)

        assert payload["type"] == "banking"
        assert payload["redirectUrl"] is None
        assert payload["total"] == 290_000
        info = payload["bankingInfo"]
        assert info["transferNote"] == f"ORDER-{order.id}"
        assert info["qrPayload"].startswith("000201")
        assert info["amount"] == 290_000
        assert stub_gateway.calls == []

        attempt = (await db_session.execute(select(PaymentAttempt))).scalar_one()
        assert attempt.banking_details["transferNote"] == f"ORDER-{order.id}"
        assert attempt.transaction_code == payload["transactionCode"]
        assert attempt.transaction_code.startswith("BANKING-")

    @pytest.mark.asyncio
    async def test_online_method_binds_attempt_id(self, db_session, customer, make_order, services, stub_gateway):
        order = await make_order(customer, payment_method=PaymentMethod.VNPAY)

        payload = await payment_service.dispatch_payment(db_session, subject=OrderRef(order.id), services=services)

        assert payload["type"] == "redirect"
        assert payload["bankingInfo"] is None
        call = stub_gateway.calls[0]
        assert call["correlation_id"] == payload["paymentId"]
        assert call["object_type"] == ObjectType.ORDER
        assert call["object_id"] == order.id

    @pytest.mark.asyncio
    async def test_every_dispatch_creates_a_new_attempt(self, db_session, customer, make_order, services):
        order = await make_order(customer, payment_method=PaymentMethod.CASH)

        first = await payment_service.dispatch_payment(db_session, subject=OrderRef(order.id), services=services)
        second = await payment_service.dispatch_payment(db_session, subject=OrderRef(order.id), services=services)

        assert first["paymentId"] != second["paymentId"]
        rows = (await db_session.execute(select(PaymentAttempt))).scalars().all()
        assert len(rows) == 2
        latest = await payment_service.latest_attempt(db_session, OrderRef(order.id))
        assert latest.id == second["paymentId"]

    @pytest.mark.asyncio
    async def test_gateway_failure_leaves_attempt_unpaid(self, db_session, customer, make_order, services, stub_gateway):
        order = await make_order(customer, payment_method=PaymentMethod.CREDIT_CARD)
        stub_gateway.fail = True

        with pytest.raises(ExternalGatewayError):
            await payment_service.dispatch_payment(db_session, subject=OrderRef(order.id), services=services)

        attempt = (await db_session.execute(select(PaymentAttempt))).scalar_one()
        assert attempt.status == AttemptStatus.UNPAID.value
        assert attempt.payment_method == "CREDIT_CARD"
        await db_session.refresh(order)
        assert order.payment_status == "UNPAID"

    @pytest.mark.asyncio
    async def test_reservation_deposit_attempt(self, db_session, customer, services):
        reservation = Reservation(user_id=customer.id, deposit_amount=200_000, payment_method="BANKING")
        db_session.add(reservation)
        await db_session.commit()

        payload = await payment_service.pay_reservation_deposit(
            db_session, reservation_id=reservation.id, user_id=customer.id, services=services
        )

        assert payload["total"] == 200_000
        assert payload["bankingInfo"]["transferNote"] == f"RESERVATION-{reservation.id}"
        attempt = (await db_session.execute(select(PaymentAttempt))).scalar_one()
        assert attempt.subject == ReservationRef(reservation.id)
        assert attempt.order_id is None
