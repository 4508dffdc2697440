"""
Tests for API route endpoints.

Each test drives the FastAPI app over httpx.ASGITransport with get_db
overridden to the per-test in-memory session and app.state.services set
to the test ServiceContext.
"""
from urllib.parse import parse_qs, urlsplit

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from database import get_db
from domain.enums import PaymentMethod, PaymentStatus
from domain.subjects import OrderRef
from gateways import VNPayAdapter
from gateways import vnpay as vnpay_module
from main import app
from middleware.auth import issue_access_token
from services import payment_service


@pytest_asyncio.fixture(scope="function")
async def client(db_session, services):
    """Route-level test client bound to the test database."""

    async def _override_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_db
    app.state.services = services
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


def _auth(user) -> dict:
    return {"Authorization": f"Bearer {issue_access_token(user_id=user.id, role=user.role)}"}


def _order_body(dishes, method="CASH") -> dict:
    return {
        "deliveryType": "PICKUP",
        "paymentMethod": method,
        "items": [
            {"dishId": dishes["pho"].id, "quantity": 2},
            {"dishId": dishes["rolls"].id, "quantity": 1},
        ],
        "shippingFee": 20000,
    }


class TestHealthEndpoint:
    """Tests for GET /health and GET /sweeper/status."""

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_health_returns_200(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database_connected"] is True

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_sweeper_status(self, client):
        response = await client.get("/sweeper/status")
        assert response.status_code == 200
        assert response.json()["running"] is False


class TestOrderEndpoints:

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_place_order_requires_auth(self, client, dishes):
        response = await client.post("/orders", json=_order_body(dishes))
        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "unauthorized"

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_place_order(self, client, customer, dishes, cart):
        response = await client.post("/orders", json=_order_body(dishes), headers=_auth(customer))

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["order"]["totalPrice"] == 290000
        assert data["order"]["vatAmount"] == 20000
        assert data["order"]["status"] == "ORDER_PLACED"
        assert len(data["order"]["items"]) == 2
        assert data["payment"]["type"] == "cash"
        assert data["paymentError"] is None

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_place_order_insufficient_stock(self, client, customer, dishes):
        body = _order_body(dishes)
        body["items"][1]["quantity"] = 50

        response = await client.post("/orders", json=body, headers=_auth(customer))

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "validation"

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_empty_items_rejected(self, client, customer, dishes):
        body = _order_body(dishes)
        body["items"] = []

        response = await client.post("/orders", json=body, headers=_auth(customer))
        assert response.status_code == 422

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_get_order_with_latest_payment(self, client, db_session, customer, make_order, services):
        order = await make_order(customer, payment_method=PaymentMethod.BANKING)
        payload = await payment_service.dispatch_payment(db_session, subject=OrderRef(order.id), services=services)

        response = await client.get(f"/orders/{order.id}", headers=_auth(customer))

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["order"]["id"] == order.id
        assert data["latestPayment"]["id"] == payload["paymentId"]
        assert data["latestPayment"]["transactionCode"] == payload["transactionCode"]

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_get_order_of_another_user_forbidden(self, client, customer, other_customer, make_order):
        order = await make_order(customer)

        response = await client.get(f"/orders/{order.id}", headers=_auth(other_customer))
        assert response.status_code == 403

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_list_my_orders(self, client, customer, other_customer, make_order):
        await make_order(customer)
        await make_order(customer)
        await make_order(other_customer)

        response = await client.get("/orders/me?limit=10", headers=_auth(customer))

        assert response.status_code == 200
        body = response.json()
        assert len(body["data"]) == 2
        assert body["meta"]["limit"] == 10

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_status_update_requires_staff(self, client, customer, make_order):
        order = await make_order(customer)

        response = await client.patch(
            f"/orders/{order.id}/status", json={"status": "ORDER_CONFIRMED"}, headers=_auth(customer)
        )
        assert response.status_code == 403

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_staff_confirms_order(self, client, customer, staff, make_order):
        order = await make_order(customer)

        response = await client.patch(
            f"/orders/{order.id}/status", json={"status": "ORDER_CONFIRMED"}, headers=_auth(staff)
        )
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "ORDER_CONFIRMED"

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_invalid_transition_is_400(self, client, customer, staff, make_order):
        order = await make_order(customer, payment_status=PaymentStatus.PAID)

        response = await client.patch(
            f"/orders/{order.id}/status", json={"status": "DELIVERED"}, headers=_auth(staff)
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "invalidtransition"

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_customer_cancels(self, client, customer, make_order, notifier):
        order = await make_order(customer)

        response = await client.post(
            f"/orders/{order.id}/cancel", json={"reason": "Wrong address"}, headers=_auth(customer)
        )
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "CANCELLED"
        assert notifier.count("order_cancelled") == 1


class TestPaymentEndpoints:

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_staff_confirms_bank_transfer(self, client, db_session, customer, staff, make_order, services):
        order = await make_order(customer, payment_method=PaymentMethod.BANKING)
        payload = await payment_service.dispatch_payment(db_session, subject=OrderRef(order.id), services=services)

        response = await client.post(
            f"/payment/{payload['paymentId']}/confirm",
            json={"paidAmount": 290000, "transactionCode": "FT25015123456"},
            headers=_auth(staff),
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["applied"] is True
        assert data["paymentStatus"] == "PAID"

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_confirm_requires_staff(self, client, customer):
        response = await client.post(
            "/payment/1/confirm", json={"paidAmount": 290000}, headers=_auth(customer)
        )
        assert response.status_code == 403

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_confirm_amount_mismatch_is_409(self, client, db_session, customer, staff, make_order, services):
        order = await make_order(customer, payment_method=PaymentMethod.BANKING)
        payload = await payment_service.dispatch_payment(db_session, subject=OrderRef(order.id), services=services)

        response = await client.post(
            f"/payment/{payload['paymentId']}/confirm", json={"paidAmount": 100000}, headers=_auth(staff)
        )
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "reconciliationmismatch"

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_vnpay_return_redirects_to_success(self, client, db_session, customer, make_order, services):
        adapter = VNPayAdapter(
            tmn_code="BEEF0001",
            hash_secret="vnpay-test-secret",
            payment_url="https://sandbox.vnpayment.vn/paymentv2/vpcpay.html",
            return_url="http://test/payment/vnpay-return",
        )
        services.gateways.register(PaymentMethod.VNPAY, adapter)
        order = await make_order(customer, payment_method=PaymentMethod.VNPAY)
        payload = await payment_service.dispatch_payment(db_session, subject=OrderRef(order.id), services=services)

        params = dict(parse_qs(urlsplit(payload["redirectUrl"]).query))
        params = {k: v[0] for k, v in params.items()}
        params.pop("vnp_SecureHash")
        params.update({
            "vnp_ResponseCode": "00",
            "vnp_TransactionStatus": "00",
            "vnp_TransactionNo": "14082611",
        })
        params["vnp_SecureHash"] = vnpay_module.sign(params, adapter.hash_secret)

        response = await client.get("/payment/vnpay-return", params=params)

        assert response.status_code == 302
        assert "/payment-success?" in response.headers["location"]
        await db_session.refresh(order)
        assert order.payment_status == "PAID"

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_forged_vnpay_return_redirects_to_failure(self, client, services):
        services.gateways.register(PaymentMethod.VNPAY, VNPayAdapter(
            tmn_code="BEEF0001",
            hash_secret="vnpay-test-secret",
            payment_url="https://sandbox.vnpayment.vn/paymentv2/vpcpay.html",
            return_url="http://test/payment/vnpay-return",
        ))

        response = await client.get(
            "/payment/vnpay-return",
            params={"vnp_TxnRef": "1", "vnp_Amount": "29000000", "vnp_ResponseCode": "00", "vnp_SecureHash": "00ff"},
        )

        assert response.status_code == 302
        assert "/payment-failed?" in response.headers["location"]

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_retry_payment(self, client, db_session, customer, make_order, stub_gateway):
        order = await make_order(customer, payment_method=PaymentMethod.MOMO, payment_status=PaymentStatus.FAILED)

        response = await client.post(f"/payment/orders/{order.id}/retry", headers=_auth(customer))

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["type"] == "redirect"
        assert data["redirectUrl"] == f"https://pay.example/checkout/{data['paymentId']}"

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_change_method(self, client, customer, make_order):
        order = await make_order(customer, payment_method=PaymentMethod.VNPAY)

        response = await client.post(
            f"/payment/orders/{order.id}/method", json={"paymentMethod": "CASH"}, headers=_auth(customer)
        )

        assert response.status_code == 200
        assert response.json()["data"]["type"] == "cash"
