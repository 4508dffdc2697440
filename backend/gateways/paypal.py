"""
PayPal adapter: credit card checkout over the Orders v2 REST API.

Auth is an OAuth2 client-credentials bearer token. Amounts are converted
VND -> USD at a fixed rate on create and USD -> VND on capture; the
reconciliation tolerance absorbs the rounding.

Correlation: purchase_units[0].reference_id = attempt id,
custom_id = encoded {attemptId, objectType, objectId}.

The return path is verified by capturing the order server-side with our
own credentials; an unauthenticated query string is never trusted.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP

from domain.enums import ObjectType
from domain.errors import ExternalGatewayError, ReconciliationMismatchError
from domain.subjects import decode_correlation, encode_correlation, subject_from
from gateways.base import DispatchContext, GatewayAdapter, GatewayCallback

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")


def vnd_to_usd(amount_vnd: float, rate: int) -> Decimal:
    return (Decimal(str(amount_vnd)) / Decimal(rate)).quantize(_CENT, rounding=ROUND_HALF_UP)


def usd_to_vnd(amount_usd: Decimal | str | float, rate: int) -> int:
    return int((Decimal(str(amount_usd)) * Decimal(rate)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PayPalAdapter(GatewayAdapter):
    name = "PAYPAL"

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        base_url: str,
        return_url: str,
        cancel_url: str,
        usd_rate: int = 26000,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = base_url.rstrip("/")
        self.return_url = return_url
        self.cancel_url = cancel_url
        self.usd_rate = usd_rate

    async def _access_token(self) -> str:
        data = await self._post_json(
            f"{self.base_url}/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(self.client_id, self.client_secret),
            headers={"Accept": "application/json"},
        )
        token = data.get("access_token")
        if not token:
            raise ExternalGatewayError(self.name, "OAuth response without access_token")
        return token

    async def create_redirect(
        self,
        amount: float,
        correlation_id: int,
        object_type: ObjectType,
        context: DispatchContext,
    ) -> str:
        object_type = ObjectType(object_type)
        usd = vnd_to_usd(amount, self.usd_rate)
        subject = subject_from(object_type.value, context.object_id)
        token = await self._access_token()

        data = await self._post_json(
            f"{self.base_url}/v2/checkout/orders",
            json={
                "intent": "CAPTURE",
                "purchase_units": [
                    {
                        "reference_id": str(correlation_id),
                        "custom_id": encode_correlation(correlation_id, subject),
                        "description": context.description or f"Payment for {object_type.value} {context.object_id}",
                        "amount": {"currency_code": "USD", "value": f"{usd:.2f}"},
                    }
                ],
                "application_context": {
                    "return_url": self.return_url,
                    "cancel_url": self.cancel_url,
                },
            },
            headers={"Authorization": f"Bearer {token}", "Prefer": "return=representation"},
        )

        approve = next(
            (link.get("href") for link in data.get("links", []) if link.get("rel") == "approve"),
            None,
        )
        if not approve:
            raise ExternalGatewayError(self.name, "approval link not found in response")

        logger.info(f"PayPal order {data.get('id')} created for attempt {correlation_id} ({usd} USD)")
        return approve

    async def capture(self, paypal_order_id: str) -> dict:
        token = await self._access_token()
        return await self._post_json(
            f"{self.base_url}/v2/checkout/orders/{paypal_order_id}/capture",
            json={},
            headers={"Authorization": f"Bearer {token}", "Prefer": "return=representation"},
        )

    async def parse_callback(self, params: dict) -> GatewayCallback:
        paypal_order_id = params.get("token")
        if not paypal_order_id:
            raise ReconciliationMismatchError("PayPal return without order token")

        result = await self.capture(paypal_order_id)

        units = result.get("purchase_units") or [{}]
        unit = units[0]
        captures = (unit.get("payments") or {}).get("captures") or [{}]
        capture = captures[0]

        reference_id = unit.get("reference_id")
        amount_value = (capture.get("amount") or {}).get("value")
        if not reference_id or amount_value is None:
            raise ReconciliationMismatchError(
                "PayPal capture missing reference id or amount",
                details={"paypal_order_id": paypal_order_id},
            )

        try:
            attempt_id = int(reference_id)
        except ValueError as e:
            raise ReconciliationMismatchError(
                f"PayPal capture has a non-numeric reference id: {reference_id!r}",
                details={"paypal_order_id": paypal_order_id},
            ) from e
        subject = None
        custom_id = unit.get("custom_id") or capture.get("custom_id")
        if custom_id:
            try:
                subject = decode_correlation(custom_id).subject
            except ValueError:
                logger.warning(f"PayPal custom_id undecodable for attempt {attempt_id}")

        status = result.get("status", "")
        return GatewayCallback(
            provider=self.name,
            attempt_id=attempt_id,
            success=status == "COMPLETED",
            result_code=status,
            amount=float(usd_to_vnd(amount_value, self.usd_rate)),
            provider_txn_ref=capture.get("id") or result.get("id"),
            message=f"PayPal status: {status}",
            subject=subject,
            raw=result,
        )
