"""
VNPay adapter: bank card / QR gateway.

Signing: all vnp_* parameters sorted by key, URL-encoded with '+' for
spaces, joined with '&', then HMAC-SHA512 with the merchant hash secret.
The redirect URL is built locally; no network call on create.

Correlation: vnp_TxnRef carries the attempt id, vnp_OrderInfo carries
"<object type> <object id>". VNPay amounts are in VND x 100.
"""
import hashlib
import hmac
import logging
import re
from datetime import datetime, timedelta, timezone
from urllib.parse import quote_plus

from domain.enums import ObjectType
from domain.errors import ReconciliationMismatchError
from domain.subjects import subject_from
from gateways.base import DispatchContext, GatewayAdapter, GatewayCallback

logger = logging.getLogger(__name__)

VNPAY_SUCCESS_CODE = "00"
_VN_TZ = timezone(timedelta(hours=7))
_ORDER_INFO_RE = re.compile(r"\b(order|reservation) (\d+)\b")


def _vnp_timestamp(dt: datetime) -> str:
    return dt.astimezone(_VN_TZ).strftime("%Y%m%d%H%M%S")


def build_sign_data(params: dict) -> str:
    """Canonical string VNPay signs: sorted, URL-encoded, '&'-joined."""
    return "&".join(
        f"{key}={quote_plus(str(params[key]))}"
        for key in sorted(params)
        if params[key] not in (None, "")
    )


def sign(params: dict, secret: str) -> str:
    return hmac.new(
        secret.encode("utf-8"),
        build_sign_data(params).encode("utf-8"),
        hashlib.sha512,
    ).hexdigest()


class VNPayAdapter(GatewayAdapter):
    name = "VNPAY"

    def __init__(
        self,
        *,
        tmn_code: str,
        hash_secret: str,
        payment_url: str,
        return_url: str,
        expire_hours: int = 24,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.tmn_code = tmn_code
        self.hash_secret = hash_secret
        self.payment_url = payment_url
        self.return_url = return_url
        self.expire_hours = expire_hours

    async def create_redirect(
        self,
        amount: float,
        correlation_id: int,
        object_type: ObjectType,
        context: DispatchContext,
    ) -> str:
        now = datetime.now(timezone.utc)
        params = {
            "vnp_Version": "2.1.0",
            "vnp_Command": "pay",
            "vnp_TmnCode": self.tmn_code,
            "vnp_Amount": int(round(amount * 100)),
            "vnp_CurrCode": "VND",
            "vnp_TxnRef": str(correlation_id),
            "vnp_OrderInfo": f"Thanh toan {ObjectType(object_type).value} {context.object_id}",
            "vnp_OrderType": "other",
            "vnp_Locale": "vn",
            "vnp_ReturnUrl": self.return_url,
            "vnp_IpAddr": context.client_ip or "127.0.0.1",
            "vnp_CreateDate": _vnp_timestamp(now),
            "vnp_ExpireDate": _vnp_timestamp(now + timedelta(hours=self.expire_hours)),
        }
        secure_hash = sign(params, self.hash_secret)
        return f"{self.payment_url}?{build_sign_data(params)}&vnp_SecureHash={secure_hash}"

    def verify(self, params: dict) -> bool:
        """Recompute vnp_SecureHash over every vnp_* field except the hash fields."""
        if not self.hash_secret:
            logger.error("VNPAY_HASH_SECRET not configured; rejecting return")
            return False

        received = (params.get("vnp_SecureHash") or "").lower()
        if not received:
            return False

        data = {
            k: v for k, v in params.items()
            if k.startswith("vnp_") and k not in ("vnp_SecureHash", "vnp_SecureHashType")
        }
        return hmac.compare_digest(sign(data, self.hash_secret), received)

    async def parse_callback(self, params: dict) -> GatewayCallback:
        if not self.verify(params):
            logger.warning(f"VNPay return failed checksum (TxnRef={params.get('vnp_TxnRef')})")
            raise ReconciliationMismatchError(
                "VNPay checksum verification failed",
                details={"txn_ref": params.get("vnp_TxnRef")},
            )

        try:
            attempt_id = int(params["vnp_TxnRef"])
            amount = int(params["vnp_Amount"]) / 100
        except (KeyError, ValueError) as e:
            raise ReconciliationMismatchError(f"VNPay return missing field: {e}") from e

        response_code = params.get("vnp_ResponseCode", "")
        txn_status = params.get("vnp_TransactionStatus", VNPAY_SUCCESS_CODE)

        subject = None
        match = _ORDER_INFO_RE.search(params.get("vnp_OrderInfo", ""))
        if match:
            subject = subject_from(match.group(1), int(match.group(2)))

        return GatewayCallback(
            provider=self.name,
            attempt_id=attempt_id,
            success=response_code == VNPAY_SUCCESS_CODE and txn_status == VNPAY_SUCCESS_CODE,
            result_code=response_code,
            amount=amount,
            provider_txn_ref=params.get("vnp_TransactionNo"),
            message=f"VNPay response code {response_code}",
            subject=subject,
            raw=dict(params),
        )
