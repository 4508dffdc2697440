"""
MoMo adapter: e-wallet (captureWallet) and domestic ATM card (payWithATM).

Signing: HMAC-SHA256 over a raw "key=value&..." string whose key order is
fixed by MoMo's API, not sorted by us.

Correlation: orderId = attempt id; extraData = base64 JSON of
{attemptId, objectType, objectId}.
"""
import hashlib
import hmac
import logging
import time

from domain.enums import ObjectType, PaymentMethod
from domain.errors import ExternalGatewayError, ReconciliationMismatchError
from domain.subjects import decode_correlation, encode_correlation, subject_from
from gateways.base import DispatchContext, GatewayAdapter, GatewayCallback

logger = logging.getLogger(__name__)

MOMO_SUCCESS_CODE = "0"

_CREATE_SIGNATURE_KEYS = (
    "accessKey", "amount", "extraData", "ipnUrl", "orderId", "orderInfo",
    "partnerCode", "redirectUrl", "requestId", "requestType",
)
_RETURN_SIGNATURE_KEYS = (
    "accessKey", "amount", "extraData", "message", "orderId", "orderInfo",
    "orderType", "partnerCode", "payType", "requestId", "responseTime",
    "resultCode", "transId",
)


def raw_signature(values: dict, keys: tuple[str, ...]) -> str:
    return "&".join(f"{k}={values.get(k, '')}" for k in keys)


def sign(raw: str, secret_key: str) -> str:
    return hmac.new(secret_key.encode("utf-8"), raw.encode("utf-8"), hashlib.sha256).hexdigest()


class MomoAdapter(GatewayAdapter):
    name = "MOMO"

    def __init__(
        self,
        *,
        partner_code: str,
        access_key: str,
        secret_key: str,
        endpoint: str,
        redirect_url: str,
        ipn_url: str,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.partner_code = partner_code
        self.access_key = access_key
        self.secret_key = secret_key
        self.endpoint = endpoint
        self.redirect_url = redirect_url
        self.ipn_url = ipn_url

    async def create_redirect(
        self,
        amount: float,
        correlation_id: int,
        object_type: ObjectType,
        context: DispatchContext,
    ) -> str:
        object_type = ObjectType(object_type)
        atm = context.method == PaymentMethod.MOMO_ATM
        subject = subject_from(object_type.value, context.object_id)

        body = {
            "partnerCode": self.partner_code,
            "accessKey": self.access_key,
            "requestId": f"{correlation_id}-{int(time.time() * 1000)}",
            "amount": str(int(round(amount))),
            "orderId": str(correlation_id),
            "orderInfo": f"Thanh toan {object_type.value} {context.object_id}",
            "redirectUrl": self.redirect_url,
            "ipnUrl": self.ipn_url,
            "requestType": "payWithATM" if atm else "captureWallet",
            "extraData": encode_correlation(correlation_id, subject),
            "lang": "vi",
        }
        body["signature"] = sign(raw_signature(body, _CREATE_SIGNATURE_KEYS), self.secret_key)
        body["orderType"] = "atm" if atm else "momo_wallet"

        data = await self._post_json(self.endpoint, json=body)

        result_code = str(data.get("resultCode", ""))
        pay_url = data.get("payUrl")
        if result_code != MOMO_SUCCESS_CODE or not pay_url:
            logger.warning(
                f"MoMo create rejected for attempt {correlation_id}: "
                f"resultCode={result_code} message={data.get('message')}"
            )
            raise ExternalGatewayError(
                self.name,
                data.get("message") or f"resultCode {result_code}",
                details={"result_code": result_code},
            )

        logger.info(f"MoMo payUrl created for attempt {correlation_id} ({body['requestType']})")
        return pay_url

    def verify(self, params: dict) -> bool:
        if not self.secret_key:
            logger.error("MOMO_SECRET_KEY not configured; rejecting return")
            return False
        received = params.get("signature") or ""
        if not received:
            return False
        values = {**params, "accessKey": self.access_key}
        expected = sign(raw_signature(values, _RETURN_SIGNATURE_KEYS), self.secret_key)
        return hmac.compare_digest(expected, received)

    async def parse_callback(self, params: dict) -> GatewayCallback:
        if not self.verify(params):
            logger.warning(f"MoMo return failed signature check (orderId={params.get('orderId')})")
            raise ReconciliationMismatchError(
                "MoMo signature verification failed",
                details={"order_id": params.get("orderId")},
            )

        try:
            attempt_id = int(params["orderId"])
            amount = float(params["amount"])
        except (KeyError, ValueError) as e:
            raise ReconciliationMismatchError(f"MoMo return missing field: {e}") from e

        subject = None
        if params.get("extraData"):
            try:
                correlation = decode_correlation(params["extraData"])
            except ValueError:
                logger.warning(f"MoMo extraData undecodable for attempt {attempt_id}")
            else:
                if correlation.attempt_id != attempt_id:
                    raise ReconciliationMismatchError(
                        "MoMo extraData does not match orderId",
                        details={"order_id": attempt_id, "extra_attempt_id": correlation.attempt_id},
                    )
                subject = correlation.subject

        result_code = str(params.get("resultCode", ""))
        return GatewayCallback(
            provider=self.name,
            attempt_id=attempt_id,
            success=result_code == MOMO_SUCCESS_CODE,
            result_code=result_code,
            amount=amount,
            provider_txn_ref=params.get("transId"),
            message=params.get("message"),
            subject=subject,
            raw=dict(params),
        )
