"""
Payment gateway adapters and the registry the payment service dispatches through.
"""
from config import Settings
from domain.enums import PaymentMethod
from gateways.base import DispatchContext, GatewayAdapter, GatewayCallback, GatewayRegistry
from gateways.momo import MomoAdapter
from gateways.paypal import PayPalAdapter
from gateways.vnpay import VNPayAdapter


def build_gateways(settings: Settings, transport=None) -> GatewayRegistry:
    """Wire one adapter per online method from settings."""
    timeout = settings.gateway_timeout_seconds
    vnpay = VNPayAdapter(
        tmn_code=settings.vnpay_tmn_code,
        hash_secret=settings.vnpay_hash_secret,
        payment_url=settings.vnpay_payment_url,
        return_url=settings.vnpay_return_url,
        expire_hours=settings.vnpay_expire_hours,
        timeout=timeout,
        transport=transport,
    )
    momo = MomoAdapter(
        partner_code=settings.momo_partner_code,
        access_key=settings.momo_access_key,
        secret_key=settings.momo_secret_key,
        endpoint=settings.momo_endpoint,
        redirect_url=settings.momo_redirect_url,
        ipn_url=settings.momo_ipn_url,
        timeout=timeout,
        transport=transport,
    )
    paypal = PayPalAdapter(
        client_id=settings.paypal_client_id,
        client_secret=settings.paypal_client_secret,
        base_url=settings.paypal_base_url,
        return_url=settings.paypal_return_url,
        cancel_url=settings.paypal_cancel_url,
        usd_rate=settings.paypal_usd_rate,
        timeout=timeout,
        transport=transport,
    )
    return GatewayRegistry({
        PaymentMethod.VNPAY: vnpay,
        PaymentMethod.MOMO: momo,
        PaymentMethod.MOMO_ATM: momo,
        PaymentMethod.CREDIT_CARD: paypal,
    })


__all__ = [
    "DispatchContext",
    "GatewayAdapter",
    "GatewayCallback",
    "GatewayRegistry",
    "MomoAdapter",
    "PayPalAdapter",
    "VNPayAdapter",
    "build_gateways",
]
