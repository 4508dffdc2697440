"""
Configuration management for the ordering & payment backend.

Loads settings from .env via pydantic-settings.

Notes:
    - Engine constants (VAT, tolerance, windows) live here so they can be
      tuned per deployment; defaults match the production values.
    - validate_production_settings() refuses to start a production process
      with missing secrets or wildcard CORS.
"""
import logging

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── Database ────────────────────────────────────────────────────
    database_url: str = "sqlite:///./data/orders.db"

    # ── Application ─────────────────────────────────────────────────
    environment: str = "development"
    client_base_url: str = "http://localhost:5173"
    server_base_url: str = "http://localhost:4000"

    # ── Auth (JWT) ──────────────────────────────────────────────────
    jwt_secret: str = ""
    jwt_issuer: str = "orders-api"
    jwt_access_ttl_minutes: int = 60

    # ── Order / payment engine ──────────────────────────────────────
    vat_rate: float = 0.08                   # 8% of the item subtotal
    payment_amount_tolerance: int = 1000     # VND, |expected - paid|
    return_window_minutes: int = 30          # from delivered_at
    unpaid_order_grace_minutes: int = 30     # from created_at
    sweep_interval_seconds: int = 60
    sweeper_enabled: bool = True
    gateway_timeout_seconds: float = 15.0

    # ── VNPay (bank / QR gateway) ───────────────────────────────────
    vnpay_tmn_code: str = ""
    vnpay_hash_secret: str = ""
    vnpay_payment_url: str = "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html"
    vnpay_return_url: str = "http://localhost:4000/payment/vnpay-return"
    vnpay_expire_hours: int = 24

    # ── MoMo (wallet / ATM) ─────────────────────────────────────────
    momo_partner_code: str = ""
    momo_access_key: str = ""
    momo_secret_key: str = ""
    momo_endpoint: str = "https://test-payment.momo.vn/v2/gateway/api/create"
    momo_redirect_url: str = "http://localhost:4000/payment/momo-return"
    momo_ipn_url: str = "http://localhost:4000/payment/momo-ipn"

    # ── PayPal (credit card) ────────────────────────────────────────
    paypal_client_id: str = ""
    paypal_client_secret: str = ""
    paypal_base_url: str = "https://api-m.sandbox.paypal.com"
    paypal_return_url: str = "http://localhost:4000/payment/paypal-return"
    paypal_cancel_url: str = "http://localhost:5173/payment-cancel"
    paypal_usd_rate: int = 26000             # fixed VND per USD

    # ── Bank transfer instructions ──────────────────────────────────
    bank_name: str = "Vietcombank"
    bank_bin: str = "970436"
    bank_account_number: str = "0123456789"
    bank_account_name: str = "CONG TY TNHH BEEFBEEF"

    # ── Notifications ───────────────────────────────────────────────
    notification_webhook_url: str = ""       # empty => log only

    # ── CORS ────────────────────────────────────────────────────────
    cors_origins: str = "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    def validate_production_settings(self):
        """
        Validate settings for production safety.

        Called during app startup.
        """
        if self.environment == "production":
            if "*" in self.cors_origins:
                raise ValueError(
                    "CORS_ORIGINS must not contain '*' in production. "
                    "Set explicit allowed origins."
                )
            if not self.jwt_secret:
                raise ValueError("JWT_SECRET must be set in production.")
            if not self.vnpay_hash_secret or not self.momo_secret_key:
                raise ValueError(
                    "VNPAY_HASH_SECRET and MOMO_SECRET_KEY must be set in production. "
                    "Gateway callbacks cannot be verified without them."
                )
            logger.info("Production settings validated")
        else:
            warnings = []
            if not self.jwt_secret:
                warnings.append("JWT_SECRET is empty (authenticated routes will fail)")
            if not self.vnpay_hash_secret:
                warnings.append("VNPAY_HASH_SECRET is empty (VNPay returns will be rejected)")
            if "*" in self.cors_origins:
                warnings.append("CORS_ORIGINS contains '*' (open access)")
            for w in warnings:
                logger.warning(w)


# Global settings instance
settings = Settings()
