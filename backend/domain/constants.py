"""
Domain constants used across services/routers.
"""
from domain.enums import OrderStatus, PaymentMethod, PaymentStatus

# Transaction code prefixes: {PREFIX}-{YYYYMMDD}-{last6ofAttemptId}
TXN_CODE_PREFIXES = {
    PaymentMethod.BANKING: "BANKING",
    PaymentMethod.MOMO: "MOMO",
    PaymentMethod.MOMO_ATM: "MOMO_ATM",
    PaymentMethod.VNPAY: "VNPAY",
    PaymentMethod.CREDIT_CARD: "PAYPAL",
    PaymentMethod.CASH: "CASH",
}
TXN_CODE_FALLBACK_PREFIX = "PAY"

# Methods settled asynchronously; unpaid orders using them are swept.
ONLINE_PAYMENT_METHODS = (
    PaymentMethod.VNPAY,
    PaymentMethod.MOMO,
    PaymentMethod.MOMO_ATM,
    PaymentMethod.CREDIT_CARD,
    PaymentMethod.BANKING,
)

# Methods served by an external redirect gateway.
GATEWAY_METHODS = (
    PaymentMethod.VNPAY,
    PaymentMethod.MOMO,
    PaymentMethod.MOMO_ATM,
    PaymentMethod.CREDIT_CARD,
)

# Retry / change-method is refused when either the order status or the
# payment status is one of these.
NON_RETRYABLE_STATES = frozenset({
    PaymentStatus.PAID.value,
    OrderStatus.CANCELLED.value,
    "COMPLETED",
    OrderStatus.RETURNED.value,
})

# Statuses staff may set through update_order_status.
ADMIN_SETTABLE_STATUSES = frozenset({
    OrderStatus.ORDER_CONFIRMED,
    OrderStatus.PENDING_PICKUP,
    OrderStatus.PICKED_UP,
    OrderStatus.IN_TRANSIT,
    OrderStatus.DELIVERED,
    OrderStatus.DELIVERY_FAILED,
    OrderStatus.RETURN_APPROVED,
    OrderStatus.RETURN_REJECTED,
    OrderStatus.RETURNED,
})

SWEEP_CANCEL_REASON = "Order cancelled: not paid within the payment window"
SWEEP_ATTEMPT_FAILURE_REASON = "timeout"

# Orders in these statuses are never fulfilled; a payment landing on one
# needs a manual refund.
CLOSED_ORDER_STATUSES = frozenset({
    OrderStatus.CANCELLED.value,
    OrderStatus.RETURNED.value,
})
