"""
Order and payment status graphs.

The two machines are orthogonal: order status tracks fulfilment,
payment status tracks settlement. Services call the ensure_* helpers
before mutating a status column.
"""
from domain.enums import OrderStatus, PaymentStatus
from domain.errors import InvalidTransitionError

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.ORDER_PLACED: frozenset({OrderStatus.ORDER_CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.ORDER_CONFIRMED: frozenset({OrderStatus.PENDING_PICKUP}),
    OrderStatus.PENDING_PICKUP: frozenset({OrderStatus.PICKED_UP, OrderStatus.IN_TRANSIT}),
    OrderStatus.PICKED_UP: frozenset({OrderStatus.IN_TRANSIT}),
    OrderStatus.IN_TRANSIT: frozenset({OrderStatus.DELIVERED, OrderStatus.DELIVERY_FAILED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.RETURN_REQUESTED}),
    OrderStatus.DELIVERY_FAILED: frozenset({OrderStatus.PENDING_PICKUP, OrderStatus.CANCELLED}),
    OrderStatus.RETURN_REQUESTED: frozenset({OrderStatus.RETURN_APPROVED, OrderStatus.RETURN_REJECTED}),
    OrderStatus.RETURN_APPROVED: frozenset({OrderStatus.RETURNED}),
    OrderStatus.RETURN_REJECTED: frozenset(),
    OrderStatus.RETURNED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.UNPAID: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.UNPAID, PaymentStatus.PAID}),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.REFUNDED: frozenset(),
}


def can_transition_order(current: str, target: str) -> bool:
    return OrderStatus(target) in ORDER_TRANSITIONS.get(OrderStatus(current), frozenset())


def is_terminal_order_status(status: str) -> bool:
    return not ORDER_TRANSITIONS[OrderStatus(status)]


def ensure_order_transition(current: str, target: str) -> None:
    """Raise InvalidTransitionError unless current -> target is an edge."""
    if not can_transition_order(current, target):
        raise InvalidTransitionError(OrderStatus(current).value, OrderStatus(target).value)


def ensure_payment_transition(current: str, target: str) -> None:
    allowed = PAYMENT_TRANSITIONS.get(PaymentStatus(current), frozenset())
    if PaymentStatus(target) not in allowed:
        raise InvalidTransitionError(
            PaymentStatus(current).value, PaymentStatus(target).value, kind="payment"
        )
