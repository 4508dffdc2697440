"""
Domain enums shared by models, services and routes.
"""

from enum import Enum


class OrderStatus(str, Enum):
    ORDER_PLACED = "ORDER_PLACED"
    ORDER_CONFIRMED = "ORDER_CONFIRMED"
    PENDING_PICKUP = "PENDING_PICKUP"
    PICKED_UP = "PICKED_UP"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    DELIVERY_FAILED = "DELIVERY_FAILED"
    RETURN_REQUESTED = "RETURN_REQUESTED"
    RETURN_APPROVED = "RETURN_APPROVED"
    RETURN_REJECTED = "RETURN_REJECTED"
    RETURNED = "RETURNED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    """Payment status of an order or reservation."""
    UNPAID = "UNPAID"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class AttemptStatus(str, Enum):
    """Status of a single payment attempt."""
    UNPAID = "UNPAID"
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    BANKING = "BANKING"
    VNPAY = "VNPAY"
    MOMO = "MOMO"
    MOMO_ATM = "MOMO_ATM"
    CREDIT_CARD = "CREDIT_CARD"


class DeliveryType(str, Enum):
    DELIVERY = "DELIVERY"
    PICKUP = "PICKUP"


class OrderType(str, Enum):
    DINE_IN = "DINE_IN"
    ONLINE = "ONLINE"


class DeliveryTimeType(str, Enum):
    ASAP = "ASAP"
    SCHEDULED = "SCHEDULED"


class ObjectType(str, Enum):
    """Domain object a payment attempt settles."""
    ORDER = "order"
    RESERVATION = "reservation"


class UserRole(str, Enum):
    CUSTOMER = "customer"
    STAFF = "staff"
    ADMIN = "admin"
