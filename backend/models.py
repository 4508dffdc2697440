"""
Pydantic models for request/response validation.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from domain.enums import (
    DeliveryTimeType, DeliveryType, OrderStatus, OrderType, PaymentMethod,
)


class ApiBase(BaseModel):
    """Shared base; allows construction by Python name or camelCase alias."""
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


# ── Order Placement ─────────────────────────────────────────────────

class OrderItemInput(ApiBase):
    dish_id: int = Field(..., alias="dishId", ge=1)
    quantity: int = Field(..., ge=1, le=100)
    note: Optional[str] = Field(None, max_length=500)


class AddressInput(ApiBase):
    """Inline delivery address; saved to the user's address book on placement."""
    full_name: str = Field(..., alias="fullName", min_length=1, max_length=200)
    phone: str = Field(..., min_length=6, max_length=20)
    street: str = Field(..., min_length=1, max_length=255)
    ward: Optional[str] = None
    district: Optional[str] = None
    city: Optional[str] = None


class PlaceOrderRequest(ApiBase):
    delivery_type: DeliveryType = Field(..., alias="deliveryType")
    order_type: OrderType = Field(OrderType.ONLINE, alias="orderType")
    payment_method: PaymentMethod = Field(..., alias="paymentMethod")
    items: List[OrderItemInput] = Field(..., min_length=1)
    address_id: Optional[int] = Field(None, alias="addressId")
    address: Optional[AddressInput] = None
    delivery_time_type: DeliveryTimeType = Field(DeliveryTimeType.ASAP, alias="deliveryTimeType")
    scheduled_time: Optional[datetime] = Field(None, alias="scheduledTime")
    voucher_id: Optional[int] = Field(None, alias="voucherId")
    shipping_fee: float = Field(0.0, alias="shippingFee", ge=0)
    discount_amount: float = Field(0.0, alias="discountAmount", ge=0)
    receiver: Optional[str] = Field(None, max_length=200)
    receiver_phone: Optional[str] = Field(None, alias="receiverPhone", max_length=20)
    note: Optional[str] = Field(None, max_length=1000)


# ── Order Lifecycle ─────────────────────────────────────────────────

class UpdateOrderStatusRequest(ApiBase):
    status: OrderStatus


class CancelOrderRequest(ApiBase):
    reason: Optional[str] = Field(None, max_length=500)


class ReturnRequest(ApiBase):
    reason: str = Field(..., min_length=1, max_length=500)


# ── Payments ────────────────────────────────────────────────────────

class ConfirmPaymentRequest(ApiBase):
    """Staff confirmation of a bank transfer / cash payment."""
    paid_amount: float = Field(..., alias="paidAmount", gt=0)
    transaction_code: Optional[str] = Field(None, alias="transactionCode", max_length=128)


class ChangePaymentMethodRequest(ApiBase):
    payment_method: PaymentMethod = Field(..., alias="paymentMethod")


# ── Responses ───────────────────────────────────────────────────────

class OrderItemResponse(ApiBase):
    id: int
    dish_id: int = Field(..., alias="dishId")
    dish_name: str = Field(..., alias="dishName")
    unit_price: float = Field(..., alias="unitPrice")
    quantity: int
    total_amount: float = Field(..., alias="totalAmount")
    note: Optional[str] = None


class OrderResponse(ApiBase):
    id: int
    user_id: int = Field(..., alias="userId")
    delivery_type: str = Field(..., alias="deliveryType")
    order_type: str = Field(..., alias="orderType")
    payment_method: str = Field(..., alias="paymentMethod")
    status: str
    payment_status: str = Field(..., alias="paymentStatus")
    items_price: float = Field(..., alias="itemsPrice")
    vat_amount: float = Field(..., alias="vatAmount")
    shipping_fee: float = Field(..., alias="shippingFee")
    discount_amount: float = Field(..., alias="discountAmount")
    total_price: float = Field(..., alias="totalPrice")
    items: List[OrderItemResponse] = []
    paid_at: Optional[datetime] = Field(None, alias="paidAt")
    delivered_at: Optional[datetime] = Field(None, alias="deliveredAt")
    cancelled_at: Optional[datetime] = Field(None, alias="cancelledAt")
    cancelled_reason: Optional[str] = Field(None, alias="cancelledReason")
    returned_at: Optional[datetime] = Field(None, alias="returnedAt")
    created_at: Optional[datetime] = Field(None, alias="createdAt")


class PaymentAttemptResponse(ApiBase):
    id: int
    payment_method: str = Field(..., alias="paymentMethod")
    status: str
    amount: float
    paid_amount: Optional[float] = Field(None, alias="paidAmount")
    transaction_code: Optional[str] = Field(None, alias="transactionCode")
    failure_reason: Optional[str] = Field(None, alias="failureReason")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
