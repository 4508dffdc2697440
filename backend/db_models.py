"""
SQLAlchemy ORM models for the ordering & payment backend.

Tables:
    users                  customers and staff
    addresses              saved delivery addresses
    dishes                 menu items with stock + sales counters
    cart_items             per-user cart lines
    ingredients            raw ingredients tracked by the kitchen
    dish_ingredients       recipe: ingredient quantity per dish portion
    inventory_transactions ingredient exports recorded per order
    orders / order_items   order header + price/quantity snapshots
    reservations           table reservations with a deposit
    payment_attempts       one row per dispatch (order XOR reservation)
    loyalty_transactions   loyalty earn ledger (one earn per order)
    vouchers               voucher validity (rules evaluated elsewhere)
"""
import json
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Float, Boolean, DateTime, Text, ForeignKey,
    UniqueConstraint, CheckConstraint, Index,
)
from sqlalchemy.orm import relationship

from database import Base
from domain.enums import (
    AttemptStatus, DeliveryTimeType, OrderStatus, OrderType, PaymentStatus, UserRole,
)
from domain.subjects import OrderRef, ReservationRef, Subject


class User(Base):
    """Customers, staff and admins."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.CUSTOMER.value)  # customer | staff | admin
    created_at = Column(DateTime, default=datetime.utcnow)


class Address(Base):
    __tablename__ = "addresses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    full_name = Column(String(200), nullable=False)
    phone = Column(String(20), nullable=False)
    street = Column(String(255), nullable=False)
    ward = Column(String(100), nullable=True)
    district = Column(String(100), nullable=True)
    city = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


# ════════════════════════════════════════════════════════════════════
# Menu, Cart & Inventory
# ════════════════════════════════════════════════════════════════════

class Dish(Base):
    __tablename__ = "dishes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    price = Column(Float, nullable=False)
    discount_price = Column(Float, nullable=True)  # null => no discount
    count_in_stock = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="available")  # available | unavailable
    ordered_count = Column(Integer, nullable=False, default=0)  # number of orders containing the dish
    total_sold_quantity = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("count_in_stock >= 0", name="ck_dish_stock_non_negative"),
    )

    @property
    def unit_price(self) -> float:
        return self.discount_price if self.discount_price is not None else self.price


class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    dish_id = Column(Integer, ForeignKey("dishes.id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    added_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "dish_id", name="uq_cart_user_dish"),
    )


class Ingredient(Base):
    __tablename__ = "ingredients"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    unit = Column(String(20), nullable=False, default="g")


class DishIngredient(Base):
    """Recipe line: `quantity` of an ingredient consumed per dish portion."""
    __tablename__ = "dish_ingredients"

    id = Column(Integer, primary_key=True, autoincrement=True)
    dish_id = Column(Integer, ForeignKey("dishes.id"), nullable=False, index=True)
    ingredient_id = Column(Integer, ForeignKey("ingredients.id"), nullable=False, index=True)
    quantity = Column(Float, nullable=False)


class InventoryTransaction(Base):
    __tablename__ = "inventory_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ingredient_id = Column(Integer, ForeignKey("ingredients.id"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    transaction_type = Column(String(20), nullable=False, default="export")  # import | export
    quantity = Column(Float, nullable=False)
    note = Column(Text, nullable=True)
    transaction_date = Column(DateTime, default=datetime.utcnow)


# ════════════════════════════════════════════════════════════════════
# Orders
# ════════════════════════════════════════════════════════════════════

class Order(Base):
    """
    Order header. Totals are computed once at creation:

        total_price = items_price + vat_amount + shipping_fee - discount_amount

    Never hard-deleted; `status` moves only along the order state machine.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    address_id = Column(Integer, ForeignKey("addresses.id"), nullable=True)
    delivery_type = Column(String(20), nullable=False)  # DELIVERY | PICKUP
    order_type = Column(String(20), nullable=False, default=OrderType.ONLINE.value)
    payment_method = Column(String(20), nullable=False)
    status = Column(String(30), nullable=False, default=OrderStatus.ORDER_PLACED.value, index=True)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.UNPAID.value, index=True)

    items_price = Column(Float, nullable=False, default=0.0)
    vat_amount = Column(Float, nullable=False, default=0.0)
    shipping_fee = Column(Float, nullable=False, default=0.0)
    discount_amount = Column(Float, nullable=False, default=0.0)
    total_price = Column(Float, nullable=False, default=0.0)
    total_quantity = Column(Integer, nullable=False, default=0)

    voucher_id = Column(Integer, ForeignKey("vouchers.id"), nullable=True)
    note = Column(Text, nullable=True)
    receiver = Column(String(200), nullable=True)
    receiver_phone = Column(String(20), nullable=True)
    delivery_time_type = Column(String(20), nullable=False, default=DeliveryTimeType.ASAP.value)
    scheduled_time = Column(DateTime, nullable=True)

    paid_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancelled_reason = Column(Text, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    returned_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship("OrderItem", back_populates="order", lazy="selectin", order_by="OrderItem.id")

    __table_args__ = (
        # For the stale-order sweep: status + payment_status + created_at
        Index("ix_orders_sweep", "status", "payment_status", "created_at"),
        Index("ix_orders_user_created", "user_id", "created_at"),
    )


class OrderItem(Base):
    """Line item with name/price snapshot taken at placement."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    dish_id = Column(Integer, ForeignKey("dishes.id"), nullable=False, index=True)
    dish_name = Column(String(200), nullable=False)
    unit_price = Column(Float, nullable=False)
    quantity = Column(Integer, nullable=False)
    total_amount = Column(Float, nullable=False)
    note = Column(Text, nullable=True)

    order = relationship("Order", back_populates="items")


class Reservation(Base):
    """Table reservation; only the deposit payment is handled here."""
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    deposit_amount = Column(Float, nullable=False, default=0.0)
    payment_method = Column(String(20), nullable=False)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.UNPAID.value)
    status = Column(String(20), nullable=False, default="PENDING")  # PENDING | BOOKED | CANCELLED
    paid_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


# ════════════════════════════════════════════════════════════════════
# Payments
# ════════════════════════════════════════════════════════════════════

class PaymentAttempt(Base):
    """
    One payment try. Append-mostly: every dispatch creates a new row.

    Belongs to exactly one order or one reservation (CHECK constraint);
    use `subject` / `for_subject()` rather than the raw FK columns.
    """
    __tablename__ = "payment_attempts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id"), nullable=True, index=True)
    payment_method = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default=AttemptStatus.UNPAID.value, index=True)
    amount = Column(Float, nullable=False)  # expected amount
    paid_amount = Column(Float, nullable=True)  # reported by gateway / staff
    transaction_code = Column(String(64), nullable=True, index=True)  # {PREFIX}-{YYYYMMDD}-{last6}
    provider_txn_ref = Column(String(128), nullable=True)
    banking_info = Column(Text, nullable=True)  # JSON: bank, account, qr payload, transfer note
    confirmed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    failure_reason = Column(Text, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "(order_id IS NULL) <> (reservation_id IS NULL)",
            name="ck_payment_attempt_single_subject",
        ),
        Index("ix_payment_attempts_order_created", "order_id", "created_at"),
    )

    @classmethod
    def for_subject(cls, subject: Subject, **fields) -> "PaymentAttempt":
        if isinstance(subject, OrderRef):
            return cls(order_id=subject.order_id, **fields)
        return cls(reservation_id=subject.reservation_id, **fields)

    @property
    def subject(self) -> Subject:
        if self.order_id is not None:
            return OrderRef(self.order_id)
        return ReservationRef(self.reservation_id)

    @property
    def banking_details(self) -> dict | None:
        return json.loads(self.banking_info) if self.banking_info else None


# ════════════════════════════════════════════════════════════════════
# Loyalty & Vouchers (collaborator state)
# ════════════════════════════════════════════════════════════════════

class LoyaltyTransaction(Base):
    """
    Loyalty ledger. An order earns at most once: (order_id, type) is unique,
    so a racing duplicate accrual fails at the storage layer.
    """
    __tablename__ = "loyalty_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)
    type = Column(String(20), nullable=False)  # earn | redeem | adjust
    amount_spent = Column(Float, nullable=False, default=0.0)
    points = Column(Integer, nullable=True)  # filled by the loyalty program
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("order_id", "type", name="uq_loyalty_order_type"),
    )


class Voucher(Base):
    __tablename__ = "vouchers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(50), unique=True, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
