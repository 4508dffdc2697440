"""
Order service: placement and status lifecycle.

place_order runs one unit of work:
    address -> stock decrement (conditional UPDATE per line) -> order header
    + line items -> sold/ordered counters -> cart pruning -> ingredient exports

If any line cannot be served the whole unit rolls back: no order, no items,
no stock or cart change. Notification and payment dispatch happen after the
commit and can fail without touching the order.

Status changes go through domain.state_machine and are written with
`UPDATE ... WHERE status = <status we read>` so a concurrent change is
detected (ConflictError) instead of overwritten.
"""
import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import unit_of_work
from db_models import (
    Address, CartItem, Dish, DishIngredient, InventoryTransaction, Order, OrderItem,
)
from domain.constants import ADMIN_SETTABLE_STATUSES
from domain.enums import DeliveryTimeType, DeliveryType, OrderStatus, PaymentStatus
from domain.errors import (
    ConflictError,
    DomainError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from domain.state_machine import ensure_order_transition
from domain.subjects import OrderRef
from models import PlaceOrderRequest
from services import payment_service
from services.context import ServiceContext
from services.notifications import notify

logger = logging.getLogger(__name__)

_VND = Decimal("1")


def _money(value) -> Decimal:
    return Decimal(str(value or 0))


def compute_totals(lines: list[tuple[float, int]], *, shipping_fee: float, discount: float) -> dict:
    """
    Totals for (unit_price, quantity) lines, rounded to whole VND.

        vat   = items * vat_rate
        total = items + vat + shipping - discount
    """
    items = sum((_money(price) * qty for price, qty in lines), Decimal("0"))
    vat = (items * _money(settings.vat_rate)).quantize(_VND, rounding=ROUND_HALF_UP)
    total = items + vat + _money(shipping_fee) - _money(discount)
    return {
        "items_price": float(items),
        "vat_amount": float(vat),
        "total_price": float(total),
    }


# ════════════════════════════════════════════════════════════════════
# Placement
# ════════════════════════════════════════════════════════════════════


def _as_naive_utc(value: datetime | None) -> datetime | None:
    """Offset-aware timestamps become naive UTC, matching the stored columns."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _validate_request(data: PlaceOrderRequest, now: datetime) -> None:
    if not data.items:
        raise ValidationError("Order must contain at least one item", field="items")

    if data.delivery_type == DeliveryType.DELIVERY:
        if (data.address_id is None) == (data.address is None):
            raise ValidationError(
                "Delivery orders need exactly one of address_id or address", field="address"
            )

    if data.delivery_time_type == DeliveryTimeType.SCHEDULED:
        if data.scheduled_time is None:
            raise ValidationError("Scheduled orders need a scheduled_time", field="scheduled_time")
        if _as_naive_utc(data.scheduled_time) <= now:
            raise ValidationError("scheduled_time must be in the future", field="scheduled_time")

    if data.shipping_fee < 0 or data.discount_amount < 0:
        raise ValidationError("Shipping fee and discount cannot be negative")


async def _resolve_address(db: AsyncSession, *, user_id: int, data: PlaceOrderRequest) -> int | None:
    if data.delivery_type != DeliveryType.DELIVERY:
        return None

    if data.address_id is not None:
        result = await db.execute(
            select(Address).where(Address.id == data.address_id, Address.user_id == user_id)
        )
        address = result.scalar_one_or_none()
        if not address:
            raise NotFoundError("Address", str(data.address_id))
        return address.id

    address = Address(user_id=user_id, **data.address.model_dump())
    db.add(address)
    await db.flush()
    return address.id


async def _reserve_stock(db: AsyncSession, dish_id: int, quantity: int) -> Dish:
    """Decrement stock for one line, or raise if it cannot be served."""
    result = await db.execute(select(Dish).where(Dish.id == dish_id))
    dish = result.scalar_one_or_none()
    if not dish:
        raise ValidationError(f"Dish {dish_id} does not exist", details={"dish_id": dish_id})
    if dish.status != "available":
        raise ValidationError(f"{dish.name} is not available", details={"dish_id": dish_id})

    result = await db.execute(
        update(Dish)
        .where(
            Dish.id == dish_id,
            Dish.status == "available",
            Dish.count_in_stock >= quantity,
        )
        .values(
            count_in_stock=Dish.count_in_stock - quantity,
            total_sold_quantity=Dish.total_sold_quantity + quantity,
            ordered_count=Dish.ordered_count + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ValidationError(
            f"Not enough {dish.name} in stock",
            details={"dish_id": dish_id, "requested": quantity, "available": dish.count_in_stock},
        )
    return dish


async def _export_ingredients(db: AsyncSession, *, order: Order, quantities: dict[int, int]) -> int:
    """One export entry per ingredient, summed over all ordered dishes."""
    result = await db.execute(
        select(DishIngredient).where(DishIngredient.dish_id.in_(list(quantities)))
    )
    consumed: dict[int, float] = defaultdict(float)
    for recipe in result.scalars().all():
        consumed[recipe.ingredient_id] += recipe.quantity * quantities[recipe.dish_id]

    for ingredient_id, quantity in consumed.items():
        db.add(InventoryTransaction(
            ingredient_id=ingredient_id,
            order_id=order.id,
            user_id=order.user_id,
            transaction_type="export",
            quantity=quantity,
            note=f"Export for order {order.id}",
        ))
    return len(consumed)


async def place_order(
    db: AsyncSession,
    *,
    user_id: int,
    data: PlaceOrderRequest,
    services: ServiceContext,
    client_ip: str = "127.0.0.1",
) -> dict:
    """
    Create an order atomically, then notify and dispatch its payment.

    Returns {"order": Order, "payment": dict | None, "paymentError": dict | None}.
    A dispatch failure is reported in paymentError; the order still stands.
    """
    now = datetime.utcnow()
    _validate_request(data, now)

    if data.voucher_id is not None:
        await services.vouchers.ensure_valid(db, data.voucher_id)

    quantities: dict[int, int] = defaultdict(int)
    for item in data.items:
        quantities[item.dish_id] += item.quantity

    async with unit_of_work(db, name="place_order"):
        address_id = await _resolve_address(db, user_id=user_id, data=data)

        lines: list[OrderItem] = []
        for item in data.items:
            dish = await _reserve_stock(db, item.dish_id, item.quantity)
            price = dish.unit_price
            lines.append(OrderItem(
                dish_id=dish.id,
                dish_name=dish.name,
                unit_price=price,
                quantity=item.quantity,
                total_amount=float(_money(price) * item.quantity),
                note=item.note,
            ))

        totals = compute_totals(
            [(line.unit_price, line.quantity) for line in lines],
            shipping_fee=data.shipping_fee,
            discount=data.discount_amount,
        )
        if totals["total_price"] < 0:
            raise ValidationError("Discount exceeds the order total", field="discount_amount")

        order = Order(
            user_id=user_id,
            address_id=address_id,
            delivery_type=data.delivery_type.value,
            order_type=data.order_type.value,
            payment_method=data.payment_method.value,
            status=OrderStatus.ORDER_PLACED.value,
            payment_status=PaymentStatus.UNPAID.value,
            shipping_fee=data.shipping_fee,
            discount_amount=data.discount_amount,
            total_quantity=sum(line.quantity for line in lines),
            voucher_id=data.voucher_id,
            note=data.note,
            receiver=data.receiver,
            receiver_phone=data.receiver_phone,
            delivery_time_type=data.delivery_time_type.value,
            scheduled_time=_as_naive_utc(data.scheduled_time),
            items=lines,
            **totals,
        )
        db.add(order)
        await db.flush()

        await db.execute(
            delete(CartItem)
            .where(CartItem.user_id == user_id, CartItem.dish_id.in_(list(quantities)))
            .execution_options(synchronize_session=False)
        )

        exported = await _export_ingredients(db, order=order, quantities=quantities)

    logger.info(
        f"Order {order.id} placed by user {user_id}: {len(lines)} line(s), "
        f"total {order.total_price:,.0f} ({order.payment_method}), {exported} ingredient export(s)"
    )

    await notify(services.notifier, "order_placed", order)

    payment, payment_error = None, None
    try:
        payment = await payment_service.dispatch_payment(
            db, subject=OrderRef(order.id), services=services, client_ip=client_ip
        )
    except DomainError as e:
        logger.error(f"Payment dispatch failed for order {order.id}: {e.message}")
        payment_error = {"code": e.__class__.__name__, "message": e.message}

    return {"order": order, "payment": payment, "paymentError": payment_error}


# ════════════════════════════════════════════════════════════════════
# Reads
# ════════════════════════════════════════════════════════════════════


async def get_order(
    db: AsyncSession,
    *,
    order_id: int,
    user_id: int | None = None,
    is_staff: bool = False,
) -> Order:
    """Load an order; when user_id is given, non-staff callers must own it."""
    result = await db.execute(select(Order).where(Order.id == order_id))
    order = result.scalar_one_or_none()
    if not order:
        raise NotFoundError("Order", str(order_id))
    if user_id is not None and not is_staff and order.user_id != user_id:
        raise PermissionDeniedError("You do not have access to this order")
    return order


async def list_user_orders(
    db: AsyncSession,
    *,
    user_id: int,
    limit: int = 50,
    offset: int = 0,
) -> list[Order]:
    result = await db.execute(
        select(Order)
        .where(Order.user_id == user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


# ════════════════════════════════════════════════════════════════════
# Status transitions
# ════════════════════════════════════════════════════════════════════


async def _write_status(db: AsyncSession, order: Order, target: OrderStatus, **values) -> None:
    """Conditional status write; zero rows means the order moved under us."""
    result = await db.execute(
        update(Order)
        .where(Order.id == order.id, Order.status == order.status)
        .values(status=target.value, updated_at=datetime.utcnow(), **values)
    )
    if result.rowcount != 1:
        raise ConflictError(
            f"Order {order.id} changed status concurrently",
            details={"order_id": order.id, "expected": order.status},
        )


async def update_order_status(
    db: AsyncSession,
    *,
    order_id: int,
    status: str,
    services: ServiceContext,
) -> Order:
    """Staff-driven transition along the order graph."""
    try:
        target = OrderStatus(status)
    except ValueError:
        raise ValidationError(f"Unknown order status: {status}", field="status") from None

    if target not in ADMIN_SETTABLE_STATUSES:
        raise PermissionDeniedError(f"Status {target.value} cannot be set by staff")

    order = await get_order(db, order_id=order_id)
    ensure_order_transition(order.status, target.value)

    extra = {}
    if target == OrderStatus.DELIVERED:
        if order.payment_status != PaymentStatus.PAID.value:
            raise ValidationError(
                "Order must be paid before it can be marked DELIVERED",
                details={"payment_status": order.payment_status},
            )
        extra["delivered_at"] = datetime.utcnow()

    async with unit_of_work(db, name="update_order_status"):
        await _write_status(db, order, target, **extra)
        if target == OrderStatus.DELIVERED:
            await services.loyalty.accrue_for_order(
                db,
                user_id=order.user_id,
                order_id=order.id,
                amount_spent=order.total_price,
            )

    await db.refresh(order)
    logger.info(f"Order {order_id} -> {target.value}")
    return order


async def cancel_order(
    db: AsyncSession,
    *,
    order_id: int,
    user_id: int,
    is_staff: bool = False,
    reason: str | None = None,
    services: ServiceContext,
) -> Order:
    """Customer (or staff) cancellation; only before the order is confirmed."""
    order = await get_order(db, order_id=order_id, user_id=user_id, is_staff=is_staff)
    if order.status != OrderStatus.ORDER_PLACED.value:
        raise ValidationError(
            f"Only orders in ORDER_PLACED can be cancelled (current: {order.status})",
            details={"status": order.status},
        )
    ensure_order_transition(order.status, OrderStatus.CANCELLED.value)

    reason = reason or "Cancelled by customer"
    async with unit_of_work(db, name="cancel_order"):
        await _write_status(
            db, order, OrderStatus.CANCELLED,
            cancelled_at=datetime.utcnow(), cancelled_reason=reason,
        )

    await db.refresh(order)
    logger.info(f"Order {order_id} cancelled by user {user_id}: {reason}")
    await notify(services.notifier, "order_cancelled", order, reason)
    return order


async def request_return(
    db: AsyncSession,
    *,
    order_id: int,
    user_id: int,
    reason: str,
    now: datetime | None = None,
) -> Order:
    """Return request, accepted within the return window after delivery."""
    now = now or datetime.utcnow()
    order = await get_order(db, order_id=order_id, user_id=user_id)
    ensure_order_transition(order.status, OrderStatus.RETURN_REQUESTED.value)

    if order.delivered_at is None:
        raise ValidationError("Order has no delivery time recorded")

    window = timedelta(minutes=settings.return_window_minutes)
    if now - order.delivered_at > window:
        raise ValidationError(
            f"Return requests are only accepted within {settings.return_window_minutes} minutes of delivery",
            details={"delivered_at": order.delivered_at.isoformat()},
        )

    async with unit_of_work(db, name="request_return"):
        await _write_status(
            db, order, OrderStatus.RETURN_REQUESTED,
            returned_at=now, cancelled_reason=reason,
        )

    await db.refresh(order)
    logger.info(f"Return requested for order {order_id}: {reason}")
    return order
