"""
Order endpoints: placement, reads, status lifecycle.
"""
import logging

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from db_models import Order
from deps import (
    CurrentUser, Pagination, client_ip, get_services, pagination_params, require_staff, require_user,
)
from domain.responses import paginated_response, success_response
from domain.subjects import OrderRef
from models import (
    CancelOrderRequest,
    OrderResponse,
    PaymentAttemptResponse,
    PlaceOrderRequest,
    ReturnRequest,
    UpdateOrderStatusRequest,
)
from services import order_service, payment_service
from services.context import ServiceContext

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/orders", tags=["orders"])


def serialize_order(order: Order) -> dict:
    return OrderResponse.model_validate(order).model_dump(by_alias=True, mode="json")


@router.post("", status_code=status.HTTP_201_CREATED)
async def place_order(
    body: PlaceOrderRequest,
    request: Request,
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    services: ServiceContext = Depends(get_services),
):
    result = await order_service.place_order(
        db,
        user_id=user.id,
        data=body,
        services=services,
        client_ip=client_ip(request),
    )
    return success_response({
        "order": serialize_order(result["order"]),
        "payment": result["payment"],
        "paymentError": result["paymentError"],
    })


@router.get("/me")
async def list_my_orders(
    user: CurrentUser = Depends(require_user),
    page: Pagination = Depends(pagination_params),
    db: AsyncSession = Depends(get_db),
):
    orders = await order_service.list_user_orders(
        db, user_id=user.id, limit=page["limit"], offset=page["offset"]
    )
    return paginated_response(
        [serialize_order(o) for o in orders], limit=page["limit"], offset=page["offset"]
    )


@router.get("/{order_id}")
async def get_order(
    order_id: int,
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    order = await order_service.get_order(
        db, order_id=order_id, user_id=user.id, is_staff=user.is_staff
    )
    attempt = await payment_service.latest_attempt(db, OrderRef(order.id))
    return success_response({
        "order": serialize_order(order),
        "latestPayment": (
            PaymentAttemptResponse.model_validate(attempt).model_dump(by_alias=True, mode="json")
            if attempt else None
        ),
    })


@router.patch("/{order_id}/status")
async def update_order_status(
    order_id: int,
    body: UpdateOrderStatusRequest,
    staff: CurrentUser = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    services: ServiceContext = Depends(get_services),
):
    order = await order_service.update_order_status(
        db, order_id=order_id, status=body.status.value, services=services
    )
    logger.info(f"Staff {staff.id} set order {order_id} to {order.status}")
    return success_response(serialize_order(order))


@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: int,
    body: CancelOrderRequest,
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    services: ServiceContext = Depends(get_services),
):
    order = await order_service.cancel_order(
        db,
        order_id=order_id,
        user_id=user.id,
        is_staff=user.is_staff,
        reason=body.reason,
        services=services,
    )
    return success_response(serialize_order(order))


@router.post("/{order_id}/return")
async def request_return(
    order_id: int,
    body: ReturnRequest,
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    order = await order_service.request_return(
        db, order_id=order_id, user_id=user.id, reason=body.reason
    )
    return success_response(serialize_order(order))
