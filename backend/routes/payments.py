"""
Payment endpoints: gateway return paths, manual confirmation, retry.

Return endpoints only verify and extract; the decision is made by
payment_service.apply_gateway_callback, the same routine staff
confirmation funnels into. The browser is then redirected to the client
success/failure page.
"""
import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from deps import CurrentUser, client_ip, get_services, require_staff, require_user
from domain.enums import AttemptStatus, PaymentMethod
from domain.errors import DomainError
from domain.responses import success_response
from models import ChangePaymentMethodRequest, ConfirmPaymentRequest
from services import payment_service
from services.context import ServiceContext

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/payment", tags=["payment"])


def _client_redirect(result: payment_service.ReconcileResult | None, *, error: str | None = None) -> RedirectResponse:
    if result is not None and result.attempt.status == AttemptStatus.PAID.value:
        subject = result.attempt.subject
        query = urlencode({
            "paymentId": result.attempt.id,
            "objectType": subject.object_type.value,
            "objectId": subject.object_id,
        })
        return RedirectResponse(f"{settings.client_base_url}/payment-success?{query}", status_code=302)

    params = {"reason": error or (result.attempt.failure_reason if result else "payment_failed")}
    if result is not None:
        params["paymentId"] = result.attempt.id
    return RedirectResponse(f"{settings.client_base_url}/payment-failed?{urlencode(params)}", status_code=302)


async def _handle_return(
    method: PaymentMethod,
    params: dict,
    db: AsyncSession,
    services: ServiceContext,
) -> RedirectResponse:
    try:
        callback = await services.gateways.get(method).parse_callback(params)
        result = await payment_service.apply_gateway_callback(db, callback=callback, services=services)
    except DomainError as e:
        logger.warning(f"{method.value} return rejected: {e.message}")
        return _client_redirect(None, error=e.message)
    return _client_redirect(result)


# ════════════════════════════════════════════════════════════════════
# Gateway return paths
# ════════════════════════════════════════════════════════════════════


@router.get("/vnpay-return")
async def vnpay_return(
    request: Request,
    db: AsyncSession = Depends(get_db),
    services: ServiceContext = Depends(get_services),
):
    return await _handle_return(PaymentMethod.VNPAY, dict(request.query_params), db, services)


@router.get("/momo-return")
async def momo_return(
    request: Request,
    db: AsyncSession = Depends(get_db),
    services: ServiceContext = Depends(get_services),
):
    return await _handle_return(PaymentMethod.MOMO, dict(request.query_params), db, services)


@router.post("/momo-ipn", status_code=status.HTTP_204_NO_CONTENT)
async def momo_ipn(
    request: Request,
    db: AsyncSession = Depends(get_db),
    services: ServiceContext = Depends(get_services),
):
    """Server-to-server notification from MoMo. Errors surface as non-2xx so MoMo retries."""
    payload = await request.json()
    params = {k: str(v) for k, v in payload.items()}
    callback = await services.gateways.get(PaymentMethod.MOMO).parse_callback(params)
    await payment_service.apply_gateway_callback(db, callback=callback, services=services)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/paypal-return")
async def paypal_return(
    request: Request,
    db: AsyncSession = Depends(get_db),
    services: ServiceContext = Depends(get_services),
):
    return await _handle_return(PaymentMethod.CREDIT_CARD, dict(request.query_params), db, services)


# ════════════════════════════════════════════════════════════════════
# Staff confirmation
# ════════════════════════════════════════════════════════════════════


@router.post("/{attempt_id}/confirm")
async def confirm_payment(
    attempt_id: int,
    body: ConfirmPaymentRequest,
    staff: CurrentUser = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
    services: ServiceContext = Depends(get_services),
):
    result = await payment_service.reconcile_payment_success(
        db,
        attempt_id=attempt_id,
        paid_amount=body.paid_amount,
        provider_txn_ref=body.transaction_code,
        confirmed_by=staff.id,
        services=services,
    )
    return success_response(result.to_dict())


# ════════════════════════════════════════════════════════════════════
# Retry / change method
# ════════════════════════════════════════════════════════════════════


@router.post("/orders/{order_id}/retry")
async def retry_payment(
    order_id: int,
    request: Request,
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    services: ServiceContext = Depends(get_services),
):
    payload = await payment_service.retry_payment(
        db,
        order_id=order_id,
        user_id=user.id,
        is_staff=user.is_staff,
        services=services,
        client_ip=client_ip(request),
    )
    return success_response(payload)


@router.post("/orders/{order_id}/method")
async def change_payment_method(
    order_id: int,
    body: ChangePaymentMethodRequest,
    request: Request,
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    services: ServiceContext = Depends(get_services),
):
    payload = await payment_service.change_payment_method(
        db,
        order_id=order_id,
        new_method=body.payment_method,
        user_id=user.id,
        is_staff=user.is_staff,
        services=services,
        client_ip=client_ip(request),
    )
    return success_response(payload)


@router.post("/reservations/{reservation_id}/pay")
async def pay_reservation_deposit(
    reservation_id: int,
    request: Request,
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    services: ServiceContext = Depends(get_services),
):
    payload = await payment_service.pay_reservation_deposit(
        db,
        reservation_id=reservation_id,
        user_id=user.id,
        is_staff=user.is_staff,
        services=services,
        client_ip=client_ip(request),
    )
    return success_response(payload)
