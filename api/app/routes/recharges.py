"""User-facing recharge endpoints (manual methods and USDT orders)."""
from fastapi import APIRouter, Depends, Query, status

from app.models.user import User
from app.routes.deps import get_current_user, get_recharge_service, get_payment_adapter
from app.schemas.requests import (
    RechargeCreate, RechargeResponse, RechargeList, UsdtOrderCreate,
    UsdtCheckRequest, UsdtCheckResponse,
)
from app.services.payment_adapter import TronGridAdapter
from app.services.recharge_service import RechargeService

router = APIRouter()


@router.post('/request', response_model=RechargeResponse, status_code=status.HTTP_201_CREATED)
async def create_recharge_request(
    data: RechargeCreate,
    user: User = Depends(get_current_user),
    recharges: RechargeService = Depends(get_recharge_service),
):
    """Submit a recharge request. Points are added when an admin approves it."""
    return await recharges.create_request(user.id, data.amount, data.method, data.details)


@router.post('/usdt/create-order', response_model=RechargeResponse, status_code=status.HTTP_201_CREATED)
async def create_usdt_order(
    data: UsdtOrderCreate,
    user: User = Depends(get_current_user),
    recharges: RechargeService = Depends(get_recharge_service),
):
    """Create a USDT (TRC20) order. Pay the exact `amount` before `expires_at`."""
    return await recharges.create_usdt_order(user.id, data.amount)


@router.post('/usdt/check-payment', response_model=UsdtCheckResponse)
async def check_usdt_payment(
    data: UsdtCheckRequest,
    user: User = Depends(get_current_user),
    recharges: RechargeService = Depends(get_recharge_service),
    adapter: TronGridAdapter = Depends(get_payment_adapter),
):
    """Check the chain for the order's payment; auto-approves when found."""
    result = await recharges.check_usdt_payment(user.id, data.request_id, adapter)
    return UsdtCheckResponse(
        status=result.status,
        request=RechargeResponse.model_validate(result.request),
        new_balance=result.new_balance,
    )


@router.get('/history', response_model=RechargeList)
async def get_recharge_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: str | None = None,
    user: User = Depends(get_current_user),
    recharges: RechargeService = Depends(get_recharge_service),
):
    requests, total = await recharges.list_requests(user.id, status, page, limit)
    return RechargeList(
        requests=[RechargeResponse.model_validate(r) for r in requests],
        page=page,
        limit=limit,
        total=total,
    )


@router.post('/{request_id}/cancel', response_model=RechargeResponse)
async def cancel_recharge(
    request_id: str,
    user: User = Depends(get_current_user),
    recharges: RechargeService = Depends(get_recharge_service),
):
    return await recharges.cancel(user.id, request_id)
