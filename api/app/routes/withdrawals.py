"""User-facing withdrawal endpoints."""
from fastapi import APIRouter, Depends, Query, status

from app.models.user import User
from app.routes.deps import get_current_user, get_withdrawal_service
from app.schemas.requests import WithdrawalCreate, WithdrawalResponse, WithdrawalList
from app.services.withdrawal_service import WithdrawalService

router = APIRouter()


@router.post('/request', response_model=WithdrawalResponse, status_code=status.HTTP_201_CREATED)
async def create_withdrawal_request(
    data: WithdrawalCreate,
    user: User = Depends(get_current_user),
    withdrawals: WithdrawalService = Depends(get_withdrawal_service),
):
    """Request a payout. Points are deducted only when an admin approves."""
    return await withdrawals.create_request(
        user.id, data.amount, data.method, data.details, data.points_to_deduct,
    )


@router.get('/history', response_model=WithdrawalList)
async def get_withdrawal_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: str | None = None,
    user: User = Depends(get_current_user),
    withdrawals: WithdrawalService = Depends(get_withdrawal_service),
):
    requests, total = await withdrawals.list_requests(user.id, status, page, limit)
    return WithdrawalList(
        requests=[WithdrawalResponse.model_validate(r) for r in requests],
        page=page,
        limit=limit,
        total=total,
    )


@router.post('/{request_id}/cancel', response_model=WithdrawalResponse)
async def cancel_withdrawal(
    request_id: str,
    user: User = Depends(get_current_user),
    withdrawals: WithdrawalService = Depends(get_withdrawal_service),
):
    return await withdrawals.cancel(user.id, request_id)
