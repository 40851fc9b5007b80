"""Admin endpoints: awards, adjustments, account status and request review."""
from fastapi import APIRouter, Depends, Query

from app.models.user import User
from app.routes.deps import (
    require_admin, get_ledger_service, get_ledger_queries, get_recharge_service,
    get_withdrawal_service,
)
from app.schemas.ledger import (
    AwardRequest, AdjustRequest, AccountStatusRequest, MutationResponse,
    BalanceResponse, IntegrityReport,
)
from app.schemas.requests import (
    RechargeResponse, RechargeList, WithdrawalResponse, WithdrawalList,
    PendingWithdrawals, ApproveRequest, RejectRequest, CompleteRequest,
)
from app.services.ledger_service import LedgerService, LedgerQueries
from app.services.recharge_service import RechargeService
from app.services.withdrawal_service import WithdrawalService

router = APIRouter()


# ── Points ────────────────────────────────────────────────────────────────


@router.post('/points/award', response_model=MutationResponse)
async def award_points(
    data: AwardRequest,
    admin: User = Depends(require_admin),
    ledger: LedgerService = Depends(get_ledger_service),
):
    result = await ledger.award(admin.id, data.user_id, data.amount, data.reason, data.category)
    return MutationResponse(
        transaction_id=result.transaction_id,
        new_balance=result.new_balance,
        amount=data.amount,
    )


@router.post('/points/adjust', response_model=MutationResponse)
async def adjust_points(
    data: AdjustRequest,
    admin: User = Depends(require_admin),
    ledger: LedgerService = Depends(get_ledger_service),
):
    """Manual correction. Negative deltas cannot push a balance below zero."""
    result = await ledger.admin_adjust(admin.id, data.user_id, data.delta, data.reason)
    return MutationResponse(
        transaction_id=result.transaction_id,
        new_balance=result.new_balance,
        amount=abs(data.delta),
    )


@router.post('/points/{user_id}/status', response_model=BalanceResponse)
async def set_account_status(
    user_id: int,
    data: AccountStatusRequest,
    admin: User = Depends(require_admin),
    ledger: LedgerService = Depends(get_ledger_service),
):
    return await ledger.set_account_status(admin.id, user_id, data.status.value, data.reason)


@router.get('/points/{user_id}/integrity', response_model=IntegrityReport)
async def verify_user_integrity(
    user_id: int,
    admin: User = Depends(require_admin),
    queries: LedgerQueries = Depends(get_ledger_queries),
):
    return await queries.verify_integrity(user_id)


# ── Recharges ─────────────────────────────────────────────────────────────


@router.get('/recharges', response_model=RechargeList)
async def list_recharges(
    status: str | None = None,
    user_id: int | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: User = Depends(require_admin),
    recharges: RechargeService = Depends(get_recharge_service),
):
    requests, total = await recharges.list_requests(user_id, status, page, limit)
    return RechargeList(
        requests=[RechargeResponse.model_validate(r) for r in requests],
        page=page,
        limit=limit,
        total=total,
    )


@router.get('/recharges/dashboard')
async def recharge_dashboard(
    admin: User = Depends(require_admin),
    recharges: RechargeService = Depends(get_recharge_service),
):
    return await recharges.dashboard()


@router.post('/recharges/{request_id}/approve')
async def approve_recharge(
    request_id: str,
    data: ApproveRequest,
    admin: User = Depends(require_admin),
    recharges: RechargeService = Depends(get_recharge_service),
):
    approval = await recharges.approve(admin.id, request_id, data.notes)
    return {
        'success': True,
        'request': RechargeResponse.model_validate(approval.request).model_dump(by_alias=True),
        'points_added': approval.request.total_points,
        'new_balance': approval.result.new_balance,
        'transaction_id': approval.result.transaction_id,
    }


@router.post('/recharges/{request_id}/reject', response_model=RechargeResponse)
async def reject_recharge(
    request_id: str,
    data: RejectRequest,
    admin: User = Depends(require_admin),
    recharges: RechargeService = Depends(get_recharge_service),
):
    return await recharges.reject(admin.id, request_id, data.reason, data.notes)


# ── Withdrawals ───────────────────────────────────────────────────────────


@router.get('/withdrawals', response_model=WithdrawalList)
async def list_withdrawals(
    status: str | None = None,
    user_id: int | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: User = Depends(require_admin),
    withdrawals: WithdrawalService = Depends(get_withdrawal_service),
):
    requests, total = await withdrawals.list_requests(user_id, status, page, limit)
    return WithdrawalList(
        requests=[WithdrawalResponse.model_validate(r) for r in requests],
        page=page,
        limit=limit,
        total=total,
    )


@router.get('/withdrawals/pending', response_model=PendingWithdrawals)
async def pending_withdrawals(
    admin: User = Depends(require_admin),
    withdrawals: WithdrawalService = Depends(get_withdrawal_service),
):
    """Pending withdrawals, oldest first."""
    summary = await withdrawals.pending_summary()
    return PendingWithdrawals(
        requests=[WithdrawalResponse.model_validate(r) for r in summary['requests']],
        count=summary['count'],
        total_amount=summary['total_amount'],
        total_points=summary['total_points'],
    )


@router.get('/withdrawals/stats')
async def withdrawal_stats(
    period: str = Query('week', pattern='^(day|week|month|all)$'),
    admin: User = Depends(require_admin),
    withdrawals: WithdrawalService = Depends(get_withdrawal_service),
):
    return await withdrawals.stats(period)


@router.post('/withdrawals/{request_id}/approve')
async def approve_withdrawal(
    request_id: str,
    data: ApproveRequest,
    admin: User = Depends(require_admin),
    withdrawals: WithdrawalService = Depends(get_withdrawal_service),
):
    """Deduct the points. Fails with INSUFFICIENT_BALANCE if the user spent them meanwhile."""
    approval = await withdrawals.approve(admin.id, request_id, data.notes)
    return {
        'success': True,
        'request': WithdrawalResponse.model_validate(approval.request).model_dump(by_alias=True),
        'points_deducted': approval.request.points_to_deduct,
        'new_balance': approval.result.new_balance,
        'transaction_id': approval.result.transaction_id,
    }


@router.post('/withdrawals/{request_id}/reject', response_model=WithdrawalResponse)
async def reject_withdrawal(
    request_id: str,
    data: RejectRequest,
    admin: User = Depends(require_admin),
    withdrawals: WithdrawalService = Depends(get_withdrawal_service),
):
    return await withdrawals.reject(admin.id, request_id, data.reason, data.notes)


@router.post('/withdrawals/{request_id}/complete', response_model=WithdrawalResponse)
async def complete_withdrawal(
    request_id: str,
    data: CompleteRequest,
    admin: User = Depends(require_admin),
    withdrawals: WithdrawalService = Depends(get_withdrawal_service),
):
    """Mark an approved withdrawal as paid out."""
    return await withdrawals.complete(admin.id, request_id, data.payout_reference)
