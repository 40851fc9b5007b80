"""Points balance, history, spending and transfers."""
import math
from datetime import datetime
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.database import get_db
from app.models.ledger import Direction
from app.models.user import User
from app.routes.deps import (
    get_current_user, get_ledger_service, get_ledger_queries, get_transfer_service,
)
from app.schemas.ledger import (
    BalanceResponse, HistoryResponse, LedgerEntry, SpendRequest, MutationResponse,
    TransferRequest, TransferResponse, LeaderboardEntry, IntegrityReport,
    NotificationResponse,
)
from app.services.ledger_service import LedgerService, LedgerQueries
from app.services.notification_service import list_notifications
from app.services.transfer_service import TransferService

router = APIRouter()


def _history_page(entries, total: int, page: int, limit: int) -> HistoryResponse:
    return HistoryResponse(
        entries=[LedgerEntry.model_validate(e) for e in entries],
        page=page,
        limit=limit,
        total=total,
        pages=math.ceil(total / limit) if total else 0,
    )


@router.get('/balance', response_model=BalanceResponse)
async def get_balance(
    user: User = Depends(get_current_user),
    queries: LedgerQueries = Depends(get_ledger_queries),
):
    """Get the caller's points balance and lifetime stats."""
    return await queries.get_balance(user.id)


@router.get('/history', response_model=HistoryResponse)
async def get_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    category: str | None = None,
    direction: Direction | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    user: User = Depends(get_current_user),
    queries: LedgerQueries = Depends(get_ledger_queries),
):
    """Paginated ledger history, newest first."""
    entries, total = await queries.get_history(
        user.id, page, limit,
        category=category,
        direction=direction.value if direction else None,
        start_date=start_date,
        end_date=end_date,
    )
    return _history_page(entries, total, page, limit)


@router.post('/spend', response_model=MutationResponse)
async def spend_points(
    data: SpendRequest,
    user: User = Depends(get_current_user),
    ledger: LedgerService = Depends(get_ledger_service),
):
    """Spend points on gifts, boosts or premium features."""
    result = await ledger.spend(user.id, data.amount, data.category, data.description, data.metadata)
    return MutationResponse(
        transaction_id=result.transaction_id,
        new_balance=result.new_balance,
        amount=data.amount,
    )


@router.post('/transfer', response_model=TransferResponse)
async def transfer_points(
    data: TransferRequest,
    user: User = Depends(get_current_user),
    transfers: TransferService = Depends(get_transfer_service),
):
    """Send points to another user by id, username or email."""
    result = await transfers.transfer(user.id, data.recipient, data.amount, data.message)
    return TransferResponse(
        transfer_id=result.transfer_id,
        amount=result.amount,
        recipient_id=result.recipient_id,
        recipient_username=result.recipient_username,
        new_balance=result.sender_new_balance,
    )


@router.get('/transfer/history', response_model=HistoryResponse)
async def get_transfer_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    queries: LedgerQueries = Depends(get_ledger_queries),
):
    entries, total = await queries.get_transfer_history(user.id, page, limit)
    return _history_page(entries, total, page, limit)


@router.get('/leaderboard', response_model=list[LeaderboardEntry])
async def get_leaderboard(
    limit: int = Query(20, ge=1, le=100),
    queries: LedgerQueries = Depends(get_ledger_queries),
):
    """Top balances among active accounts."""
    rows = await queries.get_leaderboard(limit)
    return [
        LeaderboardEntry(
            rank=i + 1,
            user_id=balance.user_id,
            username=u.username,
            balance=balance.balance,
            total_earned=balance.total_earned,
        )
        for i, (balance, u) in enumerate(rows)
    ]


@router.get('/integrity', response_model=IntegrityReport)
async def verify_integrity(
    user: User = Depends(get_current_user),
    queries: LedgerQueries = Depends(get_ledger_queries),
):
    """Replay the caller's ledger and compare with the stored balance."""
    return await queries.verify_integrity(user.id)


@router.get('/notifications', response_model=list[NotificationResponse])
async def get_notifications(
    limit: int = Query(50, ge=1, le=200),
    unread_only: bool = False,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await list_notifications(db, user.id, limit, unread_only)
