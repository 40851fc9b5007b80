"""Shared route dependencies: caller identity and service wiring."""
import httpx
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.db.database import get_db, get_session_factory
from app.models.user import User
from app.services.ledger_service import LedgerService, LedgerQueries
from app.services.notification_service import NotificationService
from app.services.payment_adapter import TronGridAdapter
from app.services.recharge_service import RechargeService
from app.services.transfer_service import TransferService
from app.services.unit_of_work import UnitOfWork, UserLockManager, user_locks
from app.services.withdrawal_service import WithdrawalService


async def get_current_user(
    x_user_id: int | None = Header(None),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the caller from the X-User-Id header (dev auth)."""
    if x_user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Missing X-User-Id header')
    user = await db.get(User, x_user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Unknown user')
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Admin access required')
    return user


def get_lock_manager() -> UserLockManager:
    return user_locks


def get_uow(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    locks: UserLockManager = Depends(get_lock_manager),
) -> UnitOfWork:
    return UnitOfWork(session_factory, locks)


def get_notifications(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> NotificationService:
    return NotificationService(session_factory)


def get_ledger_service(uow: UnitOfWork = Depends(get_uow)) -> LedgerService:
    return LedgerService(uow)


def get_ledger_queries(db: AsyncSession = Depends(get_db)) -> LedgerQueries:
    return LedgerQueries(db)


def get_transfer_service(
    uow: UnitOfWork = Depends(get_uow),
    notifications: NotificationService = Depends(get_notifications),
) -> TransferService:
    return TransferService(uow, notifications)


def get_recharge_service(
    uow: UnitOfWork = Depends(get_uow),
    notifications: NotificationService = Depends(get_notifications),
) -> RechargeService:
    return RechargeService(uow, notifications)


def get_withdrawal_service(
    uow: UnitOfWork = Depends(get_uow),
    notifications: NotificationService = Depends(get_notifications),
) -> WithdrawalService:
    return WithdrawalService(uow, notifications)


async def get_payment_adapter():
    async with httpx.AsyncClient(timeout=settings.trongrid_timeout_seconds) as client:
        yield TronGridAdapter(client)
