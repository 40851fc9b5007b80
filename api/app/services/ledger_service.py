import logging
import secrets
import time
from dataclasses import dataclass
from datetime import datetime
from sqlalchemy import select, desc, asc, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import (
    InvalidOperation, InsufficientBalance, AccountSuspended, RecipientNotFound,
)
from app.models.user import User
from app.models.ledger import (
    PointsBalance, PointsTransaction, AccountStatus, Direction, Category,
    SPEND_CATEGORIES, MARKER_CATEGORIES,
)
from app.services.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


def new_transaction_id(prefix: str) -> str:
    """Globally unique, roughly time-ordered id like `spend_1718000000000_a1b2c3d4e5`."""
    return f'{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(5)}'


def validate_mutation(amount: int, category: str) -> Category:
    """Reject bad amounts and categories before any storage is touched."""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidOperation('Amount must be a positive integer', amount=amount)
    try:
        cat = Category(category)
    except ValueError:
        raise InvalidOperation(f'Unknown category: {category}')
    if cat in MARKER_CATEGORIES:
        raise InvalidOperation(f'Category {cat.value} cannot move points')
    return cat


@dataclass
class MutationResult:
    new_balance: int
    balance_before: int
    log_entry_id: int
    transaction_id: str


class BalanceMutator:
    """Session-level debit/credit primitives.

    Must only be called from inside a UnitOfWork: it relies on the caller's
    transaction and locks. Each call mutates exactly one PointsBalance, appends
    exactly one PointsTransaction and refreshes the User mirror.
    """

    async def load_for_update(
        self, session: AsyncSession, user_id: int, create: bool = True,
    ) -> tuple[User, PointsBalance | None]:
        """Re-read the user's balance under a row lock (lazily creating it at 0)."""
        user = await session.get(User, user_id)
        if not user:
            raise RecipientNotFound(f'User {user_id} not found', user_id=user_id)

        result = await session.execute(
            select(PointsBalance)
            .where(PointsBalance.user_id == user_id)
            .with_for_update()
        )
        balance = result.scalar_one_or_none()
        if balance is None and create:
            balance = new_balance_record(user_id)
            session.add(balance)
            await session.flush()
        return user, balance

    async def apply_credit(
        self,
        session: AsyncSession,
        user_id: int,
        amount: int,
        category: str,
        description: str,
        metadata: dict | None = None,
        transaction_id: str | None = None,
        recharge_amount: float | None = None,
    ) -> MutationResult:
        """Add points. Crediting never fails on business grounds."""
        cat = validate_mutation(amount, category)
        user, balance = await self.load_for_update(session, user_id)

        before = balance.balance
        balance.balance += amount
        balance.total_earned += amount
        balance.total_transactions += 1
        if recharge_amount is not None:
            _record_recharge(balance, recharge_amount)

        return await self._append(
            session, user, balance, Direction.CREDIT, cat, amount, before,
            description, metadata, transaction_id,
        )

    async def apply_debit(
        self,
        session: AsyncSession,
        user_id: int,
        amount: int,
        category: str,
        description: str,
        metadata: dict | None = None,
        transaction_id: str | None = None,
        allow_suspended: bool = False,
    ) -> MutationResult:
        """Remove points. Raises InsufficientBalance / AccountSuspended.

        `allow_suspended` is reserved for admin corrections, which must still
        apply to frozen or suspended accounts.
        """
        cat = validate_mutation(amount, category)
        user, balance = await self.load_for_update(session, user_id)

        if balance.status != AccountStatus.ACTIVE.value and not allow_suspended:
            raise AccountSuspended(
                f'Points account is {balance.status}', user_id=user_id, status=balance.status,
            )
        if balance.balance < amount:
            raise InsufficientBalance(
                f'Need {amount} points but only have {balance.balance}',
                required=amount, available=balance.balance,
            )

        before = balance.balance
        balance.balance -= amount
        balance.total_spent += amount
        balance.total_transactions += 1

        return await self._append(
            session, user, balance, Direction.DEBIT, cat, amount, before,
            description, metadata, transaction_id,
        )

    async def _append(
        self,
        session: AsyncSession,
        user: User,
        balance: PointsBalance,
        direction: Direction,
        category: Category,
        amount: int,
        before: int,
        description: str,
        metadata: dict | None,
        transaction_id: str | None,
    ) -> MutationResult:
        entry = PointsTransaction(
            transaction_id=transaction_id or new_transaction_id(direction.value),
            user_id=user.id,
            direction=direction.value,
            category=category.value,
            amount=amount,
            balance_before=before,
            balance_after=balance.balance,
            description=description,
            details=metadata or {},
        )
        session.add(entry)

        # Mirror is refreshed as the trailing step of the same unit
        user.points_balance = balance.balance

        await session.flush()
        return MutationResult(
            new_balance=balance.balance,
            balance_before=before,
            log_entry_id=entry.id,
            transaction_id=entry.transaction_id,
        )


def new_balance_record(user_id: int) -> PointsBalance:
    return PointsBalance(
        user_id=user_id,
        balance=0,
        total_earned=0,
        total_spent=0,
        total_recharged=0,
        total_transactions=0,
        average_recharge=0,
        status=AccountStatus.ACTIVE.value,
    )


def _record_recharge(balance: PointsBalance, recharge_amount: float):
    now = datetime.utcnow()
    balance.total_recharged += recharge_amount
    balance.last_recharge_amount = recharge_amount
    balance.last_recharge_at = now
    if not balance.first_recharge_at:
        balance.first_recharge_at = now
    balance.average_recharge = balance.total_recharged / max(1, balance.total_transactions)


class LedgerService:
    """Handles all points balance operations. Every movement goes through here."""

    def __init__(self, uow: UnitOfWork):
        self.uow = uow
        self.mutator = BalanceMutator()

    async def credit(
        self,
        user_id: int,
        amount: int,
        category: str,
        description: str,
        metadata: dict | None = None,
    ) -> MutationResult:
        validate_mutation(amount, category)

        async def work(session: AsyncSession) -> MutationResult:
            return await self.mutator.apply_credit(
                session, user_id, amount, category, description, metadata,
            )

        result = await self.uow.run([user_id], work)
        logger.info(f'Credited {amount} points ({category}) to user {user_id}, balance {result.new_balance}')
        return result

    async def debit(
        self,
        user_id: int,
        amount: int,
        category: str,
        description: str,
        metadata: dict | None = None,
        allow_suspended: bool = False,
    ) -> MutationResult:
        validate_mutation(amount, category)

        async def work(session: AsyncSession) -> MutationResult:
            return await self.mutator.apply_debit(
                session, user_id, amount, category, description, metadata,
                allow_suspended=allow_suspended,
            )

        result = await self.uow.run([user_id], work)
        logger.info(f'Debited {amount} points ({category}) from user {user_id}, balance {result.new_balance}')
        return result

    async def spend(
        self,
        user_id: int,
        amount: int,
        category: str,
        description: str,
        metadata: dict | None = None,
    ) -> MutationResult:
        """User-initiated spend (gifts, boosts, premium features)."""
        if category not in {c.value for c in SPEND_CATEGORIES}:
            raise InvalidOperation(f'Invalid spending category: {category}')
        if not description or not description.strip():
            raise InvalidOperation('Description is required')
        return await self.debit(user_id, amount, category, description, metadata)

    async def award(
        self,
        admin_id: int,
        target_user_id: int,
        amount: int,
        reason: str,
        category: str = Category.REWARD.value,
        metadata: dict | None = None,
    ) -> MutationResult:
        """Admin/system award."""
        if not reason:
            raise InvalidOperation('Reason is required')
        details = {**(metadata or {}), 'admin_user_id': admin_id, 'notes': reason}
        return await self.credit(
            target_user_id, amount, category, f'Admin Award: {reason}', details,
        )

    async def admin_adjust(
        self, admin_id: int, user_id: int, delta: int, reason: str,
    ) -> MutationResult:
        """Signed manual correction: positive credits, negative debits."""
        if not reason:
            raise InvalidOperation('Reason is required')
        if delta == 0:
            raise InvalidOperation('Adjustment must be non-zero')

        details = {'admin_user_id': admin_id, 'notes': reason}
        description = f'Admin adjustment: {reason}'
        if delta > 0:
            return await self.credit(user_id, delta, Category.ADMIN_ADJUSTMENT.value, description, details)
        return await self.debit(
            user_id, -delta, Category.ADMIN_ADJUSTMENT.value, description, details,
            allow_suspended=True,
        )

    async def set_account_status(
        self, admin_id: int, user_id: int, status: str, reason: str | None = None,
    ) -> PointsBalance:
        """Freeze, suspend or re-activate an account. No log entry: balance is unchanged."""
        try:
            new_status = AccountStatus(status)
        except ValueError:
            raise InvalidOperation(f'Unknown account status: {status}')

        async def work(session: AsyncSession) -> PointsBalance:
            _, balance = await self.mutator.load_for_update(session, user_id)
            balance.status = new_status.value
            balance.freeze_reason = None if new_status == AccountStatus.ACTIVE else reason
            await session.flush()
            return balance

        balance = await self.uow.run([user_id], work)
        logger.info(f'Admin {admin_id} set points account of user {user_id} to {new_status.value}')
        return balance


class LedgerQueries:
    """Read side of the ledger, on a request-scoped session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_balance(self, user_id: int) -> PointsBalance:
        """Current balance record. Users who never transacted get an unsaved zero record."""
        result = await self.db.execute(
            select(PointsBalance).where(PointsBalance.user_id == user_id)
        )
        balance = result.scalar_one_or_none()
        return balance or new_balance_record(user_id)

    async def get_history(
        self,
        user_id: int,
        page: int = 1,
        limit: int = 20,
        category: str | None = None,
        direction: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> tuple[list[PointsTransaction], int]:
        """Get ledger entries for a user, newest first, plus the total match count."""
        filters = [PointsTransaction.user_id == user_id]
        if category:
            filters.append(PointsTransaction.category == category)
        if direction:
            filters.append(PointsTransaction.direction == direction)
        if start_date:
            filters.append(PointsTransaction.created_at >= start_date)
        if end_date:
            filters.append(PointsTransaction.created_at <= end_date)

        total = await self.db.scalar(
            select(func.count()).select_from(PointsTransaction).where(*filters)
        )
        result = await self.db.execute(
            select(PointsTransaction)
            .where(*filters)
            .order_by(desc(PointsTransaction.created_at), desc(PointsTransaction.id))
            .limit(limit)
            .offset((page - 1) * limit)
        )
        return list(result.scalars().all()), total or 0

    async def get_transfer_history(
        self, user_id: int, page: int = 1, limit: int = 20,
    ) -> tuple[list[PointsTransaction], int]:
        return await self.get_history(
            user_id, page, limit, category=Category.POINTS_TRANSFER.value,
        )

    async def get_leaderboard(self, limit: int = 20) -> list[tuple[PointsBalance, User]]:
        """Active accounts ranked by balance."""
        result = await self.db.execute(
            select(PointsBalance, User)
            .join(User, User.id == PointsBalance.user_id)
            .where(PointsBalance.status == AccountStatus.ACTIVE.value)
            .order_by(desc(PointsBalance.balance), asc(PointsBalance.user_id))
            .limit(limit)
        )
        return [(balance, user) for balance, user in result.all()]

    async def verify_integrity(self, user_id: int) -> dict:
        """Replay the log from 0 and compare with the stored balance and mirror."""
        user = await self.db.get(User, user_id)
        if not user:
            raise RecipientNotFound(f'User {user_id} not found', user_id=user_id)

        result = await self.db.execute(
            select(PointsTransaction)
            .where(PointsTransaction.user_id == user_id)
            .order_by(asc(PointsTransaction.id))
        )
        entries = list(result.scalars().all())

        issues = []
        running = 0
        for entry in entries:
            if entry.balance_before != running:
                issues.append(
                    f'{entry.transaction_id}: balance_before {entry.balance_before} != expected {running}'
                )
            if entry.balance_after != entry.balance_before + entry.signed_amount:
                issues.append(
                    f'{entry.transaction_id}: balance_after does not match {entry.direction} of {entry.amount}'
                )
            running = entry.balance_after

        stored = await self.get_balance(user_id)
        if stored.balance != running:
            issues.append(f'stored balance {stored.balance} != replayed {running}')
        if user.points_balance != stored.balance:
            issues.append(f'user mirror {user.points_balance} != stored {stored.balance}')

        if issues:
            logger.warning(f'Points integrity mismatch for user {user_id}: {issues}')

        return {
            'user_id': user_id,
            'status': 'MISMATCH' if issues else 'OK',
            'entry_count': len(entries),
            'replayed_balance': running,
            'stored_balance': stored.balance,
            'mirror_balance': user.points_balance,
            'issues': issues,
        }
