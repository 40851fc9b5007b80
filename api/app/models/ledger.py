from datetime import datetime
from enum import Enum
from sqlalchemy import (
    String, Integer, BigInteger, Float, ForeignKey, DateTime, JSON, Index,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.database import Base


class AccountStatus(str, Enum):
    """Whether a points account may spend."""
    ACTIVE = 'active'
    FROZEN = 'frozen'
    SUSPENDED = 'suspended'


class Direction(str, Enum):
    CREDIT = 'credit'
    DEBIT = 'debit'


class Category(str, Enum):
    """Why a ledger entry exists."""
    # Incoming
    RECHARGE = 'recharge'
    RECHARGE_APPROVED = 'recharge_approved'
    USDT_RECHARGE_APPROVED = 'usdt_recharge_approved'
    REWARD = 'reward'
    REFUND = 'refund'
    BONUS = 'bonus'

    # User spending
    GIFT = 'gift'
    BOOST = 'boost'
    PREMIUM = 'premium'
    OTHER = 'other'

    # Movements
    POINTS_TRANSFER = 'points_transfer'
    WITHDRAWAL_APPROVED = 'withdrawal_approved'
    ADMIN_ADJUSTMENT = 'admin_adjustment'

    # Legacy request markers (accepted, never written by a mutation)
    RECHARGE_REQUEST = 'recharge_request'
    RECHARGE_REJECTED = 'recharge_rejected'
    RECHARGE_CANCELLED = 'recharge_cancelled'
    WITHDRAWAL_REQUEST = 'withdrawal_request'
    WITHDRAWAL_REJECTED = 'withdrawal_rejected'


SPEND_CATEGORIES = {Category.GIFT, Category.BOOST, Category.PREMIUM, Category.OTHER}

MARKER_CATEGORIES = {
    Category.RECHARGE_REQUEST,
    Category.RECHARGE_REJECTED,
    Category.RECHARGE_CANCELLED,
    Category.WITHDRAWAL_REQUEST,
    Category.WITHDRAWAL_REJECTED,
}


class PointsBalance(Base):
    """One row per user; the single source of truth for spendable points."""

    __tablename__ = 'points_balances'

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey('users.id', ondelete='CASCADE'), unique=True, index=True,
    )

    balance: Mapped[int] = mapped_column(BigInteger, default=0)
    total_earned: Mapped[int] = mapped_column(BigInteger, default=0)
    total_spent: Mapped[int] = mapped_column(BigInteger, default=0)
    total_recharged: Mapped[float] = mapped_column(Float, default=0)

    status: Mapped[str] = mapped_column(String(20), default=AccountStatus.ACTIVE.value)
    freeze_reason: Mapped[str | None] = mapped_column(String(200), default=None)

    # Lifetime stats
    total_transactions: Mapped[int] = mapped_column(Integer, default=0)
    average_recharge: Mapped[float] = mapped_column(Float, default=0)
    last_recharge_amount: Mapped[float | None] = mapped_column(Float, default=None)
    last_recharge_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    first_recharge_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)

    # Bumped on every UPDATE; a concurrent writer that lost the race gets StaleDataError
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow,
    )

    __table_args__ = (
        CheckConstraint('balance >= 0', name='ck_points_balance_non_negative'),
    )
    __mapper_args__ = {'version_id_col': version}

    @property
    def lifetime_stats(self) -> dict:
        return {
            'total_transactions': self.total_transactions,
            'average_recharge': self.average_recharge,
            'last_recharge_amount': self.last_recharge_amount,
            'last_recharge_at': self.last_recharge_at,
            'first_recharge_at': self.first_recharge_at,
        }


class PointsTransaction(Base):
    """Append-only audit log. Every balance change writes exactly one row."""

    __tablename__ = 'points_transactions'

    id: Mapped[int] = mapped_column(primary_key=True)
    transaction_id: Mapped[str] = mapped_column(String(80), unique=True, index=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey('users.id', ondelete='CASCADE'), index=True,
    )

    direction: Mapped[str] = mapped_column(String(10))
    category: Mapped[str] = mapped_column(String(40))

    # Always the positive magnitude; direction carries the sign
    amount: Mapped[int] = mapped_column(BigInteger)
    balance_before: Mapped[int] = mapped_column(BigInteger)
    balance_after: Mapped[int] = mapped_column(BigInteger)

    description: Mapped[str] = mapped_column(String(300))
    details: Mapped[dict] = mapped_column('metadata', JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('ix_points_tx_user_created', 'user_id', 'created_at'),
        Index('ix_points_tx_category_created', 'category', 'created_at'),
        CheckConstraint('amount > 0', name='ck_points_tx_amount_positive'),
    )

    @property
    def signed_amount(self) -> int:
        return self.amount if self.direction == Direction.CREDIT.value else -self.amount
