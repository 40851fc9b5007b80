"""Recharge and withdrawal request models.

Both follow the same lifecycle: created `pending` by the user, then moved to a
terminal state by the user (cancel), an admin (approve / reject) or the system
(fail / expire). Balance effects only ever happen on approval.
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import (
    String, BigInteger, Float, ForeignKey, DateTime, JSON, Index, text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.database import Base


class RequestStatus(str, Enum):
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'
    CANCELLED = 'cancelled'
    FAILED = 'failed'
    EXPIRED = 'expired'
    COMPLETED = 'completed'  # withdrawals only: payout sent after approval


class RechargeMethod(str, Enum):
    BANK = 'bank'
    CARD = 'card'
    PAYPAL = 'paypal'
    APPLE = 'apple'
    USDT = 'usdt'


class WithdrawalMethod(str, Enum):
    PAYPAL = 'paypal'
    BANK = 'bank'
    CARD = 'card'
    USDT = 'usdt'


class CancelledBy(str, Enum):
    USER = 'user'
    ADMIN = 'admin'
    SYSTEM = 'system'


_PENDING_ONLY = text("status = 'pending'")


class RechargeRequest(Base):
    """User request to convert an external payment into points."""

    __tablename__ = 'recharge_requests'

    id: Mapped[int] = mapped_column(primary_key=True)
    request_id: Mapped[str] = mapped_column(String(60), unique=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'))

    amount: Mapped[float] = mapped_column(Float)
    points_to_add: Mapped[int] = mapped_column(BigInteger)
    bonus_points: Mapped[int] = mapped_column(BigInteger, default=0)
    method: Mapped[str] = mapped_column(String(20), default=RechargeMethod.BANK.value)
    status: Mapped[str] = mapped_column(String(20), default=RequestStatus.PENDING.value)

    # Proof of payment (payer info, bank reference, wallet, tx hash ...)
    details: Mapped[dict] = mapped_column(JSON, default=dict)
    # Exchange rate, gateway, order references
    extra: Mapped[dict] = mapped_column('metadata', JSON, default=dict)
    # On-chain transfer that settled a USDT order; each one pays for one order only
    payment_tx_hash: Mapped[str | None] = mapped_column(String(100), default=None)

    rejection_reason: Mapped[str | None] = mapped_column(String(300), default=None)
    admin_notes: Mapped[str | None] = mapped_column(String(500), default=None)
    cancelled_by: Mapped[str | None] = mapped_column(String(10), default=None)
    processed_by: Mapped[int | None] = mapped_column(BigInteger, default=None)

    requested_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    failed_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    expired_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow,
    )

    __table_args__ = (
        Index('ix_recharge_user_status', 'user_id', 'status'),
        Index('ix_recharge_status_requested', 'status', 'requested_at'),
        Index('uq_recharge_payment_tx_hash', 'payment_tx_hash', unique=True),
        Index(
            'uq_recharge_one_pending_per_user', 'user_id', unique=True,
            postgresql_where=_PENDING_ONLY, sqlite_where=_PENDING_ONLY,
        ),
    )

    @property
    def total_points(self) -> int:
        return self.points_to_add + (self.bonus_points or 0)


class WithdrawalRequest(Base):
    """User request to convert points into an external payout."""

    __tablename__ = 'withdrawal_requests'

    id: Mapped[int] = mapped_column(primary_key=True)
    request_id: Mapped[str] = mapped_column(String(60), unique=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'))

    amount: Mapped[float] = mapped_column(Float)  # USD
    points_to_deduct: Mapped[int] = mapped_column(BigInteger)
    method: Mapped[str] = mapped_column(String(20))
    status: Mapped[str] = mapped_column(String(20), default=RequestStatus.PENDING.value)

    # Payout destination (paypal email, bank account, wallet address ...)
    details: Mapped[dict] = mapped_column(JSON, default=dict)
    # Balance snapshot at request time, exchange rate, payout reference
    extra: Mapped[dict] = mapped_column('metadata', JSON, default=dict)

    rejection_reason: Mapped[str | None] = mapped_column(String(300), default=None)
    admin_notes: Mapped[str | None] = mapped_column(String(500), default=None)
    approved_by: Mapped[int | None] = mapped_column(BigInteger, default=None)
    rejected_by: Mapped[int | None] = mapped_column(BigInteger, default=None)
    cancelled_by: Mapped[str | None] = mapped_column(String(10), default=None)

    requested_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow,
    )

    __table_args__ = (
        Index('ix_withdrawal_user_status', 'user_id', 'status'),
        Index('ix_withdrawal_status_requested', 'status', 'requested_at'),
        Index(
            'uq_withdrawal_one_pending_per_user', 'user_id', unique=True,
            postgresql_where=_PENDING_ONLY, sqlite_where=_PENDING_ONLY,
        ),
    )
