from datetime import datetime
from enum import Enum
from sqlalchemy import String, BigInteger, Boolean, ForeignKey, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.db.database import Base


class NotificationType(str, Enum):
    POINTS_TRANSFER_SENT = 'points_transfer_sent'
    POINTS_TRANSFER_RECEIVED = 'points_transfer_received'
    RECHARGE_APPROVED = 'recharge_approved'
    WITHDRAWAL_APPROVED = 'withdrawal_approved'
    WITHDRAWAL_REJECTED = 'withdrawal_rejected'


class Notification(Base):
    """In-app notification. Written after a ledger commit, never inside it."""

    __tablename__ = 'notifications'

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'))
    type: Mapped[str] = mapped_column(String(40))
    message: Mapped[str] = mapped_column(String(300))
    points_amount: Mapped[int | None] = mapped_column(BigInteger, default=None)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('ix_notification_user_created', 'user_id', 'created_at'),
    )
