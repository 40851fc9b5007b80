from datetime import datetime
from sqlalchemy import String, Boolean, DateTime, BigInteger
from sqlalchemy.orm import Mapped, mapped_column

from app.db.database import Base


class User(Base):
    """Platform user. Only the fields the points ledger touches live here."""

    __tablename__ = 'users'

    id: Mapped[int] = mapped_column(primary_key=True)
    username: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False)

    # Read-optimised mirror of PointsBalance.balance.
    # Owned by the ledger: written only inside a ledger unit of work.
    points_balance: Mapped[int] = mapped_column(BigInteger, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
