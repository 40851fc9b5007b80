from datetime import datetime
from pydantic import AliasChoices, BaseModel, Field

from app.models.ledger import AccountStatus


class LedgerEntry(BaseModel):
    """Single ledger entry response."""
    id: int
    transaction_id: str
    user_id: int
    direction: str
    category: str
    amount: int
    balance_before: int
    balance_after: int
    description: str
    details: dict = Field(
        default_factory=dict,
        validation_alias=AliasChoices('details', 'metadata'),
        serialization_alias='metadata',
    )
    created_at: datetime

    class Config:
        from_attributes = True


class HistoryResponse(BaseModel):
    entries: list[LedgerEntry]
    page: int
    limit: int
    total: int
    pages: int


class LifetimeStats(BaseModel):
    total_transactions: int = 0
    average_recharge: float = 0
    last_recharge_amount: float | None = None
    last_recharge_at: datetime | None = None
    first_recharge_at: datetime | None = None


class BalanceResponse(BaseModel):
    """User points balance summary."""
    user_id: int
    balance: int
    total_earned: int
    total_spent: int
    total_recharged: float
    status: str
    lifetime_stats: LifetimeStats

    class Config:
        from_attributes = True


class SpendRequest(BaseModel):
    amount: int = Field(..., gt=0)
    category: str
    description: str = Field(..., min_length=1, max_length=300)
    metadata: dict | None = None


class MutationResponse(BaseModel):
    success: bool = True
    transaction_id: str
    new_balance: int
    amount: int


class TransferRequest(BaseModel):
    recipient: int | str = Field(..., description='User id, username or email')
    amount: int = Field(..., gt=0)
    message: str | None = Field(None, max_length=200)


class TransferResponse(BaseModel):
    success: bool = True
    transfer_id: str
    amount: int
    recipient_id: int
    recipient_username: str
    new_balance: int


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: int
    username: str
    balance: int
    total_earned: int


class AwardRequest(BaseModel):
    user_id: int
    amount: int = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=200)
    category: str = 'reward'


class AdjustRequest(BaseModel):
    user_id: int
    delta: int = Field(..., description='Positive credits, negative debits')
    reason: str = Field(..., min_length=1, max_length=200)


class AccountStatusRequest(BaseModel):
    status: AccountStatus
    reason: str | None = Field(None, max_length=200)


class IntegrityReport(BaseModel):
    user_id: int
    status: str
    entry_count: int
    replayed_balance: int
    stored_balance: int
    mirror_balance: int
    issues: list[str]


class NotificationResponse(BaseModel):
    id: int
    type: str
    message: str
    points_amount: int | None
    is_read: bool
    created_at: datetime

    class Config:
        from_attributes = True
