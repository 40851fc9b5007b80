from datetime import datetime
from pydantic import AliasChoices, BaseModel, Field


class RechargeCreate(BaseModel):
    amount: float = Field(..., gt=0, allow_inf_nan=False, description='USD amount')
    method: str = 'bank'
    details: dict = Field(default_factory=dict)


class UsdtOrderCreate(BaseModel):
    amount: float = Field(..., gt=0, allow_inf_nan=False, description='USDT amount before the unique suffix')


class UsdtCheckRequest(BaseModel):
    request_id: str


class RechargeResponse(BaseModel):
    """Recharge request as seen by its owner and admins."""
    request_id: str
    user_id: int
    amount: float
    points_to_add: int
    bonus_points: int
    method: str
    status: str
    details: dict
    extra: dict = Field(
        default_factory=dict,
        validation_alias=AliasChoices('extra', 'metadata'),
        serialization_alias='metadata',
    )
    rejection_reason: str | None
    admin_notes: str | None
    requested_at: datetime
    expires_at: datetime | None
    approved_at: datetime | None

    class Config:
        from_attributes = True


class UsdtCheckResponse(BaseModel):
    status: str
    request: RechargeResponse
    new_balance: int | None = None


class WithdrawalCreate(BaseModel):
    amount: float = Field(..., gt=0, allow_inf_nan=False, description='USD amount')
    method: str
    details: dict = Field(default_factory=dict)
    points_to_deduct: int | None = Field(None, gt=0)


class WithdrawalResponse(BaseModel):
    request_id: str
    user_id: int
    amount: float
    points_to_deduct: int
    method: str
    status: str
    details: dict
    extra: dict = Field(
        default_factory=dict,
        validation_alias=AliasChoices('extra', 'metadata'),
        serialization_alias='metadata',
    )
    rejection_reason: str | None
    admin_notes: str | None
    requested_at: datetime
    approved_at: datetime | None
    completed_at: datetime | None

    class Config:
        from_attributes = True


class RequestPage(BaseModel):
    page: int
    limit: int
    total: int


class RechargeList(RequestPage):
    requests: list[RechargeResponse]


class WithdrawalList(RequestPage):
    requests: list[WithdrawalResponse]


class PendingWithdrawals(BaseModel):
    requests: list[WithdrawalResponse]
    count: int
    total_amount: float
    total_points: int


class ApproveRequest(BaseModel):
    notes: str | None = Field(None, max_length=500)


class RejectRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=300)
    notes: str | None = Field(None, max_length=500)


class CompleteRequest(BaseModel):
    payout_reference: str | None = Field(None, max_length=200)
