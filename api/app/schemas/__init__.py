from app.schemas.user import UserCreate, UserResponse, UserBrief
from app.schemas.ledger import (
    LedgerEntry,
    BalanceResponse,
    HistoryResponse,
    TransferRequest,
    TransferResponse,
)
from app.schemas.requests import (
    RechargeCreate,
    RechargeResponse,
    WithdrawalCreate,
    WithdrawalResponse,
)

__all__ = [
    'UserCreate',
    'UserResponse',
    'UserBrief',
    'LedgerEntry',
    'BalanceResponse',
    'HistoryResponse',
    'TransferRequest',
    'TransferResponse',
    'RechargeCreate',
    'RechargeResponse',
    'WithdrawalCreate',
    'WithdrawalResponse',
]
