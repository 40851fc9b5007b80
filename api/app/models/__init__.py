from app.models.user import User
from app.models.ledger import PointsBalance, PointsTransaction
from app.models.requests import RechargeRequest, WithdrawalRequest
from app.models.notification import Notification

__all__ = [
    'User',
    'PointsBalance',
    'PointsTransaction',
    'RechargeRequest',
    'WithdrawalRequest',
    'Notification',
]
