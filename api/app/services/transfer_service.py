import logging
import secrets
import time
from dataclasses import dataclass
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import InvalidOperation, RecipientNotFound
from app.models.user import User
from app.models.ledger import Category
from app.models.notification import NotificationType
from app.services.ledger_service import BalanceMutator
from app.services.notification_service import NotificationService
from app.services.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


@dataclass
class TransferResult:
    transfer_id: str
    sender_new_balance: int
    recipient_id: int
    recipient_username: str
    amount: int


class TransferService:
    """Moves points between two users as a single atomic unit."""

    def __init__(
        self,
        uow: UnitOfWork,
        notifications: NotificationService | None = None,
    ):
        self.uow = uow
        self.session_factory = uow.session_factory
        self.mutator = BalanceMutator()
        self.notifications = notifications

    async def resolve_recipient(self, recipient: int | str) -> User:
        """Find a user by id, username or email.

        A digit string is tried as an id first and then as a username.
        """
        async with self.session_factory() as session:
            user = None
            if isinstance(recipient, int) or recipient.isdigit():
                user = await session.get(User, int(recipient))
            if not user and isinstance(recipient, str):
                result = await session.execute(
                    select(User).where(or_(User.username == recipient, User.email == recipient))
                )
                user = result.scalars().first()
        if not user:
            raise RecipientNotFound('Recipient not found', recipient=str(recipient))
        return user

    async def transfer(
        self,
        from_user_id: int,
        recipient: int | str,
        amount: int,
        message: str | None = None,
    ) -> TransferResult:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidOperation('Transfer amount must be a positive integer', amount=amount)
        if isinstance(recipient, int) and recipient == from_user_id:
            raise InvalidOperation('Cannot transfer points to yourself')

        to_user = await self.resolve_recipient(recipient)
        if to_user.id == from_user_id:
            raise InvalidOperation('Cannot transfer points to yourself')

        transfer_id = f'transfer_{int(time.time() * 1000)}_{secrets.token_hex(5)}'
        note = message or ''

        async def work(session: AsyncSession) -> TransferResult:
            sender = await session.get(User, from_user_id)
            if not sender:
                raise RecipientNotFound(f'User {from_user_id} not found', user_id=from_user_id)

            # Row locks in id order, same as the in-process locks
            for uid in sorted({from_user_id, to_user.id}):
                await self.mutator.load_for_update(session, uid)

            debit = await self.mutator.apply_debit(
                session,
                from_user_id,
                amount,
                Category.POINTS_TRANSFER.value,
                f'Points transfer to {to_user.username}',
                metadata={
                    'transfer_id': transfer_id,
                    'recipient_id': to_user.id,
                    'recipient_username': to_user.username,
                    'message': note,
                },
                transaction_id=f'{transfer_id}_out',
            )
            await self.mutator.apply_credit(
                session,
                to_user.id,
                amount,
                Category.POINTS_TRANSFER.value,
                f'Points received from {sender.username}',
                metadata={
                    'transfer_id': transfer_id,
                    'sender_id': from_user_id,
                    'sender_username': sender.username,
                    'message': note,
                },
                transaction_id=f'{transfer_id}_in',
            )
            return TransferResult(
                transfer_id=transfer_id,
                sender_new_balance=debit.new_balance,
                recipient_id=to_user.id,
                recipient_username=to_user.username,
                amount=amount,
            )

        result = await self.uow.run([from_user_id, to_user.id], work)
        logger.info(f'Transfer {transfer_id}: {amount} points from user {from_user_id} to user {to_user.id}')

        if self.notifications:
            suffix = f' with message: "{note}"' if note else ''
            await self.notifications.notify_after_commit(
                to_user.id,
                NotificationType.POINTS_TRANSFER_RECEIVED,
                f'You received {amount} points{suffix}',
                amount,
            )
            await self.notifications.notify_after_commit(
                from_user_id,
                NotificationType.POINTS_TRANSFER_SENT,
                f'You sent {amount} points to {to_user.username}',
                amount,
            )
        return result
