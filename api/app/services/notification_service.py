"""Post-commit user notifications.

Notifications are side effects of committed ledger changes. They are written in
their own short transaction after the ledger unit has committed, so a failure
here can never roll back a balance change.
"""
import logging
from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.notification import Notification, NotificationType
from app.services.ws_manager import ConnectionManager, manager as ws_manager

logger = logging.getLogger(__name__)


class NotificationService:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        connections: ConnectionManager | None = None,
    ):
        self.session_factory = session_factory
        self.connections = connections or ws_manager

    async def notify(
        self,
        user_id: int,
        type: NotificationType,
        message: str,
        points_amount: int | None = None,
    ) -> Notification:
        """Persist a notification and push it to the user's live connections."""
        async with self.session_factory() as session:
            async with session.begin():
                notification = Notification(
                    user_id=user_id,
                    type=type.value,
                    message=message,
                    points_amount=points_amount,
                    is_read=False,
                )
                session.add(notification)

        await self.connections.send_to_user(user_id, {
            'type': 'notification',
            'notification': {
                'id': notification.id,
                'type': notification.type,
                'message': notification.message,
                'points_amount': notification.points_amount,
                'created_at': notification.created_at.isoformat(),
            },
        })
        return notification

    async def notify_after_commit(
        self,
        user_id: int,
        type: NotificationType,
        message: str,
        points_amount: int | None = None,
    ) -> Notification | None:
        """Best-effort notify: failures are logged, never raised."""
        try:
            return await self.notify(user_id, type, message, points_amount)
        except Exception as e:
            logger.error(f'Failed to notify user {user_id} ({type.value}): {e}', exc_info=True)
            return None


async def list_notifications(
    db: AsyncSession, user_id: int, limit: int = 50, unread_only: bool = False,
) -> list[Notification]:
    query = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        query = query.where(Notification.is_read == False)  # noqa: E712
    result = await db.execute(
        query.order_by(desc(Notification.created_at), desc(Notification.id)).limit(limit)
    )
    return list(result.scalars().all())
