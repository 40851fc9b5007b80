import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from sqlalchemy import select, func, asc
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.errors import InvalidOperation
from app.models.ledger import PointsBalance, Category
from app.models.notification import NotificationType
from app.models.requests import (
    WithdrawalRequest, WithdrawalMethod, RequestStatus, CancelledBy,
)
from app.services.ledger_service import MutationResult
from app.services.request_base import RequestWorkflow, check_minimum, new_request_id

logger = logging.getLogger(__name__)

WITHDRAWAL_METHODS = {m.value for m in WithdrawalMethod}

STATS_PERIODS = {
    'day': timedelta(days=1),
    'week': timedelta(days=7),
    'month': timedelta(days=30),
    'all': None,
}

URGENT_AFTER = timedelta(hours=24)


@dataclass
class WithdrawalApproval:
    request: WithdrawalRequest
    result: MutationResult


class WithdrawalService(RequestWorkflow):
    """Withdrawal requests. Points only leave the balance when an admin approves."""

    model = WithdrawalRequest
    kind = 'withdrawal'

    async def create_request(
        self,
        user_id: int,
        amount: float,
        method: str,
        details: dict | None = None,
        points_to_deduct: int | None = None,
    ) -> WithdrawalRequest:
        """Create a pending withdrawal. The balance is checked again at approval, not here."""
        check_minimum(method, amount, settings.withdrawal_min_amounts, WITHDRAWAL_METHODS)
        points = points_to_deduct if points_to_deduct is not None else int(round(amount * settings.points_per_usd))
        if points <= 0:
            raise InvalidOperation('Points to deduct must be positive', points=points)

        async def work(session: AsyncSession) -> WithdrawalRequest:
            await self.ensure_no_pending(session, user_id)
            snapshot = await session.scalar(
                select(PointsBalance.balance).where(PointsBalance.user_id == user_id)
            )
            return await self.insert_pending(session, WithdrawalRequest(
                request_id=new_request_id('WD'),
                user_id=user_id,
                amount=amount,
                points_to_deduct=points,
                method=method,
                status=RequestStatus.PENDING.value,
                details=details or {},
                extra={
                    'balance_at_request': snapshot or 0,
                    'points_per_usd': settings.points_per_usd,
                },
            ))

        request = await self.uow.run([user_id], work)
        logger.info(f'Withdrawal request {request.request_id}: user {user_id}, ${amount} via {method}, {points} points')
        return request

    async def cancel(self, user_id: int, request_id: str) -> WithdrawalRequest:

        async def work(session: AsyncSession) -> WithdrawalRequest:
            request = await self.load_for_update(session, request_id, owner_id=user_id)
            request.status = RequestStatus.CANCELLED.value
            request.cancelled_by = CancelledBy.USER.value
            request.cancelled_at = datetime.utcnow()
            return request

        request = await self.uow.run([user_id], work)
        logger.info(f'Withdrawal {request_id} cancelled by user {user_id}')
        return request

    async def reject(
        self, admin_id: int, request_id: str, reason: str, notes: str | None = None,
    ) -> WithdrawalRequest:
        if not reason:
            raise InvalidOperation('Rejection reason is required')
        owner = await self.get(request_id)

        async def work(session: AsyncSession) -> WithdrawalRequest:
            request = await self.load_for_update(session, request_id)
            request.status = RequestStatus.REJECTED.value
            request.rejection_reason = reason
            request.admin_notes = notes
            request.rejected_by = admin_id
            request.rejected_at = datetime.utcnow()
            return request

        request = await self.uow.run([owner.user_id], work)
        logger.info(f'Withdrawal {request_id} rejected by admin {admin_id}: {reason}')

        if self.notifications:
            await self.notifications.notify_after_commit(
                owner.user_id,
                NotificationType.WITHDRAWAL_REJECTED,
                f'Your withdrawal request of ${request.amount:.2f} has been rejected. Reason: {reason}',
            )
        return request

    async def approve(
        self, admin_id: int, request_id: str, notes: str | None = None,
    ) -> WithdrawalApproval:
        """Debit the points and mark the request approved, in one unit.

        InsufficientBalance / AccountSuspended abort the unit; the request stays pending.
        """
        owner = await self.get(request_id)

        async def work(session: AsyncSession) -> WithdrawalApproval:
            request = await self.load_for_update(session, request_id)
            result = await self.mutator.apply_debit(
                session,
                request.user_id,
                request.points_to_deduct,
                Category.WITHDRAWAL_APPROVED.value,
                f'Withdrawal approved: ${request.amount:.2f} via {request.method}',
                metadata={
                    'request_id': request.request_id,
                    'admin_user_id': admin_id,
                    'amount': request.amount,
                    'method': request.method,
                    'notes': notes,
                },
                transaction_id=f'{request.request_id}_approved',
            )
            request.status = RequestStatus.APPROVED.value
            request.approved_by = admin_id
            request.approved_at = datetime.utcnow()
            request.admin_notes = notes
            return WithdrawalApproval(request=request, result=result)

        approval = await self.uow.run([owner.user_id], work)
        logger.info(
            f'Withdrawal {request_id} approved by admin {admin_id}: '
            f'-{approval.request.points_to_deduct} points from user {owner.user_id}'
        )

        if self.notifications:
            await self.notifications.notify_after_commit(
                owner.user_id,
                NotificationType.WITHDRAWAL_APPROVED,
                f'Your withdrawal request of ${approval.request.amount:.2f} has been approved',
                approval.request.points_to_deduct,
            )
        return approval

    async def complete(
        self, admin_id: int, request_id: str, payout_reference: str | None = None,
    ) -> WithdrawalRequest:
        """Record that the external payout was sent. No balance effect."""
        owner = await self.get(request_id)

        async def work(session: AsyncSession) -> WithdrawalRequest:
            request = await self.load_for_update(session, request_id, expected=RequestStatus.APPROVED)
            request.status = RequestStatus.COMPLETED.value
            request.completed_at = datetime.utcnow()
            request.extra = {
                **(request.extra or {}),
                'payout_reference': payout_reference,
                'completed_by': admin_id,
            }
            return request

        request = await self.uow.run([owner.user_id], work)
        logger.info(f'Withdrawal {request_id} payout completed by admin {admin_id}')
        return request

    async def pending_summary(self) -> dict:
        """Pending requests, oldest first, with count and totals."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(WithdrawalRequest)
                .where(WithdrawalRequest.status == RequestStatus.PENDING.value)
                .order_by(asc(WithdrawalRequest.requested_at))
            )
            requests = list(result.scalars().all())

        return {
            'requests': requests,
            'count': len(requests),
            'total_amount': sum(r.amount for r in requests),
            'total_points': sum(r.points_to_deduct for r in requests),
        }

    async def stats(self, period: str = 'week', now: datetime | None = None) -> dict:
        if period not in STATS_PERIODS:
            raise InvalidOperation(f'Invalid period: {period}', allowed=list(STATS_PERIODS))
        now = now or datetime.utcnow()
        window = STATS_PERIODS[period]

        filters = []
        if window is not None:
            filters.append(WithdrawalRequest.requested_at >= now - window)

        async with self.session_factory() as session:
            result = await session.execute(
                select(
                    WithdrawalRequest.status,
                    WithdrawalRequest.method,
                    func.count(WithdrawalRequest.id),
                    func.coalesce(func.sum(WithdrawalRequest.amount), 0),
                )
                .where(*filters)
                .group_by(WithdrawalRequest.status, WithdrawalRequest.method)
            )
            rows = result.all()

            urgent = await session.scalar(
                select(func.count(WithdrawalRequest.id)).where(
                    WithdrawalRequest.status == RequestStatus.PENDING.value,
                    WithdrawalRequest.requested_at < now - URGENT_AFTER,
                )
            )

        by_status: dict[str, dict] = {}
        by_method: dict[str, dict] = {}
        for status, method, count, total in rows:
            for bucket, key in ((by_status, status), (by_method, method)):
                entry = bucket.setdefault(key, {'count': 0, 'total_amount': 0.0})
                entry['count'] += count
                entry['total_amount'] += float(total)

        return {
            'period': period,
            'by_status': by_status,
            'by_method': by_method,
            'total_requests': sum(e['count'] for e in by_status.values()),
            'urgent_pending': urgent or 0,
        }
