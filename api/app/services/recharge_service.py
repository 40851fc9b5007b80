import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.errors import (
    InvalidOperation, NotPending, PaymentAlreadyClaimed, RequestExpired, RequestNotFound,
)
from app.models.ledger import Category
from app.models.notification import NotificationType
from app.models.requests import (
    RechargeRequest, RechargeMethod, RequestStatus, CancelledBy,
)
from app.services.ledger_service import MutationResult
from app.services.payment_adapter import PaymentConfirmationAdapter
from app.services.request_base import RequestWorkflow, check_minimum, new_request_id

logger = logging.getLogger(__name__)

RECHARGE_METHODS = {m.value for m in RechargeMethod}
USDT_SUFFIX_ATTEMPTS = 20


@dataclass
class RechargeApproval:
    request: RechargeRequest
    result: MutationResult


@dataclass
class UsdtPaymentStatus:
    status: str
    request: RechargeRequest
    new_balance: int | None = None


def usdt_unique_amount(amount: float) -> float:
    """Append a random 0.001000-0.009999 suffix so the on-chain payment is identifiable."""
    suffix = (1000 + secrets.randbelow(9000)) / 1_000_000
    return round(amount + suffix, 6)


class RechargeService(RequestWorkflow):
    """Recharge requests: pending until an admin (or the USDT check) settles them."""

    model = RechargeRequest
    kind = 'recharge'

    async def create_request(
        self,
        user_id: int,
        amount: float,
        method: str,
        details: dict | None = None,
        points_to_add: int | None = None,
        bonus_points: int = 0,
    ) -> RechargeRequest:
        check_minimum(method, amount, settings.recharge_min_amounts, RECHARGE_METHODS)
        points = points_to_add if points_to_add is not None else int(round(amount * settings.points_per_usd))
        if points <= 0:
            raise InvalidOperation('Points to add must be positive', points=points)

        async def work(session: AsyncSession) -> RechargeRequest:
            await self.ensure_no_pending(session, user_id)
            return await self.insert_pending(session, RechargeRequest(
                request_id=new_request_id('RCH'),
                user_id=user_id,
                amount=amount,
                points_to_add=points,
                bonus_points=bonus_points,
                method=method,
                status=RequestStatus.PENDING.value,
                details=details or {},
                extra={'points_per_usd': settings.points_per_usd},
            ))

        request = await self.uow.run([user_id], work)
        logger.info(f'Recharge request {request.request_id}: user {user_id}, ${amount} via {method}, {points} points')
        return request

    async def _unused_usdt_amount(self, session: AsyncSession, amount: float) -> float:
        """Pick a suffixed amount no other pending USDT order is waiting for."""
        for _ in range(USDT_SUFFIX_ATTEMPTS):
            unique_amount = usdt_unique_amount(amount)
            taken = await session.scalar(
                select(RechargeRequest.request_id).where(
                    RechargeRequest.method == RechargeMethod.USDT.value,
                    RechargeRequest.status == RequestStatus.PENDING.value,
                    RechargeRequest.amount == unique_amount,
                )
            )
            if not taken:
                return unique_amount
        raise InvalidOperation('Too many open USDT orders for this amount, please retry', amount=amount)

    async def create_usdt_order(self, user_id: int, amount: float) -> RechargeRequest:
        check_minimum(RechargeMethod.USDT.value, amount, settings.recharge_min_amounts, RECHARGE_METHODS)
        points = int(round(amount * settings.usdt_points_rate))
        now = datetime.utcnow()

        async def work(session: AsyncSession) -> RechargeRequest:
            await self.ensure_no_pending(session, user_id)
            unique_amount = await self._unused_usdt_amount(session, amount)
            return await self.insert_pending(session, RechargeRequest(
                request_id=new_request_id('USDT'),
                user_id=user_id,
                amount=unique_amount,
                points_to_add=points,
                bonus_points=0,
                method=RechargeMethod.USDT.value,
                status=RequestStatus.PENDING.value,
                details={
                    'wallet_address': settings.usdt_receive_wallet,
                    'network': 'TRC20',
                    'contract_address': settings.usdt_contract_address,
                },
                extra={
                    'requested_amount': amount,
                    'unique_amount': unique_amount,
                    'points_rate': settings.usdt_points_rate,
                },
                requested_at=now,
                expires_at=now + timedelta(minutes=settings.usdt_order_expiry_minutes),
            ))

        request = await self.uow.run([user_id], work)
        logger.info(f'USDT order {request.request_id}: user {user_id}, pay {request.amount} USDT for {points} points')
        return request

    async def cancel(self, user_id: int, request_id: str) -> RechargeRequest:
        """User cancels their own pending request."""

        async def work(session: AsyncSession) -> RechargeRequest:
            request = await self.load_for_update(session, request_id, owner_id=user_id)
            request.status = RequestStatus.CANCELLED.value
            request.cancelled_by = CancelledBy.USER.value
            request.cancelled_at = datetime.utcnow()
            return request

        request = await self.uow.run([user_id], work)
        logger.info(f'Recharge {request_id} cancelled by user {user_id}')
        return request

    async def reject(
        self, admin_id: int, request_id: str, reason: str, notes: str | None = None,
    ) -> RechargeRequest:
        if not reason:
            raise InvalidOperation('Rejection reason is required')
        owner = await self.get(request_id)

        async def work(session: AsyncSession) -> RechargeRequest:
            request = await self.load_for_update(session, request_id)
            request.status = RequestStatus.REJECTED.value
            request.rejection_reason = reason
            request.admin_notes = notes
            request.processed_by = admin_id
            request.rejected_at = datetime.utcnow()
            return request

        request = await self.uow.run([owner.user_id], work)
        logger.info(f'Recharge {request_id} rejected by admin {admin_id}: {reason}')
        return request

    async def fail(self, request_id: str, reason: str) -> RechargeRequest:
        """Payment verification failed for good."""
        owner = await self.get(request_id)

        async def work(session: AsyncSession) -> RechargeRequest:
            request = await self.load_for_update(session, request_id)
            request.status = RequestStatus.FAILED.value
            request.rejection_reason = reason
            request.failed_at = datetime.utcnow()
            return request

        request = await self.uow.run([owner.user_id], work)
        logger.warning(f'Recharge {request_id} failed: {reason}')
        return request

    async def _claim_payment(self, session: AsyncSession, request: RechargeRequest, tx_hash: str):
        """Bind an on-chain transfer to this request; a transfer settles one order only."""
        claimed_by = await session.scalar(
            select(RechargeRequest.request_id).where(
                RechargeRequest.payment_tx_hash == tx_hash,
                RechargeRequest.id != request.id,
            )
        )
        if claimed_by:
            raise PaymentAlreadyClaimed(
                'Payment was already used for another order',
                transaction_hash=tx_hash, request_id=claimed_by,
            )
        request.payment_tx_hash = tx_hash
        try:
            await session.flush()
        except IntegrityError as e:
            raise PaymentAlreadyClaimed(
                'Payment was already used for another order', transaction_hash=tx_hash,
            ) from e

    async def approve(
        self,
        admin_id: int | None,
        request_id: str,
        notes: str | None = None,
        proof: dict | None = None,
        category: str = Category.RECHARGE_APPROVED.value,
    ) -> RechargeApproval:
        """Credit the request's points and mark it approved, in one unit.

        A second approval of the same request raises NotPending and credits nothing.
        """
        owner = await self.get(request_id)

        async def work(session: AsyncSession) -> RechargeApproval:
            request = await self.load_for_update(session, request_id)
            tx_hash = (proof or {}).get('transaction_hash')
            if tx_hash:
                await self._claim_payment(session, request, tx_hash)
            result = await self.mutator.apply_credit(
                session,
                request.user_id,
                request.total_points,
                category,
                f'Recharge approved: ${request.amount:.2f} via {request.method}',
                metadata={
                    'request_id': request.request_id,
                    'admin_user_id': admin_id,
                    'amount': request.amount,
                    'method': request.method,
                    'bonus_points': request.bonus_points or 0,
                    'notes': notes,
                },
                transaction_id=f'{request.request_id}_approved',
                recharge_amount=request.amount,
            )
            request.status = RequestStatus.APPROVED.value
            request.approved_at = datetime.utcnow()
            request.processed_by = admin_id
            request.admin_notes = notes
            if proof:
                request.details = {**(request.details or {}), 'payment_proof': proof}
            return RechargeApproval(request=request, result=result)

        approval = await self.uow.run([owner.user_id], work)
        approved_by = f'admin {admin_id}' if admin_id is not None else 'payment check'
        logger.info(
            f'Recharge {request_id} approved by {approved_by}: '
            f'+{approval.request.total_points} points to user {owner.user_id}'
        )

        if self.notifications:
            await self.notifications.notify_after_commit(
                owner.user_id,
                NotificationType.RECHARGE_APPROVED,
                f'Your recharge of ${approval.request.amount:.2f} was approved: '
                f'{approval.request.total_points} points added',
                approval.request.total_points,
            )
        return approval

    async def expire(self, request_id: str, now: datetime | None = None) -> RechargeRequest:
        owner = await self.get(request_id)
        now = now or datetime.utcnow()

        async def work(session: AsyncSession) -> RechargeRequest:
            request = await self.load_for_update(session, request_id)
            request.status = RequestStatus.EXPIRED.value
            request.cancelled_by = CancelledBy.SYSTEM.value
            request.expired_at = now
            return request

        request = await self.uow.run([owner.user_id], work)
        logger.info(f'Recharge {request_id} expired')
        return request

    async def check_usdt_payment(
        self,
        user_id: int,
        request_id: str,
        adapter: PaymentConfirmationAdapter,
    ) -> UsdtPaymentStatus:
        """Look for the on-chain payment of a USDT order and auto-approve it when found."""
        request = await self.get(request_id)
        if request.user_id != user_id:
            raise RequestNotFound('Recharge request not found', request_id=request_id)
        if request.method != RechargeMethod.USDT.value:
            raise InvalidOperation('Not a USDT order', request_id=request_id)

        if request.status == RequestStatus.APPROVED.value:
            return UsdtPaymentStatus(status=request.status, request=request)
        if request.status == RequestStatus.EXPIRED.value:
            raise RequestExpired('Order expired', request_id=request_id)
        if request.status != RequestStatus.PENDING.value:
            raise NotPending(f'Order is already {request.status}', status=request.status)

        now = datetime.utcnow()
        if request.expires_at and now > request.expires_at:
            try:
                await self.expire(request_id, now)
            except NotPending:
                # Settled concurrently; report whatever it became
                request = await self.get(request_id)
                if request.status == RequestStatus.APPROVED.value:
                    return UsdtPaymentStatus(status=request.status, request=request)
            raise RequestExpired('Order expired', request_id=request_id)

        check = await adapter.check_payment_status(request)
        if not check.matched:
            return UsdtPaymentStatus(status=RequestStatus.PENDING.value, request=request)

        try:
            approval = await self.approve(
                None,
                request_id,
                notes='Auto-approved: USDT payment confirmed on chain',
                proof=check.proof,
                category=Category.USDT_RECHARGE_APPROVED.value,
            )
        except NotPending:
            request = await self.get(request_id)
            return UsdtPaymentStatus(status=request.status, request=request)
        except PaymentAlreadyClaimed as e:
            logger.warning(f'USDT order {request_id} matched a transfer already used: {e.details}')
            return UsdtPaymentStatus(status=RequestStatus.PENDING.value, request=request)
        return UsdtPaymentStatus(
            status=RequestStatus.APPROVED.value,
            request=approval.request,
            new_balance=approval.result.new_balance,
        )

    async def expire_overdue(self, now: datetime | None = None) -> int:
        """Expire every pending order past its deadline. Returns how many were expired."""
        now = now or datetime.utcnow()
        async with self.session_factory() as session:
            result = await session.execute(
                select(RechargeRequest.request_id).where(
                    RechargeRequest.status == RequestStatus.PENDING.value,
                    RechargeRequest.expires_at.is_not(None),
                    RechargeRequest.expires_at < now,
                )
            )
            overdue = list(result.scalars().all())

        expired = 0
        for request_id in overdue:
            try:
                await self.expire(request_id, now)
                expired += 1
            except NotPending:
                continue
        if expired:
            logger.info(f'Expired {expired} overdue recharge orders')
        return expired

    async def dashboard(self) -> dict:
        """Per-status counts and totals for the admin dashboard."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(
                    RechargeRequest.status,
                    func.count(RechargeRequest.id),
                    func.coalesce(func.sum(RechargeRequest.amount), 0),
                    func.coalesce(func.sum(RechargeRequest.points_to_add + RechargeRequest.bonus_points), 0),
                ).group_by(RechargeRequest.status)
            )
            rows = result.all()

        by_status = {
            status: {'count': count, 'total_amount': float(total), 'total_points': int(points)}
            for status, count, total, points in rows
        }
        return {
            'by_status': by_status,
            'total_requests': sum(s['count'] for s in by_status.values()),
            'pending_count': by_status.get(RequestStatus.PENDING.value, {}).get('count', 0),
            'approved_amount': by_status.get(RequestStatus.APPROVED.value, {}).get('total_amount', 0.0),
        }
