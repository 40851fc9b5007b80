"""Shared plumbing for the recharge and withdrawal request workflows."""
import math
import secrets
import time
from sqlalchemy import select, desc, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.errors import (
    InvalidOperation, NotPending, PendingRequestExists, RequestNotFound,
)
from app.models.requests import RequestStatus
from app.services.ledger_service import BalanceMutator
from app.services.notification_service import NotificationService
from app.services.unit_of_work import UnitOfWork


def new_request_id(prefix: str) -> str:
    return f'{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(4).upper()}'


def check_minimum(method: str, amount: float, minimums: dict[str, float], allowed: set[str]):
    if method not in allowed:
        raise InvalidOperation(f'Invalid method: {method}', allowed=sorted(allowed))
    if amount is None or not math.isfinite(amount) or amount <= 0:
        raise InvalidOperation('Amount must be a positive number', amount=str(amount))
    if amount > settings.max_request_amount:
        raise InvalidOperation(
            f'Amount exceeds the ${settings.max_request_amount:g} limit', maximum=settings.max_request_amount,
        )
    minimum = minimums.get(method, 0)
    if amount < minimum:
        raise InvalidOperation(
            f'Minimum amount for {method} is ${minimum:g}', minimum=minimum, method=method,
        )


class RequestWorkflow:
    """State machine helpers over one request model (pending -> terminal)."""

    model = None
    kind = 'request'

    def __init__(self, uow: UnitOfWork, notifications: NotificationService | None = None):
        self.uow = uow
        self.session_factory = uow.session_factory
        self.mutator = BalanceMutator()
        self.notifications = notifications

    async def get(self, request_id: str):
        async with self.session_factory() as session:
            result = await session.execute(
                select(self.model).where(self.model.request_id == request_id)
            )
            request = result.scalar_one_or_none()
        if not request:
            raise RequestNotFound(f'{self.kind.capitalize()} request not found', request_id=request_id)
        return request

    async def load_for_update(
        self,
        session: AsyncSession,
        request_id: str,
        expected: RequestStatus = RequestStatus.PENDING,
        owner_id: int | None = None,
    ):
        """Re-read the request under a row lock and check it is still in `expected`."""
        result = await session.execute(
            select(self.model)
            .where(self.model.request_id == request_id)
            .with_for_update()
        )
        request = result.scalar_one_or_none()
        if not request or (owner_id is not None and request.user_id != owner_id):
            raise RequestNotFound(f'{self.kind.capitalize()} request not found', request_id=request_id)
        if request.status != expected.value:
            raise NotPending(
                f'{self.kind.capitalize()} request is already {request.status}',
                request_id=request_id, status=request.status,
            )
        return request

    async def ensure_no_pending(self, session: AsyncSession, user_id: int):
        existing = await session.scalar(
            select(self.model.request_id).where(
                self.model.user_id == user_id,
                self.model.status == RequestStatus.PENDING.value,
            )
        )
        if existing:
            raise PendingRequestExists(
                f'You already have a pending {self.kind} request', request_id=existing,
            )

    async def insert_pending(self, session: AsyncSession, request):
        """Add a new pending request; a concurrent duplicate hits the partial unique index."""
        session.add(request)
        try:
            await session.flush()
        except IntegrityError as e:
            raise PendingRequestExists(
                f'You already have a pending {self.kind} request',
            ) from e
        return request

    async def list_requests(
        self,
        user_id: int | None = None,
        status: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list, int]:
        filters = []
        if user_id is not None:
            filters.append(self.model.user_id == user_id)
        if status:
            filters.append(self.model.status == status)

        async with self.session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(self.model).where(*filters)
            )
            result = await session.execute(
                select(self.model)
                .where(*filters)
                .order_by(desc(self.model.requested_at), desc(self.model.id))
                .limit(limit)
                .offset((page - 1) * limit)
            )
            return list(result.scalars().all()), total or 0
