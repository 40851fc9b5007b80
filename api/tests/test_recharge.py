import asyncio
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from app.errors import (
    InvalidOperation, NotPending, PaymentAlreadyClaimed, PendingRequestExists, RequestExpired,
    RequestNotFound,
)
from app.models.ledger import PointsBalance, PointsTransaction
from app.models.requests import RechargeRequest
from app.services.payment_adapter import PaymentCheck
from app.worker.expiry_worker import ExpiryWorker


async def _balance(session_factory, user_id) -> PointsBalance:
    async with session_factory() as session:
        result = await session.execute(select(PointsBalance).where(PointsBalance.user_id == user_id))
        return result.scalar_one()


async def _approval_entries(session_factory, user_id) -> list[PointsTransaction]:
    async with session_factory() as session:
        result = await session.execute(
            select(PointsTransaction).where(
                PointsTransaction.user_id == user_id,
                PointsTransaction.category.in_(['recharge_approved', 'usdt_recharge_approved']),
            )
        )
        return list(result.scalars().all())


async def _set_expiry(session_factory, request_id, expires_at):
    async with session_factory() as session:
        async with session.begin():
            result = await session.execute(
                select(RechargeRequest).where(RechargeRequest.request_id == request_id)
            )
            result.scalar_one().expires_at = expires_at


class TestCreate:

    async def test_create_request_is_pending_and_leaves_balance(self, recharges, make_user, session_factory):
        user = await make_user(balance=10)

        request = await recharges.create_request(user.id, 50, 'bank', {'reference': 'TX-1'})

        assert request.status == 'pending'
        assert request.points_to_add == 500
        assert request.details == {'reference': 'TX-1'}
        assert (await _balance(session_factory, user.id)).balance == 10

    async def test_method_minimums(self, recharges, make_user):
        user = await make_user()
        with pytest.raises(InvalidOperation):
            await recharges.create_request(user.id, 9.99, 'bank')
        with pytest.raises(InvalidOperation):
            await recharges.create_request(user.id, 20, 'bitcoin')
        request = await recharges.create_request(user.id, 5, 'card')
        assert request.points_to_add == 50

    @pytest.mark.parametrize('amount', [float('inf'), float('nan'), 1_000_000])
    async def test_non_finite_or_oversized_amount_rejected(self, recharges, make_user, amount):
        user = await make_user()
        with pytest.raises(InvalidOperation):
            await recharges.create_request(user.id, amount, 'bank')
        with pytest.raises(InvalidOperation):
            await recharges.create_usdt_order(user.id, amount)

    async def test_one_pending_request_per_user(self, recharges, make_user):
        user = await make_user()
        await recharges.create_request(user.id, 10, 'bank')
        with pytest.raises(PendingRequestExists):
            await recharges.create_request(user.id, 20, 'paypal')
        with pytest.raises(PendingRequestExists):
            await recharges.create_usdt_order(user.id, 5)

    async def test_concurrent_creates_admit_one(self, recharges, make_user):
        user = await make_user()
        results = await asyncio.gather(
            *[recharges.create_request(user.id, 10, 'bank') for _ in range(4)],
            return_exceptions=True,
        )
        created = [r for r in results if isinstance(r, RechargeRequest)]
        assert len(created) == 1
        assert all(isinstance(r, PendingRequestExists) for r in results if r not in created)

    async def test_new_request_allowed_after_cancel(self, recharges, make_user):
        user = await make_user()
        first = await recharges.create_request(user.id, 10, 'bank')
        await recharges.cancel(user.id, first.request_id)
        second = await recharges.create_request(user.id, 10, 'bank')
        assert second.request_id != first.request_id


class TestApprove:

    async def test_approve_credits_once(self, recharges, make_user, session_factory):
        admin = await make_user('admin', is_admin=True)
        user = await make_user(balance=50)
        request = await recharges.create_request(user.id, 50, 'bank')

        approval = await recharges.approve(admin.id, request.request_id, 'Bank transfer verified')

        assert approval.result.new_balance == 550
        assert approval.request.status == 'approved'
        assert approval.request.processed_by == admin.id

        with pytest.raises(NotPending):
            await recharges.approve(admin.id, request.request_id)

        balance = await _balance(session_factory, user.id)
        assert balance.balance == 550
        assert balance.total_recharged == 50
        assert balance.first_recharge_at is not None
        assert balance.last_recharge_amount == 50
        entries = await _approval_entries(session_factory, user.id)
        assert len(entries) == 1
        assert entries[0].details['request_id'] == request.request_id

    async def test_concurrent_approvals_credit_once(self, recharges, make_user, session_factory):
        admin = await make_user('admin', is_admin=True)
        user = await make_user()
        request = await recharges.create_request(user.id, 10, 'bank')

        results = await asyncio.gather(
            *[recharges.approve(admin.id, request.request_id) for _ in range(5)],
            return_exceptions=True,
        )

        assert sum(1 for r in results if not isinstance(r, Exception)) == 1
        assert all(isinstance(r, NotPending) for r in results if isinstance(r, Exception))
        assert (await _balance(session_factory, user.id)).balance == 100

    async def test_bonus_points_included(self, recharges, make_user, session_factory):
        admin = await make_user('admin', is_admin=True)
        user = await make_user()
        request = await recharges.create_request(user.id, 10, 'bank', bonus_points=15)

        await recharges.approve(admin.id, request.request_id)

        assert (await _balance(session_factory, user.id)).balance == 115

    async def test_approval_notifies_user(self, recharges, make_user, session_factory):
        from app.models.notification import Notification

        admin = await make_user('admin', is_admin=True)
        user = await make_user()
        request = await recharges.create_request(user.id, 10, 'bank')
        await recharges.approve(admin.id, request.request_id)

        async with session_factory() as session:
            result = await session.execute(select(Notification).where(Notification.user_id == user.id))
            notes = list(result.scalars().all())
        assert [n.type for n in notes] == ['recharge_approved']
        assert notes[0].points_amount == 100

    async def test_unknown_request(self, recharges):
        with pytest.raises(RequestNotFound):
            await recharges.approve(1, 'RCH_missing')


class TestTerminalTransitions:

    async def test_reject_then_approve_fails(self, recharges, make_user, session_factory):
        admin = await make_user('admin', is_admin=True)
        user = await make_user()
        request = await recharges.create_request(user.id, 10, 'bank')

        rejected = await recharges.reject(admin.id, request.request_id, 'No payment received')
        assert rejected.status == 'rejected'
        assert rejected.rejection_reason == 'No payment received'

        with pytest.raises(NotPending):
            await recharges.approve(admin.id, request.request_id)
        assert (await _balance(session_factory, user.id)).balance == 0

    async def test_reject_requires_reason(self, recharges, make_user):
        user = await make_user()
        request = await recharges.create_request(user.id, 10, 'bank')
        with pytest.raises(InvalidOperation):
            await recharges.reject(1, request.request_id, '')

    async def test_only_owner_can_cancel(self, recharges, make_user):
        owner = await make_user('owner')
        other = await make_user('other')
        request = await recharges.create_request(owner.id, 10, 'bank')

        with pytest.raises(RequestNotFound):
            await recharges.cancel(other.id, request.request_id)

        cancelled = await recharges.cancel(owner.id, request.request_id)
        assert cancelled.status == 'cancelled'
        assert cancelled.cancelled_by == 'user'
        with pytest.raises(NotPending):
            await recharges.cancel(owner.id, request.request_id)

    async def test_fail(self, recharges, make_user):
        user = await make_user()
        request = await recharges.create_request(user.id, 10, 'card')
        failed = await recharges.fail(request.request_id, 'Card declined')
        assert failed.status == 'failed'
        assert failed.failed_at is not None


class TestUsdt:

    async def test_order_amount_has_unique_suffix(self, recharges, make_user):
        user = await make_user()
        order = await recharges.create_usdt_order(user.id, 10)

        suffix = round(order.amount - 10, 6)
        assert 0.001 <= suffix <= 0.009999
        assert order.points_to_add == 100
        assert order.method == 'usdt'
        assert order.expires_at - order.requested_at == timedelta(minutes=15)
        assert order.extra['requested_amount'] == 10

    async def test_pending_orders_never_share_an_amount(self, recharges, make_user, monkeypatch):
        alice = await make_user('alice')
        bob = await make_user('bob')
        amounts = iter([10.004321, 10.004321, 10.001234])
        monkeypatch.setattr('app.services.recharge_service.usdt_unique_amount', lambda amount: next(amounts))

        first = await recharges.create_usdt_order(alice.id, 10)
        second = await recharges.create_usdt_order(bob.id, 10)

        assert first.amount == 10.004321
        assert second.amount == 10.001234
        assert second.extra['unique_amount'] == 10.001234

    async def test_no_free_amount_left(self, recharges, make_user, monkeypatch):
        alice = await make_user('alice')
        bob = await make_user('bob')
        monkeypatch.setattr('app.services.recharge_service.usdt_unique_amount', lambda amount: 10.004321)

        await recharges.create_usdt_order(alice.id, 10)
        with pytest.raises(InvalidOperation):
            await recharges.create_usdt_order(bob.id, 10)

    async def test_one_payment_settles_one_order(self, recharges, make_user, session_factory, payment_adapter):
        alice = await make_user('alice')
        bob = await make_user('bob')
        paid = await recharges.create_usdt_order(alice.id, 10)
        unpaid = await recharges.create_usdt_order(bob.id, 10)
        payment_adapter.result = PaymentCheck(matched=True, proof={
            'transaction_hash': '0xonce', 'amount': paid.amount, 'status': 'paid',
        })

        assert (await recharges.check_usdt_payment(alice.id, paid.request_id, payment_adapter)).status == 'approved'
        status = await recharges.check_usdt_payment(bob.id, unpaid.request_id, payment_adapter)

        assert status.status == 'pending'
        assert (await recharges.get(unpaid.request_id)).status == 'pending'
        assert (await _balance(session_factory, bob.id)).balance == 0
        assert (await recharges.get(paid.request_id)).payment_tx_hash == '0xonce'

    async def test_admin_approval_with_used_transfer_rejected(self, recharges, make_user, session_factory):
        alice = await make_user('alice')
        bob = await make_user('bob')
        first = await recharges.create_request(alice.id, 10, 'bank')
        second = await recharges.create_request(bob.id, 10, 'bank')
        proof = {'transaction_hash': 'BANK-REF-9'}

        await recharges.approve(1, first.request_id, proof=proof)
        with pytest.raises(PaymentAlreadyClaimed):
            await recharges.approve(1, second.request_id, proof=proof)

        assert (await recharges.get(second.request_id)).status == 'pending'
        assert (await _balance(session_factory, bob.id)).balance == 0

    async def test_order_minimum(self, recharges, make_user):
        user = await make_user()
        with pytest.raises(InvalidOperation):
            await recharges.create_usdt_order(user.id, 0.5)

    async def test_check_unpaid_stays_pending(self, recharges, make_user, payment_adapter):
        user = await make_user()
        order = await recharges.create_usdt_order(user.id, 10)
        adapter = payment_adapter

        status = await recharges.check_usdt_payment(user.id, order.request_id, adapter)

        assert status.status == 'pending'
        assert adapter.calls == [order.request_id]

    async def test_check_paid_auto_approves(self, recharges, make_user, session_factory, payment_adapter):
        user = await make_user()
        order = await recharges.create_usdt_order(user.id, 10)
        proof = {'transaction_hash': 'abc123', 'amount': order.amount, 'status': 'paid'}
        adapter = payment_adapter
        adapter.result = PaymentCheck(matched=True, proof=proof)

        status = await recharges.check_usdt_payment(user.id, order.request_id, adapter)

        assert status.status == 'approved'
        assert status.new_balance == 100
        assert status.request.details['payment_proof'] == proof
        entries = await _approval_entries(session_factory, user.id)
        assert [e.category for e in entries] == ['usdt_recharge_approved']

        # Polling again is harmless
        again = await recharges.check_usdt_payment(user.id, order.request_id, adapter)
        assert again.status == 'approved'
        assert len(adapter.calls) == 1
        assert (await _balance(session_factory, user.id)).balance == 100

    async def test_check_overdue_order_expires(self, recharges, make_user, session_factory, payment_adapter):
        user = await make_user()
        order = await recharges.create_usdt_order(user.id, 10)
        await _set_expiry(session_factory, order.request_id, datetime.utcnow() - timedelta(minutes=1))
        adapter = payment_adapter
        adapter.result = PaymentCheck(matched=True)

        with pytest.raises(RequestExpired):
            await recharges.check_usdt_payment(user.id, order.request_id, adapter)

        assert (await recharges.get(order.request_id)).status == 'expired'
        assert adapter.calls == []
        with pytest.raises(RequestExpired):
            await recharges.check_usdt_payment(user.id, order.request_id, adapter)

    async def test_check_other_users_order(self, recharges, make_user, payment_adapter):
        owner = await make_user('owner')
        other = await make_user('other')
        order = await recharges.create_usdt_order(owner.id, 10)
        with pytest.raises(RequestNotFound):
            await recharges.check_usdt_payment(other.id, order.request_id, payment_adapter)

    async def test_check_non_usdt_request(self, recharges, make_user, payment_adapter):
        user = await make_user()
        request = await recharges.create_request(user.id, 10, 'bank')
        with pytest.raises(InvalidOperation):
            await recharges.check_usdt_payment(user.id, request.request_id, payment_adapter)


class TestExpirySweep:

    async def test_worker_expires_only_overdue_orders(self, recharges, make_user, session_factory):
        late = await make_user('late')
        fresh = await make_user('fresh')
        manual = await make_user('manual')
        overdue = await recharges.create_usdt_order(late.id, 10)
        current = await recharges.create_usdt_order(fresh.id, 10)
        bank = await recharges.create_request(manual.id, 10, 'bank')
        await _set_expiry(session_factory, overdue.request_id, datetime.utcnow() - timedelta(seconds=1))

        worker = ExpiryWorker(session_factory)
        assert await worker.run_once() == 1

        assert (await recharges.get(overdue.request_id)).status == 'expired'
        assert (await recharges.get(current.request_id)).status == 'pending'
        assert (await recharges.get(bank.request_id)).status == 'pending'
        assert await worker.run_once() == 0


class TestDashboard:

    async def test_dashboard_counts_by_status(self, recharges, make_user):
        admin = await make_user('admin', is_admin=True)
        a = await make_user('a')
        b = await make_user('b')
        c = await make_user('c')
        r1 = await recharges.create_request(a.id, 10, 'bank')
        r2 = await recharges.create_request(b.id, 20, 'bank')
        await recharges.create_request(c.id, 30, 'bank')
        await recharges.approve(admin.id, r1.request_id)
        await recharges.reject(admin.id, r2.request_id, 'Duplicate')

        dashboard = await recharges.dashboard()

        assert dashboard['total_requests'] == 3
        assert dashboard['pending_count'] == 1
        assert dashboard['approved_amount'] == 10
        assert dashboard['by_status']['rejected']['count'] == 1

    async def test_list_requests_filters(self, recharges, make_user):
        a = await make_user('a')
        b = await make_user('b')
        await recharges.create_request(a.id, 10, 'bank')
        await recharges.create_request(b.id, 10, 'bank')

        mine, total = await recharges.list_requests(user_id=a.id)
        assert total == 1 and mine[0].user_id == a.id
        pending, pending_total = await recharges.list_requests(status='pending')
        assert pending_total == 2
