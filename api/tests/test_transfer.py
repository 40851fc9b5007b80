import asyncio

import pytest
from sqlalchemy import select

from app.errors import InvalidOperation, InsufficientBalance, RecipientNotFound
from app.models.ledger import PointsBalance, PointsTransaction
from app.models.notification import Notification
from app.services.notification_service import NotificationService
from app.services.transfer_service import TransferService


async def _balances(session_factory, *user_ids) -> list[int]:
    async with session_factory() as session:
        result = await session.execute(
            select(PointsBalance.user_id, PointsBalance.balance).where(PointsBalance.user_id.in_(user_ids))
        )
        by_user = dict(result.all())
    return [by_user[uid] for uid in user_ids]


async def _transfer_entries(session_factory, transfer_id) -> list[PointsTransaction]:
    async with session_factory() as session:
        result = await session.execute(
            select(PointsTransaction)
            .where(PointsTransaction.transaction_id.like(f'{transfer_id}_%'))
            .order_by(PointsTransaction.id)
        )
        return list(result.scalars().all())


async def test_transfer_moves_points_and_links_entries(transfers, make_user, session_factory):
    alice = await make_user('alice', balance=100)
    bob = await make_user('bob', balance=5)

    result = await transfers.transfer(alice.id, bob.id, 20, 'thanks!')

    assert result.sender_new_balance == 80
    assert result.recipient_id == bob.id
    assert await _balances(session_factory, alice.id, bob.id) == [80, 25]

    out_entry, in_entry = await _transfer_entries(session_factory, result.transfer_id)
    assert out_entry.transaction_id == f'{result.transfer_id}_out'
    assert in_entry.transaction_id == f'{result.transfer_id}_in'
    assert out_entry.category == in_entry.category == 'points_transfer'
    assert out_entry.direction == 'debit' and in_entry.direction == 'credit'
    assert out_entry.details['recipient_id'] == bob.id
    assert in_entry.details['sender_username'] == 'alice'
    assert out_entry.details['message'] == in_entry.details['message'] == 'thanks!'
    # Conservation
    assert out_entry.balance_before - out_entry.balance_after == in_entry.balance_after - in_entry.balance_before == 20


@pytest.mark.parametrize('lookup', ['username', 'email'])
async def test_transfer_by_username_or_email(transfers, make_user, session_factory, lookup):
    alice = await make_user('alice', balance=50)
    bob = await make_user('bob')

    recipient = 'bob' if lookup == 'username' else 'bob@clipstream.test'
    await transfers.transfer(alice.id, recipient, 10)

    assert await _balances(session_factory, alice.id, bob.id) == [40, 10]


async def test_digit_username_falls_back_after_id_lookup(transfers, make_user, session_factory):
    alice = await make_user('alice', balance=50)
    numeric = await make_user('424242')

    await transfers.transfer(alice.id, '424242', 10)
    await transfers.transfer(alice.id, str(numeric.id), 5)

    assert await _balances(session_factory, alice.id, numeric.id) == [35, 15]


async def test_self_transfer_rejected_regardless_of_balance(transfers, make_user, session_factory):
    alice = await make_user('alice', balance=0)
    rich = await make_user('rich', balance=1000)

    with pytest.raises(InvalidOperation):
        await transfers.transfer(alice.id, alice.id, 10)
    with pytest.raises(InvalidOperation):
        await transfers.transfer(rich.id, 'rich', 10)
    assert await _balances(session_factory, alice.id, rich.id) == [0, 1000]


async def test_unknown_recipient(transfers, make_user):
    alice = await make_user('alice', balance=100)
    with pytest.raises(RecipientNotFound):
        await transfers.transfer(alice.id, 'nobody', 10)


async def test_non_positive_amount(transfers, make_user):
    alice = await make_user('alice', balance=100)
    bob = await make_user('bob')
    with pytest.raises(InvalidOperation):
        await transfers.transfer(alice.id, bob.id, 0)


async def test_insufficient_balance_changes_nothing(transfers, make_user, session_factory):
    alice = await make_user('alice', balance=10)
    bob = await make_user('bob', balance=10)

    with pytest.raises(InsufficientBalance):
        await transfers.transfer(alice.id, bob.id, 11)

    assert await _balances(session_factory, alice.id, bob.id) == [10, 10]
    async with session_factory() as session:
        result = await session.execute(
            select(PointsTransaction).where(PointsTransaction.category == 'points_transfer')
        )
        assert result.scalars().all() == []


async def test_concurrent_opposite_transfers_conserve_total(transfers, make_user, session_factory):
    a = await make_user('a', balance=100)
    b = await make_user('b', balance=100)
    c = await make_user('c', balance=100)

    moves = [(a.id, b.id), (b.id, a.id), (b.id, c.id), (c.id, a.id), (a.id, c.id), (c.id, b.id)] * 5
    results = await asyncio.gather(
        *[transfers.transfer(src, dst, 7) for src, dst in moves],
        return_exceptions=True,
    )

    assert all(not isinstance(r, Exception) or isinstance(r, InsufficientBalance) for r in results)
    balances = await _balances(session_factory, a.id, b.id, c.id)
    assert sum(balances) == 300
    assert all(b >= 0 for b in balances)


async def test_balance_rows_locked_in_id_order(transfers, make_user, monkeypatch):
    low = await make_user('low', balance=100)
    high = await make_user('high', balance=100)
    locked = []
    original = transfers.mutator.load_for_update

    async def recording(session, user_id, create=True):
        locked.append(user_id)
        return await original(session, user_id, create)

    monkeypatch.setattr(transfers.mutator, 'load_for_update', recording)

    await transfers.transfer(high.id, low.id, 10)
    await transfers.transfer(low.id, high.id, 10)

    assert locked[:2] == [low.id, high.id]
    assert locked[4:6] == [low.id, high.id]


async def test_both_parties_notified(transfers, make_user, session_factory):
    alice = await make_user('alice', balance=100)
    bob = await make_user('bob')

    await transfers.transfer(alice.id, bob.id, 20, 'gg')

    async with session_factory() as session:
        result = await session.execute(select(Notification).order_by(Notification.id))
        notes = list(result.scalars().all())
    by_user = {n.user_id: n for n in notes}
    assert by_user[bob.id].type == 'points_transfer_received'
    assert 'gg' in by_user[bob.id].message
    assert by_user[alice.id].type == 'points_transfer_sent'
    assert by_user[alice.id].points_amount == 20


async def test_notification_failure_does_not_reverse_transfer(uow, make_user, session_factory):

    class BrokenNotifications(NotificationService):
        async def notify(self, *args, **kwargs):
            raise RuntimeError('push gateway down')

    service = TransferService(uow, BrokenNotifications(session_factory))
    alice = await make_user('alice', balance=100)
    bob = await make_user('bob')

    result = await service.transfer(alice.id, bob.id, 30)

    assert result.sender_new_balance == 70
    assert await _balances(session_factory, alice.id, bob.id) == [70, 30]


async def test_live_connection_receives_push(transfers, make_user, connections):
    alice = await make_user('alice', balance=100)
    bob = await make_user('bob')

    class FakeSocket:
        def __init__(self):
            self.sent = []

        async def accept(self):
            pass

        async def send_json(self, message):
            self.sent.append(message)

    socket = FakeSocket()
    await connections.connect(socket, bob.id)

    await transfers.transfer(alice.id, bob.id, 5)

    assert len(socket.sent) == 1
    assert socket.sent[0]['notification']['type'] == 'points_transfer_received'
    assert socket.sent[0]['notification']['points_amount'] == 5
