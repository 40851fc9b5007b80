import os

# Never reach for the production database while the app modules import
os.environ.setdefault('DATABASE_URL', 'sqlite+aiosqlite:///:memory:')

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from app.main import app
from app.db.database import Base, get_db, get_session_factory
from app.models.user import User
from app.routes.deps import get_lock_manager, get_payment_adapter
from app.services.ledger_service import LedgerService, LedgerQueries, new_balance_record
from app.services.notification_service import NotificationService
from app.services.payment_adapter import PaymentCheck
from app.services.recharge_service import RechargeService
from app.services.transfer_service import TransferService
from app.services.unit_of_work import UnitOfWork, UserLockManager
from app.services.withdrawal_service import WithdrawalService
from app.services.ws_manager import ConnectionManager


@pytest.fixture
async def engine(tmp_path):
    """Fresh SQLite file per test (WAL so readers never block the writer)."""
    engine = create_async_engine(f'sqlite+aiosqlite:///{tmp_path / "ledger.db"}', echo=False)

    @event.listens_for(engine.sync_engine, 'connect')
    def _sqlite_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA journal_mode=WAL')
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def locks():
    return UserLockManager()


@pytest.fixture
def uow(session_factory, locks):
    return UnitOfWork(session_factory, locks)


@pytest.fixture
def connections():
    return ConnectionManager()


@pytest.fixture
def notifications(session_factory, connections):
    return NotificationService(session_factory, connections)


@pytest.fixture
def ledger(uow):
    return LedgerService(uow)


@pytest.fixture
def transfers(uow, notifications):
    return TransferService(uow, notifications)


@pytest.fixture
def recharges(uow, notifications):
    return RechargeService(uow, notifications)


@pytest.fixture
def withdrawals(uow, notifications):
    return WithdrawalService(uow, notifications)


@pytest.fixture
async def db_session(session_factory):
    """Database session for direct queries in tests."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def queries(db_session):
    return LedgerQueries(db_session)


@pytest.fixture
def make_user(session_factory, ledger):
    """Create a user with an empty points account, optionally funded through the ledger."""
    counter = {'n': 0}

    async def _make(username: str | None = None, balance: int = 0, is_admin: bool = False) -> User:
        counter['n'] += 1
        username = username or f'user{counter["n"]}'
        async with session_factory() as session:
            async with session.begin():
                user = User(
                    username=username,
                    email=f'{username}@clipstream.test',
                    is_admin=is_admin,
                    points_balance=0,
                )
                session.add(user)
                await session.flush()
                session.add(new_balance_record(user.id))
        if balance:
            await ledger.credit(user.id, balance, 'bonus', 'Opening balance')
        return user

    return _make


class FakePaymentAdapter:
    """Payment adapter double: reports whatever `result` is set to."""

    def __init__(self, result: PaymentCheck | None = None):
        self.result = result or PaymentCheck(matched=False)
        self.calls = []

    async def check_payment_status(self, order):
        self.calls.append(order.request_id)
        return self.result


@pytest.fixture
def payment_adapter():
    return FakePaymentAdapter()


@pytest.fixture
async def client(session_factory, locks, payment_adapter):
    """Async HTTP client for testing, wired to the per-test database."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_lock_manager] = lambda: locks
    app.dependency_overrides[get_payment_adapter] = lambda: payment_adapter

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url='http://test') as ac:
        yield ac

    app.dependency_overrides.clear()
