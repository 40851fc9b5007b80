"""Seed script: wipe all data and create fresh test accounts ready for testing.

Usage (from inside the api container):
    python seed.py

Usage (from host, via docker):
    docker compose exec api python seed.py
"""
import asyncio

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.database import engine, async_session, init_db
from app.models.ledger import Category
from app.models.user import User
from app.services.ledger_service import LedgerService, new_balance_record
from app.services.unit_of_work import UnitOfWork


# Test accounts to create
TEST_USERS = [
    {'username': 'admin', 'email': 'admin@clipstream.dev', 'is_admin': True, 'deposit': 0},
    {'username': 'alice', 'email': 'alice@clipstream.dev', 'is_admin': False, 'deposit': 1_000},
    {'username': 'bob', 'email': 'bob@clipstream.dev', 'is_admin': False, 'deposit': 1_000},
    {'username': 'eve', 'email': 'eve@clipstream.dev', 'is_admin': False, 'deposit': 500},
]


async def wipe_all(db: AsyncSession):
    """Truncate all tables in dependency-safe order."""
    tables = [
        'notifications',
        'withdrawal_requests',
        'recharge_requests',
        'points_transactions',
        'points_balances',
        'users',
    ]
    for table in tables:
        await db.execute(text(f'TRUNCATE TABLE {table} RESTART IDENTITY CASCADE'))
    await db.commit()
    print('✓ All tables wiped')


async def create_users(db: AsyncSession) -> list[User]:
    """Create test users with empty points accounts."""
    users = []
    for u in TEST_USERS:
        user = User(username=u['username'], email=u['email'], is_admin=u['is_admin'], points_balance=0)
        db.add(user)
        await db.flush()
        db.add(new_balance_record(user.id))
        users.append(user)
    await db.commit()
    return users


async def fund_users(users: list[User]):
    """Credit opening balances through the ledger so the audit log replays cleanly."""
    ledger = LedgerService(UnitOfWork(async_session))
    admin = next(u for u in users if u.is_admin)
    for user, u in zip(users, TEST_USERS):
        if u['deposit']:
            await ledger.award(admin.id, user.id, u['deposit'], 'Seed deposit', Category.BONUS.value)
        role = 'admin' if u['is_admin'] else 'user'
        print(f'  ✓ @{u["username"]} ({role}) - {u["deposit"]} points, id={user.id}')


async def main():
    print()
    print('=' * 50)
    print('  ClipStream Ledger Seed Script')
    print('=' * 50)
    print()

    await init_db()
    async with async_session() as db:
        print('[1/3] Wiping all data...')
        await wipe_all(db)

        print('[2/3] Creating test users...')
        users = await create_users(db)

    print('[3/3] Funding accounts...')
    await fund_users(users)

    await engine.dispose()

    print()
    print('Done! Ready for testing. Send X-User-Id: <id> with each request.')
    print()


if __name__ == '__main__':
    asyncio.run(main())
