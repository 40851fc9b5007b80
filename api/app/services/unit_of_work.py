"""Atomic units of work for ledger mutations.

Every balance change in the system runs through `UnitOfWork.run`:

    1. take the in-process per-user locks, always in sorted id order
    2. open a fresh session and begin a transaction
    3. run the work (which re-reads balances with SELECT ... FOR UPDATE)
    4. commit, or roll back everything on any exception

The per-user locks serialize same-user mutations inside one process; the row
locks and the PointsBalance version column do the same across processes.
"""
import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from app.config import settings
from app.errors import LedgerError, StorageFailure

logger = logging.getLogger(__name__)

T = TypeVar('T')


class UserLockManager:
    """Registry of per-user asyncio locks, created on demand and dropped when idle."""

    def __init__(self):
        self._locks: dict[int, asyncio.Lock] = {}
        self._refs: dict[int, int] = {}

    def _checkout(self, user_id: int) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        self._refs[user_id] = self._refs.get(user_id, 0) + 1
        return lock

    def _checkin(self, user_id: int):
        self._refs[user_id] -= 1
        if self._refs[user_id] == 0:
            del self._refs[user_id]
            del self._locks[user_id]

    @asynccontextmanager
    async def hold(self, *user_ids: int):
        """Hold the locks of every given user. Canonical order prevents deadlock."""
        ordered = sorted(set(user_ids))
        locks = [self._checkout(uid) for uid in ordered]
        acquired: list[asyncio.Lock] = []
        try:
            for lock in locks:
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for uid in ordered:
                self._checkin(uid)

    def active_keys(self) -> list[int]:
        return list(self._locks)


def _is_retryable(exc: BaseException) -> bool:
    # Constraint violations fail the same way on every attempt
    if isinstance(exc, IntegrityError):
        return False
    return isinstance(exc, (StaleDataError, DBAPIError))


class UnitOfWork:
    """Runs a unit of ledger work atomically with bounded retry on contention."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locks: UserLockManager | None = None,
        max_retries: int | None = None,
    ):
        self.session_factory = session_factory
        self.locks = locks or user_locks
        self.max_retries = max_retries if max_retries is not None else settings.ledger_max_retries

    async def run(
        self,
        user_ids: list[int] | tuple[int, ...],
        work: Callable[[AsyncSession], Awaitable[T]],
    ) -> T:
        """Run `work(session)` in one transaction while holding the users' locks.

        Business errors (LedgerError) abort immediately. Contention and driver
        faults are retried; the final failure is raised as StorageFailure.
        The unit is shielded so a cancelled caller cannot interrupt a commit.
        """
        return await asyncio.shield(self._run(tuple(user_ids), work))

    async def _run(self, user_ids: tuple[int, ...], work) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                async with self.locks.hold(*user_ids):
                    async with self.session_factory() as session:
                        async with session.begin():
                            return await work(session)
            except LedgerError:
                raise
            except Exception as e:
                if not _is_retryable(e):
                    raise
                if attempt > self.max_retries:
                    logger.error(
                        f'Ledger unit for users {list(user_ids)} failed after {attempt} attempts: {e}',
                        exc_info=True,
                    )
                    raise StorageFailure(
                        'Ledger update could not be committed, please retry',
                        attempts=attempt,
                    ) from e
                logger.warning(
                    f'Ledger unit for users {list(user_ids)} conflicted (attempt {attempt}): {e}'
                )
                await asyncio.sleep(0.01 * attempt)


# Singleton instance
user_locks = UserLockManager()
