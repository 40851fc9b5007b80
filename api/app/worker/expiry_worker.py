"""
Expiry Worker

Background service that sweeps pending recharge orders past their deadline
(USDT orders unpaid after `usdt_order_expiry_minutes`) and moves them to
`expired`. Uses APScheduler for job scheduling.
"""
import asyncio
import logging
from datetime import datetime
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.config import settings
from app.services.recharge_service import RechargeService
from app.services.unit_of_work import UnitOfWork

logger = logging.getLogger('expiry_worker')


class ExpiryWorker:
    """Background worker for recharge order expiry."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self.engine = None
        if session_factory is None:
            self.engine = create_async_engine(settings.database_url, echo=False)
            session_factory = async_sessionmaker(self.engine, expire_on_commit=False)
        self.async_session = session_factory
        self.scheduler = AsyncIOScheduler()

    async def start(self):
        """Start the worker and scheduler."""
        logger.info('Starting Expiry Worker...')

        self.scheduler.add_job(
            self._expire_overdue_orders,
            IntervalTrigger(minutes=settings.expiry_sweep_minutes),
            id='expire_recharge_orders',
            name='Expire overdue recharge orders',
            replace_existing=True,
            next_run_time=datetime.now(),
        )

        self.scheduler.start()
        logger.info('Scheduler started. Jobs:')
        for job in self.scheduler.get_jobs():
            logger.info(f'  - {job.name}: next run at {job.next_run_time}')

        # Keep running
        try:
            while True:
                await asyncio.sleep(60)
        except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
            logger.info('Shutting down...')
            self.scheduler.shutdown()
            if self.engine is not None:
                await self.engine.dispose()

    async def _expire_overdue_orders(self, now: datetime | None = None) -> int:
        """Move every overdue pending order to `expired`."""
        logger.info('Sweeping overdue recharge orders...')
        try:
            service = RechargeService(UnitOfWork(self.async_session))
            expired = await service.expire_overdue(now)
            logger.info(f'Expiry sweep result: {expired} expired')
            return expired
        except Exception as e:
            logger.error(f'Expiry sweep failed: {e}', exc_info=True)
            raise

    async def run_once(self, now: datetime | None = None) -> int:
        """Run a single sweep immediately (for testing)."""
        return await self._expire_overdue_orders(now)


async def main():
    """Entry point for the worker."""
    logging.basicConfig(
        level=settings.log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    worker = ExpiryWorker()
    await worker.start()


if __name__ == '__main__':
    asyncio.run(main())
