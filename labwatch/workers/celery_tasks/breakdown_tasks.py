"""
Scheduled breakdown detection.

Each task run gets a fresh event loop, so the engine uses NullPool:
pooled asyncpg connections cannot outlive the loop they were opened on.
"""
import asyncio
import logging
from sqlalchemy.pool import NullPool
from labwatch.core.celery_app import celery_app
from labwatch.core.config import settings
from labwatch.core.database import build_engine, build_session_maker
from labwatch.core.redis import RedisClient
from labwatch.models.shared.enums import SweepTrigger
from labwatch.services.breakdown.inactivity_sweep import InactivitySweep, SweepLock
from labwatch.services.realtime.publisher import RealtimePublisher
from labwatch.services.realtime.relay import RedisEventRelay
from labwatch.utils.date_time_serializer import serialize_dates

logger = logging.getLogger(__name__)

async_engine = build_engine(settings.DATABASE_URL, poolclass=NullPool)

async_session_maker = build_session_maker(async_engine)


def run_async_in_celery(coro):
    """Run a coroutine on a clean event loop inside a celery task"""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        try:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.run_until_complete(loop.shutdown_asyncgens())
        finally:
            asyncio.set_event_loop(None)
            loop.close()


async def sweep_once(session_factory=None, trigger: SweepTrigger = SweepTrigger.SCHEDULED,
                     lock: SweepLock = None) -> dict:
    """
    One sweep with a worker-local publisher, torn down afterwards.

    The default lock lives in the same redis the API process locks on, so a
    manual run and the scheduled run never overlap.
    """
    relay = RedisEventRelay(RedisClient()) if settings.REDIS_URL else None
    publisher = RealtimePublisher(relay=relay)
    sweep = InactivitySweep(
        session_factory or async_session_maker,
        publisher=publisher,
        lock=lock or SweepLock(RedisClient(settings.sweep_lock_url)),
    )
    try:
        result = await sweep.run(trigger=trigger)
    finally:
        await publisher.shutdown()
        await sweep.lock.close()
    return serialize_dates(result.as_dict())


@celery_app.task(name="labwatch.workers.celery_tasks.breakdown_tasks.run_inactivity_sweep_task")
def run_inactivity_sweep_task():
    """Daily scan for equipment idle past BREAKDOWN_CHECK_DAYS"""
    summary = run_async_in_celery(sweep_once())
    logger.info(f"Scheduled inactivity sweep summary: {summary}")
    return summary
