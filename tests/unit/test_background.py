import asyncio
from datetime import datetime, timezone
from decimal import Decimal
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from labwatch.core.config import settings
from labwatch.core.exceptions import UnavailableError
from labwatch.models.shared.enums import Severity
from labwatch.services.breakdown.inactivity_sweep import SweepLock
from labwatch.utils.background import BackgroundDispatcher
from labwatch.utils.date_time_serializer import as_utc, serialize_dates


@pytest.mark.asyncio
class TestBackgroundDispatcher:

    async def test_failures_are_contained(self):
        dispatcher = BackgroundDispatcher()
        done = []

        async def boom():
            raise RuntimeError("alert pipeline down")

        async def ok():
            done.append(True)

        dispatcher.submit(boom(), name="failing job")
        dispatcher.submit(ok(), name="good job")
        await dispatcher.drain(timeout=1)

        assert done == [True]
        assert dispatcher.pending == 0

    async def test_drain_waits_for_jobs_submitted_by_jobs(self):
        dispatcher = BackgroundDispatcher()
        order = []

        async def child():
            await asyncio.sleep(0)
            order.append("child")

        async def parent():
            dispatcher.submit(child(), name="child")
            order.append("parent")

        dispatcher.submit(parent(), name="parent")
        await dispatcher.drain(timeout=1)

        assert order == ["parent", "child"]

    async def test_shutdown_cancels_stragglers(self):
        dispatcher = BackgroundDispatcher()
        dispatcher.submit(asyncio.sleep(10), name="sleeper")

        await dispatcher.shutdown(timeout=0.01)

        assert dispatcher.pending == 0


class SharedRedis:
    """One redis server seen from two processes; locks are non-blocking like redis-py with blocking=False"""

    def __init__(self, down: bool = False):
        self.held = set()
        self.down = down
        self.disconnects = 0

    def client(self):
        return SharedRedisClient(self)


class SharedRedisClient:
    enabled = True

    def __init__(self, server: SharedRedis):
        self.server = server

    async def lock(self, name, timeout):
        if self.server.down:
            raise RedisConnectionError("connection refused")
        return SharedRedisLock(self.server, name)

    async def disconnect(self):
        self.server.disconnects += 1


class SharedRedisLock:
    def __init__(self, server: SharedRedis, name: str):
        self.server = server
        self.name = name

    async def acquire(self):
        if self.name in self.server.held:
            return False
        self.server.held.add(self.name)
        return True

    async def release(self):
        self.server.held.discard(self.name)


@pytest.mark.asyncio
class TestSweepLock:

    async def test_second_acquire_fails_until_released(self):
        lock = SweepLock()
        assert await lock.acquire()
        assert lock.locked
        assert not await lock.acquire()

        await lock.release()
        assert not lock.locked
        assert await lock.acquire()
        await lock.release()

    async def test_api_and_worker_locks_exclude_each_other(self):
        server = SharedRedis()
        api_lock = SweepLock(server.client())
        worker_lock = SweepLock(server.client())

        assert await api_lock.acquire()
        assert not await worker_lock.acquire()
        # The refused side keeps no local hold either
        assert not worker_lock.locked

        await api_lock.release()
        assert await worker_lock.acquire()
        await worker_lock.release()
        assert server.held == set()

    async def test_unreachable_redis_fails_closed(self):
        lock = SweepLock(SharedRedis(down=True).client())

        with pytest.raises(UnavailableError):
            await lock.acquire()
        assert not lock.locked

    async def test_close_disconnects_the_client(self):
        server = SharedRedis()
        await SweepLock(server.client()).close()
        await SweepLock().close()
        assert server.disconnects == 1


class TestSweepLockUrl:

    def test_falls_back_to_the_broker(self, monkeypatch):
        monkeypatch.setattr(settings, "REDIS_URL", None)
        assert settings.sweep_lock_url == settings.CELERY_BROKER_URL

        monkeypatch.setattr(settings, "REDIS_URL", "redis://cache:6379/2")
        assert settings.sweep_lock_url == "redis://cache:6379/2"


class TestSerializeDates:

    def test_converts_nested_values(self):
        naive = datetime(2026, 3, 1, 9, 30)
        data = serialize_dates({
            "at": naive,
            "severity": Severity.HIGH,
            "cost": Decimal("12.50"),
            "nested": {"items": [naive]},
        })
        assert data == {
            "at": "2026-03-01T09:30:00+00:00",
            "severity": "HIGH",
            "cost": 12.5,
            "nested": {"items": ["2026-03-01T09:30:00+00:00"]},
        }

    def test_as_utc(self):
        assert as_utc(None) is None
        assert as_utc(datetime(2026, 1, 1)).tzinfo is timezone.utc
