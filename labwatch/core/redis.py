import redis.asyncio as redis
from typing import Optional
from labwatch.core.config import settings
import logging

logger = logging.getLogger(__name__)


class RedisClient:
    def __init__(self, url: Optional[str] = None):
        self.url = url if url is not None else settings.REDIS_URL
        self.redis = None

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def connect(self):
        """Connect to Redis"""
        try:
            self.redis = redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True
            )
            # Test connection
            await self.redis.ping()
            logger.info("Redis connected successfully")
        except Exception as e:
            logger.error(f"Redis connection failed: {str(e)}")
            raise

    async def disconnect(self):
        """Disconnect from Redis"""
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            logger.info("Redis disconnected")

    async def _client(self):
        if not self.redis:
            await self.connect()
        return self.redis

    async def publish(self, channel: str, message: str):
        """Publish a message on a pub/sub channel"""
        client = await self._client()
        return await client.publish(channel, message)

    async def pubsub(self):
        client = await self._client()
        return client.pubsub()

    async def lock(self, name: str, timeout: int):
        """Distributed lock; acquire it with blocking=False for single-flight jobs"""
        client = await self._client()
        return client.lock(name, timeout=timeout, blocking=False)

