import asyncio
import json
import logging
from typing import Awaitable, Callable, Optional
from labwatch.core.config import settings
from labwatch.core.redis import RedisClient

logger = logging.getLogger(__name__)

EnvelopeHandler = Callable[[dict], Awaitable[None]]


class RedisEventRelay:
    """
    Carries publisher envelopes between processes over redis pub/sub.

    Every API process listens on the channel and delivers to its own
    connections, so an event published by the celery worker reaches
    browsers connected to any API process.
    """

    def __init__(self, client: RedisClient, channel: str = None):
        self.client = client
        self.channel = channel or settings.REALTIME_CHANNEL
        self._listener: Optional[asyncio.Task] = None
        self._pubsub = None

    async def publish(self, envelope: dict):
        await self.client.publish(self.channel, json.dumps(envelope))

    async def start(self, handler: EnvelopeHandler):
        self._pubsub = await self.client.pubsub()
        await self._pubsub.subscribe(self.channel)
        self._listener = asyncio.create_task(self._listen(handler))
        logger.info(f"Real-time relay listening on {self.channel}")

    async def _listen(self, handler: EnvelopeHandler):
        async for message in self._pubsub.listen():
            if message.get("type") != "message":
                continue
            try:
                envelope = json.loads(message["data"])
            except (TypeError, ValueError):
                logger.warning(f"Dropping malformed relay message on {self.channel}")
                continue
            try:
                await handler(envelope)
            except Exception:
                logger.exception("Relay delivery failed")

    async def stop(self):
        if self._listener:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        if self._pubsub:
            await self._pubsub.unsubscribe(self.channel)
            await self._pubsub.aclose()
            self._pubsub = None
        await self.client.disconnect()
        logger.info("Real-time relay stopped")
