import asyncio
import json
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Set
from labwatch.auth.permissions import POLICY_ROLES
from labwatch.core.config import settings
from labwatch.models.shared.enums import Role
from labwatch.utils.date_time_serializer import serialize_dates, utcnow

logger = logging.getLogger(__name__)

ALL_ALERTS_TOPIC = "alerts:all"
BROADCAST = "*"


def user_topic(user_id: int) -> str:
    return f"user:{user_id}"


def role_topic(role) -> str:
    return f"role:{Role(role).value}"


def equipment_topic(equipment_external_id: str) -> str:
    return f"equipment:{equipment_external_id}"


def initial_topics(user_id: int, role) -> List[str]:
    """Topics a connection joins on connect; the unscoped alert feed is policy-level only"""
    topics = [user_topic(user_id), role_topic(role)]
    if Role(role) in POLICY_ROLES:
        topics.append(ALL_ALERTS_TOPIC)
    return topics


@dataclass
class Connection:
    id: str
    websocket: Any
    user_id: int
    role: Role
    topics: Set[str] = field(default_factory=set)


class RealtimePublisher:
    """
    Registry of authenticated connections and their topic memberships.

    All registry mutations happen under one asyncio lock; sends happen
    outside it on a snapshot, so a slow client never blocks subscribers.
    A failed or timed-out send drops that connection, closes its socket
    with 1011 so the client reconnects, and is not raised.
    """

    def __init__(self, relay=None, send_timeout: float = None):
        self._lock = asyncio.Lock()
        self._connections: Dict[str, Connection] = {}
        self._topics: Dict[str, Set[str]] = defaultdict(set)
        self._relay = relay
        self._send_timeout = send_timeout if send_timeout is not None else settings.WS_SEND_TIMEOUT_SECONDS
        self._running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def startup(self):
        if self._running:
            return
        if self._relay is not None:
            await self._relay.start(self._deliver_envelope)
        self._running = True
        logger.info("Real-time publisher started")

    async def shutdown(self):
        if self._relay is not None:
            await self._relay.stop()

        async with self._lock:
            connections = list(self._connections.values())
            self._connections.clear()
            self._topics.clear()

        for connection in connections:
            try:
                await connection.websocket.close(code=1001)
            except Exception as e:
                logger.debug(f"Closing connection {connection.id} failed: {e}")
        self._running = False
        logger.info(f"Real-time publisher stopped, closed {len(connections)} connections")

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    async def connect(self, websocket, user_id: int, role) -> str:
        """Register an accepted, authenticated websocket"""
        connection = Connection(id=uuid.uuid4().hex, websocket=websocket, user_id=user_id, role=Role(role))
        async with self._lock:
            self._connections[connection.id] = connection
            for topic in initial_topics(user_id, role):
                self._join(connection, topic)
        logger.info(f"Connection {connection.id} opened for user {user_id} ({connection.role.value})")
        return connection.id

    async def disconnect(self, connection_id: str) -> bool:
        async with self._lock:
            connection = self._connections.pop(connection_id, None)
            if connection is None:
                return False
            for topic in connection.topics:
                members = self._topics.get(topic)
                if members is not None:
                    members.discard(connection_id)
                    if not members:
                        del self._topics[topic]
        logger.info(f"Connection {connection_id} closed for user {connection.user_id}")
        return True

    async def subscribe(self, connection_id: str, topic: str) -> bool:
        async with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None:
                return False
            self._join(connection, topic)
        return True

    async def unsubscribe(self, connection_id: str, topic: str) -> bool:
        async with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None or topic not in connection.topics:
                return False
            connection.topics.discard(topic)
            members = self._topics.get(topic)
            if members is not None:
                members.discard(connection_id)
                if not members:
                    del self._topics[topic]
        return True

    def _join(self, connection: Connection, topic: str):
        connection.topics.add(topic)
        self._topics[topic].add(connection.id)

    async def connection_count(self) -> int:
        async with self._lock:
            return len(self._connections)

    async def topic_members(self, topic: str) -> List[str]:
        async with self._lock:
            return sorted(self._topics.get(topic, ()))

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def publish_to_user(self, user_id: int, event: str, data: Dict[str, Any]) -> int:
        return await self.publish(user_topic(user_id), event, data)

    async def publish_to_role(self, role, event: str, data: Dict[str, Any]) -> int:
        return await self.publish(role_topic(role), event, data)

    async def publish_to_equipment(self, equipment_external_id: str, event: str, data: Dict[str, Any]) -> int:
        return await self.publish(equipment_topic(equipment_external_id), event, data)

    async def publish_to_all(self, event: str, data: Dict[str, Any]) -> int:
        return await self.publish(BROADCAST, event, data)

    async def publish(self, topic: str, event: str, data: Dict[str, Any]) -> int:
        """
        Push ``event`` to every connection on ``topic``.

        Returns the number of local deliveries; 0 when the event was handed
        to the relay. Never raises.
        """
        envelope = {
            "topic": topic,
            "event": event,
            "data": serialize_dates(data or {}),
            "timestamp": utcnow().isoformat(),
        }
        if self._relay is not None:
            try:
                await self._relay.publish(envelope)
                return 0
            except Exception as e:
                logger.warning(f"Relay publish failed for {topic}/{event}, delivering locally: {e}")
        return await self._deliver_envelope(envelope)

    async def _deliver_envelope(self, envelope: dict) -> int:
        topic = envelope.get("topic")
        async with self._lock:
            if topic == BROADCAST:
                targets = list(self._connections.values())
            else:
                targets = [self._connections[cid] for cid in self._topics.get(topic, ()) if cid in self._connections]

        if not targets:
            logger.debug(f"No subscribers for {topic}/{envelope.get('event')}")
            return 0

        payload = json.dumps({
            "event": envelope.get("event"),
            "topic": topic,
            "data": envelope.get("data"),
            "timestamp": envelope.get("timestamp"),
        })
        results = await asyncio.gather(*(self._send(connection, payload) for connection in targets))
        return sum(1 for delivered in results if delivered)

    async def _send(self, connection: Connection, payload: str) -> bool:
        try:
            await asyncio.wait_for(connection.websocket.send_text(payload), timeout=self._send_timeout)
            return True
        except Exception as e:
            logger.warning(f"Dropping connection {connection.id} for user {connection.user_id}: {e!r}")
            await self._drop(connection)
            return False

    async def _drop(self, connection: Connection):
        if not await self.disconnect(connection.id):
            return
        # The client only learns it was dropped from the close frame
        try:
            await connection.websocket.close(code=1011)
        except Exception as e:
            logger.debug(f"Closing dropped connection {connection.id} failed: {e!r}")

