import json
import logging
from typing import Optional
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query, status
from labwatch.api.dependencies import get_user_for_token
from labwatch.auth.permissions import Actor, EquipmentScope, scope_covers
from labwatch.core.exceptions import NotFoundError
from labwatch.services.realtime.publisher import equipment_topic, initial_topics
from labwatch.services.telemetry.telemetry_store import TelemetryStore
from labwatch.utils.date_time_serializer import utcnow

router = APIRouter()
logger = logging.getLogger(__name__)


def _bearer_from_headers(websocket: WebSocket) -> Optional[str]:
    authorization = websocket.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials
    return None


async def _send(websocket: WebSocket, event: str, data: dict = None):
    await websocket.send_text(json.dumps({
        "event": event,
        "data": data or {},
        "timestamp": utcnow().isoformat(),
    }))


@router.websocket("/ws")
async def realtime_endpoint(websocket: WebSocket, token: Optional[str] = Query(None)):
    """
    Authenticated push channel.

    The token comes from the ``token`` query parameter or an
    ``Authorization: Bearer`` header; a bad token closes the socket with
    1008 before it is accepted. Client messages are JSON objects with a
    ``type`` of ``ping``, ``subscribe:equipment`` or ``unsubscribe:equipment``.
    """
    publisher = websocket.app.state.publisher
    session_factory = websocket.app.state.session_factory

    async with session_factory() as session:
        user = await get_user_for_token(token or _bearer_from_headers(websocket), session)
    if user is None:
        logger.warning("Rejected real-time connection with missing or invalid token")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Authentication failed")
        return

    actor = Actor.from_user(user)
    await websocket.accept()
    connection_id = await publisher.connect(websocket, actor.user_id, actor.role)

    try:
        await _send(websocket, "connected", {
            "user_id": actor.user_id,
            "role": actor.role.value,
            "topics": initial_topics(actor.user_id, actor.role),
        })

        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                message = None
            if not isinstance(message, dict):
                await _send(websocket, "error", {"message": "Messages must be JSON objects"})
                continue

            message_type = message.get("type")
            if message_type == "ping":
                await _send(websocket, "pong")
            elif message_type in ("subscribe:equipment", "unsubscribe:equipment"):
                await _handle_equipment_subscription(
                    websocket, publisher, session_factory, connection_id, actor, message_type,
                    message.get("equipment_id") or message.get("equipmentId"),
                )
            else:
                await _send(websocket, "error", {"message": f"Unknown message type: {message_type}"})

    except WebSocketDisconnect:
        logger.debug(f"Client disconnected, connection {connection_id}")
    except RuntimeError as e:
        # Socket already closed by the publisher after a failed push
        logger.info(f"Connection {connection_id} ended after publisher close: {e}")
    finally:
        await publisher.disconnect(connection_id)


async def _handle_equipment_subscription(websocket, publisher, session_factory, connection_id: str,
                                         actor: Actor, message_type: str, equipment_id: Optional[str]):
    if not equipment_id:
        await _send(websocket, "error", {"message": "equipment_id is required"})
        return

    topic = equipment_topic(equipment_id)
    if message_type == "unsubscribe:equipment":
        await publisher.unsubscribe(connection_id, topic)
        await _send(websocket, "unsubscribed", {"topic": topic})
        return

    async with session_factory() as session:
        try:
            equipment = await TelemetryStore(session).find_equipment_by_external_id(equipment_id)
        except NotFoundError:
            equipment = None

    if equipment is None or not scope_covers(actor, EquipmentScope.of(equipment)):
        await _send(websocket, "error", {"message": f"Cannot subscribe to {equipment_id}"})
        return

    await publisher.subscribe(connection_id, topic)
    await _send(websocket, "subscribed", {"topic": topic})
