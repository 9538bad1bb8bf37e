import asyncio
import pytest
from labwatch.models.shared.enums import Role
from labwatch.services.realtime.publisher import ALL_ALERTS_TOPIC, RealtimePublisher, equipment_topic, initial_topics


class FailingRelay:
    async def publish(self, envelope):
        raise ConnectionError("redis down")


class RecordingRelay:
    def __init__(self):
        self.envelopes = []

    async def publish(self, envelope):
        self.envelopes.append(envelope)


@pytest.mark.asyncio
class TestRealtimePublisher:
    """Topic routing and connection housekeeping"""

    async def test_connect_joins_user_and_role_topics(self, fake_socket):
        publisher = RealtimePublisher()
        connection_id = await publisher.connect(fake_socket(), 5, Role.LAB_MANAGER)

        assert await publisher.topic_members("user:5") == [connection_id]
        assert await publisher.topic_members("role:LAB_MANAGER") == [connection_id]
        assert await publisher.topic_members(ALL_ALERTS_TOPIC) == []

    async def test_only_policy_makers_get_the_unscoped_alert_feed(self, fake_socket):
        publisher = RealtimePublisher()
        policy, manager, trainer = fake_socket(), fake_socket(), fake_socket()
        policy_id = await publisher.connect(policy, 1, Role.POLICY_MAKER)
        await publisher.connect(manager, 2, Role.LAB_MANAGER)
        await publisher.connect(trainer, 3, Role.TRAINER)

        assert await publisher.publish(ALL_ALERTS_TOPIC, "alert:new", {"equipment_id": "WELD-9"}) == 1
        assert await publisher.topic_members(ALL_ALERTS_TOPIC) == [policy_id]
        assert policy.events() == ["alert:new"]
        assert manager.sent == [] and trainer.sent == []
        assert initial_topics(3, Role.TRAINER) == ["user:3", "role:TRAINER"]

    async def test_publish_reaches_only_topic_members(self, fake_socket):
        publisher = RealtimePublisher()
        watcher, bystander = fake_socket(), fake_socket()
        watcher_id = await publisher.connect(watcher, 1, Role.TRAINER)
        await publisher.connect(bystander, 2, Role.TRAINER)
        await publisher.subscribe(watcher_id, equipment_topic("LATHE-1"))

        delivered = await publisher.publish_to_equipment("LATHE-1", "equipment:status", {"temperature": 40.0})

        assert delivered == 1
        assert watcher.events() == ["equipment:status"]
        assert watcher.sent[0]["topic"] == "equipment:LATHE-1"
        assert watcher.sent[0]["data"] == {"temperature": 40.0}
        assert "timestamp" in watcher.sent[0]
        assert bystander.sent == []

    async def test_user_and_role_topics(self, fake_socket):
        publisher = RealtimePublisher()
        manager, policy = fake_socket(), fake_socket()
        await publisher.connect(manager, 1, Role.LAB_MANAGER)
        await publisher.connect(policy, 2, Role.POLICY_MAKER)

        await publisher.publish_to_user(1, "notification:new", {"id": 9})
        await publisher.publish_to_role(Role.POLICY_MAKER, "reorder:requested", {"id": 3})

        assert manager.events() == ["notification:new"]
        assert policy.events() == ["reorder:requested"]

    async def test_broadcast_reaches_everyone(self, fake_socket):
        publisher = RealtimePublisher()
        sockets = [fake_socket() for _ in range(3)]
        for user_id, socket in enumerate(sockets, start=1):
            await publisher.connect(socket, user_id, Role.TRAINER)

        assert await publisher.publish_to_all("equipment:status:update", {}) == 3
        assert all(s.events() == ["equipment:status:update"] for s in sockets)

    async def test_failed_send_drops_connection_without_raising(self, fake_socket):
        publisher = RealtimePublisher()
        healthy, broken = fake_socket(), fake_socket(fail=True)
        await publisher.connect(healthy, 1, Role.POLICY_MAKER)
        await publisher.connect(broken, 2, Role.POLICY_MAKER)

        delivered = await publisher.publish(ALL_ALERTS_TOPIC, "alert:new", {"id": 1})

        assert delivered == 1
        assert await publisher.connection_count() == 1
        assert len(await publisher.topic_members(ALL_ALERTS_TOPIC)) == 1
        assert broken.close_code == 1011
        assert healthy.close_code is None

    async def test_slow_send_times_out_and_drops(self, fake_socket):
        class SlowSocket(fake_socket):
            async def send_text(self, payload):
                await asyncio.sleep(1)

        publisher = RealtimePublisher(send_timeout=0.01)
        await publisher.connect(SlowSocket(), 1, Role.POLICY_MAKER)

        assert await publisher.publish(ALL_ALERTS_TOPIC, "alert:new", {}) == 0
        assert await publisher.connection_count() == 0

    async def test_dropped_socket_is_closed_so_the_client_reconnects(self, fake_socket):
        class SlowSocket(fake_socket):
            async def send_text(self, payload):
                await asyncio.sleep(1)

        publisher = RealtimePublisher(send_timeout=0.01)
        socket = SlowSocket()
        await publisher.connect(socket, 1, Role.TRAINER)

        await publisher.publish_to_user(1, "notification:new", {"id": 2})
        # A second failing push finds nothing left to close
        await publisher.publish_to_user(1, "notification:new", {"id": 3})

        assert socket.close_code == 1011
        assert await publisher.topic_members("user:1") == []

    async def test_unsubscribe_and_disconnect_clean_up_topics(self, fake_socket):
        publisher = RealtimePublisher()
        connection_id = await publisher.connect(fake_socket(), 1, Role.TRAINER)
        topic = equipment_topic("MILL-2")
        await publisher.subscribe(connection_id, topic)

        assert await publisher.unsubscribe(connection_id, topic)
        assert not await publisher.unsubscribe(connection_id, topic)
        assert await publisher.topic_members(topic) == []

        await publisher.disconnect(connection_id)
        assert await publisher.topic_members("user:1") == []
        assert not await publisher.subscribe(connection_id, topic)

    async def test_relay_takes_over_delivery(self, fake_socket):
        relay = RecordingRelay()
        publisher = RealtimePublisher(relay=relay)
        socket = fake_socket()
        await publisher.connect(socket, 1, Role.POLICY_MAKER)

        assert await publisher.publish(ALL_ALERTS_TOPIC, "alert:new", {"id": 4}) == 0
        assert socket.sent == []
        assert relay.envelopes[0]["event"] == "alert:new"

        # What the relay listener hands back is delivered locally
        assert await publisher._deliver_envelope(relay.envelopes[0]) == 1
        assert socket.events() == ["alert:new"]

    async def test_relay_failure_falls_back_to_local_delivery(self, fake_socket):
        publisher = RealtimePublisher(relay=FailingRelay())
        socket = fake_socket()
        await publisher.connect(socket, 1, Role.POLICY_MAKER)

        assert await publisher.publish(ALL_ALERTS_TOPIC, "alert:new", {"id": 4}) == 1

    async def test_shutdown_closes_sockets(self, fake_socket):
        publisher = RealtimePublisher()
        socket = fake_socket()
        await publisher.connect(socket, 1, Role.TRAINER)

        await publisher.shutdown()

        assert socket.close_code == 1001
        assert await publisher.connection_count() == 0
