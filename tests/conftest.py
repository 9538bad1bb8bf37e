import json
import pytest


class FakeWebSocket:
    """Stands in for an accepted starlette WebSocket on the publisher side"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []
        self.close_code = None

    async def send_text(self, payload: str):
        if self.fail:
            raise RuntimeError("socket is gone")
        self.sent.append(json.loads(payload))

    async def close(self, code: int = 1000):
        self.close_code = code

    def events(self, topic: str = None):
        return [m["event"] for m in self.sent if topic is None or m["topic"] == topic]

    def messages(self, event: str):
        return [m for m in self.sent if m["event"] == event]


@pytest.fixture
def fake_socket():
    """Factory for recording websockets"""
    return FakeWebSocket
