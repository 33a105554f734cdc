"""Test fixtures: in-memory transport and websocket doubles."""
import asyncio
import json

import pytest
import websockets


class FakeTransport:
    """Records every send instead of delivering it."""

    def __init__(self, connected=()):
        self.connected = set(connected)
        self.sent = []

    def is_connected(self, peer_id):
        return peer_id in self.connected

    def send(self, peer_id, event, data=None):
        if peer_id not in self.connected:
            return False
        self.sent.append((peer_id, event, data))
        return True

    def events_for(self, peer_id):
        return [(event, data) for p, event, data in self.sent if p == peer_id]


class FakeWebSocket:
    """Plays back ``frames`` as inbound messages and collects outbound ones."""

    remote_address = ("127.0.0.1", 50000)

    def __init__(self, frames=(), close_with_error=False):
        self.frames = list(frames)
        self.close_with_error = close_with_error
        self.outbox = []

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self.frames:
            yield frame
            # 让 writer 任务有机会把回包发出去
            for _ in range(5):
                await asyncio.sleep(0)
        if self.close_with_error:
            raise websockets.ConnectionClosed(None, None)

    async def send(self, msg):
        self.outbox.append(json.loads(msg))


def frame(event, data=None):
    return json.dumps({"event": event, "data": data})


@pytest.fixture
def transport():
    return FakeTransport(connected={"A", "B", "C", "D", "E"})
