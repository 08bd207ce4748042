import json
import math

import pytest
import trio
from trio_websocket import CloseReason, ConnectionClosed

from erebus.core.event import EventDispatcher, EventManager
from erebus.core.gateway import GatewayHandler, GatewayInfo
from erebus.core.state import SessionState

GATEWAY_URL = "wss://gateway.test"

READY = {
    "op": 0,
    "t": "READY",
    "s": 1,
    "d": {
        "session_id": "abc",
        "user": {"id": "1", "username": "erebus", "discriminator": "0001", "bot": True},
        "guilds": [{"id": "10", "unavailable": True}],
    },
}

HELLO = {"op": 10, "d": {"heartbeat_interval": 41250}}
HEARTBEAT_ACK = {"op": 11}


class FakeWebsocket(object):
    """
    Stands in for a trio-websocket connection.

    Frames the client sends are decoded into ``sent``; frames pushed with :meth:`feed` come
    back out of :meth:`get_message`.
    """

    def __init__(self, url: str):
        self.url = url
        self.sent = []
        self.closed = None

        self._send, self._receive = trio.open_memory_channel(math.inf)

    def feed(self, frame) -> None:
        if isinstance(frame, dict):
            frame = json.dumps(frame)

        self._send.send_nowait(frame)

    def remote_close(self, code: int, reason: str = "") -> None:
        self._send.send_nowait(CloseReason(code, reason))

    def sent_ops(self, op: int):
        return [frame for frame in self.sent if frame["op"] == op]

    async def get_message(self):
        item = await self._receive.receive()
        if isinstance(item, CloseReason):
            raise ConnectionClosed(item)

        return item

    async def send_message(self, message: str) -> None:
        if self.closed is not None:
            raise ConnectionClosed(self.closed)

        self.sent.append(json.loads(message))

    async def aclose(self, code: int = 1000, reason: str = None) -> None:
        if self.closed is None:
            self.closed = CloseReason(code, reason)
            self._send.send_nowait(self.closed)


class FakeConnector(object):
    """
    Hands out a fresh :class:`FakeWebsocket` per connection, and remembers them all.
    """

    def __init__(self):
        self.websockets = []

    async def __call__(self, nursery, url):
        websocket = FakeWebsocket(url)
        self.websockets.append(websocket)
        return websocket

    @property
    def latest(self) -> FakeWebsocket:
        return self.websockets[-1]


async def resolve_url() -> str:
    return GATEWAY_URL


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def info():
    return GatewayInfo(token="token")


@pytest.fixture
def gateway(info, connector):
    state = SessionState()
    dispatcher = EventDispatcher(state, EventManager())
    return GatewayHandler(info, state, dispatcher, url_resolver=resolve_url, connector=connector)
