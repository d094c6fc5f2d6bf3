import asyncio
import json
from typing import Callable, Dict, List, Optional

import httpx
import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK

from studychat.credentials import TokenStore
from studychat.realtime import RealtimeSession
from studychat.stomp import Frame, FrameDecoder, encode_frame

_CLOSED = object()
_FAILED = object()


class FakeBroker:
    """In-memory stand-in for a STOMP broker's WebSocket."""

    def __init__(self, reply: str = "CONNECTED", server_heartbeat: str = "0,0") -> None:
        self.reply = reply
        self.server_heartbeat = server_heartbeat
        self.raw_sent: List[str] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionClosedOK(None, None)
        self.raw_sent.append(message)
        for frame in FrameDecoder().feed(message):
            if frame.command == "CONNECT":
                if self.reply == "CONNECTED":
                    self.push(Frame("CONNECTED", {"version": "1.2", "heart-beat": self.server_heartbeat}))
                else:
                    self.push(Frame("ERROR", {"message": "Access denied"}, "bad credentials"))

    async def recv(self) -> str:
        item = await self._inbox.get()
        if item is _CLOSED:
            raise ConnectionClosedOK(None, None)
        if item is _FAILED:
            raise ConnectionClosedError(None, None)
        return item

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(_CLOSED)

    def push(self, frame: Frame) -> None:
        self._inbox.put_nowait(encode_frame(frame))

    def push_raw(self, data: str | bytes) -> None:
        self._inbox.put_nowait(data)

    def drop(self, error: bool = True) -> None:
        self.closed = True
        self._inbox.put_nowait(_FAILED if error else _CLOSED)

    @property
    def frames(self) -> List[Frame]:
        decoder = FrameDecoder()
        return [frame for raw in self.raw_sent for frame in decoder.feed(raw)]

    def frames_of(self, command: str) -> List[Frame]:
        return [frame for frame in self.frames if frame.command == command]

    def subscription_id(self, destination: str) -> str:
        subscribes = [f for f in self.frames_of("SUBSCRIBE") if f.headers["destination"] == destination]
        return subscribes[-1].headers["id"]

    def deliver(self, destination: str, body: dict | str, subscription_id: Optional[str] = None) -> None:
        payload = body if isinstance(body, str) else json.dumps(body)
        self.push(
            Frame(
                "MESSAGE",
                {
                    "destination": destination,
                    "subscription": subscription_id or self.subscription_id(destination),
                    "message-id": str(len(self.raw_sent)),
                },
                payload,
            )
        )


class BrokerFactory:
    """Connector that hands out a fresh FakeBroker per connection attempt."""

    def __init__(self, **broker_kwargs) -> None:
        self.broker_kwargs = broker_kwargs
        self.brokers: List[FakeBroker] = []
        self.urls: List[str] = []
        self.failures: List[BaseException] = []

    async def __call__(self, url: str) -> FakeBroker:
        self.urls.append(url)
        if self.failures:
            raise self.failures.pop(0)
        broker = FakeBroker(**self.broker_kwargs)
        self.brokers.append(broker)
        return broker

    @property
    def current(self) -> FakeBroker:
        return self.brokers[-1]


def chat_message(message_id: int, content: str = "hi", group_id: int = 42, **extra) -> dict:
    data = {
        "id": message_id,
        "group": {"id": group_id, "name": "Algorithms"},
        "sender": {"id": 7, "name": "Ada", "email": "ada@example.edu"},
        "content": content,
        "type": "TEXT",
        "timestamp": "2024-03-01T10:15:00",
    }
    data.update(extra)
    return data


@pytest.fixture
def broker_factory() -> BrokerFactory:
    return BrokerFactory()


@pytest.fixture
async def session(broker_factory):
    realtime = RealtimeSession(
        "ws://chat.example.edu/ws",
        reconnect_delay=0,
        heartbeat_outgoing_ms=0,
        heartbeat_incoming_ms=0,
        connect_timeout=1.0,
        connector=broker_factory,
    )
    yield realtime
    await realtime.disconnect()


@pytest.fixture
def tokens() -> TokenStore:
    return TokenStore(session_token="test-token")


class Recorder:
    """Collects callback arguments and lets a test await the next one."""

    def __init__(self) -> None:
        self.items: list = []
        self._queue: asyncio.Queue = asyncio.Queue()

    def __call__(self, *args):
        item = args[0] if len(args) == 1 else args
        self.items.append(item)
        self._queue.put_nowait(item)

    async def next(self, timeout: float = 1.0):
        return await asyncio.wait_for(self._queue.get(), timeout)


@pytest.fixture
def recorder() -> Callable[[], Recorder]:
    return Recorder


def mock_transport(routes: Dict[str, Callable[[httpx.Request], httpx.Response]], calls: Optional[list] = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        key = f"{request.method} {request.url.path}"
        if key not in routes:
            return httpx.Response(404, json={"error": f"no route for {key}"})
        return routes[key](request)

    return httpx.MockTransport(handler)
