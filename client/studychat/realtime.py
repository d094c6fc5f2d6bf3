"""STOMP-over-WebSocket session shared by every chat surface of one client.

One ``RealtimeSession`` owns one broker connection and multiplexes per-group
topic subscriptions over it, at most one per group id.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import itertools
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Protocol, Set
from urllib.parse import urlsplit

import websockets
from pydantic import BaseModel, ValidationError
from websockets.exceptions import ConnectionClosedOK, WebSocketException

from . import stomp
from .errors import StompError
from .schemas import ChatMessage
from .telemetry import log_event

logger = logging.getLogger(__name__)

TRANSPORT_ERRORS = (WebSocketException, OSError, asyncio.TimeoutError)


def group_topic(group_id: int) -> str:
    return f"/topic/group/{group_id}"


def group_send_destination(group_id: int) -> str:
    return f"/app/chat/{group_id}/send"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"


class Transport(Protocol):
    async def send(self, message: str) -> None: ...

    async def recv(self) -> str | bytes: ...

    async def close(self) -> None: ...


Connector = Callable[[str], Awaitable[Transport]]
MessageHandler = Callable[[ChatMessage], Any]
ConnectedCallback = Callable[[], Any]
ErrorCallback = Callable[[BaseException], Any]


async def open_websocket(url: str, open_timeout: float = 10.0) -> Transport:
    # STOMP heart-beats replace the library's own ping/pong keep-alive.
    return await websockets.connect(
        url,
        subprotocols=stomp.SUBPROTOCOLS,
        ping_interval=None,
        open_timeout=open_timeout,
    )


@dataclass
class GroupSubscription:
    group_id: int
    subscription_id: str
    destination: str
    on_message: MessageHandler


async def _invoke(callback: Optional[Callable[..., Any]], *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class RealtimeSession:
    def __init__(
        self,
        broker_url: str,
        *,
        reconnect_delay: float = 5.0,
        max_reconnect_attempts: Optional[int] = None,
        heartbeat_outgoing_ms: int = 4000,
        heartbeat_incoming_ms: int = 4000,
        connect_timeout: float = 10.0,
        connect_headers: Optional[Callable[[], Mapping[str, str]]] = None,
        connector: Optional[Connector] = None,
    ) -> None:
        self.broker_url = broker_url
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_attempts = max_reconnect_attempts
        self.heartbeat_outgoing_ms = heartbeat_outgoing_ms
        self.heartbeat_incoming_ms = heartbeat_incoming_ms
        self.connect_timeout = connect_timeout
        self._connect_headers = connect_headers
        self._connector: Connector = connector or (lambda url: open_websocket(url, connect_timeout))

        self.state = ConnectionState.DISCONNECTED
        self._transport: Optional[Transport] = None
        self._decoder = stomp.FrameDecoder()
        self._subscriptions: Dict[int, GroupSubscription] = {}
        self._ids = itertools.count()
        self._runner: Optional[asyncio.Task] = None
        self._closing = False
        self._connected_event = asyncio.Event()
        self._connected_listeners: List[ConnectedCallback] = []
        self._error_listeners: List[ErrorCallback] = []
        self._callback_tasks: Set[asyncio.Task] = set()
        self._backlog: List[stomp.Frame] = []
        self._send_every = 0.0
        self._expect_every = 0.0
        self._last_sent = 0.0

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED and self._transport is not None

    @property
    def active_groups(self) -> List[int]:
        return list(self._subscriptions)

    def has_subscription(self, group_id: int) -> bool:
        return group_id in self._subscriptions

    def remove_callbacks(self, *callbacks: Callable[..., Any]) -> None:
        for callback in callbacks:
            for listeners in (self._connected_listeners, self._error_listeners):
                if callback in listeners:
                    listeners.remove(callback)

    # lifecycle

    def connect(
        self,
        on_connected: Optional[ConnectedCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        """Open the shared connection, or report the one already open.

        Must be called from a running event loop. Returns immediately; the
        outcome is reported through the callbacks, which stay registered until
        ``disconnect`` so every later handshake and failure reaches them too.
        """
        if on_connected is not None and on_connected not in self._connected_listeners:
            self._connected_listeners.append(on_connected)
        if on_error is not None and on_error not in self._error_listeners:
            self._error_listeners.append(on_error)
        if self.connected:
            if on_connected is not None:
                task = asyncio.get_running_loop().create_task(self._notify([on_connected]))
                self._callback_tasks.add(task)
                task.add_done_callback(self._callback_tasks.discard)
            return
        if self._runner is not None and not self._runner.done():
            return
        self._closing = False
        self.state = ConnectionState.CONNECTING
        self._runner = asyncio.get_running_loop().create_task(self._run())

    async def wait_connected(self, timeout: Optional[float] = None) -> bool:
        if self.connected:
            return True
        try:
            await asyncio.wait_for(self._connected_event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return self.connected

    async def disconnect(self) -> None:
        self._closing = True
        transport = self._transport
        if transport is not None and self.connected:
            self.state = ConnectionState.DISCONNECTING
            for subscription in list(self._subscriptions.values()):
                await self._send_frame(stomp.unsubscribe_frame(subscription.subscription_id))
            await self._send_frame(stomp.disconnect_frame())
        self._subscriptions.clear()
        await self._close_transport()

        runner, self._runner = self._runner, None
        if runner is not None and runner is not asyncio.current_task() and not runner.done():
            runner.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await runner
        for task in list(self._callback_tasks):
            if task is not asyncio.current_task():
                task.cancel()
        self._reset()
        log_event("broker.disconnected", url=self.broker_url, reason="client")

    # subscriptions

    async def subscribe_to_group(self, group_id: int, on_message: MessageHandler) -> bool:
        if not self.connected:
            logger.warning("Cannot subscribe to group %s: not connected", group_id)
            return False

        previous = self._subscriptions.pop(group_id, None)
        subscription = GroupSubscription(
            group_id=group_id,
            subscription_id=f"sub-{next(self._ids)}",
            destination=group_topic(group_id),
            on_message=on_message,
        )
        self._subscriptions[group_id] = subscription

        if previous is not None:
            await self._send_frame(stomp.unsubscribe_frame(previous.subscription_id))
        sent = await self._send_frame(stomp.subscribe_frame(subscription.subscription_id, subscription.destination))
        if not sent:
            if self._subscriptions.get(group_id) is subscription:
                self._subscriptions.pop(group_id)
            return False
        logger.debug("Subscribed to %s as %s", subscription.destination, subscription.subscription_id)
        return True

    async def unsubscribe_from_group(self, group_id: int) -> None:
        subscription = self._subscriptions.pop(group_id, None)
        if subscription is not None and self.connected:
            await self._send_frame(stomp.unsubscribe_frame(subscription.subscription_id))

    # publishing

    async def send_message(self, group_id: int, payload: BaseModel | Mapping[str, Any]) -> bool:
        if not self.connected:
            logger.warning("Cannot send to group %s: not connected", group_id)
            return False
        if isinstance(payload, BaseModel):
            body = payload.model_dump_json(by_alias=True, exclude_none=True)
        else:
            body = json.dumps(payload, default=str)
        return await self._send_frame(stomp.send_frame(group_send_destination(group_id), body))

    # internals

    async def _run(self) -> None:
        attempts = 0
        while not self._stopped():
            self.state = ConnectionState.CONNECTING
            try:
                await self._handshake()
                attempts = 0
                await self._notify(self._connected_listeners)
                await self._pump()
            except ConnectionClosedOK:
                if self._stopped():
                    break
                self._drop_connection()
                log_event("broker.closed", url=self.broker_url)
            except (StompError, ValueError, *TRANSPORT_ERRORS) as exc:
                if self._stopped():
                    break
                await self._fail(exc)

            if self._stopped() or self.reconnect_delay <= 0:
                break
            attempts += 1
            if self.max_reconnect_attempts is not None and attempts > self.max_reconnect_attempts:
                log_event("broker.gave_up", logging.WARNING, url=self.broker_url, attempts=attempts - 1)
                break
            log_event("broker.reconnecting", url=self.broker_url, attempt=attempts, delay=self.reconnect_delay)
            await asyncio.sleep(self.reconnect_delay)

        if not self._stopped():
            self.state = ConnectionState.DISCONNECTED

    def _stopped(self) -> bool:
        # A runner orphaned by disconnect() must not touch the next connection.
        return self._closing or self._runner is not asyncio.current_task()

    async def _handshake(self) -> None:
        self._decoder.reset()
        self._backlog = []
        self._transport = await self._connector(self.broker_url)
        host = urlsplit(self.broker_url).hostname or "localhost"
        extra = dict(self._connect_headers()) if self._connect_headers else {}
        connect = stomp.connect_frame(host, self.heartbeat_outgoing_ms, self.heartbeat_incoming_ms, extra)
        await self._transport.send(stomp.encode_frame(connect))

        reply = await asyncio.wait_for(self._read_frame(self._transport), self.connect_timeout)
        if reply.command == "ERROR":
            raise StompError(reply.headers.get("message", "Broker rejected the connection"), reply.body)
        if reply.command != "CONNECTED":
            raise StompError(f"Unexpected {reply.command} frame during handshake")

        self._send_every, self._expect_every = stomp.negotiate_heartbeat(
            self.heartbeat_outgoing_ms, self.heartbeat_incoming_ms, reply.headers.get("heart-beat")
        )
        self._last_sent = asyncio.get_running_loop().time()
        self.state = ConnectionState.CONNECTED
        self._connected_event.set()
        log_event("broker.connected", url=self.broker_url, version=reply.headers.get("version", "1.0"))

    async def _read_frame(self, transport: Transport) -> stomp.Frame:
        pending: List[stomp.Frame] = []
        while not pending:
            pending = self._decoder.feed(await transport.recv())
        # Frames arriving in the same chunk as CONNECTED are dispatched once connected.
        self._backlog = pending[1:]
        return pending[0]

    async def _pump(self) -> None:
        transport = self._transport
        if transport is None or self._stopped():
            return
        heartbeat = None
        if self._send_every:
            heartbeat = asyncio.get_running_loop().create_task(self._heartbeat())
        # Silence for twice the negotiated period means the broker is gone.
        silence = self._expect_every * 2 or None
        try:
            backlog, self._backlog = self._backlog, []
            for frame in backlog:
                await self._dispatch(frame)
            while True:
                try:
                    data = await asyncio.wait_for(transport.recv(), silence)
                except asyncio.TimeoutError:
                    log_event("broker.heartbeat_missed", logging.WARNING, url=self.broker_url)
                    raise
                for frame in self._decoder.feed(data):
                    await self._dispatch(frame)
        finally:
            if heartbeat is not None:
                heartbeat.cancel()

    async def _heartbeat(self) -> None:
        loop = asyncio.get_running_loop()
        while self.connected:
            await asyncio.sleep(self._send_every / 2)
            if loop.time() - self._last_sent >= self._send_every:
                await self._send_raw(stomp.EOL)

    async def _dispatch(self, frame: stomp.Frame) -> None:
        if frame.command == "MESSAGE":
            await self._deliver(frame)
        elif frame.command == "ERROR":
            raise StompError(frame.headers.get("message", "Broker error"), frame.body)
        else:
            logger.debug("Ignoring %s frame", frame.command)

    async def _deliver(self, frame: stomp.Frame) -> None:
        subscription_id = frame.headers.get("subscription")
        subscription = next(
            (sub for sub in self._subscriptions.values() if sub.subscription_id == subscription_id),
            None,
        )
        if subscription is None:
            logger.debug("Dropping message for released subscription %s", subscription_id)
            return
        try:
            message = ChatMessage.model_validate_json(frame.body)
        except ValidationError as exc:
            logger.error("Failed to parse message on %s: %s", subscription.destination, exc)
            return
        try:
            await _invoke(subscription.on_message, message)
        except Exception:
            logger.exception("Message handler for group %s failed", subscription.group_id)

    async def _send_frame(self, frame: stomp.Frame) -> bool:
        return await self._send_raw(stomp.encode_frame(frame))

    async def _send_raw(self, data: str) -> bool:
        transport = self._transport
        if transport is None:
            return False
        try:
            await transport.send(data)
        except TRANSPORT_ERRORS as exc:
            logger.warning("Send to broker failed: %s", exc)
            return False
        self._last_sent = asyncio.get_running_loop().time()
        return True

    async def _fail(self, exc: BaseException) -> None:
        self._drop_connection()
        log_event("broker.error", logging.ERROR, url=self.broker_url, error=str(exc) or type(exc).__name__)
        await self._notify(self._error_listeners, exc)

    async def _notify(self, listeners: List[Callable[..., Any]], *args: Any) -> None:
        for listener in list(listeners):
            try:
                await _invoke(listener, *args)
            except Exception:
                logger.exception("Connection callback %r failed", listener)

    def _drop_connection(self) -> None:
        self._subscriptions.clear()
        self._connected_event.clear()
        self.state = ConnectionState.DISCONNECTED
        transport, self._transport = self._transport, None
        if transport is not None:
            asyncio.get_running_loop().create_task(self._quiet_close(transport))

    async def _close_transport(self) -> None:
        transport, self._transport = self._transport, None
        if transport is not None:
            await self._quiet_close(transport)

    @staticmethod
    async def _quiet_close(transport: Transport) -> None:
        try:
            await transport.close()
        except TRANSPORT_ERRORS as exc:
            logger.debug("Error while closing broker socket: %s", exc)

    def _reset(self) -> None:
        self.state = ConnectionState.DISCONNECTED
        self._transport = None
        self._decoder.reset()
        self._subscriptions.clear()
        self._connected_event.clear()
        self._connected_listeners.clear()
        self._error_listeners.clear()
        self._closing = False
