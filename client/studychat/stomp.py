"""STOMP 1.2 frame encoding and decoding for WebSocket text frames."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Tuple

NULL = "\x00"
EOL = "\n"
SUPPORTED_VERSIONS = "1.2,1.1,1.0"
SUBPROTOCOLS = ["v12.stomp", "v11.stomp", "v10.stomp"]

# CONNECT and CONNECTED headers are never escaped (STOMP 1.2, "Value Encoding").
_RAW_HEADER_COMMANDS = {"CONNECT", "CONNECTED"}

_ESCAPES = {"\\": "\\\\", "\r": "\\r", "\n": "\\n", ":": "\\c"}
_UNESCAPES = {"\\": "\\", "r": "\r", "n": "\n", "c": ":"}


@dataclass(frozen=True)
class Frame:
    command: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""


def _escape(value: str) -> str:
    return "".join(_ESCAPES.get(ch, ch) for ch in value)


def _unescape(value: str) -> str:
    out: List[str] = []
    chars = iter(value)
    for ch in chars:
        if ch == "\\":
            nxt = next(chars, "")
            out.append(_UNESCAPES.get(nxt, nxt))
        else:
            out.append(ch)
    return "".join(out)


def encode_frame(frame: Frame) -> str:
    raw = frame.command in _RAW_HEADER_COMMANDS
    lines = [frame.command]
    for key, value in frame.headers.items():
        key, value = str(key), str(value)
        if not raw:
            key, value = _escape(key), _escape(value)
        lines.append(f"{key}:{value}")
    return EOL.join(lines) + EOL + EOL + frame.body + NULL


class FrameDecoder:
    """Incremental decoder; ``feed`` returns every complete frame buffered so far."""

    def __init__(self) -> None:
        self._buffer = bytearray()

    def feed(self, data: str | bytes) -> List[Frame]:
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._buffer.extend(data)
        frames: List[Frame] = []
        while True:
            self._skip_heartbeats()
            frame = self._next_frame()
            if frame is None:
                break
            frames.append(frame)
        return frames

    def reset(self) -> None:
        self._buffer.clear()

    def _skip_heartbeats(self) -> None:
        strip = 0
        while strip < len(self._buffer) and self._buffer[strip] in (0x0A, 0x0D):
            strip += 1
        if strip:
            del self._buffer[:strip]

    def _next_frame(self) -> Frame | None:
        buf = self._buffer
        head_end = buf.find(b"\n\n")
        sep_len = 2
        crlf_end = buf.find(b"\r\n\r\n")
        if crlf_end != -1 and (head_end == -1 or crlf_end < head_end):
            head_end, sep_len = crlf_end, 4
        if head_end == -1:
            return None

        head = buf[:head_end].decode("utf-8", errors="replace")
        lines = [line.rstrip("\r") for line in head.split("\n")]
        command = lines[0]
        raw = command in _RAW_HEADER_COMMANDS
        headers: Dict[str, str] = {}
        for line in lines[1:]:
            key, sep, value = line.partition(":")
            if not sep:
                continue
            if not raw:
                key, value = _unescape(key), _unescape(value)
            headers.setdefault(key, value)

        body_start = head_end + sep_len
        length = headers.get("content-length")
        if length is not None and length.strip().isdigit():
            body_end = body_start + int(length)
            if len(buf) < body_end + 1:
                return None
        else:
            body_end = buf.find(b"\x00", body_start)
            if body_end == -1:
                return None

        body = buf[body_start:body_end].decode("utf-8", errors="replace")
        del buf[: body_end + 1]
        return Frame(command=command, headers=headers, body=body)


def heartbeat_header(outgoing_ms: int, incoming_ms: int) -> str:
    return f"{max(outgoing_ms, 0)},{max(incoming_ms, 0)}"


def negotiate_heartbeat(outgoing_ms: int, incoming_ms: int, server_header: str | None) -> Tuple[float, float]:
    """Return the effective (send, expect) heart-beat periods in seconds; 0 disables."""
    try:
        server_out, server_in = (int(part) for part in (server_header or "0,0").split(","))
    except ValueError:
        server_out, server_in = 0, 0
    send = max(outgoing_ms, server_in) if outgoing_ms and server_in else 0
    expect = max(incoming_ms, server_out) if incoming_ms and server_out else 0
    return send / 1000.0, expect / 1000.0


def connect_frame(host: str, outgoing_ms: int, incoming_ms: int, extra: Dict[str, str] | None = None) -> Frame:
    headers = {
        "accept-version": SUPPORTED_VERSIONS,
        "host": host,
        "heart-beat": heartbeat_header(outgoing_ms, incoming_ms),
    }
    headers.update(extra or {})
    return Frame("CONNECT", headers)


def subscribe_frame(subscription_id: str, destination: str) -> Frame:
    return Frame("SUBSCRIBE", {"id": subscription_id, "destination": destination, "ack": "auto"})


def unsubscribe_frame(subscription_id: str) -> Frame:
    return Frame("UNSUBSCRIBE", {"id": subscription_id})


def send_frame(destination: str, body: str) -> Frame:
    return Frame(
        "SEND",
        {
            "destination": destination,
            "content-type": "application/json",
            "content-length": str(len(body.encode("utf-8"))),
        },
        body,
    )


def disconnect_frame() -> Frame:
    return Frame("DISCONNECT")
