"""Length-prefixed JSON messages exchanged between playground peers.

Every frame on the wire is a 4-byte big-endian length followed by that many
bytes of compact JSON holding an object with a ``header`` and a ``body``.
"""

from __future__ import annotations

import json
import select
import socket
import struct
from dataclasses import dataclass

MAX_PAYLOAD_LEN = 30000
LENGTH_PREFIX_SIZE = 4
PARTIAL_READ_TIMEOUT = 5.0

_PREFIX = struct.Struct(">I")
_DESERIALIZE_FAILED = "Failed to Deserialize on read"


class ProtocolError(Exception):
    """A frame that could not be produced or understood.

    Raised for oversized frames and undecodable payloads; transport failures
    surface as ``OSError`` instead.
    """


@dataclass
class Message:
    """One unit of conversation: a header naming the kind, and a text body."""

    header: str = ""
    body: str = ""

    def is_empty(self) -> bool:
        """Return True when both header and body are empty."""
        return not self.header and not self.body

    def clear(self) -> None:
        """Reset header and body to empty strings."""
        self.header = ""
        self.body = ""

    def to_json(self) -> str:
        """Serialize to compact JSON."""
        return json.dumps(
            {"header": self.header, "body": self.body},
            ensure_ascii=False,
            separators=(",", ":"),
        )

    @classmethod
    def from_json(cls, text: str) -> "Message":
        """Parse a JSON object with string ``header`` and ``body`` fields."""
        try:
            data = json.loads(text)
        except (json.JSONDecodeError, TypeError) as exc:
            raise ProtocolError(_DESERIALIZE_FAILED) from exc
        if not isinstance(data, dict):
            raise ProtocolError(_DESERIALIZE_FAILED)
        header = data.get("header")
        body = data.get("body")
        if not isinstance(header, str) or not isinstance(body, str):
            raise ProtocolError(_DESERIALIZE_FAILED)
        return cls(header, body)

    def __str__(self) -> str:
        if self.is_empty():
            return "{}"
        text = "{"
        if self.header:
            text += f"\n\theader: {self.header}"
        if self.body:
            text += f"\n\tbody: {self.body}"
        return text + "\n}"


def encode_message(message: Message) -> bytes:
    """Return the full wire frame for ``message``: length prefix plus JSON."""
    try:
        payload = message.to_json().encode("utf-8")
    except UnicodeEncodeError as exc:
        raise ProtocolError("Failed to serialize message") from exc
    return _PREFIX.pack(len(payload)) + payload


def decode_payload(data: bytes) -> Message:
    """Decode a frame payload (without prefix) into a Message.

    Invalid UTF-8 is replaced rather than rejected, and surrounding
    whitespace is ignored.
    """
    text = data.decode("utf-8", errors="replace").strip()
    return Message.from_json(text)


def _wait_readable(sock: socket.socket) -> None:
    ready, _, _ = select.select([sock], [], [], PARTIAL_READ_TIMEOUT)
    if not ready:
        raise TimeoutError("timed out waiting for the rest of a frame")


def _recv_exact(sock: socket.socket, size: int, *, started: bool) -> bytes:
    buffer = bytearray()
    while len(buffer) < size:
        try:
            chunk = sock.recv(size - len(buffer))
        except BlockingIOError:
            # Nothing at all is pending: let the caller poll again later.
            if not started and not buffer:
                raise
            _wait_readable(sock)
            continue
        if not chunk:
            raise ConnectionError("unexpected end of stream")
        buffer += chunk
    return bytes(buffer)


def read_message(sock: socket.socket) -> Message:
    """Read one frame from ``sock``.

    On a non-blocking socket with nothing pending, ``BlockingIOError`` is
    raised. A closed peer raises ``ConnectionError``. Frames larger than
    ``MAX_PAYLOAD_LEN`` or holding bad JSON raise ``ProtocolError``.
    """
    prefix = _recv_exact(sock, LENGTH_PREFIX_SIZE, started=False)
    (length,) = _PREFIX.unpack(prefix)
    if length > MAX_PAYLOAD_LEN:
        raise ProtocolError("data too large to read")
    payload = _recv_exact(sock, length, started=True) if length else b""
    return decode_payload(payload)


def write_message(sock: socket.socket, message: Message) -> None:
    """Send ``message`` as one frame over ``sock``."""
    sock.sendall(encode_message(message))