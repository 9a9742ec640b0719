"""Non-blocking client for talking to a playground server."""

from __future__ import annotations

import socket
from contextlib import suppress

from playbox.protocol import Message, ProtocolError, read_message, write_message

DEFAULT_ADDRESS = "127.0.0.1:8000"


class ClientError(Exception):
    """The client could not connect or lost its connection."""


def _parse_address(address: str | tuple[str, int]) -> tuple[str, int]:
    if isinstance(address, tuple):
        host, port = address
        return host, int(port)
    host, sep, port = address.rpartition(":")
    if not sep or not host:
        raise ValueError(f"address {address!r} is not of the form host:port")
    return host, int(port)


class PlaygroundClient:
    """A connection to a playground server, polled without blocking."""

    def __init__(self, sock: socket.socket | None = None) -> None:
        self.sock = sock

    @classmethod
    def connect(cls, address: str | tuple[str, int] = DEFAULT_ADDRESS) -> "PlaygroundClient":
        """Connect to ``address`` and switch the socket to non-blocking mode."""
        try:
            sock = socket.create_connection(_parse_address(address))
        except (OSError, ValueError) as exc:
            raise ClientError(f"Error: Trying to connect to {address} failed") from exc
        try:
            sock.setblocking(False)
        except OSError as exc:
            sock.close()
            raise ClientError("The stream could not be set properly") from exc
        return cls(sock)

    def read(self) -> Message | None:
        """Return the next message, or None when nothing usable is pending.

        Corrupted frames and ``request_corrupted`` notices yield None; a lost
        connection raises ``ClientError``.
        """
        if self.sock is None:
            raise ClientError("TcpClient was not initialized")
        try:
            message = read_message(self.sock)
        except (ProtocolError, BlockingIOError):
            return None
        except OSError as exc:
            raise ClientError(f"Client error while listening: {exc!r}") from exc
        if message.header == "request_corrupted":
            return None
        return message

    def _send(self, message: Message) -> None:
        if self.sock is None:
            return
        with suppress(OSError, ProtocolError):
            write_message(self.sock, message)

    def send_run_compile(self, source: str) -> None:
        """Ask the server to compile and run ``source``."""
        self._send(Message("run&compile", source))

    def send_input(self, text: str) -> None:
        """Forward ``text`` to the running program's standard input."""
        self._send(Message("input", text))

    def shutdown(self) -> None:
        """Tell the server to stop, then close the connection."""
        if self.sock is not None:
            self._send(Message("shutdown", ""))
            with suppress(OSError):
                self.sock.shutdown(socket.SHUT_RDWR)
            self.sock.close()
        self.sock = None

    def __enter__(self) -> "PlaygroundClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()