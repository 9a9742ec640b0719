"""A console client that sends queued requests and prints server replies."""

from __future__ import annotations

import socket
import sys
import time
from collections import deque
from collections.abc import Iterable

from playbox.protocol import Message, ProtocolError, read_message, write_message
from playbox.tcpclient import DEFAULT_ADDRESS, ClientError, _parse_address

POLL_INTERVAL = 0.2
DEFAULT_PROGRAM = 'fn main(){println!("Hello from the console client!")}'


def _default_requests() -> list[Message]:
    return [Message("run&compile", DEFAULT_PROGRAM)]


def spawn_client(address: str | tuple[str, int] = DEFAULT_ADDRESS) -> list[Message]:
    """Connect to a server, send the default request and print the replies.

    Returns every message received from the server.
    """
    print("Client started!")
    try:
        sock = socket.create_connection(_parse_address(address))
    except (OSError, ValueError) as exc:
        raise ClientError("Couldn't connect to server...") from exc
    with sock:
        try:
            sock.setblocking(False)
        except OSError as exc:
            raise ClientError("The stream could not be set properly") from exc
        return rw_client(sock, _default_requests())


def rw_client(sock: socket.socket, requests: Iterable[Message] | None = None) -> list[Message]:
    """Alternate reading replies and writing queued requests until ``exit``.

    Stops when the server sends an ``exit`` message or the connection fails.
    Returns every message received.
    """
    pending = deque(_default_requests() if requests is None else requests)
    received: list[Message] = []
    shutdown = False

    while not shutdown:
        while True:
            try:
                message = read_message(sock)
            except BlockingIOError:
                break
            except ProtocolError as exc:
                print(exc, file=sys.stderr)
                continue
            except OSError as exc:
                print(f"Client error while listening: {exc}", file=sys.stderr)
                shutdown = True
                break
            print(f"[server]: {message}")
            received.append(message)
            if message.header == "exit":
                shutdown = True
                break

        while pending:
            request = pending.popleft()
            try:
                write_message(sock, request)
            except BlockingIOError:
                pass
            except ProtocolError as exc:
                print(exc, file=sys.stderr)
            except OSError as exc:
                print(f"Client error while writing: {exc}", file=sys.stderr)
                shutdown = True
                break

        time.sleep(POLL_INTERVAL)

    return received