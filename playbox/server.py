"""Playground server: accepts clients and runs their submissions."""

from __future__ import annotations

import argparse
import socket
import sys
import threading
import time
from collections.abc import Iterable
from uuid import UUID, uuid4

from playbox.console_client import spawn_client
from playbox.docker import docker_handler
from playbox.protocol import Message, ProtocolError, read_message, write_message
from playbox.tcpclient import DEFAULT_ADDRESS, ClientError, _parse_address

MAX_CLIENTS = 10
POLL_INTERVAL = 0.2

_ROLE_PROMPT = "Insert role:\n0 -> Server\n1 -> Client"
_REFUSAL = "Max clients number reached, refusing further connections"


def handle_client(sock: socket.socket, client_id: UUID | str) -> list[Message]:
    """Serve one client until it sends ``exit`` or the connection fails.

    A ``run&compile`` request compiles and runs its body under ``client_id``.
    Returns every message received from the client.
    """
    try:
        sock.setblocking(False)
    except OSError:
        pass

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
                print(f"Server error while listening: {exc}", file=sys.stderr)
                shutdown = True
                break

            print(f"[client]: {message}")
            received.append(message)
            if message.header == "exit":
                shutdown = True
                break
            if message.header == "run&compile":
                docker_handler(sock, message.body, client_id)

        if not shutdown:
            time.sleep(POLL_INTERVAL)
    return received


def serve(address: str | tuple[str, int] = DEFAULT_ADDRESS, max_clients: int = MAX_CLIENTS) -> None:
    """Listen on ``address`` and serve up to ``max_clients`` clients at once.

    Connections beyond the limit receive an ``exit`` message and are closed.
    Raises ``OSError`` when the address cannot be bound.
    """
    host, port = _parse_address(address)
    try:
        listener = socket.create_server((host, port))
    except OSError as exc:
        raise OSError(f"Fail to bind to address {host}:{port}!") from exc

    active = 0
    lock = threading.Lock()

    def run(conn: socket.socket) -> None:
        nonlocal active
        try:
            with conn:
                handle_client(conn, uuid4())
        finally:
            with lock:
                active -= 1

    with listener:
        print(f"Server listening on {host}:{port} ...")
        while True:
            try:
                conn, _ = listener.accept()
            except OSError as exc:
                print(f"Failed to establish connection: {exc}", file=sys.stderr)
                continue

            with lock:
                accepted = active < max_clients
                if accepted:
                    active += 1

            if accepted:
                threading.Thread(target=run, args=(conn,), daemon=True).start()
            else:
                print(_REFUSAL, file=sys.stderr)
                with conn:
                    try:
                        write_message(conn, Message("exit", _REFUSAL))
                    except (OSError, ProtocolError):
                        pass


def _parse_role(text: str) -> int | None:
    digits = text.strip()
    if digits.startswith("+"):
        digits = digits[1:]
    if not digits or not digits.isascii() or not digits.isdigit():
        return None
    return int(digits)


def choose_role(lines: Iterable[str]) -> int:
    """Prompt for a role and return 0 (server) or 1 (client).

    Invalid answers are reported and the next line is tried; running out of
    lines raises ``EOFError``.
    """
    print(_ROLE_PROMPT)
    for line in lines:
        role = _parse_role(line)
        if role is not None and role <= 1:
            return role
        print("Select a valid role!")
    raise EOFError("Failed to receive role")


def main(argv: list[str] | None = None) -> int:
    """Run as server or console client, as chosen by the user."""
    parser = argparse.ArgumentParser(prog="playbox-server", description="Playground server or client.")
    parser.add_argument("role", nargs="?", help="0 for server, 1 for client; asked for when omitted")
    parser.add_argument("--address", default=DEFAULT_ADDRESS, help="host:port to use")
    parser.add_argument("--max-clients", type=int, default=MAX_CLIENTS, help="concurrent clients allowed")
    args = parser.parse_args(argv)

    try:
        role = choose_role(sys.stdin if args.role is None else [args.role])
    except EOFError as exc:
        print(exc, file=sys.stderr)
        return 1

    if role == 0:
        try:
            serve(args.address, args.max_clients)
        except KeyboardInterrupt:
            print("Server is shutting down!")
        except (OSError, ValueError) as exc:
            print(f"'Server' exit status: {exc}")
            return 1
        print("Server exited successfully!")
        return 0

    try:
        spawn_client(args.address)
    except ClientError as exc:
        print(f"'Client' exit status: {exc}")
        return 1
    print("Client exited successfully!")
    return 0