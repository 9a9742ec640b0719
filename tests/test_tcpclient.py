import socket
import time

import pytest

from playbox.protocol import Message, encode_message, read_message, write_message
from playbox.tcpclient import ClientError, PlaygroundClient


def _free_port():
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def _poll(client, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        message = client.read()
        if message is not None:
            return message
        time.sleep(0.01)
    return None


@pytest.fixture
def connected():
    listener = socket.create_server(("127.0.0.1", 0))
    port = listener.getsockname()[1]
    client = PlaygroundClient.connect(f"127.0.0.1:{port}")
    peer, _ = listener.accept()
    peer.settimeout(5)
    yield client, peer
    client.shutdown()
    peer.close()
    listener.close()


def test_send_run_compile_reaches_server(connected):
    client, peer = connected
    client.send_run_compile("fn main() {}")
    assert read_message(peer) == Message("run&compile", "fn main() {}")


def test_send_input_reaches_server(connected):
    client, peer = connected
    client.send_input("42")
    assert read_message(peer) == Message("input", "42")


def test_read_returns_none_when_idle(connected):
    client, _ = connected
    assert client.read() is None


def test_read_returns_server_message(connected):
    client, peer = connected
    write_message(peer, Message("stdout", "Hello World!"))
    assert _poll(client) == Message("stdout", "Hello World!")


def test_read_skips_request_corrupted(connected):
    client, peer = connected
    write_message(peer, Message("request_corrupted", ""))
    write_message(peer, Message("stdout", "after"))
    time.sleep(0.05)
    assert client.read() is None
    assert _poll(client) == Message("stdout", "after")


def test_read_skips_undecodable_frame(connected):
    client, peer = connected
    peer.sendall(b"\x00\x00\x00\x02{]")
    peer.sendall(encode_message(Message("exit", "")))
    time.sleep(0.05)
    assert client.read() is None
    assert _poll(client) == Message("exit", "")


def test_read_after_server_closes_raises(connected):
    client, peer = connected
    peer.close()
    with pytest.raises(ClientError, match="Client error while listening"):
        deadline = time.monotonic() + 5
        while time.monotonic() < deadline:
            client.read()
            time.sleep(0.01)


def test_read_uninitialized_client_raises():
    with pytest.raises(ClientError, match="TcpClient was not initialized"):
        PlaygroundClient().read()


def test_shutdown_notifies_server_and_closes(connected):
    client, peer = connected
    client.shutdown()
    assert client.sock is None
    assert read_message(peer) == Message("shutdown", "")
    assert peer.recv(1) == b""
    with pytest.raises(ClientError):
        client.read()


def test_shutdown_twice_keeps_client_closed(connected):
    client, _ = connected
    client.shutdown()
    client.shutdown()
    assert client.sock is None


def test_sends_on_closed_client_are_ignored():
    client = PlaygroundClient()
    client.send_input("x")
    client.send_run_compile("y")
    assert client.sock is None


def test_connect_refused_raises():
    port = _free_port()
    with pytest.raises(ClientError, match="failed"):
        PlaygroundClient.connect(f"127.0.0.1:{port}")


def test_connect_bad_address_raises():
    with pytest.raises(ClientError):
        PlaygroundClient.connect("no-port-here")


def test_connect_accepts_tuple_and_context_manager():
    with socket.create_server(("127.0.0.1", 0)) as listener:
        port = listener.getsockname()[1]
        with PlaygroundClient.connect(("127.0.0.1", port)) as client:
            peer, _ = listener.accept()
            peer.settimeout(5)
            with peer:
                client.send_input("hi")
                assert read_message(peer) == Message("input", "hi")
        assert client.sock is None