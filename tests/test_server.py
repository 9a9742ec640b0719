import socket
import threading
import time
from uuid import uuid4

import pytest

from playbox.protocol import Message, read_message, write_message
from playbox.server import choose_role, handle_client, main, serve


def _free_port():
    with socket.socket() as probe:
        probe.bind(("127.0.0.1", 0))
        return probe.getsockname()[1]


def _connect_with_retry(port, timeout=5.0):
    deadline = time.monotonic() + timeout
    while True:
        try:
            return socket.create_connection(("127.0.0.1", port))
        except ConnectionRefusedError:
            if time.monotonic() > deadline:
                raise
            time.sleep(0.02)


def test_choose_role_accepts_first_valid_line(capsys):
    assert choose_role(["x", "5", "1"]) == 1
    out = capsys.readouterr().out
    assert out.count("Select a valid role!") == 2


def test_choose_role_server():
    assert choose_role(["0\n"]) == 0


def test_choose_role_trims_and_accepts_plus_sign():
    assert choose_role(["  +1 \n"]) == 1


def test_choose_role_rejects_negative_then_runs_out():
    with pytest.raises(EOFError):
        choose_role(["-1", "abc", ""])


def test_handle_client_stops_on_exit():
    server_side, client_side = socket.socketpair()
    with server_side, client_side:
        write_message(client_side, Message("hello", "world"))
        write_message(client_side, Message("exit", ""))
        received = handle_client(server_side, uuid4())
    assert [m.header for m in received] == ["hello", "exit"]
    assert received[0].body == "world"


def test_handle_client_stops_when_peer_closes():
    server_side, client_side = socket.socketpair()
    client_side.close()
    with server_side:
        received = handle_client(server_side, uuid4())
    assert received == []


def test_serve_refuses_beyond_limit():
    port = _free_port()
    threading.Thread(target=serve, args=(f"127.0.0.1:{port}", 0), daemon=True).start()
    with _connect_with_retry(port) as conn:
        conn.settimeout(5)
        reply = read_message(conn)
    assert reply == Message("exit", "Max clients number reached, refusing further connections")


def test_serve_fails_on_busy_address():
    with socket.create_server(("127.0.0.1", 0)) as busy:
        port = busy.getsockname()[1]
        with pytest.raises(OSError):
            serve(f"127.0.0.1:{port}", 1)


def test_main_client_role_runs_until_exit(capsys):
    listener = socket.create_server(("127.0.0.1", 0))
    port = listener.getsockname()[1]
    requests = []

    def fake_server():
        with listener:
            conn, _ = listener.accept()
            with conn:
                conn.settimeout(5)
                requests.append(read_message(conn))
                write_message(conn, Message("exit", "gracefully exit"))

    worker = threading.Thread(target=fake_server, daemon=True)
    worker.start()
    assert main(["1", "--address", f"127.0.0.1:{port}"]) == 0
    worker.join(5)
    assert requests[0].header == "run&compile"
    assert "Client exited successfully!" in capsys.readouterr().out


def test_main_client_role_reports_connection_failure(capsys):
    port = _free_port()
    assert main(["1", "--address", f"127.0.0.1:{port}"]) == 1
    assert "'Client' exit status" in capsys.readouterr().out