"""Compile and run submitted programs inside the playground containers.

A build container turns the submitted source into a release binary, which
is shared with a runner container through a common volume. While the binary
runs, its output is streamed back to the client and the client's input is
forwarded to it.
"""

from __future__ import annotations

import queue
import socket
import subprocess
import sys
import threading
import time
from collections import deque
from contextlib import suppress
from typing import IO
from uuid import UUID

from playbox.protocol import Message, ProtocolError, read_message, write_message

BUILDER_CONTAINER_NAME = "ruscompy"
RUNNER_CONTAINER_NAME = "ruruny"
CONTAINER_RETRIES = 10
CONTAINER_RETRY_DELAY = 3.0
POLL_INTERVAL = 0.2
READ_CHUNK_SIZE = 1024
READER_JOIN_TIMEOUT = 1.0

_BUILD_STATUS = "REQUEST STATUS ----------\nBuilding the file release. This may take a few time..."
_EXECUTION_BANNER = "EXECUTION ----------"
_SHUTDOWN_REQUESTED = "client requested shutdown prematurely"


class DockerError(Exception):
    """A step of compiling, running or cleaning up a submission failed."""


def _log_error(text: str) -> None:
    print(text, file=sys.stderr)


def _send_quietly(sock: socket.socket, message: Message) -> None:
    with suppress(OSError, ProtocolError):
        write_message(sock, message)


def _copy_file(container: str, command: str) -> None:
    """Run a copy inside ``container``; failures are reported, not raised."""
    try:
        result = subprocess.run(
            ["docker", "exec", container, "sh", "-c", command],
            capture_output=True,
        )
    except OSError:
        _log_error("ERR_PLAYGROUND_CP_EXE")
        return
    if result.returncode != 0:
        stderr = result.stderr.decode("utf-8", errors="replace")
        _log_error(f"Failed to copy file: {stderr}")


def wait_for_containers(
    retries: int = CONTAINER_RETRIES, delay: float = CONTAINER_RETRY_DELAY
) -> None:
    """Block until both the builder and runner containers are listed by ``docker ps``.

    The check is retried ``retries`` times, ``delay`` seconds apart, before
    giving up with ``DockerError``.
    """
    attempts = 0
    while True:
        try:
            result = subprocess.run(["docker", "ps"], capture_output=True)
        except OSError as exc:
            print(exc)
        else:
            listing = result.stdout.decode("utf-8", errors="replace")
            if BUILDER_CONTAINER_NAME in listing and RUNNER_CONTAINER_NAME in listing:
                return
            print(
                f"Container '{BUILDER_CONTAINER_NAME}' OR "
                f"'{RUNNER_CONTAINER_NAME}' currently unavailable"
            )
        if attempts >= retries:
            raise DockerError("Request aborted due to exceed on time limit")
        print(f"Retrying in {delay:g}s...")
        time.sleep(delay)
        attempts += 1


def is_req_shutdown(sock: socket.socket) -> bool:
    """Consume one pending client message and report whether the client wants out.

    True for an ``exit`` message or a broken connection; False when nothing
    is pending, the message is something else, or the frame is corrupted.
    """
    try:
        message = read_message(sock)
    except BlockingIOError:
        return False
    except ProtocolError:
        return False
    except OSError as exc:
        _log_error(f"Server error while listening: {exc}")
        return True
    return message.header == "exit"


def docker_compile(sock: socket.socket, body: str, run_id: UUID | str) -> str:
    """Build ``body`` as a release binary named after ``run_id``.

    The compiler's diagnostics are sent to the client as a
    ``compilation_result`` message. Raises ``DockerError`` when any step
    fails or the client asks to stop.
    """
    run_id = str(run_id)
    wait_for_containers()

    if is_req_shutdown(sock):
        raise DockerError(_SHUTDOWN_REQUESTED)

    _send_quietly(sock, Message("", _BUILD_STATUS))

    try:
        created = subprocess.run(
            [
                "docker", "exec", "-i", BUILDER_CONTAINER_NAME,
                "sh", "-c", f"cat > ./src/bin/{run_id}.rs",
            ],
            input=body.encode("utf-8"),
        )
    except BrokenPipeError as exc:
        raise DockerError("ERR_PLAYGROUND_WRITE_CLIENTFILE.RS") from exc
    except OSError as exc:
        raise DockerError("ERR_PLAYGROUND_CREATE_CLIENTFILE.RS") from exc
    if created.returncode != 0:
        raise DockerError("ERR_PLAYGROUND_WAIT_CREATE_CLIENTFILE.RS")
    print("Created clientfile.rs successfully")

    if is_req_shutdown(sock):
        raise DockerError(_SHUTDOWN_REQUESTED)

    try:
        build = subprocess.run(
            [
                "docker", "exec", "-i", BUILDER_CONTAINER_NAME,
                "sh", "-c", f"cargo build --release --bin {run_id}",
            ],
            capture_output=True,
        )
    except OSError as exc:
        raise DockerError("ERR_PLAYGROUND_CARGORUSTC") from exc

    diagnostics = build.stderr.decode("utf-8", errors="replace")
    _log_error(diagnostics)
    _send_quietly(sock, Message("compilation_result", diagnostics))
    if build.returncode != 0:
        raise DockerError(
            f"Build failed with status: {build.returncode}\n{diagnostics!r}"
        )

    _copy_file(
        BUILDER_CONTAINER_NAME,
        f"cp ./target/release/{run_id} ../shared_folder/{run_id}",
    )
    return "Build created successfully"


def _pump(pipe: IO[bytes], kind: str, sink: queue.Queue) -> None:
    """Move chunks from ``pipe`` into ``sink``; ``None`` marks end of stream."""
    try:
        while chunk := pipe.read1(READ_CHUNK_SIZE):
            sink.put((kind, chunk))
    except (OSError, ValueError) as exc:
        sink.put((kind, exc))
        return
    sink.put((kind, None))


def _collect_output(outputs: queue.Queue, pending: deque[Message]) -> bool:
    """Queue everything the program has printed; True once a pipe has ended."""
    finished = False
    while True:
        try:
            kind, chunk = outputs.get_nowait()
        except queue.Empty:
            return finished
        if chunk is None:
            print(f"{kind} pipe reached EOF")
            finished = True
        elif isinstance(chunk, Exception):
            _log_error(f"Error while reading {kind}: {chunk}")
            pending.append(Message("error", str(chunk)))
            finished = True
        else:
            text = chunk.decode("utf-8", errors="replace")
            print(f"{kind}: {text}")
            pending.append(Message(kind, text))


def _forward_client_input(
    sock: socket.socket, stdin: IO[bytes], pending: deque[Message]
) -> bool:
    """Handle pending client messages; True when execution must stop."""
    while True:
        try:
            message = read_message(sock)
        except BlockingIOError:
            return False
        except ProtocolError as exc:
            print(exc)
            pending.append(Message("request_corrupted", ""))
            continue
        except OSError as exc:
            _log_error(f"Server error while listening: {exc}")
            pending.append(Message("error", "Server error while listening"))
            return True

        if message.header == "exit":
            return True
        if message.header == "input":
            # The program only sees a line once it is terminated.
            text = message.body if message.body.endswith("\n") else message.body + "\n"
            try:
                stdin.write(text.encode("utf-8"))
                stdin.flush()
            except (OSError, ValueError):
                _log_error("ERR_PLAYGROUND_FORWARD_STDIN")
                pending.append(Message("error", "ERR_PLAYGROUND_FORWARD_STDIN"))
                return True


def _flush(sock: socket.socket, pending: deque[Message]) -> None:
    while pending:
        message = pending.popleft()
        try:
            write_message(sock, message)
        except BlockingIOError:
            pass
        except ProtocolError as exc:
            _log_error(str(exc))
        except OSError as exc:
            raise DockerError(f"Server error while writing: {exc}") from exc


def docker_run(sock: socket.socket, run_id: UUID | str) -> str:
    """Run the built binary, streaming its output to the client.

    Output arrives as ``stdout`` and ``stderr`` messages; ``input`` messages
    from the client are fed to the program and ``exit`` stops it.
    """
    run_id = str(run_id)
    _send_quietly(sock, Message("", _EXECUTION_BANNER))
    _copy_file(RUNNER_CONTAINER_NAME, f"cp ../shared_folder/{run_id} ./{run_id}")

    try:
        child = subprocess.Popen(
            ["docker", "exec", "-i", RUNNER_CONTAINER_NAME, "sh", "-c", f"./{run_id}"],
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as exc:
        raise DockerError("ERR_PLAYGROUND_RUN_LAUNCH_EXEC") from exc
    if child.stdin is None or child.stdout is None or child.stderr is None:
        raise DockerError("ERR_PLAYGROUND_RUN_TAKE_STDIOS")

    outputs: queue.Queue = queue.Queue()
    readers = [
        threading.Thread(target=_pump, args=(child.stderr, "stderr", outputs), daemon=True),
        threading.Thread(target=_pump, args=(child.stdout, "stdout", outputs), daemon=True),
    ]
    for reader in readers:
        reader.start()

    pending: deque[Message] = deque()
    program_finished = False
    try:
        while True:
            if _collect_output(outputs, pending):
                program_finished = True
            interrupted = _forward_client_input(sock, child.stdin, pending)
            _flush(sock, pending)
            if program_finished or interrupted:
                break
            time.sleep(POLL_INTERVAL)
    finally:
        with suppress(OSError, ValueError):
            child.stdin.close()
        if not program_finished:
            with suppress(OSError):
                child.kill()
        try:
            child.wait()
        except OSError as exc:
            raise DockerError("ERR_PLAYGROUND_RUN_CHILD_WAIT") from exc
        for reader in readers:
            reader.join(READER_JOIN_TIMEOUT)

    # Output written just before the program ended may still be queued.
    _collect_output(outputs, pending)
    _flush(sock, pending)
    with suppress(OSError):
        child.stdout.close()
    with suppress(OSError):
        child.stderr.close()
    return "Ok"


def docker_rm_file(container_name: str, file_path: str) -> str:
    """Force-remove ``file_path`` inside ``container_name``."""
    try:
        result = subprocess.run(["docker", "exec", container_name, "rm", "-f", file_path])
    except OSError as exc:
        raise DockerError(f"failed to remove file '{container_name}:{file_path}'") from exc
    if result.returncode != 0:
        raise DockerError(f"failed to remove file '{container_name}:{file_path}'")
    return f"file '{container_name}:{file_path}' removed successfully"


def docker_clean_compile(run_id: UUID | str) -> str:
    """Remove the submitted source and its build products from the builder."""
    run_id = str(run_id)
    docker_rm_file(BUILDER_CONTAINER_NAME, f"./src/bin/{run_id}.rs")
    docker_rm_file(BUILDER_CONTAINER_NAME, f"./target/release/{run_id}")
    docker_rm_file(BUILDER_CONTAINER_NAME, f"./target/release/{run_id}.d")
    return "Ok"


def docker_clean_run(run_id: UUID | str) -> str:
    """Remove the binary from the runner and from the shared volume."""
    run_id = str(run_id)
    docker_rm_file(RUNNER_CONTAINER_NAME, run_id)
    docker_rm_file(RUNNER_CONTAINER_NAME, f"../shared_folder/{run_id}")
    return "Ok"


def docker_handler(sock: socket.socket, body: str, run_id: UUID | str) -> None:
    """Compile and run ``body``, clean up, then tell the client it is over."""
    try:
        docker_compile(sock, body, run_id)
    except DockerError as exc:
        print(f"error during compile: {exc}")
    else:
        try:
            docker_run(sock, run_id)
        except DockerError as exc:
            _log_error(f"error during run: {exc}")

    try:
        docker_clean_compile(run_id)
    except DockerError as exc:
        _log_error(str(exc))
    else:
        print("COMPILER container successfully cleaned!")

    try:
        docker_clean_run(run_id)
    except DockerError as exc:
        _log_error(str(exc))
    else:
        print("RUNNER container successfully cleaned!")

    _send_quietly(sock, Message("exit", "gracefully exit"))