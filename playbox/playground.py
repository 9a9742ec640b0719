"""Interactive playground session: submit a program, watch it, talk to it."""

from __future__ import annotations

import argparse
import queue
import sys
import threading
import time
from pathlib import Path

from playbox.protocol import Message
from playbox.tcpclient import DEFAULT_ADDRESS, ClientError, PlaygroundClient

POLL_INTERVAL = 0.5

_HTML_ESCAPES = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("\n", "<br/>"),
    ("\r", ""),
    ("\t", "&nbsp;"),
)


def format_output(message: Message) -> tuple[str, str]:
    """Return the display class and text for a server message."""
    header, body = message.header, message.body
    match header:
        case "exit":
            return "", "exit" + body
        case "error":
            return "err", "----- ERROR -----\n" + body
        case "stderr":
            return "exterr", body
        case "stdout" | "":
            return "", body
        case "compilation_result":
            return "complog", body
        case _:
            return "", f"{header.upper()}:\n{body}"


def render_output_html(message: Message) -> str:
    """Render a server message as an escaped HTML ``div``."""
    css_class, text = format_output(message)
    for raw, escaped in _HTML_ESCAPES:
        text = text.replace(raw, escaped)
    attributes = f" class='{css_class}'" if css_class else ""
    return f"<div{attributes}>{text}</div>"


class PlaygroundSession:
    """One submission at a time against a playground server."""

    def __init__(self, address: str | tuple[str, int] = DEFAULT_ADDRESS) -> None:
        self.address = address
        self.client: PlaygroundClient | None = None
        self.output: list[Message] = []
        self.running = False

    def start(self, source: str) -> None:
        """Clear the output and submit ``source`` for compiling and running.

        Raises ``ClientError`` when the server cannot be reached.
        """
        if self.running:
            raise RuntimeError("a run is already in progress")
        self.output.clear()
        self.client = PlaygroundClient.connect(self.address)
        self.client.send_run_compile(source)
        self.running = True

    def poll(self) -> list[Message]:
        """Collect pending server messages, returning those newly shown.

        An ``exit`` message ends the run; a lost connection ends it with a
        fatal error shown in the output.
        """
        if not self.running or self.client is None:
            return []
        shown: list[Message] = []
        while True:
            try:
                message = self.client.read()
            except ClientError as exc:
                message = Message("error", f"----- FATAL ERROR -----\n{exc}")
                self.output.append(message)
                shown.append(message)
                self.running = False
                break
            if message is None:
                break
            if message.header == "exit":
                self.running = False
                break
            self.output.append(message)
            shown.append(message)
        return shown

    def send_input(self, text: str) -> None:
        """Forward ``text`` to the running program."""
        if self.client is not None:
            self.client.send_input(text)

    def stop(self) -> None:
        """Ask the server to stop and drop the connection."""
        if self.client is not None:
            self.client.shutdown()
        self.running = False


def _echo(message: Message) -> None:
    css_class, text = format_output(message)
    stream = sys.stderr if css_class in ("err", "exterr") else sys.stdout
    if message.header in ("stdout", "stderr"):
        stream.write(text)
    else:
        print(text, file=stream)
    stream.flush()


def _read_lines(stream, sink: queue.Queue) -> None:
    try:
        for line in stream:
            sink.put(line)
    except (OSError, ValueError):
        pass


def main(argv: list[str] | None = None) -> int:
    """Submit a source file, show its output and forward standard input to it."""
    parser = argparse.ArgumentParser(prog="playbox", description="Compile and run a program on a playground server.")
    parser.add_argument("source", type=Path, help="file holding the program")
    parser.add_argument("--address", default=DEFAULT_ADDRESS, help="server host:port")
    args = parser.parse_args(argv)

    try:
        source = args.source.read_text(encoding="utf-8")
    except OSError as exc:
        print(f"Could not read {args.source}: {exc}", file=sys.stderr)
        return 1

    session = PlaygroundSession(args.address)
    try:
        session.start(source)
    except ClientError as exc:
        print(exc, file=sys.stderr)
        return 1

    inputs: queue.Queue = queue.Queue()
    threading.Thread(target=_read_lines, args=(sys.stdin, inputs), daemon=True).start()

    try:
        while session.running:
            while True:
                try:
                    session.send_input(inputs.get_nowait())
                except queue.Empty:
                    break
            for message in session.poll():
                _echo(message)
            if session.running:
                time.sleep(POLL_INTERVAL)
    except KeyboardInterrupt:
        session.stop()
    return 0