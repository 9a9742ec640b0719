# playbox

playbox is a small code playground. A server accepts program sources over
TCP, builds them inside a builder container, runs the result inside a runner
container and streams the compiler's messages, standard output and standard
error back to the client as they arrive. While the program runs, the client
can send it lines of standard input.

## Requirements

- Python 3.10 or later. No third-party libraries are needed.
- Docker on the server machine, with two running containers: `ruscompy`
  (builds the submitted program with `cargo build --release`) and `ruruny`
  (runs it). The two share a volume mounted at `../shared_folder` relative to
  their working directories. Before each build the server waits for both
  containers to show up in `docker ps`, checking up to ten more times three
  seconds apart.

## Installation

```
pip install .
```

## Running the server

```
playbox-server
```

Without arguments the command asks for a role on standard input:

```
Insert role:
0 -> Server
1 -> Client
```

The role can also be given directly, e.g. `playbox-server 0`. Options:

- `--address HOST:PORT` — where to listen or connect (default `127.0.0.1:8000`).
- `--max-clients N` — clients served at once (default 10). Further
  connections receive an `exit` message and are closed.

Role `0` serves clients until interrupted. Role `1` starts a console client
that submits a small test program and prints every message the server sends
until it receives `exit`.

## Using the playground

```
playbox-playground hello.rs
```

This connects to the server (`--address` to choose another one), submits the
contents of the given file and prints the build and run output as it arrives:
program output on standard output, program errors and server errors on
standard error. Lines typed on standard input while the program runs are sent
to it. Ctrl-C stops the session.

## Using the library

The wire format is a 4-byte big-endian length followed by a compact JSON
object with string `header` and `body` fields. Frames longer than 30000 bytes
or holding invalid JSON raise `playbox.protocol.ProtocolError`.

```python
from playbox.protocol import Message, encode_message, decode_payload

frame = encode_message(Message("input", "42"))
message = decode_payload(frame[4:])
assert message.header == "input"
```

`read_message(sock)` and `write_message(sock, message)` move single frames over
a socket; on a non-blocking socket with nothing pending, `read_message` raises
`BlockingIOError`.

`playbox.tcpclient.PlaygroundClient` wraps a non-blocking connection:

```python
from playbox.tcpclient import PlaygroundClient

client = PlaygroundClient.connect("127.0.0.1:8000")
client.send_run_compile('fn main() {\n    println!("Hello World!");\n}')
message = client.read()   # None when nothing usable is waiting yet
client.shutdown()
```

`playbox.playground.PlaygroundSession` drives a whole run (`start`, `poll`,
`send_input`, `stop`). `playbox.playground.format_output` returns the display
class and text of a server message, and `render_output_html` renders it as an
escaped HTML `div`.

On the server side, `playbox.server.serve` runs the listener,
`playbox.server.handle_client` serves one connection, and `playbox.docker`
holds the build, run and clean-up steps (`docker_handler`, `docker_compile`,
`docker_run`, `docker_clean_compile`, `docker_clean_run`).

## Message headers

| Header               | Sent by | Meaning                                        |
|----------------------|---------|------------------------------------------------|
| `run&compile`        | client  | submit a program source                        |
| `input`              | client  | a line for the program's standard input        |
| `exit`               | both    | end of the run or of the session               |
| `shutdown`           | client  | sent by `PlaygroundClient.shutdown` before it closes the connection |
| (empty)              | server  | status text                                    |
| `compilation_result` | server  | the build's diagnostics                        |
| `stdout`, `stderr`   | server  | output of the running program                  |
| `error`              | server  | a server-side failure                          |
| `request_corrupted`  | server  | a client frame could not be decoded            |

## What playbox does not do

- It has no graphical interface. `render_output_html` produces HTML fragments,
  but the package has no page or window to show them; `playbox-playground` is
  a console program.
- It does not create or configure the Docker containers; they must already be
  running under the names above.

## Tests

```
pip install .[test]
pytest
```