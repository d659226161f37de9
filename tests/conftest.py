import socket
import threading

import pytest

from generate_dummy import write_lines
from line_cache import OffsetCache
from line_server import LineServer


def expected_line(n):
    return f"Here is line {n}.\n".encode()


@pytest.fixture
def make_line_file(tmp_path):
    """Factory writing a file of `n` lines "Here is line i." and returning its path."""
    def _make(num_lines, name="lines.txt"):
        path = tmp_path / name
        write_lines(str(path), num_lines)
        return str(path)

    return _make


@pytest.fixture
def start_server():
    """Factory running a LineServer on an OS-assigned port in a background thread."""
    started = []

    def _start(cache):
        server = LineServer(("127.0.0.1", 0), cache, poll_interval=0.05)
        server.daemon_threads = True
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        started.append((server, thread))
        return server, thread

    yield _start

    for server, thread in started:
        server.shutdown()
        thread.join(timeout=5)


@pytest.fixture
def served_cache(make_line_file):
    return OffsetCache.from_file(make_line_file(500), capacity=64, seed=7)


class Client:
    """Minimal line protocol client."""

    def __init__(self, port):
        self.sock = socket.create_connection(("127.0.0.1", port), timeout=5)
        self.reader = self.sock.makefile("rb")

    def send(self, line):
        self.sock.sendall(line.encode() + b"\n")

    def request(self, line):
        self.send(line)
        return self.reader.readline()

    def read_eof(self):
        # a reset from the server counts as a close
        try:
            return self.reader.read()
        except ConnectionResetError:
            return b""

    def close(self):
        self.reader.close()
        self.sock.close()


@pytest.fixture
def connect():
    clients = []

    def _connect(server):
        client = Client(server.port)
        clients.append(client)
        return client

    yield _connect

    for client in clients:
        client.close()
