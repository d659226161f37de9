# line_server.py
"""
TCP line server.

Clients connect and send one command per line:

    GET <1-based line number>
    QUIT
    SHUTDOWN

Sample client usage:

    $ echo "GET 7777" | nc localhost 8080
    $ echo "SHUTDOWN" | nc localhost 8080
"""

import os
import re
import sys
import enum
import signal
import socket
import logging
import argparse
import threading

from line_cache import DEFAULT_CAPACITY, ConfigError, OffsetCache, OutOfRangeError
from logging_setup import setup_loggers

GET_CMD = "GET"
QUIT_CMD = "QUIT"
SHUTDOWN_CMD = "SHUTDOWN"

DEFAULT_ADDR = "localhost:8080"
MAX_LINE_LENGTH = 64 * 1024

_LINE_NUMBER_RE = re.compile(r"[+-]?[0-9]+")

server_logger = logging.getLogger('server')
access_logger = logging.getLogger('access')


class ProtocolError(Exception):
    """Malformed command; the message is sent back to the client."""


class ServerState(enum.Enum):
    LISTENING = "listening"
    SHUTTING_DOWN = "shutting down"
    STOPPED = "stopped"


def parse_address(addr):
    """Split 'host:port' into (host, port). An empty host binds all interfaces."""
    host, sep, port = addr.rpartition(":")
    if not sep:
        raise ConfigError(f"invalid server address '{addr}': expected host:port")
    try:
        port = int(port)
    except ValueError:
        raise ConfigError(f"invalid port in server address '{addr}'") from None
    if not 0 <= port <= 65535:
        raise ConfigError(f"port out of range in server address '{addr}'")
    return host.strip("[]"), port


def parse_command(line):
    """
    Parse a stripped command line into (command, line_number).

    line_number is None for QUIT and SHUTDOWN. Raises ProtocolError for
    anything else that is not a well formed GET.
    """
    parts = line.split(" ")
    if len(parts) == 1 and parts[0] in (QUIT_CMD, SHUTDOWN_CMD):
        return parts[0], None
    if len(parts) == 2 and parts[0] == GET_CMD:
        token = parts[1]
        if not _LINE_NUMBER_RE.fullmatch(token):
            raise ProtocolError(f"invalid line number '{token}'")
        return GET_CMD, int(token)
    raise ProtocolError(f"invalid request: '{line}'")


class LineServer:
    """
    Accepts connections and serves each one from its own thread.

    The listener is bound on construction. `shutdown()` closes it exactly once,
    from any thread or a signal handler; connections already accepted keep
    being served until their clients leave.
    """

    daemon_threads = False
    max_line_length = MAX_LINE_LENGTH

    def __init__(self, address, cache, backlog=128, poll_interval=0.5):
        self.cache = cache
        self._lock = threading.RLock()
        self._threads = set()

        host, port = address
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            listener.bind((host, port))
            listener.listen(backlog)
        except OSError as e:
            listener.close()
            raise ConfigError(f"cannot listen on {host}:{port}: {e}") from e
        # wake the accept loop periodically to notice a shutdown
        listener.settimeout(poll_interval)

        self._listener = listener
        self.host = host
        self.port = listener.getsockname()[1]
        self.state = ServerState.LISTENING

    @property
    def active_connections(self):
        with self._lock:
            return len(self._threads)

    def serve_forever(self):
        """Run the accept loop until shutdown() is called."""
        server_logger.info(f"Server listening for connections on {self.host}:{self.port}.")
        try:
            while True:
                try:
                    conn, addr = self._listener.accept()
                except socket.timeout:
                    if self.state is not ServerState.LISTENING:
                        break
                    continue
                except OSError as e:
                    if self.state is not ServerState.LISTENING:
                        break
                    server_logger.error(f"accept() error: {e}")
                    raise
                self._start_handler(conn, addr)
        finally:
            with self._lock:
                if self.state is ServerState.LISTENING:
                    self._close_listener()
                self.state = ServerState.STOPPED
        server_logger.info("Accept loop stopped.")

    def shutdown(self):
        """Stop accepting connections. Returns False if already shutting down."""
        with self._lock:
            if self.state is not ServerState.LISTENING:
                return False
            server_logger.info("Shutting down server...")
            self.state = ServerState.SHUTTING_DOWN
            self._close_listener()
        return True

    def _close_listener(self):
        try:
            self._listener.shutdown(socket.SHUT_RDWR)
        except OSError:
            # not connected; some platforms refuse shutdown on listeners
            pass
        self._listener.close()

    def _start_handler(self, conn, addr):
        t = threading.Thread(
            target=self._handle_connection,
            args=(conn, addr),
            name=f"conn-{addr[0]}:{addr[1]}",
            daemon=self.daemon_threads,
        )
        with self._lock:
            self._threads.add(t)
        t.start()

    def _handle_connection(self, conn, addr):
        peer = f"{addr[0]}:{addr[1]}"
        access_logger.info(f"{peer} CONNECT")
        try:
            with conn, conn.makefile("rb") as reader:
                conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
                while True:
                    raw = reader.readline(self.max_line_length + 1)
                    if not raw:
                        break
                    if len(raw) > self.max_line_length and not raw.endswith(b"\n"):
                        server_logger.warning(
                            f"{peer} command exceeds {self.max_line_length} bytes; closing connection"
                        )
                        break
                    line = raw.decode("utf-8", errors="replace").strip()
                    reply, keep_open = self.handle_line(line, peer)
                    if reply:
                        conn.sendall(reply)
                    if not keep_open:
                        break
        except OSError as e:
            server_logger.info(f"{peer} connection error: {e}")
        finally:
            with self._lock:
                self._threads.discard(threading.current_thread())
            access_logger.info(f"{peer} DISCONNECT")

    def handle_line(self, line, peer="-"):
        """Execute one command line; returns (reply bytes or None, keep_open)."""
        try:
            command, line_number = parse_command(line)
        except ProtocolError as e:
            access_logger.warning(f"{peer} PROTOCOL_ERROR {e}")
            return f"Error: {e}\n".encode(), True

        if command == QUIT_CMD:
            access_logger.info(f"{peer} QUIT")
            return None, False
        if command == SHUTDOWN_CMD:
            access_logger.info(f"{peer} SHUTDOWN")
            self.shutdown()
            return None, False

        try:
            data = self.cache.lookup(line_number)
        except OutOfRangeError as e:
            access_logger.warning(f"{peer} LINE_OUT_OF_RANGE {line_number}")
            return f"Error: lookup failed for '{line_number}': {e}\n".encode(), True
        except OSError as e:
            server_logger.exception(f"Error serving line {line_number}: {e}")
            return f"Error: lookup failed for '{line_number}': {e}\n".encode(), True

        access_logger.info(f"{peer} GET {line_number} -> ok (len={len(data)})")
        return data, True


def int_setting(value, name, minimum=None):
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got '{value}'") from None
    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be at least {minimum}, got {value}")
    return value


def load_settings(argv=None, environ=None):
    """Merge command line flags over environment variables."""
    environ = os.environ if environ is None else environ

    ap = argparse.ArgumentParser(description="Serve lines of a text file over TCP.")
    ap.add_argument("file", nargs="?", default=environ.get("DATA_FILE_PATH"),
                    help="target file (default: $DATA_FILE_PATH)")
    ap.add_argument("--cache-size", default=environ.get("CACHE_SIZE", DEFAULT_CAPACITY),
                    help="number of line offsets to keep in the cache")
    ap.add_argument("--server-addr", default=environ.get("SERVER_ADDR", DEFAULT_ADDR),
                    help="host:port to listen on; port 0 picks a free port")
    ap.add_argument("--log-dir", default=environ.get("LOG_DIR", "logs"))
    ap.add_argument("--seed", default=environ.get("CACHE_SEED"),
                    help="seed for choosing extra cache entries")
    args = ap.parse_args(argv)

    if not args.file:
        raise ConfigError("no target file given (argument or DATA_FILE_PATH)")
    args.cache_size = int_setting(args.cache_size, "cache size", minimum=1)
    if args.seed is not None:
        args.seed = int_setting(args.seed, "seed")
    args.address = parse_address(args.server_addr)
    return args


def main(argv=None):
    try:
        settings = load_settings(argv)
    except ConfigError as e:
        print(f"CRITICAL ERROR: {e}", file=sys.stderr, flush=True)
        sys.exit(1)

    setup_loggers(settings.log_dir)
    server_logger.info(f"Line server (PID: {os.getpid()}) starting...")

    try:
        cache = OffsetCache.from_file(settings.file, settings.cache_size, settings.seed)
        server = LineServer(settings.address, cache)
    except (ConfigError, OSError) as e:
        server_logger.critical(f"error creating server: {e}")
        sys.exit(1)

    def on_signal(signum, frame):
        server_logger.info(f"Received {signal.Signals(signum).name}")
        server.shutdown()

    signal.signal(signal.SIGINT, on_signal)
    signal.signal(signal.SIGTERM, on_signal)

    try:
        server.serve_forever()
    except OSError as e:
        server_logger.critical(f"error processing requests: {e}")
        sys.exit(1)

    remaining = server.active_connections
    if remaining:
        server_logger.info(f"Listener closed; {remaining} open connection(s) still being served.")


if __name__ == "__main__":
    main()
