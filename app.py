# app.py

import os
import sys
import logging
from flask import Flask, Response, request

from line_cache import DEFAULT_CAPACITY, ConfigError, OffsetCache, OutOfRangeError
from line_server import int_setting
from logging_setup import setup_loggers

server_logger = logging.getLogger('server')
access_logger = logging.getLogger('access')


def build_cache_from_env():
    """Build the offset cache described by DATA_FILE_PATH / CACHE_SIZE / CACHE_SEED."""
    filepath_to_serve = os.environ.get('DATA_FILE_PATH')
    if not filepath_to_serve:
        print("CRITICAL ERROR: DATA_FILE_PATH environment variable not set. Aborting.", file=sys.stderr, flush=True)
        sys.exit(1)

    try:
        capacity = int_setting(os.environ.get('CACHE_SIZE', DEFAULT_CAPACITY), "cache size", minimum=1)
        seed = os.environ.get('CACHE_SEED')
        seed = int_setting(seed, "seed") if seed is not None else None
    except ConfigError as e:
        server_logger.critical(f"Invalid cache settings: {e}")
        sys.exit(1)

    try:
        return OffsetCache.from_file(filepath_to_serve, capacity, seed)
    except (ConfigError, OSError) as e:
        server_logger.critical(f"Cannot index '{filepath_to_serve}': {e}")
    sys.exit(1)


def create_app(cache=None):
    """
    Factory used by Gunicorn ("app:create_app()"). Without a cache, one is built
    from the environment; with preload_app this happens once, in the master.
    """
    if cache is None:
        setup_loggers(os.environ.get('LOG_DIR', 'logs'))
        server_logger.info(f"Master process (PID: {os.getpid()}) starting app configuration...")
        cache = build_cache_from_env()
        server_logger.info(f"Master configuration complete. {cache.total_lines} lines, {len(cache)} anchors.")

    app = Flask(__name__)
    app.config['LINE_CACHE'] = cache

    @app.route("/lines/<line_number>", methods=["GET"])
    def get_line(line_number):
        # validate integer
        try:
            n = int(line_number)
        except ValueError:
            access_logger.warning(f"{request.remote_addr} INVALID_LINE_NUMBER '{line_number}'")
            return Response("Invalid line number. Must be a positive integer.\n", status=400)

        try:
            data = cache.lookup(n)
        except OutOfRangeError as e:
            access_logger.warning(f"{request.remote_addr} LINE_OUT_OF_RANGE {n} ({e})")
            return Response("Requested line is beyond the end of the file.\n", status=413)
        except OSError as e:
            server_logger.exception(f"Error serving line {n}: {e}")
            return Response("Internal server error\n", status=500)

        access_logger.info(f"{request.remote_addr} GET /lines/{n} -> 200 (len={len(data)})")
        return Response(data, status=200, mimetype="text/plain")

    @app.errorhandler(404)
    def not_found_error(error):
        access_logger.warning(f"Request to non-existent route from {request.remote_addr}")
        return Response("Not Found\n", status=404)

    return app


def init_worker():
    """Worker post-fork init: reconfigure loggers; the preloaded cache is shared."""
    setup_loggers(os.environ.get('LOG_DIR', 'logs'))
    server_logger.info(f"Worker PID {os.getpid()} initializing...")
