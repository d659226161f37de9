# logging_setup.py

import os
import logging

LOG_FORMAT = "%(asctime)s [%(levelname)s] [PID:%(process)d] %(message)s"

server_logger = logging.getLogger('server')
access_logger = logging.getLogger('access')


def setup_loggers(log_dir="logs", level=logging.INFO):
    """Configure server and access loggers (file + console)."""
    os.makedirs(log_dir, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT)

    # clear handlers to avoid duplicate output
    for logger in (server_logger, access_logger):
        if logger.hasHandlers():
            for handler in list(logger.handlers):
                handler.close()
            logger.handlers.clear()
        logger.setLevel(level)
        logger.propagate = False

    # server logger -> file + console
    server_file_handler = logging.FileHandler(os.path.join(log_dir, "server.log"))
    server_file_handler.setFormatter(formatter)
    server_logger.addHandler(server_file_handler)

    server_console_handler = logging.StreamHandler()
    server_console_handler.setFormatter(formatter)
    server_logger.addHandler(server_console_handler)

    # access logger -> file only
    access_file_handler = logging.FileHandler(os.path.join(log_dir, "access.log"))
    access_file_handler.setFormatter(formatter)
    access_logger.addHandler(access_file_handler)
