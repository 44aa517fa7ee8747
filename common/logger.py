"""
Process-wide logging for the trigger service and the enrollment CLI.
Console output always; a rotating log file when the config names one.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler

from .constants import DEFAULT_CONFIG, DEFAULT_LOG_FORMAT

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# Client libraries that log every RPC at INFO
QUIET_LOGGERS = ('google', 'grpc', 'urllib3')


def _file_handler(log_file: str) -> RotatingFileHandler:
    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    return RotatingFileHandler(log_file, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS)


def setup_logging(config: dict = None):
    """
    Configure the root logger from the 'logging' config section.

    Args:
        config: Mapping with 'level', 'format' and 'file'. Defaults to the
                logging section of DEFAULT_CONFIG; a falsy 'file' logs to
                the console only.
    """
    if config is None:
        config = DEFAULT_CONFIG['logging']

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.get('level', 'INFO').upper()))

    # Calling setup twice must not duplicate output
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handlers = [logging.StreamHandler(sys.stdout)]
    if config.get('file'):
        handlers.append(_file_handler(config['file']))

    formatter = logging.Formatter(config.get('format', DEFAULT_LOG_FORMAT))
    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Module logger; pass __name__"""
    return logging.getLogger(name)


class InvocationLogger:
    """
    Tags every message of one trigger invocation with its id, so the
    lines of concurrent invocations can be told apart.
    """

    def __init__(self, invocation_id: str, name: str):
        self.invocation_id = invocation_id
        self.logger = logging.getLogger(name)

    def _log(self, level: int, message: str, *args, **kwargs):
        self.logger.log(level, f"[{self.invocation_id}] {message}", *args, **kwargs)

    def debug(self, message: str, *args, **kwargs):
        self._log(logging.DEBUG, message, *args, **kwargs)

    def info(self, message: str, *args, **kwargs):
        self._log(logging.INFO, message, *args, **kwargs)

    def warning(self, message: str, *args, **kwargs):
        self._log(logging.WARNING, message, *args, **kwargs)

    def error(self, message: str, *args, **kwargs):
        self._log(logging.ERROR, message, *args, **kwargs)
