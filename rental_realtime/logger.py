# ============================================
#   Rental Realtime — Central logger
# ============================================

import os
import logging
from logging.handlers import TimedRotatingFileHandler

from rental_realtime.config import LOG_FILE


# --------------------------------------------
#   Logger identity (overrideable by env)
# --------------------------------------------

ROOT_LOGGER_NAME = os.getenv("RENTAL_RT_LOGGER_NAME", "rental_realtime")

LOG_LEVEL = os.getenv("RENTAL_RT_LOG_LEVEL", "INFO").upper()

_file_handler = None


def _make_file_handler(path: str) -> TimedRotatingFileHandler:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    handler = TimedRotatingFileHandler(
        path,
        when="midnight",
        backupCount=30,
        encoding="utf-8",
        utc=False,
    )

    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)
    return handler


def _configure_root_logger() -> logging.Logger:
    """
    Configure the root logger once (idempotent).
    Uses a daily rotating file, keeps 30 days of history.
    """
    global _file_handler

    logger = logging.getLogger(ROOT_LOGGER_NAME)

    # Prevent duplicate handlers on hot reload / multiple imports
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))

    _file_handler = _make_file_handler(LOG_FILE)
    logger.addHandler(_file_handler)
    logger.propagate = False  # prevent double logging to root

    return logger


def set_log_file(path: str) -> logging.Logger:
    """
    Move the rotating file handler to `path` (used by create_app when the
    app is given its own LOG_DIR). The logger is process-wide: the last
    app created decides where records go.
    """
    global _file_handler

    logger = _configure_root_logger()
    if _file_handler is not None and _file_handler.baseFilename == os.path.abspath(path):
        return logger

    handler = _make_file_handler(path)
    if _file_handler is not None:
        logger.removeHandler(_file_handler)
        _file_handler.close()

    _file_handler = handler
    logger.addHandler(handler)
    return logger


def get_logger(module_name: str) -> logging.Logger:
    """
    Return a child logger for a given module name.
    Example: get_logger("hub") → rental_realtime.hub
    """
    root = _configure_root_logger()
    return root.getChild(module_name)


def log_info(module: str, message: str):
    get_logger(module).info(message)


def log_warning(module: str, message: str):
    get_logger(module).warning(message)


def log_error(module: str, message: str):
    get_logger(module).error(message)


def log_exception(module: str, message: str):
    """
    Log an exception with traceback. To be used inside except blocks.
    """
    get_logger(module).exception(message)
