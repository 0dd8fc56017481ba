import logging
import os
from os import path
from typing import Optional

from covwatch.internal.logger import CovFormatter
from covwatch.internal.utils.formats import asbool


DEFAULT_FILE_SIZE_BYTES = 15 << 20  # 15 MB


def configure_logger():
    # type: () -> None
    """Configures covwatch log levels and file paths.

    Customization is possible with the environment variables:
        ``COVWATCH_DEBUG``, ``COVWATCH_LOG_FILE_LEVEL``, and ``COVWATCH_LOG_FILE``

    By default covwatch loggers only emit warnings and errors to stderr. The
    collector runs inside the measured program, so anything louder would
    pollute its output.
    """
    logger = logging.getLogger("covwatch")
    if not any(getattr(h, "name", None) == "covwatch.stream" for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.set_name("covwatch.stream")
        handler.setFormatter(CovFormatter("[%(name)s] %(message)s"))
        logger.addHandler(handler)
    logger.propagate = False

    if asbool(_getenv("COVWATCH_DEBUG", "false")):
        logger.setLevel(logging.DEBUG)
    elif logger.level == logging.NOTSET:
        logger.setLevel(logging.WARNING)

    _configure_file_logger(logger)


def _getenv(name, default=None):
    # type: (str, Optional[str]) -> Optional[str]
    return os.environ.get(name, default)


def _configure_file_logger(logger):
    log_file_level = (_getenv("COVWATCH_LOG_FILE_LEVEL", "DEBUG") or "DEBUG").upper()
    try:
        file_log_level_value = getattr(logging, log_file_level)
    except AttributeError:
        raise ValueError(
            "COVWATCH_LOG_FILE_LEVEL is invalid. Log level must be CRITICAL/ERROR/WARNING/INFO/DEBUG.",
            log_file_level,
        )
    _add_file_handler(logger=logger, log_path=_getenv("COVWATCH_LOG_FILE"), log_level=file_log_level_value)


def _add_file_handler(
    logger: logging.Logger,
    log_path: Optional[str],
    log_level: int,
    max_file_bytes: int = DEFAULT_FILE_SIZE_BYTES,
):
    file_handler = None
    if log_path is not None:
        log_path = path.abspath(log_path)
        if any(getattr(h, "baseFilename", None) == log_path for h in logger.handlers):
            return None

        from logging.handlers import RotatingFileHandler

        file_handler = RotatingFileHandler(filename=log_path, mode="a", maxBytes=max_file_bytes, backupCount=1)
        log_format = "%(asctime)s %(levelname)s [%(name)s] [%(filename)s:%(lineno)d] [pid=%(process)d] - %(message)s"
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(log_format))
        logger.addHandler(file_handler)
        if logger.level > log_level:
            logger.setLevel(log_level)
        logger.debug("covwatch logs will be routed to %s", log_path)
    return file_handler
