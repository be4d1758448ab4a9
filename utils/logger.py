"""Application logger shared by every module of the grader."""

import logging
import sys
import os
from typing import Optional

import config

LOGGER_NAME = "AutoGrader"

# Libraries whose INFO chatter would drown the loop's own progress lines.
_QUIET_LIBRARIES = ("urllib3", "asyncio", "PIL")

_logger: Optional[logging.Logger] = None


def _file_handler(path: str, formatter: logging.Formatter) -> logging.Handler:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    handler = logging.FileHandler(path, mode='a', encoding='utf-8')
    handler.setFormatter(formatter)
    return handler


def setup_logger(log_file: Optional[str] = config.LOG_FILE) -> logging.Logger:
    """Configures the ``AutoGrader`` logger once and returns it.

    Records go to stdout and, when ``log_file`` is set and writable, to that
    file as well. Level and format come from config (DEBUG when
    ``GRADER_DEBUG=1``). A file that cannot be opened only costs the file
    handler; console logging keeps working.

    Args:
        log_file: Path of the log file, or None for console only.

    Returns:
        logging.Logger: The configured application logger.
    """
    global _logger
    if _logger is not None:
        return _logger

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(config.LOG_LEVEL)
    logger.propagate = False

    if not logger.handlers:
        formatter = logging.Formatter(config.LOG_FORMAT)
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(formatter)
        logger.addHandler(console)

        if log_file:
            try:
                logger.addHandler(_file_handler(log_file, formatter))
            except OSError as e:
                logger.error(f"Cannot log to {log_file}, continuing with console only: {e}", exc_info=config.DEBUG)

    for name in _QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)

    _logger = logger
    logger.debug(f"Logger ready (level {logging.getLevelName(config.LOG_LEVEL)}, file {log_file or '-'})")
    return logger


def get_logger() -> logging.Logger:
    """Returns the application logger, configuring it on first use."""
    return _logger if _logger is not None else setup_logger()
