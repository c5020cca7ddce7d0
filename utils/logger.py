import logging
import sys
from typing import Optional

LOGGER_NAME = "imaginal"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_logger = logging.getLogger(LOGGER_NAME)


def setup_logging(level: Optional[str] = None) -> logging.Logger:
    """Configure the root logger once with a console handler.

    ``level`` is a logging level name ("DEBUG", "info", ...). Unknown names
    fall back to INFO.
    """

    resolved = getattr(logging, str(level or "INFO").upper(), logging.INFO)
    if not isinstance(resolved, int):
        resolved = logging.INFO

    root = logging.getLogger()
    root.setLevel(resolved)

    if not any(getattr(h, "_imaginal", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        handler._imaginal = True  # type: ignore[attr-defined]
        root.addHandler(handler)

    # httpx logs every request at INFO; keep that for DEBUG runs only.
    logging.getLogger("httpx").setLevel(logging.DEBUG if resolved <= logging.DEBUG else logging.WARNING)
    return _logger


def log_debug(message: str) -> None:
    _logger.debug(message)


def log_info(message: str) -> None:
    _logger.info(message)


def log_warning(message: str) -> None:
    _logger.warning(message)


def log_error(message: str) -> None:
    _logger.error(message)
