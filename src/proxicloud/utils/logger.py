"""
Logging setup for ProxiCloud.

All modules log through loguru. Each module obtains a logger bound to its
own name via ``get_logger(__name__)``; the server entry point calls
``configure_logging`` once before starting uvicorn so that stdlib logging
(uvicorn, httpx) is routed into the same sinks.

Usage:
    from proxicloud.utils.logger import get_logger

    logger = get_logger(__name__)
    logger.info("Project created")
"""

import logging
import sys
import traceback

from loguru import logger as _logger

from proxicloud.models.enums import LogLevel

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level>"
)

_LEVEL_MAP = {
    LogLevel.FULL: "TRACE",
    LogLevel.DEBUG: "DEBUG",
    LogLevel.INFO: "INFO",
    LogLevel.WARNING: "WARNING",
}

# Records emitted before configure_logging() still need extra["name"]
_logger.configure(extra={"name": "proxicloud"})


class InterceptHandler(logging.Handler):
    """Forward stdlib logging records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = _logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find the caller outside of the logging module
        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        _logger.bind(name=record.name).opt(
            depth=depth, exception=record.exc_info
        ).log(level, record.getMessage())


def configure_logging(level: LogLevel = LogLevel.INFO, log_file: str = "") -> None:
    """
    Configure loguru sinks and intercept stdlib logging.

    Args:
        level: Verbosity level for all sinks.
        log_file: Optional path of a rotating log file (empty = console only).
    """
    loguru_level = _LEVEL_MAP.get(LogLevel(level), "INFO")
    full_trace = LogLevel(level) == LogLevel.FULL

    _logger.remove()
    _logger.add(
        sys.stderr,
        level=loguru_level,
        format=LOG_FORMAT,
        backtrace=full_trace,
        diagnose=full_trace,
    )
    if log_file:
        _logger.add(
            log_file,
            level=loguru_level,
            format=LOG_FORMAT,
            rotation="10 MB",
            retention=5,
            backtrace=full_trace,
            diagnose=False,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "httpx"):
        std_logger = logging.getLogger(name)
        std_logger.handlers = [InterceptHandler()]
        std_logger.propagate = False


def get_logger(name: str):
    """Get a loguru logger bound to a module name."""
    return _logger.bind(name=name)


def format_traceback(exc: BaseException) -> str:
    """Render an exception with its traceback for debug logging."""
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
