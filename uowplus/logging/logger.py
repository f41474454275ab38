import sys
from pathlib import Path
from contextvars import ContextVar
from typing import Optional
from loguru import logger
from fastapi import Request
from uowplus.config import settings

# Store current request in contextvars for async context
_current_request: ContextVar[Optional[Request]] = ContextVar("current_request", default=None)

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<magenta>Trace:{extra[trace_id]}</magenta> - <level>{message}</level>"
)
FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[name]}:{function}:{line} | "
    "Trace:{extra[trace_id]} - {message}"
)

class LogConfig:
    """Global logging configuration using Loguru."""

    @classmethod
    def setup_logging(cls, level: Optional[str] = None, log_dir: Optional[str] = None):
        """Console sink at ``level``; daily app log and size-rotated error log under ``log_dir``."""
        log_path = Path(log_dir or settings.LOG_DIR)
        log_path.mkdir(parents=True, exist_ok=True)

        logger.remove()
        logger.configure(extra={"trace_id": "system", "name": "app"})

        logger.add(
            sys.stdout,
            enqueue=True,
            backtrace=True,
            diagnose=settings.DEBUG,
            format=CONSOLE_FORMAT,
            level=level or settings.LOG_LEVEL,
        )
        logger.add(
            log_path / "app_{time:YYYY-MM-DD}.log",
            rotation="00:00",
            retention="30 days",
            compression="zip",
            enqueue=True,
            format=FILE_FORMAT,
            level="DEBUG",
        )
        logger.add(
            log_path / "error_{time:YYYY-MM-DD}.log",
            rotation="100 MB",
            enqueue=True,
            format=FILE_FORMAT,
            level="ERROR",
        )

def get_logger(name: Optional[str] = None, request: Optional[Request] = None):
    """Logger bound to ``name`` and the trace id of ``request`` (or the current request)."""
    current_request = request or _current_request.get()
    if current_request is None:
        # trace id comes from logger.contextualize() or the configured default
        return logger.bind(name=name or "app")
    trace_id = getattr(current_request.state, "trace_id", "unknown")
    return logger.bind(name=name or "app", trace_id=trace_id)
