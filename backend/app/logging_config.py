"""
Logging configuration for the application.

Supports per-module log levels via environment variables:
- LOG_LEVEL: Global log level (default: INFO)
- LOG_FORMAT: Log format - simple or structured (default: structured)
- LOG_LEVEL_<MODULE>: Per-module override (e.g., LOG_LEVEL_TRANSCODER=DEBUG)

Records emitted while a session is bound (see session_context) carry the
session id, including records from transcode batches that session queued.
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Iterator

if TYPE_CHECKING:
    from app.config import Settings


# Module name mapping: settings field suffix -> logger name
MODULE_LOGGERS = {
    "remote_client": "app.services.ai_clients",
    "merger": "app.services.highlight_merger",
    "transcoder": "app.services.ffmpeg_engine",
    "pipeline": "app.services.pipeline",
}

NO_SESSION = "-"

current_session: ContextVar[str] = ContextVar("current_session", default=NO_SESSION)


@contextmanager
def session_context(session_id: str | None) -> Iterator[None]:
    """
    Bind a session id to log records emitted inside the block.

    Tasks created inside the block inherit the binding.
    """
    token = current_session.set(session_id or NO_SESSION)
    try:
        yield
    finally:
        current_session.reset(token)


class SessionFilter(logging.Filter):
    """Attach the bound session id to every record as record.session."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.session = current_session.get()
        return True


def short_logger_name(name: str) -> str:
    """app.services.pipeline.orchestrator -> pipeline.orchestrator"""
    for prefix, replacement in (
        ("app.services.", ""),
        ("app.api.", "api."),
        ("app.", ""),
    ):
        if name.startswith(prefix):
            return replacement + name[len(prefix):]
    return name


class StructuredFormatter(logging.Formatter):
    """
    Structured log formatter for easy parsing.

    Format: timestamp | level | logger | session | message
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = self.formatTime(record, "%Y-%m-%d %H:%M:%S")
        session = getattr(record, "session", NO_SESSION)

        message = (
            f"{timestamp} | "
            f"{record.levelname:8} | "
            f"{short_logger_name(record.name):28} | "
            f"{session:8} | "
            f"{record.getMessage()}"
        )

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


def setup_logging(settings: "Settings") -> None:
    """
    Configure logging based on settings.

    Args:
        settings: Application settings with log configuration
    """
    root_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "structured":
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - [%(session)s] %(levelname)s - %(message)s"
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.setLevel(root_level)
    handler.addFilter(SessionFilter())
    root_logger.addHandler(handler)

    for module_key, logger_name in MODULE_LOGGERS.items():
        level_str = getattr(settings, f"log_level_{module_key}", None)
        if level_str:
            level = getattr(logging, level_str.upper(), root_level)
            logging.getLogger(logger_name).setLevel(level)

    # Quiet noisy third-party loggers
    for noisy in ("httpx", "httpcore", "uvicorn.access", "PIL", "multipart"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
