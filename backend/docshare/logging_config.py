"""
Logging configuration for the share-link service.

Plain-text, pipe-delimited log lines carrying a per-request ID. Link
identifiers are bearer credentials, so they are shortened before they reach
any handler.
"""

import logging
import re
import sys
import uuid
from contextvars import ContextVar
from typing import Optional

from .config import settings

# Context variable for request ID tracking
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Link ids in request paths, e.g. /links/AbCdEf123456/log
LINK_PATH_RE = re.compile(r"(/links/)([A-Za-z0-9_-]+)")


def get_request_id() -> Optional[str]:
    """Get the current request ID from context."""
    return request_id_var.get()


def set_request_id(request_id: Optional[str] = None) -> str:
    """Set a request ID in context. Generates one if not provided."""
    rid = request_id or str(uuid.uuid4())[:8]
    request_id_var.set(rid)
    return rid


def mask_link_id(link_id: Optional[str], keep: Optional[int] = None) -> str:
    """Shorten a link id to its first few characters for log output."""
    if not link_id:
        return "-"
    if keep is None:
        keep = settings.LOG_LINK_ID_PREFIX
    if len(link_id) <= keep:
        return "***"
    return f"{link_id[:keep]}***"


class RequestIdFilter(logging.Filter):
    """Logging filter that adds request_id to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id() or "-"
        return True


class LinkPathRedactionFilter(logging.Filter):
    """Masks link ids that appear in URL paths within a message."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = LINK_PATH_RE.sub(lambda m: m.group(1) + mask_link_id(m.group(2)), message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def resolve_log_level(debug: Optional[bool] = None, level: Optional[str] = None) -> int:
    level = level if level is not None else settings.LOG_LEVEL
    if level:
        resolved = logging.getLevelName(level.strip().upper())
        if isinstance(resolved, int):
            return resolved
    if debug is None:
        debug = settings.DEBUG
    return logging.DEBUG if debug else logging.INFO


def setup_logging(debug: Optional[bool] = None, level: Optional[str] = None) -> None:
    """Configure application logging on stdout."""
    log_level = resolve_log_level(debug, level)

    # Format: timestamp - level - request_id - logger - message
    log_format = "%(asctime)s | %(levelname)-8s | %(request_id)s | %(name)s | %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(log_format, date_format))
    console_handler.addFilter(RequestIdFilter())
    console_handler.addFilter(LinkPathRedactionFilter())

    root_logger.addHandler(console_handler)

    # Reduce noise from third-party libraries
    for name in ("uvicorn.access", "sqlalchemy.engine", "aiosqlite", "httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the application configuration."""
    return logging.getLogger(name)
