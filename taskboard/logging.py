"""Structured logging for Taskboard.

Events go through structlog onto stdlib logging. Request-scoped values
(request id, method, path) live in structlog context variables, so every
event logged while handling a request carries them.
"""

import logging
import secrets
import sys
from pathlib import Path
from typing import Optional

import structlog

REQUEST_ID_HEADER = "X-Request-ID"


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    json_format: bool = False
):
    """Configure structured logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional path to an additional log file
        json_format: Render JSON lines instead of the colored console format
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", level=numeric_level, stream=sys.stdout)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    processors.append(
        structlog.processors.JSONRenderer() if json_format
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(logging.Formatter("%(message)s"))
        logging.getLogger().addHandler(file_handler)

    # request_completed already covers what uvicorn's access log prints
    logging.getLogger("uvicorn.access").setLevel(max(numeric_level, logging.WARNING))


def new_request_id() -> str:
    return secrets.token_hex(8)


def bind_request_context(method: str, path: str, request_id: Optional[str] = None) -> str:
    """Start a fresh logging context for one HTTP request.

    Returns:
        The request id now bound to every event in this context
    """
    request_id = request_id or new_request_id()
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, method=method, path=path)
    return request_id


def clear_request_context():
    structlog.contextvars.clear_contextvars()
