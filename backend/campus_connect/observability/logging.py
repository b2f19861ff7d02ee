from __future__ import annotations

import logging
import sys

import structlog

_CONFIGURED = False

# Libraries whose INFO chatter drowns out lifecycle events.
_QUIET_LOGGERS = ("botocore", "boto3", "urllib3", "httpx", "httpcore")


def configure_logging(*, level: str | int = "INFO", fmt: str = "json") -> None:
    """
    Route stdlib logging and structlog through one ProcessorFormatter.

    `fmt="json"` emits one JSON object per line; `fmt="console"` is for local
    terminals. Request-scoped values (request_id, actor_id) come from
    structlog contextvars bound by the middleware and `bind_actor()`.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    shared = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    renderer = (
        structlog.dev.ConsoleRenderer()
        if str(fmt or "").strip().lower() == "console"
        else structlog.processors.JSONRenderer()
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=shared))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(str(level).upper() if isinstance(level, str) else level)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        lg = logging.getLogger(name)
        lg.handlers = []
        lg.propagate = True
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            *shared,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _CONFIGURED = True


def start_request_context(request_id: str) -> None:
    # Each request starts clean so one caller's actor never leaks into the next.
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)


def bind_actor(*, profile_id: str | None, is_admin: bool = False) -> None:
    if profile_id:
        structlog.contextvars.bind_contextvars(actor_id=profile_id, actor_is_admin=bool(is_admin))


def get_logger(name: str | None = None):
    return structlog.get_logger(name)
