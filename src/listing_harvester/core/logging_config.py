"""Structured logging configuration using structlog.

Call ``configure_logging()`` once at startup (``api/main.py`` does this).
Modules then log through either API:

Stdlib usage (library-level helpers such as retry and the browser session)::

    import logging
    logger = logging.getLogger(__name__)
    logger.info("browser: launched headless=%s", headless)

Structlog usage (queue, worker, routes)::

    import structlog
    logger = structlog.get_logger(__name__)
    logger.info("job_completed", job_id=job.id, items=30)

Two context variables are merged into every record: ``request_id`` (set by
the HTTP middleware) and ``job_id`` (set by the worker for the duration of
one job).  Each dispatched job runs in its own asyncio task, so the
``job_id`` binding never leaks between concurrent jobs.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar

import structlog
from structlog.types import EventDict, WrappedLogger

# ---------------------------------------------------------------------------
# Context variables
# ---------------------------------------------------------------------------

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
"""Per-request ID set by the HTTP middleware."""

job_id_var: ContextVar[str | None] = ContextVar("job_id", default=None)
"""Id of the job whose worker task is emitting the record."""


# ---------------------------------------------------------------------------
# Custom processors
# ---------------------------------------------------------------------------


_SECRET_SUBSTRINGS: frozenset[str] = frozenset({
    "api_key",
    "x-api-key",
    "authorization",
    "password",
    "secret",
    "token",
})
"""Lower-cased substrings identifying event-dict keys whose values are redacted."""


_REDACTED = "[REDACTED]"


def _is_secret_key(key: object) -> bool:
    lowered = str(key).lower()
    return any(secret in lowered for secret in _SECRET_SUBSTRINGS)


def _redact_secrets(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Mask secret-bearing keys at the top level and one mapping deep.

    A ``headers={"X-API-Key": ...}`` argument is therefore covered as well
    as a bare ``api_key=...`` keyword.
    """
    for key, value in list(event_dict.items()):
        if _is_secret_key(key):
            event_dict[key] = _REDACTED
        elif isinstance(value, dict):
            event_dict[key] = {
                inner: _REDACTED if _is_secret_key(inner) else inner_value
                for inner, inner_value in value.items()
            }
    return event_dict


def _inject_context_ids(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Add ``request_id`` / ``job_id`` from their ContextVars when set.

    Runs after ``merge_contextvars`` so explicitly bound values win.
    """
    for name, var in (("request_id", request_id_var), ("job_id", job_id_var)):
        value = var.get()
        if value is not None:
            event_dict.setdefault(name, value)
    return event_dict


# ---------------------------------------------------------------------------
# Public configuration entry-point
# ---------------------------------------------------------------------------

# Chatty third-party loggers held at WARNING in JSON mode.
_QUIET_LOGGERS: tuple[str, ...] = ("uvicorn.access", "httpx", "httpcore", "asyncio", "asyncpg")


def _renderer(human_readable: bool) -> structlog.types.Processor:
    if human_readable:
        return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    return structlog.processors.JSONRenderer(sort_keys=False)


def configure_logging(log_level: str = "INFO", *, console: bool = False) -> None:
    """Configure structlog and route stdlib logging through it.

    Output is newline-delimited JSON unless ``console`` is True or the level
    is ``DEBUG``, in which case structlog's ``ConsoleRenderer`` is used.
    Calling this more than once replaces the previous configuration.

    Args:
        log_level: Level name, case-insensitive; unknown names fall back to INFO.
        console: Force human-readable output regardless of level.
    """
    level_name = log_level.upper()
    human_readable = console or level_name == "DEBUG"

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _inject_context_ids,
        _redact_secrets,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(human_readable),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, level_name, logging.INFO))

    if not human_readable:
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
