"""Structured logging configuration for albacme.

Provides JSON and text formatters, an invocation-context filter that
injects the current request id and domain into every log record, and a
one-call ``configure_logging`` function driven by config settings.
"""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import sys
from collections.abc import Iterator
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from albacme.config.settings import LoggingSettings

# Attributes that are part of the standard LogRecord; everything
# else is considered "extra" and gets included in structured output.
_STANDARD_ATTRS = frozenset(
    {
        "args",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
        # Handled explicitly:
        "request_id",
        "domain",
    }
)

_QUIET_LOGGERS = (
    "botocore",
    "boto3",
    "urllib3",
    "acme",
    "werkzeug",
    "gunicorn",
    "gunicorn.access",
    "gunicorn.error",
)

_request_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "albacme_request_id",
    default=None,
)
_domain: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "albacme_domain",
    default=None,
)


# ---------------------------------------------------------------------------
# Invocation context
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def invocation_context(
    request_id: str | None = None,
    domain: str | None = None,
) -> Iterator[None]:
    """Tag every record logged inside the block with *request_id*/*domain*."""
    rid_token = _request_id.set(request_id)
    domain_token = _domain.set(domain)
    try:
        yield
    finally:
        _domain.reset(domain_token)
        _request_id.reset(rid_token)


def bind_domain(domain: str | None) -> None:
    """Set the domain for the rest of the current invocation context."""
    _domain.set(domain)


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


class StructuredFormatter(logging.Formatter):
    """JSON-lines formatter for CloudWatch / production logging.

    Every record becomes a single JSON object on one line containing
    the standard fields plus any *extra* attributes passed by the
    caller or injected by filters.
    """

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()

        data: dict = {
            "timestamp": datetime.fromtimestamp(
                record.created,
                tz=UTC,
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }

        request_id = getattr(record, "request_id", None)
        if request_id not in (None, "-"):
            data["request_id"] = request_id

        domain = getattr(record, "domain", None)
        if domain not in (None, "-"):
            data["domain"] = domain

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                data.setdefault(key, value)

        if record.exc_info and record.exc_info[0] is not None:
            data["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            data["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for development / console use."""

    _FMT = "%(asctime)s %(levelname)-8s [%(request_id)s] %(domain)s %(name)s: %(message)s"

    def __init__(self) -> None:
        super().__init__(fmt=self._FMT, datefmt="%Y-%m-%d %H:%M:%S")


# ---------------------------------------------------------------------------
# Filter
# ---------------------------------------------------------------------------


class InvocationContextFilter(logging.Filter):
    """Inject ``request_id`` and ``domain`` into every log record.

    Values come from :func:`invocation_context` first.  Inside a Flask
    request without one, ``g.request_id`` is used.  Missing values
    fall back to ``"-"``.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if not hasattr(record, "request_id"):
            record.request_id = _request_id.get() or "-"  # type: ignore[attr-defined]
        if not hasattr(record, "domain"):
            record.domain = _domain.get() or "-"  # type: ignore[attr-defined]

        if record.request_id == "-":  # type: ignore[attr-defined]
            from flask import g, has_request_context  # noqa: PLC0415

            if has_request_context():
                record.request_id = getattr(g, "request_id", "-")  # type: ignore[attr-defined]

        return True


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def configure_logging(settings: LoggingSettings) -> logging.Logger:
    """Configure the ``albacme`` logger hierarchy from settings.

    Replaces any bootstrap handlers with properly formatted output.
    Safe to call again on a warm Lambda container.

    Returns the root ``albacme`` logger.
    """
    level = getattr(logging, settings.level.upper(), logging.INFO)

    root = logging.getLogger("albacme")
    root.setLevel(level)
    root.handlers.clear()
    root.propagate = False

    formatter: logging.Formatter
    formatter = StructuredFormatter() if settings.format == "json" else TextFormatter()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    console.addFilter(InvocationContextFilter())
    root.addHandler(console)

    for lib in _QUIET_LOGGERS:
        logging.getLogger(lib).setLevel(logging.WARNING)

    return root
