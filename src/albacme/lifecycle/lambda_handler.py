"""AWS Lambda entry point.

Configure the function handler as ``albacme.lifecycle.lambda_handler.handler``.
The :class:`~albacme.app.context.AppContext` is built on the first
invocation and reused while the container stays warm; it holds only
read-only configuration and clients.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from albacme.app.context import AppContext
from albacme.config import load_config
from albacme.core.polling import Deadline
from albacme.logging import configure_logging, invocation_context

log = logging.getLogger(__name__)

# Time kept back from the Lambda timeout to send the response.
DEADLINE_MARGIN_SECONDS = 3.0

_app_context: AppContext | None = None
_init_lock = threading.Lock()


def get_app_context() -> AppContext:
    """Build the process context on first use."""
    global _app_context  # noqa: PLW0603
    with _init_lock:
        if _app_context is None:
            settings = load_config()
            configure_logging(settings.logging)
            _app_context = AppContext.build(settings)
            log.info("Initialised %r", _app_context)
        return _app_context


def reset_app_context() -> None:
    """Drop the cached context -- testing only."""
    global _app_context  # noqa: PLW0603
    _app_context = None


def invocation_deadline(lambda_context: Any) -> Deadline | None:  # noqa: ANN401
    """Deadline derived from the remaining invocation time, if known."""
    remaining = getattr(lambda_context, "get_remaining_time_in_millis", None)
    if remaining is None:
        return None
    seconds = max(0.0, remaining() / 1000.0 - DEADLINE_MARGIN_SECONDS)
    return Deadline.after(seconds)


def handler(event: Any, context: Any) -> dict[str, Any]:  # noqa: ANN401
    """Lambda handler for both ALB requests and renewal events."""
    app_context = get_app_context()
    request_id = getattr(context, "aws_request_id", None)
    with invocation_context(request_id=request_id):
        return app_context.router.handle(
            event,
            function_arn=getattr(context, "invoked_function_arn", None),
            deadline=invocation_deadline(context),
        )
