"""Flask application serving the HTTP trigger outside Lambda.

Every request except ``/healthz`` is turned into the same ALB-shaped
event the Lambda handler receives and dispatched through the router,
so a container behind an instance/IP target group behaves like the
Lambda target.  Requests carry no target group; the load balancer comes
from ``server.load_balancer_arn``.

Usage::

    from albacme.server import create_app

    app = create_app(AppContext.build(settings))
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from flask import Flask, Response, g, jsonify, request

from albacme import __version__
from albacme.app.context import get_context
from albacme.core.polling import Deadline
from albacme.lifecycle.lambda_handler import DEADLINE_MARGIN_SECONDS
from albacme.logging import invocation_context

if TYPE_CHECKING:
    from flask.typing import ResponseReturnValue

    from albacme.app.context import AppContext
    from albacme.config.settings import ServerSettings

log = logging.getLogger(__name__)

_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _raw_query_parameters(query_string: bytes) -> dict[str, list[str]]:
    """Split a query string into parameters without percent-decoding."""
    params: dict[str, list[str]] = {}
    for part in query_string.decode("latin-1").split("&"):
        if not part:
            continue
        key, _, value = part.partition("=")
        params.setdefault(key, []).append(value)
    return params


def request_event() -> dict[str, Any]:
    """The current Flask request in ALB target-group event form."""
    event: dict[str, Any] = {
        "httpMethod": request.method,
        "path": request.path,
        "headers": {k.lower(): v for k, v in request.headers.items()},
        "body": "",
        "isBase64Encoded": False,
    }
    query = _raw_query_parameters(request.query_string)
    if query:
        event["multiValueQueryStringParameters"] = query
    return event


def request_deadline(server: ServerSettings) -> Deadline:
    """Deadline that ends before the worker timeout kills the request."""
    return Deadline.after(max(0.0, server.timeout - DEADLINE_MARGIN_SECONDS))


def to_flask_response(result: dict[str, Any]) -> Response:
    response = Response(result.get("body") or "", status=result["statusCode"])
    for key, value in (result.get("headers") or {}).items():
        response.headers[key] = value
    for key, values in (result.get("multiValueHeaders") or {}).items():
        for value in values:
            response.headers.add(key, value)
    return response


def create_app(context: AppContext) -> Flask:
    """Create the Flask application around an :class:`AppContext`."""
    app = Flask("albacme")
    app.extensions["albacme"] = context

    @app.before_request
    def _assign_request_id() -> None:
        g.request_id = request.headers.get("X-Request-ID") or uuid4().hex

    @app.after_request
    def _echo_request_id(response: Response) -> Response:
        request_id = getattr(g, "request_id", None)
        if request_id:
            response.headers["X-Request-ID"] = request_id
        return response

    @app.route("/healthz")
    def healthz() -> ResponseReturnValue:
        return jsonify({"status": "ok", "version": __version__})

    @app.route("/", defaults={"path": ""}, methods=_METHODS)
    @app.route("/<path:path>", methods=_METHODS)
    def trigger(path: str) -> ResponseReturnValue:  # noqa: ARG001
        ctx = get_context()
        with invocation_context(request_id=g.request_id):
            result = ctx.router.handle_request(
                request_event(),
                deadline=request_deadline(ctx.settings.server),
            )
        return to_flask_response(result)

    log.debug("Flask application created")
    return app
