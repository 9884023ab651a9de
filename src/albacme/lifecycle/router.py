"""Dispatch inbound triggers to the rotation orchestrator.

Two event shapes are recognised, purely by their keys:

HTTP request (ALB target-group invocation)::

    {"httpMethod": "GET", "path": "/", "headers": {"host": "example.com"},
     "requestContext": {"elb": {"targetGroupArn": "arn:..."}}, ...}

Renewal (scheduler)::

    {"domain": "example.com", "albArn": "arn:...", "force": false}

A request only reaches this function through the bootstrap forwarding
rule, so it always issues and then redirects the caller to HTTPS.  A
renewal may instead take the bootstrap branch.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from http import HTTPStatus
from typing import TYPE_CHECKING, Any

from albacme.core.errors import UnrecognizedEvent
from albacme.core.types import EventKind

if TYPE_CHECKING:
    from albacme.core.polling import Deadline
    from albacme.loadbalancer.rules import ListenerRuleManager
    from albacme.rotation.orchestrator import CertificateRotator

log = logging.getLogger(__name__)


def classify_event(event: Any) -> EventKind:  # noqa: ANN401
    """Tell an HTTP-request event from a renewal event.

    Raises :class:`UnrecognizedEvent` for anything else.
    """
    if isinstance(event, Mapping):
        if event.get("httpMethod"):
            return EventKind.HTTP_REQUEST
        if event.get("domain") and event.get("albArn"):
            return EventKind.RENEWAL
    msg = "event is neither an HTTP request nor a renewal request"
    raise UnrecognizedEvent(msg)


# ---------------------------------------------------------------------------
# HTTP request helpers
# ---------------------------------------------------------------------------


def request_header(event: Mapping[str, Any], name: str) -> str | None:
    """Case-insensitive header lookup over single- and multi-value headers."""
    name = name.lower()
    for key, value in (event.get("headers") or {}).items():
        if key.lower() == name:
            return value
    for key, values in (event.get("multiValueHeaders") or {}).items():
        if key.lower() == name and values:
            return values[0]
    return None


def request_host(event: Mapping[str, Any]) -> str:
    """The ``Host`` header, lowercased and without any port."""
    host = request_header(event, "host")
    if not host:
        msg = "HTTP request has no host header"
        raise UnrecognizedEvent(msg)
    if host.startswith("["):
        # IPv6 literal, keep the brackets
        return host.split("]", 1)[0].lower() + "]"
    return host.split(":", 1)[0].lower()


def _query_string(event: Mapping[str, Any]) -> str:
    # ALB passes parameters still percent-encoded; join them untouched.
    single = event.get("queryStringParameters")
    if single:
        return "&".join(f"{k}={v}" for k, v in single.items())
    multi = event.get("multiValueQueryStringParameters")
    if multi:
        return "&".join(f"{k}={v}" for k, values in multi.items() for v in values)
    return ""


def https_redirect_url(event: Mapping[str, Any]) -> str:
    """``https://`` equivalent of the request, path and query preserved."""
    url = f"https://{request_host(event)}{event.get('path') or '/'}"
    query = _query_string(event)
    if query:
        url = f"{url}?{query}"
    return url


def http_response(
    event: Mapping[str, Any],
    status: HTTPStatus,
    headers: dict[str, str] | None = None,
    body: str = "",
) -> dict[str, Any]:
    """ALB target-group response, in the header style the request used."""
    response: dict[str, Any] = {
        "statusCode": int(status),
        "statusDescription": f"{int(status)} {status.phrase}",
        "isBase64Encoded": False,
        "body": body,
    }
    headers = headers or {}
    if "multiValueHeaders" in event:
        response["multiValueHeaders"] = {k: [v] for k, v in headers.items()}
    else:
        response["headers"] = headers
    return response


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


class EventRouter:
    """Route one inbound event to the right handling path.

    Parameters
    ----------
    rules:
        Listener rule manager, used to resolve a request's load balancer.
    rotator:
        The rotation orchestrator.
    load_balancer_arn:
        Load balancer for requests that carry no target group (the WSGI
        surface).

    """

    def __init__(
        self,
        rules: ListenerRuleManager,
        rotator: CertificateRotator,
        load_balancer_arn: str | None = None,
    ) -> None:
        self._rules = rules
        self._rotator = rotator
        self._load_balancer_arn = load_balancer_arn

    def handle(
        self,
        event: Any,  # noqa: ANN401
        *,
        function_arn: str | None = None,
        deadline: Deadline | None = None,
        cancel: threading.Event | None = None,
    ) -> dict[str, Any]:
        kind = classify_event(event)
        log.debug("Handling %s event", kind)
        if kind is EventKind.HTTP_REQUEST:
            return self.handle_request(
                event,
                function_arn=function_arn,
                deadline=deadline,
                cancel=cancel,
            )
        return self.handle_renewal(
            event,
            function_arn=function_arn,
            deadline=deadline,
            cancel=cancel,
        )

    def _request_load_balancer(self, event: Mapping[str, Any]) -> str:
        elb = (event.get("requestContext") or {}).get("elb") or {}
        target_group_arn = elb.get("targetGroupArn")
        if target_group_arn:
            return self._rules.resolve_load_balancer(target_group_arn)
        if self._load_balancer_arn:
            return self._load_balancer_arn
        msg = "HTTP request carries no target group and no load balancer is configured"
        raise UnrecognizedEvent(msg)

    def handle_request(
        self,
        event: Mapping[str, Any],
        *,
        function_arn: str | None = None,
        deadline: Deadline | None = None,
        cancel: threading.Event | None = None,
    ) -> dict[str, Any]:
        """Issue synchronously, then redirect the caller to HTTPS.

        Failures are logged and answered with a 500; the caller sees
        the failed request rather than a Lambda error.
        """
        try:
            host = request_host(event)
            log.info("Handling %s request for %s%s", event.get("httpMethod"), host, event.get("path"))
            load_balancer_arn = self._request_load_balancer(event)
            self._rotator.rotate(
                host,
                load_balancer_arn,
                allow_bootstrap=False,
                function_arn=function_arn,
                deadline=deadline,
                cancel=cancel,
            )
        except Exception:
            log.exception("Certificate issuance for request failed")
            return http_response(
                event,
                HTTPStatus.INTERNAL_SERVER_ERROR,
                {"Content-Type": "text/plain"},
                "certificate issuance failed\n",
            )

        location = https_redirect_url(event)
        log.info("Redirecting to %s", location)
        return http_response(event, HTTPStatus.MOVED_PERMANENTLY, {"Location": location})

    def handle_renewal(
        self,
        event: Mapping[str, Any],
        *,
        function_arn: str | None = None,
        deadline: Deadline | None = None,
        cancel: threading.Event | None = None,
    ) -> dict[str, Any]:
        """Run a scheduled rotation.  Failures propagate to the scheduler."""
        domain = event["domain"]
        load_balancer_arn = event["albArn"]
        log.info("Handling renewal for %s on %s", domain, load_balancer_arn)
        outcome = self._rotator.rotate(
            domain,
            load_balancer_arn,
            allow_bootstrap=True,
            force=bool(event.get("force", False)),
            function_arn=function_arn,
            deadline=deadline,
            cancel=cancel,
        )
        return {"domain": domain, "albArn": load_balancer_arn, "outcome": str(outcome)}
