"""HTTP-01 solver backed by a fixed-response listener rule.

Present adds a rule on the load balancer's HTTP listener that answers
``GET http://<domain>/.well-known/acme-challenge/<token>`` with the key
authorization.  Wait fetches that URL once per interval until every
domain serves the exact bytes.  Clean-up deletes the rule again.
"""

from __future__ import annotations

import http.client
import logging
import threading
import urllib.error
import urllib.request
from collections.abc import Callable
from typing import TYPE_CHECKING

from albacme.challenge.base import ChallengeState
from albacme.core.errors import PollTimeout, RuleNotFound
from albacme.core.polling import SYSTEM_CLOCK, Clock, Deadline, Probe, poll_until
from albacme.core.types import Challenge, RuleCondition

if TYPE_CHECKING:
    from albacme.config.settings import ChallengeSettings
    from albacme.loadbalancer.rules import ListenerRuleManager

log = logging.getLogger(__name__)

Fetcher = Callable[[str, float, int], tuple[int, bytes]]


def fetch_http(url: str, timeout: float, max_bytes: int) -> tuple[int, bytes]:
    """GET *url* and return ``(status, body)``.

    Non-2xx answers are returned, not raised.  Redirects are followed
    (urllib's limit matches the ACME validators'); connection and TLS
    errors raise :class:`OSError` subclasses.
    """
    req = urllib.request.Request(url, method="GET")
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:  # noqa: S310
            return resp.status, resp.read(max_bytes)
    except urllib.error.HTTPError as exc:
        # The error carries the open response.
        if exc.fp is not None:
            exc.close()
        return exc.code, b""


class AlbHttp01Solver:
    """Solve HTTP-01 challenges with rules on an ALB's HTTP listener.

    One instance serves one issuance run.  The rule's host-header
    condition lists every domain of the order.

    Parameters
    ----------
    rules:
        Listener rule manager for the load balancer's region.
    load_balancer_arn:
        Load balancer whose HTTP listener receives the validation requests.
    domains:
        Domains of the order being validated.
    settings:
        Timing configuration for :meth:`wait`.
    listener_port:
        Port of the plain-HTTP listener.
    deadline:
        Invocation deadline; :meth:`wait` never outlives it.
    cancel:
        Set to abort a running :meth:`wait`.

    """

    def __init__(  # noqa: PLR0913
        self,
        rules: ListenerRuleManager,
        load_balancer_arn: str,
        domains: list[str] | tuple[str, ...],
        settings: ChallengeSettings,
        *,
        listener_port: int = 80,
        deadline: Deadline | None = None,
        cancel: threading.Event | None = None,
        clock: Clock = SYSTEM_CLOCK,
        fetch: Fetcher = fetch_http,
    ) -> None:
        self._rules = rules
        self._load_balancer_arn = load_balancer_arn
        self.domains = tuple(domains)
        self._settings = settings
        self._listener_port = listener_port
        self._deadline = deadline
        self._cancel = cancel
        self._clock = clock
        self._fetch = fetch
        self.states: dict[str, ChallengeState] = {}

    def condition_for(self, challenge: Challenge) -> RuleCondition:
        return RuleCondition.build(host_headers=self.domains, path_patterns=[challenge.path])

    def present(self, challenge: Challenge) -> None:
        log.info("Presenting challenge for %s at path %s", list(self.domains), challenge.path)
        listener_arn = self._rules.find_http_listener(self._load_balancer_arn, self._listener_port)
        self._rules.add_static_rule(
            listener_arn,
            self.condition_for(challenge),
            challenge.key_authorization,
        )
        self.states[challenge.token] = ChallengeState.PRESENTED

    def wait(self, challenge: Challenge) -> None:
        log.info("Waiting for challenge for %s at path %s", list(self.domains), challenge.path)
        self.states[challenge.token] = ChallengeState.WAITING
        timeout = self._settings.wait_timeout_seconds
        deadline = Deadline.after(timeout, self._clock).earliest(self._deadline)
        expected = challenge.key_authorization.encode()

        try:
            for domain in self.domains:
                url = f"http://{domain}{challenge.path}"
                log.debug("Checking URL %s", url)
                poll_until(
                    self._probe(url, expected),
                    what=f"challenge at {url}",
                    interval=self._settings.poll_interval_seconds,
                    timeout=timeout,
                    deadline=deadline,
                    clock=self._clock,
                    cancel=self._cancel,
                )
        except PollTimeout:
            self.states[challenge.token] = ChallengeState.TIMED_OUT
            raise

        self.states[challenge.token] = ChallengeState.READY
        log.info("Challenge is ready for %s at path %s", list(self.domains), challenge.path)

    def _probe(self, url: str, expected: bytes) -> Callable[[], Probe]:
        def probe() -> Probe:
            try:
                status, body = self._fetch(
                    url,
                    self._settings.probe_timeout_seconds,
                    self._settings.max_response_bytes,
                )
            except (OSError, http.client.HTTPException) as exc:
                # Includes TLS handshake failures after a redirect to https,
                # which are normal while the rule propagates.
                return Probe(ready=False, observation=f"connection error: {exc}")
            if status != 200:
                return Probe(ready=False, observation=f"HTTP {status}")
            if body != expected:
                return Probe(ready=False, observation="HTTP 200 with unexpected body")
            return Probe(ready=True, observation="HTTP 200")

        return probe

    def cleanup(self, challenge: Challenge) -> None:
        log.info("Cleaning up challenge for %s at path %s", list(self.domains), challenge.path)
        listener_arn = self._rules.find_http_listener(self._load_balancer_arn, self._listener_port)
        try:
            self._rules.delete_matching_rule(listener_arn, self.condition_for(challenge))
        except RuleNotFound:
            log.info("Challenge rule not found, skipping cleanup for path %s", challenge.path)
        self.states[challenge.token] = ChallengeState.CLEANED_UP
