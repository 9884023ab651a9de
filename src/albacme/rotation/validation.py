"""Post-rotation check that the new certificate is actually served.

Polls ``https://<domain>`` with a full TLS handshake (hostname and
chain verification included) until it succeeds.  Handshake and
verification failures mean the load balancer still serves the old
certificate and polling continues; any other network error ends the
check immediately.
"""

from __future__ import annotations

import logging
import socket
import ssl
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING

from albacme.core.polling import SYSTEM_CLOCK, Clock, Deadline, Probe, poll_until

if TYPE_CHECKING:
    from albacme.config.settings import ValidationSettings

log = logging.getLogger(__name__)

Handshake = Callable[[str, int, float], None]


def tls_handshake(host: str, port: int, timeout: float) -> None:
    """Open a verified TLS connection to *host* and close it again."""
    context = ssl.create_default_context()
    with socket.create_connection((host, port), timeout=timeout) as sock:  # noqa: SIM117
        with context.wrap_socket(sock, server_hostname=host) as tls:
            log.debug("TLS handshake with %s:%d succeeded (%s)", host, port, tls.version())


def handshake_probe(
    host: str,
    port: int,
    timeout: float,
    handshake: Handshake = tls_handshake,
) -> Callable[[], Probe]:
    def probe() -> Probe:
        try:
            handshake(host, port, timeout)
        except ssl.SSLError as exc:
            # SSLError subclasses OSError; it must be checked first.
            log.info("Certificate for %s is not valid yet: %s", host, exc)
            return Probe(ready=False, observation=f"TLS error: {exc}")
        return Probe(ready=True, observation="handshake ok")

    return probe


def validate_certificate(  # noqa: PLR0913
    domain: str,
    settings: ValidationSettings,
    *,
    deadline: Deadline | None = None,
    cancel: threading.Event | None = None,
    clock: Clock = SYSTEM_CLOCK,
    handshake: Handshake = tls_handshake,
) -> None:
    """Block until *domain* completes a verified TLS handshake.

    Raises
    ------
    PollTimeout
        The handshake kept failing until the timeout.
    OSError
        A non-TLS network error (DNS, refused connection, ...).

    """
    log.info("Validating certificate for %s", domain)
    poll_until(
        handshake_probe(domain, settings.https_port, settings.probe_timeout_seconds, handshake),
        what=f"valid certificate on https://{domain}",
        interval=settings.poll_interval_seconds,
        timeout=settings.timeout_seconds,
        deadline=deadline,
        clock=clock,
        cancel=cancel,
    )
    log.info("Certificate for %s is valid", domain)
