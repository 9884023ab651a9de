"""Deadline-bounded polling.

:func:`poll_until` is the one loop used by the HTTP-01 readiness wait
and by the post-rotation TLS check.  The probe decides what "ready"
means and raises for anything that should stop the loop early; the
combinator only owns timing, cancellation and the timeout error.

Timeouts are layered: a probe's own network timeout is shorter than the
wait deadline, which in turn is capped by the invocation deadline
(:meth:`Deadline.earliest`).
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, TypeVar

from albacme.core.errors import PollCancelled, PollTimeout

log = logging.getLogger(__name__)

T = TypeVar("T")


class Clock(Protocol):
    def monotonic(self) -> float: ...

    def sleep(self, seconds: float, cancel: threading.Event | None = None) -> bool:
        """Sleep for *seconds*; return ``True`` if *cancel* was set meanwhile."""
        ...


class SystemClock:
    """Wall-clock implementation backed by :func:`time.monotonic`."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float, cancel: threading.Event | None = None) -> bool:
        if cancel is not None:
            return cancel.wait(seconds)
        time.sleep(seconds)
        return False


SYSTEM_CLOCK = SystemClock()


@dataclass(frozen=True)
class Deadline:
    """An absolute point on a :class:`Clock`'s monotonic timeline."""

    at: float
    clock: Clock = SYSTEM_CLOCK

    @classmethod
    def after(cls, seconds: float, clock: Clock = SYSTEM_CLOCK) -> Deadline:
        return cls(at=clock.monotonic() + seconds, clock=clock)

    def remaining(self) -> float:
        return max(0.0, self.at - self.clock.monotonic())

    def expired(self) -> bool:
        return self.remaining() <= 0

    def earliest(self, other: Deadline | None) -> Deadline:
        if other is None or self.at <= other.at:
            return self
        return other


@dataclass
class Probe:
    """Outcome of one probe: ``ready`` plus a short note for logs/timeouts."""

    ready: bool
    observation: str = ""


def poll_until(
    probe: Callable[[], Probe],
    *,
    what: str,
    interval: float,
    timeout: float,
    deadline: Deadline | None = None,
    clock: Clock = SYSTEM_CLOCK,
    cancel: threading.Event | None = None,
) -> Probe:
    """Call *probe* every *interval* seconds until it reports ready.

    The first probe runs immediately.  The loop ends with
    :class:`PollTimeout` once *timeout* seconds have elapsed (or the
    caller's *deadline* passes, whichever is first), and with
    :class:`PollCancelled` as soon as *cancel* is set.  Exceptions
    raised by *probe* propagate unchanged.
    """
    effective = Deadline.after(timeout, clock).earliest(deadline)
    attempts = 0
    last = ""

    while True:
        if cancel is not None and cancel.is_set():
            raise PollCancelled(what)

        attempts += 1
        result = probe()
        if result.ready:
            log.debug("%s ready after %d probe(s)", what, attempts)
            return result
        last = result.observation
        log.debug("%s not ready (probe %d): %s", what, attempts, last or "-")

        remaining = effective.remaining()
        if remaining <= 0:
            raise PollTimeout(what, timeout, last or None)
        if clock.sleep(min(interval, remaining), cancel):
            raise PollCancelled(what)
