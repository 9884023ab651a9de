"""Exception hierarchy for albacme.

Every exception raised by albacme itself derives from
:class:`AlbAcmeError`.  Errors from the AWS SDK (``ClientError``) are
not converted; the orchestrator wraps them in :class:`RotationError`
so the failing step is always identified.
"""

from __future__ import annotations

from collections.abc import Sequence


class AlbAcmeError(Exception):
    """Base class for albacme failures.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.
    retryable:
        Whether re-running the invocation later may succeed.

    """

    def __init__(self, detail: str, *, retryable: bool = False) -> None:
        self.detail = detail
        self.retryable = retryable
        super().__init__(detail)


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------


class NotFoundError(AlbAcmeError):
    """A listener, rule, target group or certificate does not exist."""


class ListenerNotFound(NotFoundError):
    pass


class RuleNotFound(NotFoundError):
    """No rule matched the requested condition.

    Clean-up paths treat this as "already clean".
    """


class TargetGroupNotFound(NotFoundError):
    pass


class LoadBalancerNotFound(NotFoundError):
    pass


class CertificateNotFound(NotFoundError):
    """No certificate attached to the load balancer matches the domain.

    ``errors`` carries every per-candidate failure seen while scanning.
    """

    def __init__(self, domain: str, errors: Sequence[Exception] = ()) -> None:
        self.domain = domain
        self.errors = tuple(errors)
        detail = f"no certificate matching {domain} found"
        if self.errors:
            joined = "; ".join(str(e) for e in self.errors)
            detail = f"{detail}: {joined}"
        super().__init__(detail)


class AccountKeyNotFound(NotFoundError):
    """The account key store holds no key yet."""


# ---------------------------------------------------------------------------
# Polling
# ---------------------------------------------------------------------------


class PollTimeout(AlbAcmeError):
    """A polling loop reached its deadline before the condition held."""

    def __init__(self, what: str, timeout: float, last_observation: str | None = None) -> None:
        self.what = what
        self.timeout = timeout
        self.last_observation = last_observation
        detail = f"timeout waiting for {what} after {timeout:g}s"
        if last_observation:
            detail = f"{detail} (last observation: {last_observation})"
        super().__init__(detail, retryable=True)


class PollCancelled(AlbAcmeError):
    def __init__(self, what: str) -> None:
        self.what = what
        super().__init__(f"cancelled while waiting for {what}")


# ---------------------------------------------------------------------------
# Decode / storage / issuance
# ---------------------------------------------------------------------------


class KeyDecodeError(AlbAcmeError):
    """A stored account key exists but cannot be decoded."""


class CertificateDecodeError(AlbAcmeError):
    pass


class AccountKeyStoreError(AlbAcmeError):
    pass


class IssuanceError(AlbAcmeError):
    """The ACME exchange failed."""


class UnrecognizedEvent(AlbAcmeError):
    """An inbound trigger matches neither event shape."""


class RotationError(AlbAcmeError):
    """A rotation step failed.

    Parameters
    ----------
    step:
        Name of the step that failed (e.g. ``"load account key"``).
    cause:
        The underlying exception.

    """

    def __init__(self, step: str, cause: Exception) -> None:
        self.step = step
        self.cause = cause
        retryable = getattr(cause, "retryable", False)
        super().__init__(f"failed to {step}: {cause}", retryable=retryable)
