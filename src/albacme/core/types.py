"""Value types shared across albacme.

Everything here is immutable.  Listener rules are snapshots of what the
load-balancer control plane reported at the time of the listing; they
are never edited in place (replace means delete + create).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from cryptography import x509
from cryptography.x509.oid import NameOID

from albacme.core.errors import CertificateDecodeError

HTTP01_PATH_PREFIX = "/.well-known/acme-challenge/"

# Condition fields the matcher understands.  Anything else makes a rule
# opaque to us.
HOST_HEADER_FIELD = "host-header"
PATH_PATTERN_FIELD = "path-pattern"

_HOST_HEADER_CONFIG = "HostHeaderConfig"
_PATH_PATTERN_CONFIG = "PathPatternConfig"
_UNSUPPORTED_CONFIGS = (
    "HttpHeaderConfig",
    "HttpRequestMethodConfig",
    "QueryStringConfig",
    "SourceIpConfig",
)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ListenerProtocol(StrEnum):
    HTTP = "HTTP"
    HTTPS = "HTTPS"


class ActionType(StrEnum):
    FIXED_RESPONSE = "fixed-response"
    FORWARD = "forward"
    REDIRECT = "redirect"
    OTHER = "other"


class EventKind(StrEnum):
    HTTP_REQUEST = "http-request"
    RENEWAL = "renewal"


class RotationOutcome(StrEnum):
    ISSUED = "issued"
    BOOTSTRAPPED = "bootstrapped"


# ---------------------------------------------------------------------------
# Listener rules
# ---------------------------------------------------------------------------


def _as_tuple(values: Any) -> tuple[str, ...] | None:
    if values is None:
        return None
    if isinstance(values, str):
        return (values,)
    return tuple(values)


@dataclass(frozen=True)
class RuleCondition:
    """Matching dimensions of a listener rule.

    ``None`` on a dimension means the dimension is absent ("don't care"),
    which is different from an empty tuple.  ``unsupported_fields`` names
    any condition field found on an existing rule that is outside
    ``host-header`` / ``path-pattern``.
    """

    host_headers: tuple[str, ...] | None = None
    path_patterns: tuple[str, ...] | None = None
    unsupported_fields: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def build(
        cls,
        *,
        host_headers: Any = None,
        path_patterns: Any = None,
    ) -> RuleCondition:
        """Build a condition from any iterable of strings (or a single string)."""
        return cls(
            host_headers=_as_tuple(host_headers),
            path_patterns=_as_tuple(path_patterns),
        )

    @classmethod
    def from_aws(cls, conditions: list[dict[str, Any]]) -> RuleCondition:
        """Decode the ``Conditions`` list of an ELBv2 ``Rule``."""
        host_headers: tuple[str, ...] | None = None
        path_patterns: tuple[str, ...] | None = None
        unsupported: set[str] = set()

        for cond in conditions or ():
            name = cond.get("Field") or "unknown"
            for config_key in _UNSUPPORTED_CONFIGS:
                if cond.get(config_key) is not None:
                    unsupported.add(name)

            if name == HOST_HEADER_FIELD:
                if host_headers is not None:
                    # ALB never emits a dimension twice; refuse to guess.
                    unsupported.add(name)
                    continue
                config = cond.get(_HOST_HEADER_CONFIG) or {}
                host_headers = tuple(config.get("Values") or cond.get("Values") or ())
            elif name == PATH_PATTERN_FIELD:
                if path_patterns is not None:
                    unsupported.add(name)
                    continue
                config = cond.get(_PATH_PATTERN_CONFIG) or {}
                path_patterns = tuple(config.get("Values") or cond.get("Values") or ())
            else:
                unsupported.add(name)

        return cls(
            host_headers=host_headers,
            path_patterns=path_patterns,
            unsupported_fields=frozenset(unsupported),
        )

    def to_aws(self) -> list[dict[str, Any]]:
        """Encode as the ``Conditions`` argument of ``CreateRule``."""
        conditions: list[dict[str, Any]] = []
        if self.path_patterns is not None:
            conditions.append(
                {
                    "Field": PATH_PATTERN_FIELD,
                    _PATH_PATTERN_CONFIG: {"Values": list(self.path_patterns)},
                }
            )
        if self.host_headers is not None:
            conditions.append(
                {
                    "Field": HOST_HEADER_FIELD,
                    _HOST_HEADER_CONFIG: {"Values": list(self.host_headers)},
                }
            )
        return conditions

    def __str__(self) -> str:
        parts = []
        if self.host_headers is not None:
            parts.append(f"host={list(self.host_headers)}")
        if self.path_patterns is not None:
            parts.append(f"path={list(self.path_patterns)}")
        if self.unsupported_fields:
            parts.append(f"unsupported={sorted(self.unsupported_fields)}")
        return "{" + ", ".join(parts) + "}"


@dataclass(frozen=True)
class RuleAction:
    """Terminal action of a listener rule (the one that produces the response)."""

    type: ActionType
    target_group_arn: str | None = None
    message_body: str | None = None

    @classmethod
    def from_aws(cls, actions: list[dict[str, Any]]) -> RuleAction | None:
        if not actions:
            return None
        terminal = max(actions, key=lambda a: a.get("Order", 0))
        raw_type = terminal.get("Type", "")
        try:
            action_type = ActionType(raw_type)
        except ValueError:
            action_type = ActionType.OTHER
        fixed = terminal.get("FixedResponseConfig") or {}
        return cls(
            type=action_type,
            target_group_arn=terminal.get("TargetGroupArn"),
            message_body=fixed.get("MessageBody"),
        )


@dataclass(frozen=True)
class ListenerRule:
    """Snapshot of one entry in a listener's rule table.

    ``priority`` is ``None`` for the listener's default rule, whose
    priority the control plane reports as the string ``"default"``.
    """

    rule_arn: str
    priority: int | None
    condition: RuleCondition
    action: RuleAction | None = None
    is_default: bool = False

    @classmethod
    def from_aws(cls, rule: dict[str, Any]) -> ListenerRule:
        return cls(
            rule_arn=rule["RuleArn"],
            priority=parse_priority(rule.get("Priority")),
            condition=RuleCondition.from_aws(rule.get("Conditions") or []),
            action=RuleAction.from_aws(rule.get("Actions") or []),
            is_default=bool(rule.get("IsDefault", False)),
        )


def parse_priority(raw: Any) -> int | None:
    """Parse a priority as reported by the control plane.

    Returns ``None`` for ``"default"``, malformed strings and values
    below 1.
    """
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return None
    return value if value >= 1 else None


# ---------------------------------------------------------------------------
# ACME challenge
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Challenge:
    """An HTTP-01 challenge as issued by the ACME server.

    ``key_authorization`` is served verbatim at :attr:`path`.
    """

    domain: str
    token: str
    key_authorization: str

    @property
    def path(self) -> str:
        return HTTP01_PATH_PREFIX + self.token


# ---------------------------------------------------------------------------
# Certificates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CertificateRecord:
    """Decoded view of a certificate held in the certificate store."""

    arn: str
    issuer: str
    subject_common_name: str | None

    @classmethod
    def from_pem(cls, arn: str, pem: str | bytes) -> CertificateRecord:
        """Decode the leaf certificate of *pem*.

        Raises :class:`CertificateDecodeError` when the PEM is unreadable.
        """
        data = pem.encode() if isinstance(pem, str) else pem
        try:
            cert = x509.load_pem_x509_certificate(data)
        except ValueError as exc:
            msg = f"failed to decode certificate pem for {arn}: {exc}"
            raise CertificateDecodeError(msg) from exc

        common_names = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
        common_name = common_names[0].value if common_names else None
        if isinstance(common_name, bytes):
            common_name = common_name.decode(errors="replace")
        return cls(
            arn=arn,
            issuer=cert.issuer.rfc4514_string(),
            subject_common_name=common_name,
        )

    def is_issued_by(self, trusted_issuers: tuple[str, ...]) -> bool:
        """Whether the issuer string contains any of *trusted_issuers* (case-insensitive)."""
        issuer = self.issuer.lower()
        return any(marker.lower() in issuer for marker in trusted_issuers)
