"""Typed, frozen dataclasses for every configuration section.

This module is the **single source of truth** for default values.  The
builders accept the raw (env-resolved) mapping and fill in everything
that is missing.

Access pattern::

    from albacme.config import load_config

    settings = load_config("config.yaml")
    settings.challenge.wait_timeout_seconds
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

LETSENCRYPT_DIRECTORY = "https://acme-v02.api.letsencrypt.org/directory"
LETSENCRYPT_STAGING_DIRECTORY = "https://acme-staging-v02.api.letsencrypt.org/directory"

# ---------------------------------------------------------------------------
# ACME
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AcmeSettings:
    """ACME server and certificate request parameters."""

    directory_url: str
    email: str | None
    user_agent: str
    key_type: str
    trusted_issuers: tuple[str, ...]
    finalize_timeout_seconds: int


def _build_acme(data: dict | None) -> AcmeSettings:
    d = data or {}
    return AcmeSettings(
        directory_url=d.get("directory_url") or LETSENCRYPT_DIRECTORY,
        email=d.get("email") or None,
        user_agent=d.get("user_agent", "albacme"),
        key_type=d.get("key_type", "ec256"),
        trusted_issuers=tuple(d.get("trusted_issuers", ["let's encrypt"])),
        finalize_timeout_seconds=d.get("finalize_timeout_seconds", 90),
    )


# ---------------------------------------------------------------------------
# Account key
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountKeySettings:
    """Where the ACME account key lives (``file``, ``ssm`` or ``env``)."""

    store: str
    path: str
    parameter_name: str | None
    env_var: str


def _build_account_key(data: dict | None) -> AccountKeySettings:
    d = data or {}
    return AccountKeySettings(
        store=d.get("store", "file"),
        path=d.get("path", "./acme_account_key.pem"),
        parameter_name=d.get("parameter_name") or None,
        env_var=d.get("env_var", "ACME_ACCOUNT_KEY"),
    )


# ---------------------------------------------------------------------------
# Challenge / validation timing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChallengeSettings:
    """Timing of the HTTP-01 readiness wait."""

    wait_timeout_seconds: float
    poll_interval_seconds: float
    probe_timeout_seconds: float
    max_response_bytes: int


def _build_challenge(data: dict | None) -> ChallengeSettings:
    d = data or {}
    return ChallengeSettings(
        wait_timeout_seconds=d.get("wait_timeout_seconds", 300),
        poll_interval_seconds=d.get("poll_interval_seconds", 1.0),
        probe_timeout_seconds=d.get("probe_timeout_seconds", 5.0),
        max_response_bytes=d.get("max_response_bytes", 65536),
    )


@dataclass(frozen=True)
class ValidationSettings:
    """Timing of the post-rotation HTTPS handshake check."""

    https_port: int
    timeout_seconds: float
    poll_interval_seconds: float
    probe_timeout_seconds: float


def _build_validation(data: dict | None) -> ValidationSettings:
    d = data or {}
    return ValidationSettings(
        https_port=d.get("https_port", 443),
        timeout_seconds=d.get("timeout_seconds", 120),
        poll_interval_seconds=d.get("poll_interval_seconds", 2.0),
        probe_timeout_seconds=d.get("probe_timeout_seconds", 5.0),
    )


# ---------------------------------------------------------------------------
# Load balancer
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoadBalancerSettings:
    """Listener ports and the bootstrap forwarding rule."""

    http_port: int
    https_port: int
    bootstrap_path_patterns: tuple[str, ...]
    target_group_arn: str | None


def _build_load_balancer(data: dict | None) -> LoadBalancerSettings:
    d = data or {}
    return LoadBalancerSettings(
        http_port=d.get("http_port", 80),
        https_port=d.get("https_port", 443),
        bootstrap_path_patterns=tuple(d.get("bootstrap_path_patterns", ["/"])),
        target_group_arn=d.get("target_group_arn") or None,
    )


# ---------------------------------------------------------------------------
# AWS
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AwsSettings:
    region: str | None
    profile: str | None


def _build_aws(data: dict | None) -> AwsSettings:
    d = data or {}
    return AwsSettings(
        region=d.get("region") or None,
        profile=d.get("profile") or None,
    )


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ServerSettings:
    """WSGI server configuration (bind address, workers, timeouts)."""

    bind: str
    port: int
    workers: int
    timeout: int
    load_balancer_arn: str | None


def _build_server(data: dict | None) -> ServerSettings:
    d = data or {}
    return ServerSettings(
        bind=d.get("bind", "0.0.0.0"),  # noqa: S104
        port=d.get("port", 8080),
        workers=d.get("workers", 2),
        timeout=d.get("timeout", 600),
        load_balancer_arn=d.get("load_balancer_arn") or None,
    )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoggingSettings:
    level: str
    format: str


def _build_logging(data: dict | None) -> LoggingSettings:
    d = data or {}
    return LoggingSettings(
        level=d.get("level", "INFO"),
        format=d.get("format", "text"),
    )


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AlbAcmeSettings:
    """Root of the settings tree."""

    acme: AcmeSettings
    account_key: AccountKeySettings
    challenge: ChallengeSettings
    validation: ValidationSettings
    load_balancer: LoadBalancerSettings
    aws: AwsSettings
    server: ServerSettings
    logging: LoggingSettings


def build_settings(data: dict[str, Any] | None) -> AlbAcmeSettings:
    """Build the full settings tree from a raw config mapping."""
    d = data or {}
    return AlbAcmeSettings(
        acme=_build_acme(d.get("acme")),
        account_key=_build_account_key(d.get("account_key")),
        challenge=_build_challenge(d.get("challenge")),
        validation=_build_validation(d.get("validation")),
        load_balancer=_build_load_balancer(d.get("load_balancer")),
        aws=_build_aws(d.get("aws")),
        server=_build_server(d.get("server")),
        logging=_build_logging(d.get("logging")),
    )
