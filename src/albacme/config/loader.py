"""Configuration loader.

Lifecycle::

    # Long-running surfaces (CLI, gunicorn) read a file once at startup
    settings = load_config("/etc/albacme/config.yaml")

    # Lambda has no file; the same tree is assembled from env vars
    settings = load_config()

The result is frozen and handed to :class:`albacme.app.context.AppContext`;
nothing reads configuration from module globals afterwards.
"""

from __future__ import annotations

import contextlib
import functools
import json
import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import jsonschema
import yaml

from albacme.config.settings import AlbAcmeSettings, build_settings
from albacme.core.types import HTTP01_PATH_PREFIX
from albacme.loadbalancer.matcher import path_pattern_matches

log = logging.getLogger(__name__)

CONFIG_ENV_VAR = "ALBACME_CONFIG"

_SCHEMA_PATH = Path(__file__).parent / "schema.json"

_ENV_RE = re.compile(
    r"^\$\{([^}:]+?)(?::-(.*))?\}$",
    re.DOTALL,
)

_KNOWN_KEY_TYPES = frozenset({"ec256", "ec384", "rsa2048"})
_KNOWN_STORES = frozenset({"file", "ssm", "env"})
_KNOWN_LOG_FORMATS = frozenset({"text", "json"})
_KNOWN_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

# Any token; only wildcard patterns can cover it.
_SAMPLE_CHALLENGE_PATH = f"{HTTP01_PATH_PREFIX}sample-token"


# ---------------------------------------------------------------------------
# Validation error collector
# ---------------------------------------------------------------------------


class ConfigValidationError(Exception):
    """Raised when cross-field validation finds one or more problems."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        body = "\n".join(f"  - {e}" for e in errors)
        super().__init__(f"Configuration validation failed:\n{body}")


# ---------------------------------------------------------------------------
# Environment variable resolution
# ---------------------------------------------------------------------------


def _resolve_value(value: str, path: str, environ: Mapping[str, str]) -> str:
    """Replace ``${VAR}`` or ``${VAR:-default}`` with env var value."""
    match = _ENV_RE.match(value)
    if match is None:
        return value
    var_name = match.group(1)
    fallback = match.group(2)
    resolved = environ.get(var_name)
    if resolved is not None:
        return resolved
    if fallback is not None:
        return fallback
    raise ConfigValidationError(
        [
            f"Environment variable '${{{var_name}}}' referenced "
            f"at '{path}' is not set and has no default",
        ],
    )


def _resolve_env_vars(
    data: Any,  # noqa: ANN401
    environ: Mapping[str, str],
    path: str = "",
) -> None:
    """Walk *data* in-place and resolve ``${VAR}``/``${VAR:-default}`` strings."""
    if isinstance(data, dict):
        for key in data:
            child_path = f"{path}.{key}" if path else key
            if isinstance(data[key], str):
                data[key] = _resolve_value(data[key], child_path, environ)
            elif isinstance(data[key], (dict, list)):
                _resolve_env_vars(data[key], environ, child_path)
    elif isinstance(data, list):
        for idx, item in enumerate(data):
            child_path = f"{path}[{idx}]"
            if isinstance(item, str):
                data[idx] = _resolve_value(item, child_path, environ)
            elif isinstance(item, (dict, list)):
                _resolve_env_vars(item, environ, child_path)


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


def read_config_file(config_file: str | Path) -> dict[str, Any]:
    """Parse a YAML or JSON config file into a plain dict."""
    path = Path(config_file)
    with path.open(encoding="utf-8") as f:
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(f)
        else:
            data = json.load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigValidationError([f"{path}: top level must be a mapping"])
    return data


def config_from_env(environ: Mapping[str, str]) -> dict[str, Any]:
    """Assemble a raw config mapping from the Lambda environment.

    Only variables that are set produce keys; everything else keeps the
    defaults of :mod:`albacme.config.settings`.
    """
    data: dict[str, Any] = {
        "acme": {},
        "account_key": {},
        "load_balancer": {},
        "aws": {},
        "logging": {},
    }

    if environ.get("ACME_DIRECTORY"):
        data["acme"]["directory_url"] = environ["ACME_DIRECTORY"]
    if environ.get("ACME_EMAIL"):
        data["acme"]["email"] = environ["ACME_EMAIL"]

    # First match wins: inline PEM, then SSM, then file.
    if environ.get("ACME_ACCOUNT_KEY"):
        data["account_key"] = {"store": "env", "env_var": "ACME_ACCOUNT_KEY"}
    elif environ.get("ACME_ACCOUNT_KEY_SSM"):
        data["account_key"] = {
            "store": "ssm",
            "parameter_name": environ["ACME_ACCOUNT_KEY_SSM"],
        }
    elif environ.get("ACME_ACCOUNT_KEY_FILE"):
        data["account_key"] = {"store": "file", "path": environ["ACME_ACCOUNT_KEY_FILE"]}

    if environ.get("ALBACME_TARGET_GROUP_ARN"):
        data["load_balancer"]["target_group_arn"] = environ["ALBACME_TARGET_GROUP_ARN"]
    if environ.get("AWS_REGION"):
        data["aws"]["region"] = environ["AWS_REGION"]
    if environ.get("ALBACME_LOG_LEVEL"):
        data["logging"]["level"] = environ["ALBACME_LOG_LEVEL"]
    if environ.get("ALBACME_LOG_FORMAT"):
        data["logging"]["format"] = environ["ALBACME_LOG_FORMAT"]
    return data


# ---------------------------------------------------------------------------
# Schema validation
# ---------------------------------------------------------------------------


@functools.cache
def _schema_validator() -> jsonschema.protocols.Validator:
    schema = json.loads(_SCHEMA_PATH.read_text(encoding="utf-8"))
    validator_cls = jsonschema.validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _coerce_scalar(value: str, types: set[str]) -> Any:  # noqa: ANN401
    """Convert an env-substituted string to the type the schema expects.

    Values that do not parse are returned unchanged so the schema
    reports them.
    """
    if "string" in types:
        return value
    text = value.strip()
    if "integer" in types:
        with contextlib.suppress(ValueError):
            return int(text)
    if "number" in types:
        with contextlib.suppress(ValueError):
            return float(text)
    return value


def _coerce_to_schema(data: Any, schema: Mapping[str, Any]) -> None:  # noqa: ANN401
    """Walk *data* in-place, coercing string scalars per *schema*."""
    if isinstance(data, dict):
        properties = schema.get("properties", {})
        for key, value in data.items():
            sub = properties.get(key)
            if sub is None:
                continue
            if isinstance(value, str):
                declared = sub.get("type", [])
                types = {declared} if isinstance(declared, str) else set(declared)
                data[key] = _coerce_scalar(value, types)
            else:
                _coerce_to_schema(value, sub)
    elif isinstance(data, list) and "items" in schema:
        for item in data:
            _coerce_to_schema(item, schema["items"])


def validate_schema(data: dict[str, Any]) -> None:
    """Check the raw mapping against the bundled JSON schema.

    String scalars in numeric positions are coerced first;
    ``${VAR}`` substitution always produces strings.
    """
    validator = _schema_validator()
    _coerce_to_schema(data, validator.schema)
    errors = sorted(validator.iter_errors(data), key=_error_path)
    if errors:
        raise ConfigValidationError(
            [f"{_error_path(e)}: {e.message}" for e in errors],
        )


def _error_path(error: jsonschema.ValidationError) -> str:
    parts = [f"[{p}]" if isinstance(p, int) else f".{p}" for p in error.absolute_path]
    return "".join(parts).lstrip(".") or "<root>"


# ---------------------------------------------------------------------------
# Cross-field validation
# ---------------------------------------------------------------------------


def validate_settings(settings: AlbAcmeSettings) -> None:  # noqa: C901, PLR0912
    """Semantic and cross-field checks on a built settings tree.

    Every problem is collected; a single :class:`ConfigValidationError`
    lists them all.
    """
    errors: list[str] = []
    warnings: list[str] = []

    # -- acme --
    acme = settings.acme
    if acme.key_type not in _KNOWN_KEY_TYPES:
        errors.append(
            f"acme.key_type '{acme.key_type}' is not one of {sorted(_KNOWN_KEY_TYPES)}",
        )
    if not acme.trusted_issuers or not all(s.strip() for s in acme.trusted_issuers):
        errors.append("acme.trusted_issuers must list at least one non-empty issuer name")
    if not acme.directory_url.startswith("https://"):
        warnings.append(
            f"acme.directory_url ({acme.directory_url}) is not an https URL",
        )

    # -- account key --
    key = settings.account_key
    if key.store not in _KNOWN_STORES:
        errors.append(
            f"account_key.store '{key.store}' is not one of {sorted(_KNOWN_STORES)}",
        )
    elif key.store == "ssm" and not key.parameter_name:
        errors.append("account_key.parameter_name is required when account_key.store is 'ssm'")
    elif key.store == "file" and not key.path:
        errors.append("account_key.path is required when account_key.store is 'file'")
    elif key.store == "env" and not key.env_var:
        errors.append("account_key.env_var is required when account_key.store is 'env'")

    # -- timeouts: probe < wait --
    challenge = settings.challenge
    if challenge.probe_timeout_seconds >= challenge.wait_timeout_seconds:
        errors.append(
            f"challenge.probe_timeout_seconds ({challenge.probe_timeout_seconds}) must be < "
            f"challenge.wait_timeout_seconds ({challenge.wait_timeout_seconds})",
        )
    if challenge.poll_interval_seconds <= 0:
        errors.append("challenge.poll_interval_seconds must be > 0")
    if challenge.max_response_bytes <= 0:
        errors.append("challenge.max_response_bytes must be > 0")

    validation = settings.validation
    if validation.probe_timeout_seconds >= validation.timeout_seconds:
        errors.append(
            f"validation.probe_timeout_seconds ({validation.probe_timeout_seconds}) must be < "
            f"validation.timeout_seconds ({validation.timeout_seconds})",
        )
    if validation.poll_interval_seconds <= 0:
        errors.append("validation.poll_interval_seconds must be > 0")

    # -- load balancer --
    if not settings.load_balancer.bootstrap_path_patterns:
        errors.append("load_balancer.bootstrap_path_patterns must not be empty")
    for pattern in settings.load_balancer.bootstrap_path_patterns:
        if path_pattern_matches(pattern, _SAMPLE_CHALLENGE_PATH):
            errors.append(
                f"load_balancer.bootstrap_path_patterns entry '{pattern}' also matches "
                f"{HTTP01_PATH_PREFIX}* and would shadow challenge rules",
            )

    # -- server --
    total_wait = challenge.wait_timeout_seconds + validation.timeout_seconds
    if settings.server.timeout < total_wait:
        warnings.append(
            f"server.timeout ({settings.server.timeout}) is shorter than the challenge wait "
            f"plus validation timeouts ({total_wait:g}); workers may be killed mid-rotation",
        )

    # -- logging --
    if settings.logging.format not in _KNOWN_LOG_FORMATS:
        errors.append(
            f"logging.format '{settings.logging.format}' is not one of "
            f"{sorted(_KNOWN_LOG_FORMATS)}",
        )
    if settings.logging.level.upper() not in _KNOWN_LOG_LEVELS:
        errors.append(f"logging.level '{settings.logging.level}' is not a known level")

    for w in warnings:
        log.warning("Config warning: %s", w)

    if errors:
        raise ConfigValidationError(errors)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def load_config(
    config_file: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> AlbAcmeSettings:
    """Load, resolve, schema-check, build and validate the settings tree.

    Parameters
    ----------
    config_file:
        YAML/JSON file.  Falls back to ``$ALBACME_CONFIG``; without
        either the tree is assembled from environment variables.
    environ:
        Environment mapping; defaults to :data:`os.environ`.

    """
    env = os.environ if environ is None else environ
    source = config_file or env.get(CONFIG_ENV_VAR)

    if source:
        log.debug("Loading configuration from %s", source)
        try:
            data = read_config_file(source)
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as exc:
            raise ConfigValidationError([f"cannot read {source}: {exc}"]) from exc
    else:
        log.debug("No configuration file, reading environment")
        data = config_from_env(env)

    _resolve_env_vars(data, env)
    validate_schema(data)

    try:
        settings = build_settings(data)
    except (TypeError, ValueError, AttributeError) as exc:
        raise ConfigValidationError([f"malformed configuration: {exc}"]) from exc

    validate_settings(settings)
    return settings
