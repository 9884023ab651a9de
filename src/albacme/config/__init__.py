"""Configuration subsystem for albacme.

Public API::

    from albacme.config import load_config

    settings = load_config("config.yaml")   # or load_config() on Lambda
    settings.challenge.wait_timeout_seconds
"""

from albacme.config.loader import (
    ConfigValidationError,
    config_from_env,
    load_config,
    validate_schema,
    validate_settings,
)
from albacme.config.settings import (
    AccountKeySettings,
    AcmeSettings,
    AlbAcmeSettings,
    AwsSettings,
    ChallengeSettings,
    LoadBalancerSettings,
    LoggingSettings,
    ServerSettings,
    ValidationSettings,
    build_settings,
)

__all__ = [
    "AccountKeySettings",
    "AcmeSettings",
    # Root
    "AlbAcmeSettings",
    "AwsSettings",
    "ChallengeSettings",
    # Core
    "ConfigValidationError",
    "LoadBalancerSettings",
    "LoggingSettings",
    "ServerSettings",
    "ValidationSettings",
    "build_settings",
    "config_from_env",
    "load_config",
    "validate_schema",
    "validate_settings",
]
