"""boto3 session and client factory.

Clients are created lazily and cached per :class:`AwsClients` instance,
which lives for the whole process (one per warm Lambda container).
"""

from __future__ import annotations

import functools
import logging
from typing import TYPE_CHECKING, Any

import boto3
from botocore.config import Config

if TYPE_CHECKING:
    from albacme.config.settings import AwsSettings

log = logging.getLogger(__name__)

_RETRY_CONFIG = Config(retries={"max_attempts": 5, "mode": "standard"})


class AwsClients:
    """Lazily created boto3 clients sharing one session.

    Parameters
    ----------
    session:
        A :class:`boto3.session.Session`.

    """

    def __init__(self, session: boto3.session.Session) -> None:
        self._session = session

    @classmethod
    def from_settings(cls, settings: AwsSettings) -> AwsClients:
        session = boto3.session.Session(
            region_name=settings.region,
            profile_name=settings.profile,
        )
        log.debug(
            "AWS session created (region=%s, profile=%s)",
            session.region_name,
            settings.profile or "default",
        )
        return cls(session)

    @property
    def region(self) -> str | None:
        return self._session.region_name

    def client(self, service: str) -> Any:  # noqa: ANN401
        return self._session.client(service, config=_RETRY_CONFIG)

    @functools.cached_property
    def elbv2(self) -> Any:  # noqa: ANN401
        return self.client("elbv2")

    @functools.cached_property
    def acm(self) -> Any:  # noqa: ANN401
        return self.client("acm")

    @functools.cached_property
    def ssm(self) -> Any:  # noqa: ANN401
        return self.client("ssm")
