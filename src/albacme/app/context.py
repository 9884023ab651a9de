"""Explicit context object for albacme.

Built once per process (cold start, CLI run, gunicorn worker) from the
frozen settings tree and passed to whatever needs it.  Nothing in it is
mutated after construction; per-invocation values (deadline, request
id, function ARN) travel as call arguments instead.

Usage::

    from albacme.app.context import AppContext

    ctx = AppContext.build(load_config())
    ctx.router.handle(event)
"""

from __future__ import annotations

import functools
import os
from collections.abc import Mapping
from typing import TYPE_CHECKING

from flask import current_app

from albacme.aws.acm import CertificateStore
from albacme.aws.session import AwsClients
from albacme.aws.ssm import ParameterStore
from albacme.issuance.account import AccountKeyStore, build_account_key_store
from albacme.lifecycle.router import EventRouter
from albacme.loadbalancer.rules import ListenerRuleManager
from albacme.rotation.orchestrator import CertificateRotator

if TYPE_CHECKING:
    from albacme.config.settings import AlbAcmeSettings


class AppContext:
    """Settings plus every long-lived collaborator built from them.

    AWS clients are created lazily, so building a context for
    ``--validate-only`` or ``inspect`` costs nothing until used.
    """

    def __init__(
        self,
        settings: AlbAcmeSettings,
        clients: AwsClients,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.settings = settings
        self.clients = clients
        self._environ = os.environ if environ is None else environ

    @classmethod
    def build(cls, settings: AlbAcmeSettings) -> AppContext:
        return cls(settings, AwsClients.from_settings(settings.aws))

    @functools.cached_property
    def rules(self) -> ListenerRuleManager:
        return ListenerRuleManager(self.clients.elbv2)

    @functools.cached_property
    def certificates(self) -> CertificateStore:
        return CertificateStore(self.clients.acm)

    @functools.cached_property
    def account_keys(self) -> AccountKeyStore:
        parameters = None
        if self.settings.account_key.store == "ssm":
            parameters = ParameterStore(self.clients.ssm)
        return build_account_key_store(self.settings.account_key, parameters, self._environ)

    @functools.cached_property
    def rotator(self) -> CertificateRotator:
        return CertificateRotator(
            self.settings,
            self.rules,
            self.certificates,
            self.account_keys,
        )

    @functools.cached_property
    def router(self) -> EventRouter:
        return EventRouter(
            self.rules,
            self.rotator,
            load_balancer_arn=self.settings.server.load_balancer_arn,
        )

    def __repr__(self) -> str:
        return f"<AppContext region={self.clients.region}>"


def get_context() -> AppContext:
    """The :class:`AppContext` of the current Flask application."""
    return current_app.extensions["albacme"]
