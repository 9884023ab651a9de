"""One certificate rotation for one domain on one load balancer.

Steps, in order; any failure aborts the run with a
:class:`~albacme.core.errors.RotationError` naming the step:

1. load (or create) the ACME account key
2. find the installed certificate whose subject CN is the domain
3. bootstrap branch: a certificate from an untrusted issuer gets a
   forwarding rule sending the domain's HTTP traffic to this function,
   and the run stops there
4. issue a new certificate over HTTP-01 and import it under the
   installed certificate's ARN
5. remove the bootstrap forwarding rule (already gone is fine)
6. wait until the domain serves the new certificate

Nothing is retried across runs; the scheduler re-invokes on its cadence.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from collections.abc import Callable, Iterator
from typing import TYPE_CHECKING, Any

from botocore.exceptions import ClientError

from albacme.challenge.http01 import AlbHttp01Solver
from albacme.core.errors import (
    AlbAcmeError,
    CertificateNotFound,
    RotationError,
    RuleNotFound,
    TargetGroupNotFound,
)
from albacme.core.polling import SYSTEM_CLOCK, Clock, Deadline
from albacme.core.types import CertificateRecord, RotationOutcome, RuleCondition
from albacme.issuance.account import load_or_create_account_key
from albacme.issuance.client import AcmeIssuer
from albacme.logging import bind_domain
from albacme.rotation.validation import Handshake, tls_handshake, validate_certificate

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

    from albacme.aws.acm import CertificateStore
    from albacme.config.settings import AlbAcmeSettings
    from albacme.issuance.account import AccountKeyStore
    from albacme.loadbalancer.rules import ListenerRuleManager

log = logging.getLogger(__name__)

IssuerFactory = Callable[["PrivateKeyTypes"], Any]


@contextlib.contextmanager
def _step(name: str) -> Iterator[None]:
    log.debug("Rotation step: %s", name)
    try:
        yield
    except RotationError:
        raise
    except Exception as exc:
        raise RotationError(name, exc) from exc


class CertificateRotator:
    """Drive certificate rotations against one AWS account and region.

    Parameters
    ----------
    settings:
        Root settings tree.
    rules:
        Listener rule manager.
    certificates:
        ACM certificate store.
    account_keys:
        Where the ACME account key is persisted.
    issuer_factory:
        Builds an issuer from the decoded account key; defaults to
        :class:`~albacme.issuance.client.AcmeIssuer`.
    clock, handshake:
        Injection points for the polling loops.

    """

    def __init__(  # noqa: PLR0913
        self,
        settings: AlbAcmeSettings,
        rules: ListenerRuleManager,
        certificates: CertificateStore,
        account_keys: AccountKeyStore,
        *,
        issuer_factory: IssuerFactory | None = None,
        clock: Clock = SYSTEM_CLOCK,
        handshake: Handshake = tls_handshake,
    ) -> None:
        self._settings = settings
        self._rules = rules
        self._certificates = certificates
        self._account_keys = account_keys
        self._issuer_factory = issuer_factory or (lambda key: AcmeIssuer(settings.acme, key))
        self._clock = clock
        self._handshake = handshake

    # -- helpers ------------------------------------------------------------

    def bootstrap_condition(self, domain: str) -> RuleCondition:
        return RuleCondition.build(
            host_headers=[domain],
            path_patterns=self._settings.load_balancer.bootstrap_path_patterns,
        )

    def find_certificate(self, domain: str, load_balancer_arn: str) -> CertificateRecord:
        """Installed certificate whose subject common name is *domain*.

        Candidates that cannot be fetched or decoded are skipped; their
        errors are reported only when nothing matches.
        """
        listener_arn = self._rules.find_https_listener(
            load_balancer_arn,
            self._settings.load_balancer.https_port,
        )
        failures: list[Exception] = []
        for arn in self._rules.listener_certificate_arns(listener_arn):
            try:
                record = CertificateRecord.from_pem(
                    arn,
                    self._certificates.get_certificate_pem(arn),
                )
            except (ClientError, AlbAcmeError) as exc:
                log.debug("Skipping certificate %s: %s", arn, exc)
                failures.append(exc)
                continue
            if record.subject_common_name == domain:
                log.info("Found certificate %s for %s issued by %s", arn, domain, record.issuer)
                return record
        raise CertificateNotFound(domain, failures)

    def install_bootstrap_rule(
        self,
        domain: str,
        load_balancer_arn: str,
        target_group_arn: str,
    ) -> bool:
        """Forward the domain's HTTP traffic to *target_group_arn*.

        Returns ``False`` when a matching rule is already installed.
        """
        listener_arn = self._rules.find_http_listener(
            load_balancer_arn,
            self._settings.load_balancer.http_port,
        )
        condition = self.bootstrap_condition(domain)
        existing = self._rules.find_matching_rule(listener_arn, condition)
        if existing is not None:
            log.info("Bootstrap rule %s already present for %s", existing.rule_arn, domain)
            return False
        self._rules.add_forwarding_rule(listener_arn, condition, target_group_arn)
        return True

    def remove_bootstrap_rule(self, domain: str, load_balancer_arn: str) -> None:
        listener_arn = self._rules.find_http_listener(
            load_balancer_arn,
            self._settings.load_balancer.http_port,
        )
        try:
            self._rules.delete_matching_rule(listener_arn, self.bootstrap_condition(domain))
        except RuleNotFound:
            log.info("No bootstrap rule for %s, nothing to remove", domain)

    def _target_group(self, function_arn: str | None) -> str:
        configured = self._settings.load_balancer.target_group_arn
        if configured:
            return configured
        if not function_arn:
            msg = "no target group configured and no function ARN to look one up"
            raise TargetGroupNotFound(msg)
        return self._rules.find_lambda_target_group(function_arn)

    # -- entry point --------------------------------------------------------

    def rotate(  # noqa: PLR0913
        self,
        domain: str,
        load_balancer_arn: str,
        *,
        allow_bootstrap: bool = True,
        force: bool = False,
        function_arn: str | None = None,
        deadline: Deadline | None = None,
        cancel: threading.Event | None = None,
    ) -> RotationOutcome:
        """Run one rotation for *domain* behind *load_balancer_arn*.

        Parameters
        ----------
        allow_bootstrap:
            Take the bootstrap branch for certificates from untrusted
            issuers.  Requests that already arrived through the bootstrap
            rule pass ``False`` so they always issue.
        force:
            Skip the issuer check entirely and always issue.
        function_arn:
            ARN of the running function, used to find its target group
            when none is configured.

        """
        bind_domain(domain)
        log.info("Rotating certificate for %s on %s", domain, load_balancer_arn)

        with _step("load account key"):
            account_key = load_or_create_account_key(self._account_keys)

        with _step("find installed certificate"):
            installed = self.find_certificate(domain, load_balancer_arn)

        trusted = installed.is_issued_by(self._settings.acme.trusted_issuers)
        if not trusted and allow_bootstrap and not force:
            log.info(
                "Certificate %s for %s is issued by %s, installing bootstrap rule",
                installed.arn,
                domain,
                installed.issuer,
            )
            with _step("install bootstrap rule"):
                target_group_arn = self._target_group(function_arn)
                self.install_bootstrap_rule(domain, load_balancer_arn, target_group_arn)
            return RotationOutcome.BOOTSTRAPPED

        with _step("issue certificate"):
            solver = AlbHttp01Solver(
                self._rules,
                load_balancer_arn,
                [domain],
                self._settings.challenge,
                listener_port=self._settings.load_balancer.http_port,
                deadline=deadline,
                cancel=cancel,
                clock=self._clock,
            )
            issued = self._issuer_factory(account_key).obtain_certificate(
                [domain],
                solver,
                deadline=deadline,
            )

        with _step("import certificate"):
            self._certificates.import_certificate(
                issued.private_key,
                issued.fullchain_pem,
                installed.arn,
            )

        with _step("remove bootstrap rule"):
            self.remove_bootstrap_rule(domain, load_balancer_arn)

        with _step("validate certificate"):
            validate_certificate(
                domain,
                self._settings.validation,
                deadline=deadline,
                cancel=cancel,
                clock=self._clock,
                handshake=self._handshake,
            )

        log.info("Rotated certificate %s for %s", installed.arn, domain)
        return RotationOutcome.ISSUED
