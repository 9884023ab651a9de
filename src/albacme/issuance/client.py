"""Certificate issuance through an ACME server.

Wraps the ``acme`` client library: account registration, order
creation, HTTP-01 challenge answering through a :class:`Solver`, and
finalisation.  The ACME protocol state machine stays inside the
library; this module only feeds it a CSR and a solver.

Flow for one order::

    new_order(csr)
      -> present every pending HTTP-01 challenge
      -> wait until each one is publicly served
      -> answer_challenge for each
      -> poll_and_finalize
      -> cleanup every presented challenge (always)
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import josepy as jose
from acme import challenges, client, crypto_util, messages
from acme import errors as acme_errors
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

from albacme.core.errors import IssuanceError
from albacme.core.types import Challenge

if TYPE_CHECKING:
    from albacme.challenge.base import Solver
    from albacme.config.settings import AcmeSettings
    from albacme.core.polling import Deadline

log = logging.getLogger(__name__)

_VALID = messages.STATUS_VALID


@dataclass(frozen=True)
class IssuedCertificate:
    """Private key plus the PEM chain the ACME server returned."""

    private_key: PrivateKeyTypes
    fullchain_pem: str


def generate_certificate_key(key_type: str) -> PrivateKeyTypes:
    """New private key for a certificate, per ``acme.key_type``."""
    if key_type == "ec256":
        return ec.generate_private_key(ec.SECP256R1())
    if key_type == "ec384":
        return ec.generate_private_key(ec.SECP384R1())
    if key_type == "rsa2048":
        return rsa.generate_private_key(public_exponent=65537, key_size=2048)
    msg = f"unsupported certificate key type '{key_type}'"
    raise IssuanceError(msg)


def account_jwk(key: PrivateKeyTypes) -> tuple[jose.JWK, jose.JWASignature]:
    """JWK and signature algorithm for an account key."""
    if isinstance(key, ec.EllipticCurvePrivateKey):
        alg = {256: jose.ES256, 384: jose.ES384, 521: jose.ES512}.get(key.curve.key_size)
        if alg is None:
            msg = f"unsupported account key curve {key.curve.name}"
            raise IssuanceError(msg)
        return jose.JWKEC(key=key), alg
    if isinstance(key, rsa.RSAPrivateKey):
        return jose.JWKRSA(key=key), jose.RS256
    msg = f"unsupported account key type {type(key).__name__}"
    raise IssuanceError(msg)


class AcmeIssuer:
    """Obtain certificates from one ACME directory with one account key.

    Parameters
    ----------
    settings:
        The ``acme`` configuration section.
    account_key:
        Decoded account key (see :mod:`albacme.issuance.account`).
    acme_client:
        Pre-built :class:`acme.client.ClientV2`; built lazily from
        *settings* when omitted.

    """

    def __init__(
        self,
        settings: AcmeSettings,
        account_key: PrivateKeyTypes,
        acme_client: Any = None,  # noqa: ANN401
    ) -> None:
        self._settings = settings
        self._account_key = account_key
        self._client = acme_client
        self._jwk, self._alg = account_jwk(account_key)

    # -- account ------------------------------------------------------------

    def _connect(self) -> Any:  # noqa: ANN401
        if self._client is not None:
            return self._client

        net = client.ClientNetwork(
            self._jwk,
            alg=self._alg,
            user_agent=self._settings.user_agent,
        )
        directory = client.ClientV2.get_directory(self._settings.directory_url, net)
        acme = client.ClientV2(directory, net=net)
        self._register(acme)
        self._client = acme
        return acme

    def _register(self, acme: Any) -> None:  # noqa: ANN401
        registration = messages.NewRegistration.from_data(
            email=self._settings.email,
            terms_of_service_agreed=True,
        )
        try:
            regr = acme.new_account(registration)
            log.info("Registered ACME account %s", regr.uri)
        except acme_errors.ConflictError as exc:
            # Key already registered; the server tells us where.
            regr = messages.RegistrationResource(uri=exc.location, body=messages.Registration())
            acme.net.account = regr
            acme.query_registration(regr)
            log.info("Using existing ACME account %s", exc.location)

    # -- orders -------------------------------------------------------------

    def obtain_certificate(
        self,
        domains: Sequence[str],
        solver: Solver,
        *,
        deadline: Deadline | None = None,
    ) -> IssuedCertificate:
        """Run one order for *domains*, solving HTTP-01 with *solver*.

        Every challenge that was presented is cleaned up, whatever the
        outcome.  A clean-up failure is raised only when the order
        itself succeeded.

        Raises
        ------
        IssuanceError
            On any ACME protocol failure.

        """
        if not domains:
            msg = "cannot order a certificate without domains"
            raise IssuanceError(msg)

        key = generate_certificate_key(self._settings.key_type)
        key_pem = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        csr_pem = crypto_util.make_csr(key_pem, list(domains))

        try:
            acme = self._connect()
            log.info("Creating order for %s", ", ".join(domains))
            orderr = acme.new_order(csr_pem)
            pending = self._pending_challenges(orderr)
            fullchain = self._complete(acme, orderr, pending, solver, deadline)
        except acme_errors.Error as exc:
            retryable = isinstance(exc, acme_errors.TimeoutError)
            msg = f"ACME error ({type(exc).__name__}): {exc}"
            raise IssuanceError(msg, retryable=retryable) from exc

        log.info("Certificate issued for %s", ", ".join(domains))
        return IssuedCertificate(private_key=key, fullchain_pem=fullchain)

    def _pending_challenges(
        self,
        orderr: messages.OrderResource,
    ) -> list[tuple[messages.ChallengeBody, Challenge]]:
        """HTTP-01 challenge of every authorization that is not yet valid."""
        pending = []
        for authzr in orderr.authorizations:
            domain = authzr.body.identifier.value
            if authzr.body.status == _VALID:
                log.debug("Authorization for %s already valid", domain)
                continue
            challb = next(
                (c for c in authzr.body.challenges if isinstance(c.chall, challenges.HTTP01)),
                None,
            )
            if challb is None:
                msg = f"ACME server offered no http-01 challenge for {domain}"
                raise IssuanceError(msg)
            _, key_authorization = challb.response_and_validation(self._jwk)
            pending.append(
                (
                    challb,
                    Challenge(
                        domain=domain,
                        token=challb.chall.encode("token"),
                        key_authorization=key_authorization,
                    ),
                ),
            )
        return pending

    def _complete(
        self,
        acme: Any,  # noqa: ANN401
        orderr: messages.OrderResource,
        pending: list[tuple[messages.ChallengeBody, Challenge]],
        solver: Solver,
        deadline: Deadline | None,
    ) -> str:
        presented: list[Challenge] = []
        try:
            for _, chall in pending:
                solver.present(chall)
                presented.append(chall)
            for _, chall in pending:
                solver.wait(chall)
            for challb, _ in pending:
                acme.answer_challenge(challb, challb.response(self._jwk))
            finalized = acme.poll_and_finalize(orderr, deadline=self._finalize_deadline(deadline))
        except BaseException:
            self._cleanup(solver, presented, raise_errors=False)
            raise
        self._cleanup(solver, presented, raise_errors=True)
        return finalized.fullchain_pem

    def _finalize_deadline(self, deadline: Deadline | None) -> datetime.datetime:
        seconds = float(self._settings.finalize_timeout_seconds)
        if deadline is not None:
            seconds = min(seconds, deadline.remaining())
        # acme compares against naive local time
        return datetime.datetime.now() + datetime.timedelta(seconds=seconds)  # noqa: DTZ005

    @staticmethod
    def _cleanup(solver: Solver, presented: list[Challenge], *, raise_errors: bool) -> None:
        first_error: Exception | None = None
        for chall in presented:
            try:
                solver.cleanup(chall)
            except Exception as exc:
                log.exception("Failed to clean up challenge for %s", chall.domain)
                if first_error is None:
                    first_error = exc
        if raise_errors and first_error is not None:
            raise first_error
