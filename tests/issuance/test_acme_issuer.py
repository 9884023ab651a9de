"""Tests for the ACME issuance driver."""

from __future__ import annotations

import datetime
from types import SimpleNamespace
from unittest.mock import MagicMock

import josepy as jose
import pytest
from acme import challenges, messages
from acme import errors as acme_errors
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from albacme.config.settings import AcmeSettings
from albacme.core.errors import IssuanceError
from albacme.core.polling import Deadline
from albacme.issuance import AcmeIssuer
from albacme.issuance.client import account_jwk, generate_certificate_key
from conftest import FakeClock

FULLCHAIN = "-----BEGIN CERTIFICATE-----\nleaf\n-----END CERTIFICATE-----\n"


def _settings(**overrides) -> AcmeSettings:
    values = {
        "directory_url": "https://acme.test/directory",
        "email": "ops@example.test",
        "user_agent": "albacme-test",
        "key_type": "ec256",
        "trusted_issuers": ("let's encrypt",),
        "finalize_timeout_seconds": 90,
    }
    values.update(overrides)
    return AcmeSettings(**values)


def _authzr(domain: str, *, valid: bool = False, http01: bool = True):
    chall = challenges.HTTP01(token=f"token-{domain}".encode().ljust(16, b"x"))
    if not http01:
        chall = challenges.DNS01(token=chall.token)
    challb = messages.ChallengeBody(chall=chall, uri=f"https://acme.test/chall/{domain}")
    body = messages.Authorization(
        identifier=messages.Identifier(typ=messages.IDENTIFIER_FQDN, value=domain),
        challenges=(challb,),
        status=messages.STATUS_VALID if valid else messages.STATUS_PENDING,
    )
    return messages.AuthorizationResource(body=body, uri=f"https://acme.test/authz/{domain}")


def _order(*authzrs):
    return SimpleNamespace(authorizations=list(authzrs))


class RecordingSolver:
    def __init__(self, fail_on: str | None = None, cleanup_error: Exception | None = None):
        self.calls: list[tuple[str, str]] = []
        self.fail_on = fail_on
        self.cleanup_error = cleanup_error
        self.presented = []

    def present(self, challenge):
        self.calls.append(("present", challenge.domain))
        self.presented.append(challenge)
        if self.fail_on == "present":
            raise RuntimeError("present failed")

    def wait(self, challenge):
        self.calls.append(("wait", challenge.domain))
        if self.fail_on == "wait":
            raise RuntimeError("wait failed")

    def cleanup(self, challenge):
        self.calls.append(("cleanup", challenge.domain))
        if self.cleanup_error is not None:
            raise self.cleanup_error


@pytest.fixture()
def account_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture()
def acme_client():
    client = MagicMock()
    client.poll_and_finalize.return_value = SimpleNamespace(fullchain_pem=FULLCHAIN)
    return client


class TestKeys:
    @pytest.mark.parametrize(
        ("key_type", "expected"),
        [("ec256", 256), ("ec384", 384), ("rsa2048", 2048)],
    )
    def test_generate_certificate_key(self, key_type, expected):
        assert generate_certificate_key(key_type).key_size == expected

    def test_unknown_key_type(self):
        with pytest.raises(IssuanceError, match="dsa"):
            generate_certificate_key("dsa")

    def test_ec_jwk(self, account_key):
        jwk, alg = account_jwk(account_key)
        assert isinstance(jwk, jose.JWKEC)
        assert alg is jose.ES256

    def test_rsa_jwk(self):
        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        jwk, alg = account_jwk(key)
        assert isinstance(jwk, jose.JWKRSA)
        assert alg is jose.RS256


class TestObtainCertificate:
    def test_full_flow(self, account_key, acme_client):
        acme_client.new_order.return_value = _order(_authzr("example.test"))
        solver = RecordingSolver()
        issuer = AcmeIssuer(_settings(), account_key, acme_client=acme_client)

        issued = issuer.obtain_certificate(["example.test"], solver)

        assert issued.fullchain_pem == FULLCHAIN
        assert isinstance(issued.private_key, ec.EllipticCurvePrivateKey)
        assert solver.calls == [
            ("present", "example.test"),
            ("wait", "example.test"),
            ("cleanup", "example.test"),
        ]
        acme_client.answer_challenge.assert_called_once()
        acme_client.poll_and_finalize.assert_called_once()

    def test_presented_challenge_carries_key_authorization(self, account_key, acme_client):
        authzr = _authzr("example.test")
        acme_client.new_order.return_value = _order(authzr)
        solver = RecordingSolver()
        issuer = AcmeIssuer(_settings(), account_key, acme_client=acme_client)

        issuer.obtain_certificate(["example.test"], solver)

        (challenge,) = solver.presented
        challb = authzr.body.challenges[0]
        jwk, _ = account_jwk(account_key)
        assert challenge.token == challb.chall.encode("token")
        assert challenge.key_authorization == challb.chall.key_authorization(jwk)
        assert challenge.path == f"/.well-known/acme-challenge/{challenge.token}"

    def test_all_presented_before_any_wait(self, account_key, acme_client):
        acme_client.new_order.return_value = _order(_authzr("a.test"), _authzr("b.test"))
        solver = RecordingSolver()
        issuer = AcmeIssuer(_settings(), account_key, acme_client=acme_client)

        issuer.obtain_certificate(["a.test", "b.test"], solver)

        assert [c[0] for c in solver.calls] == [
            "present",
            "present",
            "wait",
            "wait",
            "cleanup",
            "cleanup",
        ]

    def test_valid_authorizations_are_skipped(self, account_key, acme_client):
        acme_client.new_order.return_value = _order(_authzr("example.test", valid=True))
        solver = RecordingSolver()
        issuer = AcmeIssuer(_settings(), account_key, acme_client=acme_client)

        issuer.obtain_certificate(["example.test"], solver)

        assert solver.calls == []
        acme_client.answer_challenge.assert_not_called()

    def test_no_http01_offered(self, account_key, acme_client):
        acme_client.new_order.return_value = _order(_authzr("example.test", http01=False))
        issuer = AcmeIssuer(_settings(), account_key, acme_client=acme_client)

        with pytest.raises(IssuanceError, match="http-01"):
            issuer.obtain_certificate(["example.test"], RecordingSolver())

    def test_no_domains(self, account_key, acme_client):
        issuer = AcmeIssuer(_settings(), account_key, acme_client=acme_client)
        with pytest.raises(IssuanceError):
            issuer.obtain_certificate([], RecordingSolver())
        acme_client.new_order.assert_not_called()

    def test_cleanup_after_wait_failure(self, account_key, acme_client):
        acme_client.new_order.return_value = _order(_authzr("example.test"))
        solver = RecordingSolver(fail_on="wait")
        issuer = AcmeIssuer(_settings(), account_key, acme_client=acme_client)

        with pytest.raises(RuntimeError, match="wait failed"):
            issuer.obtain_certificate(["example.test"], solver)

        assert solver.calls[-1] == ("cleanup", "example.test")
        acme_client.answer_challenge.assert_not_called()

    def test_cleanup_after_finalize_failure(self, account_key, acme_client):
        acme_client.new_order.return_value = _order(_authzr("example.test"))
        acme_client.poll_and_finalize.side_effect = acme_errors.TimeoutError()
        solver = RecordingSolver()
        issuer = AcmeIssuer(_settings(), account_key, acme_client=acme_client)

        with pytest.raises(IssuanceError) as exc_info:
            issuer.obtain_certificate(["example.test"], solver)

        assert exc_info.value.retryable is True
        assert ("cleanup", "example.test") in solver.calls

    def test_cleanup_error_hidden_by_original_failure(self, account_key, acme_client):
        acme_client.new_order.return_value = _order(_authzr("example.test"))
        solver = RecordingSolver(fail_on="wait", cleanup_error=RuntimeError("cleanup failed"))
        issuer = AcmeIssuer(_settings(), account_key, acme_client=acme_client)

        with pytest.raises(RuntimeError, match="wait failed"):
            issuer.obtain_certificate(["example.test"], solver)

    def test_cleanup_error_raised_after_success(self, account_key, acme_client):
        acme_client.new_order.return_value = _order(_authzr("example.test"))
        solver = RecordingSolver(cleanup_error=RuntimeError("cleanup failed"))
        issuer = AcmeIssuer(_settings(), account_key, acme_client=acme_client)

        with pytest.raises(RuntimeError, match="cleanup failed"):
            issuer.obtain_certificate(["example.test"], solver)

    def test_protocol_error_converted(self, account_key, acme_client):
        acme_client.new_order.side_effect = acme_errors.Error("rejectedIdentifier")
        issuer = AcmeIssuer(_settings(), account_key, acme_client=acme_client)

        with pytest.raises(IssuanceError, match="rejectedIdentifier") as exc_info:
            issuer.obtain_certificate(["example.test"], RecordingSolver())

        assert exc_info.value.retryable is False

    def test_finalize_deadline_capped_by_invocation(self, account_key, acme_client):
        acme_client.new_order.return_value = _order(_authzr("example.test"))
        clock = FakeClock()
        issuer = AcmeIssuer(_settings(), account_key, acme_client=acme_client)

        issuer.obtain_certificate(
            ["example.test"],
            RecordingSolver(),
            deadline=Deadline.after(5, clock),
        )

        finalize_by = acme_client.poll_and_finalize.call_args.kwargs["deadline"]
        assert finalize_by - datetime.datetime.now() <= datetime.timedelta(seconds=5)  # noqa: DTZ005


class TestRegistration:
    def test_new_account(self, account_key):
        acme = MagicMock()
        acme.new_account.return_value = SimpleNamespace(uri="https://acme.test/acct/1")
        issuer = AcmeIssuer(_settings(), account_key)

        issuer._register(acme)

        registration = acme.new_account.call_args.args[0]
        assert registration.terms_of_service_agreed is True
        assert registration.emails == ("ops@example.test",)
        acme.query_registration.assert_not_called()

    def test_existing_account(self, account_key):
        acme = MagicMock()
        acme.new_account.side_effect = acme_errors.ConflictError("https://acme.test/acct/1")
        issuer = AcmeIssuer(_settings(), account_key)

        issuer._register(acme)

        regr = acme.query_registration.call_args.args[0]
        assert regr.uri == "https://acme.test/acct/1"
        assert acme.net.account is regr
