"""ACME account key persistence.

The account key identifies the ACME account.  It is generated once,
saved, and reused for every later run.  A stored key that cannot be
decoded is fatal: generating a fresh one would orphan the existing
account.

Three interchangeable stores implement :class:`AccountKeyStore`:

- :class:`FileAccountKeyStore` -- a local PEM file (mode ``0600``)
- :class:`SsmAccountKeyStore` -- an SSM ``SecureString`` parameter
- :class:`EnvironmentAccountKeyStore` -- read-only, an env var holding PEM
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

from albacme.core.errors import AccountKeyNotFound, AccountKeyStoreError, KeyDecodeError

if TYPE_CHECKING:
    from albacme.aws.ssm import ParameterStore
    from albacme.config.settings import AccountKeySettings

log = logging.getLogger(__name__)


@runtime_checkable
class AccountKeyStore(Protocol):
    """Load/save contract for the PEM-encoded account key."""

    def load(self) -> bytes:
        """Return the stored PEM; raise :class:`AccountKeyNotFound` if absent."""
        ...

    def save(self, pem: bytes) -> None: ...


class FileAccountKeyStore:
    """Account key in a local file, written with mode ``0600``."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> bytes:
        try:
            return self.path.read_bytes()
        except FileNotFoundError as exc:
            msg = f"account key file {self.path} does not exist"
            raise AccountKeyNotFound(msg) from exc

    def save(self, pem: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(pem)
        log.info("Saved account key to %s", self.path)

    def __repr__(self) -> str:
        return f"<FileAccountKeyStore path={self.path}>"


class SsmAccountKeyStore:
    """Account key in an SSM ``SecureString`` parameter."""

    def __init__(self, parameters: ParameterStore, name: str) -> None:
        self._parameters = parameters
        self.name = name

    def load(self) -> bytes:
        return self._parameters.get_secure_string(self.name).encode()

    def save(self, pem: bytes) -> None:
        self._parameters.put_secure_string(self.name, pem.decode())

    def __repr__(self) -> str:
        return f"<SsmAccountKeyStore name={self.name}>"


class EnvironmentAccountKeyStore:
    """Read-only store: the PEM is supplied in an environment variable."""

    def __init__(self, var: str, environ: Mapping[str, str] | None = None) -> None:
        self.var = var
        self._environ = os.environ if environ is None else environ

    def load(self) -> bytes:
        value = self._environ.get(self.var)
        if not value:
            msg = f"environment variable {self.var} is not set"
            raise AccountKeyNotFound(msg)
        return value.encode()

    def save(self, pem: bytes) -> None:  # noqa: ARG002
        msg = f"cannot save account key: environment variable store {self.var} is read-only"
        raise AccountKeyStoreError(msg)

    def __repr__(self) -> str:
        return f"<EnvironmentAccountKeyStore var={self.var}>"


def build_account_key_store(
    settings: AccountKeySettings,
    parameters: ParameterStore | None = None,
    environ: Mapping[str, str] | None = None,
) -> AccountKeyStore:
    """Instantiate the store named by ``settings.store``."""
    if settings.store == "file":
        return FileAccountKeyStore(settings.path)
    if settings.store == "ssm":
        if parameters is None or not settings.parameter_name:
            msg = "ssm account key store needs a parameter store and parameter name"
            raise AccountKeyStoreError(msg)
        return SsmAccountKeyStore(parameters, settings.parameter_name)
    if settings.store == "env":
        return EnvironmentAccountKeyStore(settings.env_var, environ)
    msg = f"unknown account key store '{settings.store}'"
    raise AccountKeyStoreError(msg)


# ---------------------------------------------------------------------------
# Key material
# ---------------------------------------------------------------------------


def generate_account_key() -> ec.EllipticCurvePrivateKey:
    """Fresh EC P-256 key."""
    return ec.generate_private_key(ec.SECP256R1())


def encode_account_key(key: PrivateKeyTypes) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def decode_account_key(pem: bytes) -> PrivateKeyTypes:
    """Parse a stored PEM key; raise :class:`KeyDecodeError` on failure."""
    try:
        key = serialization.load_pem_private_key(pem, password=None)
    except (ValueError, TypeError) as exc:
        msg = f"cannot decode stored account key: {exc}"
        raise KeyDecodeError(msg) from exc
    if not isinstance(key, ec.EllipticCurvePrivateKey | rsa.RSAPrivateKey):
        msg = f"unsupported account key type {type(key).__name__}"
        raise KeyDecodeError(msg)
    return key


def load_or_create_account_key(store: AccountKeyStore) -> PrivateKeyTypes:
    """Load the account key from *store*, generating and saving one if absent.

    A failure to save a freshly generated key is raised: continuing
    would register an account nobody can use again.
    """
    try:
        pem = store.load()
    except AccountKeyNotFound:
        log.info("No account key in %r, generating a new one", store)
        key = generate_account_key()
        store.save(encode_account_key(key))
        return key
    log.debug("Loaded account key from %r", store)
    return decode_account_key(pem)
