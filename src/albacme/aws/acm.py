"""Certificate store backed by AWS Certificate Manager."""

from __future__ import annotations

import logging
from typing import Any

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

from albacme.core.errors import CertificateDecodeError

log = logging.getLogger(__name__)


def split_fullchain(fullchain_pem: str | bytes) -> tuple[bytes, bytes]:
    """Split a PEM bundle into ``(leaf, chain)``.

    The leaf is the first certificate; the chain is every following
    certificate, re-serialised back to back.  ``chain`` is empty for a
    bundle holding a single certificate.
    """
    data = fullchain_pem.encode() if isinstance(fullchain_pem, str) else fullchain_pem
    try:
        certs = x509.load_pem_x509_certificates(data)
    except ValueError as exc:
        msg = f"cannot decode certificate chain: {exc}"
        raise CertificateDecodeError(msg) from exc
    leaf = certs[0].public_bytes(serialization.Encoding.PEM)
    chain = b"".join(c.public_bytes(serialization.Encoding.PEM) for c in certs[1:])
    return leaf, chain


def private_key_pem(key: PrivateKeyTypes) -> bytes:
    """PKCS#8 PEM, the format ACM accepts for every key type."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


class CertificateStore:
    """Read and import certificates in ACM.

    Parameters
    ----------
    acm:
        A boto3 ``acm`` client.

    """

    def __init__(self, acm: Any) -> None:
        self._acm = acm

    def get_certificate_pem(self, certificate_arn: str) -> str:
        """PEM of the leaf certificate stored under *certificate_arn*."""
        response = self._acm.get_certificate(CertificateArn=certificate_arn)
        return response["Certificate"]

    def import_certificate(
        self,
        key: PrivateKeyTypes,
        fullchain_pem: str | bytes,
        certificate_arn: str | None = None,
    ) -> str:
        """Import *fullchain_pem* with its private *key*.

        With *certificate_arn* the existing certificate is replaced in
        place, so listener attachments survive.  Returns the ARN.
        """
        leaf, chain = split_fullchain(fullchain_pem)
        kwargs: dict[str, Any] = {
            "Certificate": leaf,
            "PrivateKey": private_key_pem(key),
        }
        if chain:
            kwargs["CertificateChain"] = chain
        if certificate_arn:
            kwargs["CertificateArn"] = certificate_arn

        response = self._acm.import_certificate(**kwargs)
        arn = response["CertificateArn"]
        log.info("Imported certificate %s", arn)
        return arn
