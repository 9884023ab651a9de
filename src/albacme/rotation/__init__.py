"""Certificate rotation: the end-to-end run and its TLS check."""

from albacme.rotation.orchestrator import CertificateRotator
from albacme.rotation.validation import validate_certificate

__all__ = ["CertificateRotator", "validate_certificate"]
