"""ACME issuance: account key persistence and the certificate order flow."""

from albacme.issuance.account import (
    AccountKeyStore,
    EnvironmentAccountKeyStore,
    FileAccountKeyStore,
    SsmAccountKeyStore,
    build_account_key_store,
    load_or_create_account_key,
)
from albacme.issuance.client import AcmeIssuer, IssuedCertificate

__all__ = [
    "AccountKeyStore",
    "AcmeIssuer",
    "EnvironmentAccountKeyStore",
    "FileAccountKeyStore",
    "IssuedCertificate",
    "SsmAccountKeyStore",
    "build_account_key_store",
    "load_or_create_account_key",
]
