"""SSM Parameter Store access for secrets such as the ACME account key."""

from __future__ import annotations

import logging
from typing import Any

from botocore.exceptions import ClientError

from albacme.core.errors import AccountKeyNotFound

log = logging.getLogger(__name__)


class ParameterStore:
    """Get and put ``SecureString`` parameters.

    Parameters
    ----------
    ssm:
        A boto3 ``ssm`` client.

    """

    def __init__(self, ssm: Any) -> None:
        self._ssm = ssm

    def get_secure_string(self, name: str) -> str:
        """Decrypted value of *name*.

        Raises :class:`AccountKeyNotFound` if the parameter does not exist.
        """
        try:
            response = self._ssm.get_parameter(Name=name, WithDecryption=True)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "ParameterNotFound":
                msg = f"parameter {name} not found"
                raise AccountKeyNotFound(msg) from exc
            raise
        return response["Parameter"]["Value"]

    def put_secure_string(self, name: str, value: str) -> None:
        """Create or overwrite *name* as an encrypted ``SecureString``."""
        self._ssm.put_parameter(
            Name=name,
            Value=value,
            Type="SecureString",
            Overwrite=True,
        )
        log.info("Stored parameter %s", name)
