"""Issue subcommand: obtain a certificate and import it under an explicit ARN.

Unlike ``rotate`` this skips certificate discovery, the issuer check and
the post-import TLS validation.
"""

from __future__ import annotations

import logging
import sys

from albacme.challenge.http01 import AlbHttp01Solver
from albacme.issuance.account import load_or_create_account_key
from albacme.issuance.client import AcmeIssuer

log = logging.getLogger(__name__)


def run_issue(context, args) -> None:  # noqa: ANN001
    settings = context.settings
    account_key = load_or_create_account_key(context.account_keys)

    solver = AlbHttp01Solver(
        context.rules,
        args.lb_arn,
        [args.domain],
        settings.challenge,
        listener_port=settings.load_balancer.http_port,
    )
    issued = AcmeIssuer(settings.acme, account_key).obtain_certificate([args.domain], solver)

    arn = context.certificates.import_certificate(
        issued.private_key,
        issued.fullchain_pem,
        args.cert_arn,
    )
    log.info("Certificate for %s imported to %s", args.domain, arn)
    sys.stdout.write(f"{arn}\n")
