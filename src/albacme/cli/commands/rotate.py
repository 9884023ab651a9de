"""Rotate subcommand: one full rotation cycle, as a renewal event would run it."""

from __future__ import annotations

import json
import sys


def run_rotate(context, args) -> None:  # noqa: ANN001
    outcome = context.rotator.rotate(
        args.domain,
        args.lb_arn,
        allow_bootstrap=True,
        force=args.force,
    )
    result = {"domain": args.domain, "albArn": args.lb_arn, "outcome": str(outcome)}
    sys.stdout.write(json.dumps(result, indent=2) + "\n")
