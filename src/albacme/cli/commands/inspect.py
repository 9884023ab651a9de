"""Inspect subcommand: dump listener rules for debugging.

Usage::

    albacme inspect rules --lb-arn arn:... [--port 80] [--host example.com --path /]

Rules whose condition matches ``--host``/``--path`` are marked with
``*``, exactly as a challenge clean-up would select them.
"""

from __future__ import annotations

import sys

from albacme.core.types import RuleCondition


def run_inspect(context, args) -> None:  # noqa: ANN001
    sub = getattr(args, "inspect_command", None)
    if sub == "rules":
        _inspect_rules(context, args)
    else:
        sys.stderr.write("albacme: error: inspect needs a subcommand (rules)\n")
        sys.exit(1)


def _inspect_rules(context, args) -> None:  # noqa: ANN001
    from albacme.loadbalancer.matcher import matches  # noqa: PLC0415

    port = args.port or context.settings.load_balancer.http_port
    listener_arn = context.rules.find_http_listener(args.lb_arn, port)

    target = None
    if args.host or args.path:
        target = RuleCondition.build(
            host_headers=[args.host] if args.host else None,
            path_patterns=[args.path] if args.path else None,
        )

    out = sys.stdout
    out.write(f"Listener {listener_arn}\n")
    for rule in context.rules.list_rules(listener_arn):
        selected = target is not None and not rule.is_default and matches(rule.condition, target)
        marker = "*" if selected else " "
        priority = "default" if rule.is_default else rule.priority
        out.write(f"{marker} [{priority}] {rule.rule_arn}\n")
        out.write(f"      condition: {rule.condition}\n")
        action = rule.action.type if rule.action else "-"
        out.write(f"      action:    {action}\n")
    if target is not None:
        out.write(f"\n* matches {target}\n")
