"""albacme command-line entry point.

Usage::

    albacme -c config.yaml --validate-only
    albacme -c config.yaml rotate --domain example.com --lb-arn arn:...
    albacme -c config.yaml issue --domain example.com --lb-arn arn:... --cert-arn arn:...
    albacme -c config.yaml inspect rules --lb-arn arn:... --host example.com --path /
    albacme -c config.yaml serve --dev
    python -m albacme -c config.yaml serve

Without ``-c`` the configuration is read from ``$ALBACME_CONFIG`` or,
failing that, from environment variables.
"""

from __future__ import annotations

import argparse
import logging
import sys

log = logging.getLogger(__name__)


def _get_version() -> str:
    from albacme import __version__  # noqa: PLC0415

    return __version__


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="albacme",
        description="albacme: ACME HTTP-01 certificates for AWS Application Load Balancers",
    )
    parser.add_argument(
        "-c",
        "--config",
        metavar="PATH",
        help="Path to the configuration file (YAML or JSON).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Enable debug output (full tracebacks, verbose logging).",
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        default=False,
        help="Validate the configuration and exit.",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command")

    # rotate
    rotate_parser = subparsers.add_parser("rotate", help="Run one rotation cycle for a domain")
    rotate_parser.add_argument("--domain", required=True, help="Domain to rotate")
    rotate_parser.add_argument("--lb-arn", required=True, help="ARN of the load balancer")
    rotate_parser.add_argument(
        "--force",
        action="store_true",
        default=False,
        help="Always issue, even for a certificate from an untrusted issuer.",
    )

    # issue
    issue_parser = subparsers.add_parser(
        "issue",
        help="Issue a certificate and import it under an explicit ARN",
    )
    issue_parser.add_argument("--domain", required=True, help="Domain to request")
    issue_parser.add_argument("--lb-arn", required=True, help="ARN of the load balancer")
    issue_parser.add_argument(
        "--cert-arn",
        required=True,
        help="ARN of the ACM certificate to reimport to",
    )

    # inspect
    inspect_parser = subparsers.add_parser("inspect", help="Inspect load balancer state")
    inspect_sub = inspect_parser.add_subparsers(dest="inspect_command")
    rules_parser = inspect_sub.add_parser("rules", help="List the HTTP listener's rules")
    rules_parser.add_argument("--lb-arn", required=True, help="ARN of the load balancer")
    rules_parser.add_argument("--port", type=int, default=None, help="Listener port")
    rules_parser.add_argument("--host", help="Mark rules matching this host header")
    rules_parser.add_argument("--path", help="Mark rules matching this path pattern")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the WSGI trigger surface")
    serve_parser.add_argument(
        "--dev",
        action="store_true",
        default=False,
        help="Use Flask's development server instead of gunicorn.",
    )

    return parser


def _print_error(message: str) -> None:
    """Print a user-facing error to stderr."""
    sys.stderr.write(f"albacme: error: {message}\n")


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.  Parses arguments, loads config, dispatches."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    # -- bootstrap logging early (basic stderr until config is loaded) ---
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    # -- load & validate config ---
    from albacme.config import ConfigValidationError, load_config  # noqa: PLC0415

    try:
        settings = load_config(args.config)
    except ConfigValidationError as exc:
        _print_error(str(exc))
        sys.exit(1)

    from albacme.logging import configure_logging  # noqa: PLC0415

    configure_logging(settings.logging)
    if args.debug:
        logging.getLogger("albacme").setLevel(logging.DEBUG)

    if args.validate_only:
        _print_settings_summary(settings)
        sys.exit(0)

    if args.command is None:
        parser.print_help(sys.stderr)
        sys.exit(2)

    from albacme.app.context import AppContext  # noqa: PLC0415

    context = AppContext.build(settings)
    command = args.command

    try:
        if command == "rotate":
            from albacme.cli.commands.rotate import run_rotate  # noqa: PLC0415

            run_rotate(context, args)
        elif command == "issue":
            from albacme.cli.commands.issue import run_issue  # noqa: PLC0415

            run_issue(context, args)
        elif command == "inspect":
            from albacme.cli.commands.inspect import run_inspect  # noqa: PLC0415

            run_inspect(context, args)
        elif command == "serve":
            from albacme.cli.commands.serve import run_serve  # noqa: PLC0415

            run_serve(context, args)
    except Exception as exc:
        if args.debug:
            raise
        _print_error(str(exc))
        sys.exit(1)


def _print_settings_summary(settings) -> None:  # noqa: ANN001
    """Print a short summary of the loaded configuration."""
    lines = [
        "Configuration OK",
        f"  ACME directory:    {settings.acme.directory_url}",
        f"  Certificate key:   {settings.acme.key_type}",
        f"  Trusted issuers:   {', '.join(settings.acme.trusted_issuers)}",
        f"  Account key store: {settings.account_key.store}",
        f"  HTTP listener:     port {settings.load_balancer.http_port}",
        f"  Challenge wait:    {settings.challenge.wait_timeout_seconds:g}s",
        f"  TLS validation:    {settings.validation.timeout_seconds:g}s",
        f"  Logging:           {settings.logging.level} ({settings.logging.format})",
    ]
    sys.stdout.write("\n".join(lines) + "\n")
