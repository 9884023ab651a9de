"""Serve subcommand: start the WSGI trigger surface."""

from __future__ import annotations

import logging

log = logging.getLogger(__name__)


def run_serve(context, args) -> None:  # noqa: ANN001
    from albacme.server import create_app  # noqa: PLC0415

    app = create_app(context)
    server = context.settings.server

    if args.dev:
        log.info("Starting development server (not for production)")
        app.run(host=server.bind, port=server.port, debug=True, use_reloader=False)
    else:
        from albacme.server.gunicorn_app import run_gunicorn  # noqa: PLC0415

        run_gunicorn(app, server)
