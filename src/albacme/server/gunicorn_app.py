"""Programmatic gunicorn runner for albacme.

Starts gunicorn with settings derived from the albacme config
rather than requiring a separate gunicorn config file.

Usage::

    from albacme.server.gunicorn_app import run_gunicorn

    run_gunicorn(flask_app, settings.server)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from gunicorn.app.base import BaseApplication

if TYPE_CHECKING:
    from flask import Flask

    from albacme.config.settings import ServerSettings

log = logging.getLogger(__name__)


class StandaloneApplication(BaseApplication):
    """gunicorn application wrapping an already-built Flask app."""

    def __init__(self, flask_app: Flask, server: ServerSettings) -> None:
        self.application = flask_app
        self._server = server
        super().__init__()

    def load_config(self) -> None:
        s = self._server
        self.cfg.set("bind", f"{s.bind}:{s.port}")
        self.cfg.set("workers", s.workers)
        self.cfg.set("worker_class", "sync")
        self.cfg.set("timeout", s.timeout)

    def load(self) -> Flask:
        return self.application


def run_gunicorn(app: Flask, settings: ServerSettings) -> None:
    """Start a gunicorn server from :class:`ServerSettings`."""
    log.info(
        "Starting gunicorn on %s:%s (%d workers, timeout %ds)",
        settings.bind,
        settings.port,
        settings.workers,
        settings.timeout,
    )
    StandaloneApplication(app, settings).run()
