"""WSGI entry point for external servers (gunicorn, uWSGI, etc.).

The config file path is read from the ``ALBACME_CONFIG`` environment
variable; without it the configuration comes from the environment.

Example::

    export ALBACME_CONFIG=/etc/albacme/config.yaml
    gunicorn "albacme.server.wsgi:app"
"""

from __future__ import annotations

from albacme.app.context import AppContext
from albacme.config import load_config
from albacme.logging import configure_logging
from albacme.server.app import create_app

_settings = load_config()
configure_logging(_settings.logging)

app = create_app(AppContext.build(_settings))
