"""WSGI trigger surface: the Flask app and its gunicorn runner."""

from albacme.server.app import create_app

__all__ = ["create_app"]
