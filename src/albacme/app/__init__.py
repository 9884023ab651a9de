"""Process-wide wiring shared by every trigger surface."""

from albacme.app.context import AppContext

__all__ = ["AppContext"]
