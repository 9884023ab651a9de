"""Inbound trigger handling: event classification and the Lambda entry point."""

from albacme.lifecycle.router import EventRouter, classify_event, https_redirect_url

__all__ = ["EventRouter", "classify_event", "https_redirect_url"]
