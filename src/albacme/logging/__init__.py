"""Logging subsystem for albacme.

Public API::

    from albacme.logging import configure_logging, invocation_context

    configure_logging(settings.logging)
    with invocation_context(request_id=ctx.aws_request_id):
        ...
"""

from albacme.logging.setup import bind_domain, configure_logging, invocation_context

__all__ = ["bind_domain", "configure_logging", "invocation_context"]
