"""HTTP-01 challenge solving on a load balancer listener.

Public API::

    from albacme.challenge import AlbHttp01Solver, Solver
"""

from albacme.challenge.base import ChallengeState, Solver
from albacme.challenge.http01 import AlbHttp01Solver

__all__ = ["AlbHttp01Solver", "ChallengeState", "Solver"]
