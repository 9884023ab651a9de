"""The solver capability consumed by the ACME issuance driver.

A solver is anything with ``present`` / ``wait`` / ``cleanup``; no base
class is required.  The driver calls ``cleanup`` for every presented
challenge whatever happened in between, and the solver never cleans up
on its own.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from albacme.core.types import Challenge


class ChallengeState(StrEnum):
    PRESENTED = "presented"
    WAITING = "waiting"
    READY = "ready"
    TIMED_OUT = "timed-out"
    CLEANED_UP = "cleaned-up"


@runtime_checkable
class Solver(Protocol):
    def present(self, challenge: Challenge) -> None:
        """Make ``challenge.key_authorization`` reachable at ``challenge.path``."""
        ...

    def wait(self, challenge: Challenge) -> None:
        """Block until the presented response is externally observable."""
        ...

    def cleanup(self, challenge: Challenge) -> None:
        """Undo :meth:`present`.  Must succeed when there is nothing to undo."""
        ...
