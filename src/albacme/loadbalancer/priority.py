"""Lowest-free-slot priority allocation for listener rules."""

from __future__ import annotations

from collections.abc import Iterable


def next_priority(existing: Iterable[int | str | None]) -> int:
    """Return the smallest priority >= 1 not present in *existing*.

    Entries that are not positive integers (the ``"default"`` rule,
    ``None``, garbage strings) are skipped.
    """
    taken: set[int] = set()
    for raw in existing:
        if raw is None or isinstance(raw, bool):
            continue
        try:
            value = int(raw)
        except (TypeError, ValueError):
            continue
        if value >= 1:
            taken.add(value)

    candidate = 1
    for value in sorted(taken):
        if value != candidate:
            break
        candidate += 1
    return candidate
