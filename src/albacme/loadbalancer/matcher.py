"""Rule condition matching.

``matches(existing, target)`` is deliberately asymmetric: a dimension
absent from *target* is "don't care", but a dimension present in
*target* must exist on *existing* with the same values.  Values are
compared as multisets (order ignored, duplicates significant).
"""

from __future__ import annotations

import re
from collections import Counter
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from albacme.core.types import RuleCondition


def matches(existing: RuleCondition, target: RuleCondition) -> bool:
    """Return whether the rule condition *existing* satisfies *target*.

    A rule carrying any condition field other than host-header or
    path-pattern never matches; its full semantics are unknown, so it
    must not be reused or deleted.
    """
    if existing.unsupported_fields:
        return False

    pairs = (
        (existing.host_headers, target.host_headers),
        (existing.path_patterns, target.path_patterns),
    )
    for have, want in pairs:
        if want is None:
            continue
        if have is None or not _same_multiset(have, want):
            return False
    return True


def _same_multiset(a: tuple[str, ...], b: tuple[str, ...]) -> bool:
    return len(a) == len(b) and Counter(a) == Counter(b)


def path_pattern_matches(pattern: str, path: str) -> bool:
    """Whether an ALB path pattern matches *path*.

    ALB patterns are case-sensitive; ``*`` matches any run of
    characters (including none) and ``?`` exactly one.
    """
    regex = re.escape(pattern).replace(r"\*", ".*").replace(r"\?", ".")
    return re.fullmatch(regex, path) is not None
