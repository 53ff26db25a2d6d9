"""Exclusion matching — values the user asked us to leave alone.

An exclusion list holds normalised strings (lower-cased, trimmed).  A
candidate counts as excluded when it equals an entry or is within a small
edit distance of one; short values get a tighter tolerance so unrelated
initials don't collapse into each other.
"""

from __future__ import annotations
from collections.abc import Callable, Iterable

Distance = Callable[[str, str], int]
Threshold = Callable[[str], int]


def normalize(value: str) -> str:
    return value.lower().strip()


def levenshtein(a: str, b: str) -> int:
    """Levenshtein edit distance between two strings."""
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    # Use single row for space efficiency
    prev_row = list(range(len(b) + 1))
    for i in range(1, len(a) + 1):
        curr_row = [i] + [0] * len(b)
        for j in range(1, len(b) + 1):
            cost = 0 if a[i - 1] == b[j - 1] else 1
            curr_row[j] = min(
                curr_row[j - 1] + 1,  # insertion
                prev_row[j] + 1,  # deletion
                prev_row[j - 1] + cost,  # substitution
            )
        prev_row = curr_row
    return prev_row[-1]


def default_threshold(normalized: str) -> int:
    """Allowed distance for a normalised candidate."""
    return 1 if len(normalized) < 6 else 2


class ExclusionMatcher:
    """Fuzzy membership test against an exclusion list.

    The distance function and threshold are swappable; callers only ever
    see ``is_excluded``.
    """

    __slots__ = ("distance", "threshold")

    def __init__(
        self,
        distance: Distance = levenshtein,
        threshold: Threshold = default_threshold,
    ) -> None:
        self.distance = distance
        self.threshold = threshold

    def is_excluded(self, value: str, exclusions: Iterable[str]) -> bool:
        candidate = normalize(value)
        limit = self.threshold(candidate)
        for entry in exclusions:
            other = normalize(entry)
            if candidate == other:
                return True
            # Edit distance is at least the length difference, skip the DP
            if self.distance is levenshtein and abs(len(candidate) - len(other)) > limit:
                continue
            if self.distance(candidate, other) <= limit:
                return True
        return False


DEFAULT_MATCHER = ExclusionMatcher()


def is_excluded(value: str, exclusions: Iterable[str]) -> bool:
    return DEFAULT_MATCHER.is_excluded(value, exclusions)


def add_exclusion(exclusions: Iterable[str], value: str) -> list[str]:
    """Return a new list with value's normalised form appended (once)."""
    out = list(exclusions)
    key = normalize(value)
    if key and key not in out:
        out.append(key)
    return out


def remove_exclusion(exclusions: Iterable[str], value: str) -> list[str]:
    """Return a new list without value's normalised form."""
    key = normalize(value)
    return [v for v in exclusions if normalize(v) != key]
