"""Placement ranking.

Standard competition ranking ("1224"): tied vote counts share a place and the
next distinct count skips the places the tie consumed. Callers order tied rows
by entry creation time before ranking, so row order is stable across re-runs.
"""

from __future__ import annotations

from collections.abc import Sequence


def assign_places(vote_counts: Sequence[int]) -> list[int]:
    """Return the 1-based place for each vote count.

    ``vote_counts`` must already be sorted in descending order.

    >>> assign_places([3, 1, 1, 0])
    [1, 2, 2, 4]
    """
    places: list[int] = []
    previous: int | None = None
    for index, count in enumerate(vote_counts):
        if previous is not None and count > previous:
            raise ValueError("vote counts must be sorted in descending order")
        if previous is None or count != previous:
            places.append(index + 1)
        else:
            places.append(places[-1])
        previous = count
    return places
