"""Small generic utility functions."""

from typing import Hashable, Iterable, List, TypeVar

X = TypeVar("X", bound=Hashable)


def first_seen(it: Iterable[X]) -> List[X]:
    """Drop repeated items while keeping first-appearance order.

    :arg it: Input iterable of hashable items.

    :returns: A list with each distinct item once, in the order it
        was first seen.

    """
    # A plain dict keeps insertion order and has faster membership
    # checks than scanning the output list.
    seen = {}
    for x in it:
        if x not in seen:
            seen[x] = None

    return list(seen)
