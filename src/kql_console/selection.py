"""
Index-based selection from numbered lists.

The operator answers a numbered menu with a comma-separated list of 1-based
indices. Indices outside the list are dropped without comment; anything
that is not an integer fails the whole answer.
"""

from typing import Sequence, TypeVar

T = TypeVar("T")


class SelectionError(Exception):
    """Raised when an index-based choice is invalid or selects nothing."""
    pass


class NothingFoundError(SelectionError):
    """Raised when there is nothing to choose from."""
    pass


def parse_indices(raw: str) -> list[int]:
    """
    Parse a comma-separated list of integers.

    Raises:
        SelectionError: If the input is blank or any item is not an integer.
    """
    parts = [part.strip() for part in raw.split(",")]
    if not any(parts):
        raise SelectionError("Invalid selection: nothing entered")

    indices = []
    for part in parts:
        if not part:
            continue
        try:
            indices.append(int(part))
        except ValueError:
            raise SelectionError(f"Invalid selection: {part!r} is not a number") from None
    return indices


def parse_selection(raw: str, items: Sequence[T]) -> list[T]:
    """
    Resolve an operator's answer against a numbered list.

    Args:
        raw: Answer such as "1,5,2".
        items: The list that was presented (index 1 is ``items[0]``).

    Returns:
        Chosen items in the order typed, duplicates collapsed to their
        first occurrence.

    Raises:
        NothingFoundError: If ``items`` is empty.
        SelectionError: If the answer is malformed or selects nothing
            within range.
    """
    if not items:
        raise NothingFoundError("Nothing to select from")

    chosen: list[T] = []
    seen: set[int] = set()
    for index in parse_indices(raw):
        if 1 <= index <= len(items) and index not in seen:
            seen.add(index)
            chosen.append(items[index - 1])

    if not chosen:
        raise SelectionError(f"Invalid selection: no index in range 1-{len(items)}")
    return chosen


def parse_single(raw: str, items: Sequence[T]) -> T:
    """Resolve an answer to one item; the first valid index wins."""
    return parse_selection(raw, items)[0]
