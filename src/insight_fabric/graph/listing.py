from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any, TypeVar

from ..errors import ValidationError

T = TypeVar("T")


def check_page(limit: int, offset: int, *, max_limit: int) -> None:
    if limit < 1 or limit > max_limit:
        raise ValidationError(f"limit must be between 1 and {max_limit}", details={"limit": limit})
    if offset < 0:
        raise ValidationError("offset must be >= 0", details={"offset": offset})


def sort_and_page(
    items: Sequence[T],
    *,
    key: Callable[[T], Any],
    descending: bool,
    limit: int,
    offset: int,
    tiebreak: Callable[[T], Any] = lambda item: getattr(item, "id", ""),
) -> tuple[list[T], int]:
    """Sort by `key` (None values always last), then slice the page.

    Returns the page and the total before pagination.
    """
    present = [i for i in items if key(i) is not None]
    missing = [i for i in items if key(i) is None]
    present.sort(key=lambda i: (key(i), tiebreak(i)), reverse=descending)
    missing.sort(key=tiebreak)
    ordered = present + missing
    return ordered[offset : offset + limit], len(ordered)
