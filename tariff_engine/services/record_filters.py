"""
Record filters.

The soft-delete/active/validity-window check every read applies, expressed
as explicit composable predicates rather than ambient query state.
Windows are half-open: [start, end). A missing bound is unbounded.
"""

from datetime import date
from typing import Any, Callable, Iterable, Optional, TypeVar

T = TypeVar("T")

Predicate = Callable[[Any], bool]


def window_contains(start: Optional[date], end: Optional[date], as_of: date) -> bool:
    """Whether as_of falls inside [start, end)."""
    if start is not None and as_of < start:
        return False
    if end is not None and as_of >= end:
        return False
    return True


def windows_overlap(
    start_a: Optional[date],
    end_a: Optional[date],
    start_b: Optional[date],
    end_b: Optional[date],
) -> bool:
    """Whether two half-open windows share at least one day."""
    if end_a is not None and start_b is not None and end_a <= start_b:
        return False
    if end_b is not None and start_a is not None and end_b <= start_a:
        return False
    return True


def is_live(record: Any) -> bool:
    """Active and not soft-deleted."""
    return bool(getattr(record, "is_active", True)) and not getattr(record, "is_deleted", False)


def in_window(as_of: date, start_attr: str = "start_date", end_attr: str = "end_date") -> Predicate:
    """Predicate: record's validity window contains as_of."""

    def predicate(record: Any) -> bool:
        return window_contains(getattr(record, start_attr), getattr(record, end_attr), as_of)

    return predicate


def live_as_of(as_of: date, start_attr: str = "start_date", end_attr: str = "end_date") -> Predicate:
    """is_active and not is_deleted and window_contains(as_of)."""
    window = in_window(as_of, start_attr, end_attr)
    return lambda record: is_live(record) and window(record)


def all_of(*predicates: Predicate) -> Predicate:
    """Conjunction of predicates."""
    return lambda record: all(p(record) for p in predicates)


def select(records: Iterable[T], predicate: Predicate) -> list[T]:
    """Records satisfying predicate, in their original order."""
    return [r for r in records if predicate(r)]
