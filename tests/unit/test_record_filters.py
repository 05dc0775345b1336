"""
Unit Tests for Record Filters
Tests the active / soft-delete / validity-window predicate
"""

from dataclasses import dataclass
from datetime import date
from typing import Optional

import pytest

from tariff_engine.services.record_filters import (
    all_of,
    in_window,
    is_live,
    live_as_of,
    select,
    window_contains,
    windows_overlap,
)


@dataclass
class Row:
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: bool = True
    is_deleted: bool = False


@pytest.mark.unit
class TestWindows:
    """Test half-open validity windows"""

    def test_start_inclusive(self):
        assert window_contains(date(2024, 1, 1), date(2024, 2, 1), date(2024, 1, 1))

    def test_end_exclusive(self):
        assert not window_contains(date(2024, 1, 1), date(2024, 2, 1), date(2024, 2, 1))

    def test_missing_bounds_unbounded(self):
        assert window_contains(None, None, date(1990, 1, 1))
        assert window_contains(date(2024, 1, 1), None, date(2099, 1, 1))
        assert not window_contains(None, date(2024, 1, 1), date(2024, 1, 1))

    def test_adjacent_windows_do_not_overlap(self):
        assert not windows_overlap(date(2024, 1, 1), date(2024, 2, 1), date(2024, 2, 1), None)

    def test_open_windows_overlap(self):
        assert windows_overlap(None, None, date(2024, 2, 1), date(2024, 3, 1))
        assert windows_overlap(date(2024, 1, 1), date(2024, 2, 15), date(2024, 2, 1), None)


@pytest.mark.unit
class TestLivePredicate:
    """Test the combined predicate"""

    def test_inactive_and_deleted_rows_excluded(self):
        assert is_live(Row())
        assert not is_live(Row(is_active=False))
        assert not is_live(Row(is_deleted=True))

    def test_live_as_of(self):
        predicate = live_as_of(date(2024, 6, 1))
        rows = [
            Row(start_date=date(2024, 1, 1)),
            Row(start_date=date(2024, 7, 1)),
            Row(start_date=date(2024, 1, 1), is_deleted=True),
            Row(start_date=date(2024, 1, 1), end_date=date(2024, 6, 1)),
        ]
        assert select(rows, predicate) == [rows[0]]

    def test_custom_window_attributes(self):
        @dataclass
        class Factor:
            effective_from: date
            effective_to: Optional[date] = None

        predicate = in_window(date(2024, 6, 1), "effective_from", "effective_to")
        assert predicate(Factor(date(2024, 3, 21)))
        assert not predicate(Factor(date(2024, 3, 21), date(2024, 5, 1)))

    def test_all_of(self):
        predicate = all_of(is_live, lambda r: r.start_date is not None)
        assert predicate(Row(start_date=date(2024, 1, 1)))
        assert not predicate(Row())
