"""
Unit Tests for the Financial Factor Registry
Tests frozen-factor resolution and integrity failures
"""

from datetime import date
from decimal import Decimal

import pytest

from conftest import FINANCIAL_YEAR, make_factor
from tariff_engine.core.enums import FactorScope, FactorType
from tariff_engine.services.factor_registry import FactorRegistry
from tariff_engine.utils.errors import AmbiguousFactor, FactorNotFrozen


@pytest.mark.unit
class TestFactorResolution:
    """Test resolve() and resolve_record()"""

    def test_resolves_frozen_factor(self):
        factor = make_factor(value="125000")
        registry = FactorRegistry([factor])

        value = registry.resolve(FactorType.TECHNICAL, FactorScope.HASHTAGGED, FINANCIAL_YEAR)

        assert value == Decimal("125000")
        assert registry.resolve_record(
            FactorType.TECHNICAL, FactorScope.HASHTAGGED, FINANCIAL_YEAR
        ) is factor

    def test_scope_and_type_are_part_of_the_key(self):
        registry = FactorRegistry(
            [
                make_factor(value="100000"),
                make_factor(value="80000", scope=FactorScope.STANDARD),
                make_factor(value="60000", factor_type=FactorType.PROFESSIONAL, scope=FactorScope.STANDARD),
            ]
        )

        assert registry.resolve(FactorType.TECHNICAL, FactorScope.STANDARD, FINANCIAL_YEAR) == Decimal("80000")
        assert registry.resolve(FactorType.PROFESSIONAL, FactorScope.STANDARD, FINANCIAL_YEAR) == Decimal("60000")

    def test_unfrozen_factor_is_not_usable(self):
        registry = FactorRegistry([make_factor(is_frozen=False)])

        with pytest.raises(FactorNotFrozen) as exc_info:
            registry.resolve(FactorType.TECHNICAL, FactorScope.HASHTAGGED, FINANCIAL_YEAR)

        assert exc_info.value.code == "factor_not_frozen"
        assert not registry.has_frozen(FactorType.TECHNICAL, FactorScope.HASHTAGGED, FINANCIAL_YEAR)

    def test_other_year_not_used(self):
        registry = FactorRegistry([make_factor(financial_year=FINANCIAL_YEAR - 1)])

        with pytest.raises(FactorNotFrozen):
            registry.resolve(FactorType.TECHNICAL, FactorScope.HASHTAGGED, FINANCIAL_YEAR)

    def test_deleted_and_inactive_factors_ignored(self):
        registry = FactorRegistry(
            [
                make_factor(value="1", is_deleted=True),
                make_factor(value="2", is_active=False),
                make_factor(value="3"),
            ]
        )

        assert registry.resolve(FactorType.TECHNICAL, FactorScope.HASHTAGGED, FINANCIAL_YEAR) == Decimal("3")

    def test_two_frozen_factors_are_ambiguous(self):
        first, second = make_factor(value="1"), make_factor(value="2")
        registry = FactorRegistry([first, second])

        with pytest.raises(AmbiguousFactor) as exc_info:
            registry.resolve(FactorType.TECHNICAL, FactorScope.HASHTAGGED, FINANCIAL_YEAR)

        assert set(exc_info.value.factor_ids) == {first.factor_id, second.factor_id}

    def test_effective_window_checked_when_date_given(self):
        factor = make_factor(effective_from=date(2024, 3, 21), effective_to=date(2024, 6, 1))
        registry = FactorRegistry([factor])

        assert registry.resolve(
            FactorType.TECHNICAL, FactorScope.HASHTAGGED, FINANCIAL_YEAR, date(2024, 5, 31)
        ) == factor.value
        with pytest.raises(FactorNotFrozen):
            registry.resolve(FactorType.TECHNICAL, FactorScope.HASHTAGGED, FINANCIAL_YEAR, date(2024, 6, 1))
