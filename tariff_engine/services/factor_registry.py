"""
Financial Factor Registry.

Resolves the frozen, year-bound factor value coefficient-priced services are
multiplied by. A factor is only authoritative once its financial year has
been frozen; until then it must not be used for billing.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from tariff_engine.core.enums import FactorScope, FactorType
from tariff_engine.schemas.records import FinancialFactor
from tariff_engine.services.record_filters import in_window, is_live
from tariff_engine.utils.errors import AmbiguousFactor, FactorNotFrozen
from tariff_engine.utils.logging import get_logger

logger = get_logger(__name__)


class FactorRegistry:
    """
    Pure lookup over already-loaded factor records.

    Never picks "the first" of several matches: two active frozen factors for
    the same type, scope and year is a data-integrity violation.
    """

    def __init__(self, factors: Iterable[FinancialFactor] = ()):
        self._by_key: dict[tuple[FactorType, FactorScope, int], list[FinancialFactor]] = defaultdict(list)
        for factor in factors:
            self._by_key[(factor.factor_type, factor.scope, factor.financial_year)].append(factor)

    def resolve(
        self,
        factor_type: FactorType,
        scope: FactorScope,
        as_of_year: int,
        as_of: Optional[date] = None,
    ) -> Decimal:
        """
        Resolve the frozen factor value for a year.

        Args:
            factor_type: Technical or professional factor
            scope: Hashtagged or standard services
            as_of_year: Financial year label
            as_of: Optional date the factor's effective window must contain

        Returns:
            Factor value

        Raises:
            FactorNotFrozen: No frozen active factor matches
            AmbiguousFactor: More than one frozen active factor matches
        """
        return self.resolve_record(factor_type, scope, as_of_year, as_of).value

    def resolve_record(
        self,
        factor_type: FactorType,
        scope: FactorScope,
        as_of_year: int,
        as_of: Optional[date] = None,
    ) -> FinancialFactor:
        """Same as resolve() but returns the record, for version capture."""
        candidates = [
            f for f in self._by_key.get((factor_type, scope, as_of_year), [])
            if is_live(f) and f.is_frozen
        ]
        if as_of is not None:
            window = in_window(as_of, "effective_from", "effective_to")
            candidates = [f for f in candidates if window(f)]

        if not candidates:
            logger.warning(
                f"No frozen factor: type={factor_type.value}, scope={scope.value}, year={as_of_year}"
            )
            raise FactorNotFrozen(factor_type, scope, as_of_year)

        if len(candidates) > 1:
            logger.error(
                f"Ambiguous factor: type={factor_type.value}, scope={scope.value}, "
                f"year={as_of_year}, ids={[f.factor_id for f in candidates]}"
            )
            raise AmbiguousFactor(
                factor_type, scope, as_of_year, [f.factor_id for f in candidates]
            )

        return candidates[0]

    def has_frozen(self, factor_type: FactorType, scope: FactorScope, as_of_year: int) -> bool:
        """Whether billing for a year can use this factor yet."""
        return any(
            is_live(f) and f.is_frozen
            for f in self._by_key.get((factor_type, scope, as_of_year), [])
        )
