"""
Calculation Store.

Persistence port for adjudication results. A commit is one atomic step:
1. Re-check the version tokens captured during adjudication
2. Replay the current valid result if its fingerprint is unchanged
3. Otherwise supersede the current valid result and insert the new one
"""

import asyncio
from typing import Awaitable, Callable, Optional, Protocol, Sequence
from uuid import UUID

from tariff_engine.core.enums import SourceKind
from tariff_engine.schemas.adjudication import AdjudicationResult, Committed, SourceVersion
from tariff_engine.utils.errors import ConcurrencyConflict
from tariff_engine.utils.logging import get_logger

logger = get_logger(__name__)

VersionKey = tuple[SourceKind, str]
VersionSource = Callable[[list[VersionKey]], Awaitable[dict[VersionKey, Optional[int]]]]


def stale_versions(
    expected: Sequence[SourceVersion],
    current: dict[VersionKey, Optional[int]],
) -> list[SourceVersion]:
    """Expected tokens that no longer match what is stored (missing counts as stale)."""
    return [v for v in expected if current.get(v.key) != v.version]


class CalculationStore(Protocol):
    """Where recorded AdjudicationResults live."""

    async def commit(self, result: AdjudicationResult, expected: Sequence[SourceVersion]) -> Committed:
        ...

    async def current(self, billing_line_id: str) -> Optional[AdjudicationResult]:
        ...

    async def get(self, calculation_id: UUID) -> Optional[AdjudicationResult]:
        ...

    async def history(self, billing_line_id: str) -> list[AdjudicationResult]:
        ...


class InMemoryCalculationStore:
    """
    Calculation store held in process memory.

    Commits are serialized with an asyncio.Lock, which gives the same
    check-then-write atomicity a database transaction gives the SQL store.
    """

    def __init__(self, version_source: VersionSource):
        """
        Args:
            version_source: Async callable returning the stored version token
                for each (kind, record_id), e.g. InMemoryReferenceStore.current_versions
        """
        self._version_source = version_source
        self._results: dict[UUID, AdjudicationResult] = {}
        self._order: list[UUID] = []
        self._lock = asyncio.Lock()

    async def commit(self, result: AdjudicationResult, expected: Sequence[SourceVersion]) -> Committed:
        async with self._lock:
            current_tokens = await self._version_source([v.key for v in expected])
            stale = stale_versions(expected, current_tokens)
            if stale:
                raise ConcurrencyConflict(stale)

            prior = self._current_unlocked(result.billing_line_id)
            if prior is not None and prior.fingerprint == result.fingerprint:
                logger.info(f"Replaying calculation {prior.calculation_id} for line {result.billing_line_id}")
                return Committed(result=prior, replayed=True)

            superseded_id = None
            if prior is not None:
                self._results[prior.calculation_id] = prior.model_copy(update={"is_valid": False})
                superseded_id = prior.calculation_id

            self._results[result.calculation_id] = result
            self._order.append(result.calculation_id)
            return Committed(result=result, superseded_id=superseded_id)

    async def current(self, billing_line_id: str) -> Optional[AdjudicationResult]:
        return self._current_unlocked(billing_line_id)

    async def get(self, calculation_id: UUID) -> Optional[AdjudicationResult]:
        return self._results.get(calculation_id)

    async def history(self, billing_line_id: str) -> list[AdjudicationResult]:
        """Every result recorded for a line, oldest first."""
        return [
            self._results[cid]
            for cid in self._order
            if self._results[cid].billing_line_id == billing_line_id
        ]

    def _current_unlocked(self, billing_line_id: Optional[str]) -> Optional[AdjudicationResult]:
        if billing_line_id is None:
            return None
        for cid in reversed(self._order):
            candidate = self._results[cid]
            if candidate.billing_line_id == billing_line_id and candidate.is_valid:
                return candidate
        return None
