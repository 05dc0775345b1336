"""
Calculation Recorder.

Persists an AdjudicationResult with optimistic concurrency: the tariff,
factor and rule version tokens captured during adjudication must still be
current at commit time, otherwise the caller re-runs the adjudication.
"""

from typing import Optional, Sequence

from tariff_engine.repositories.calculation_store import CalculationStore
from tariff_engine.schemas.adjudication import AdjudicationResult, Committed, SourceVersion
from tariff_engine.utils.errors import ConcurrencyConflict, UnrecordableResult
from tariff_engine.utils.logging import get_logger

logger = get_logger(__name__)


class CalculationRecorder:
    """Guards and commits adjudication results."""

    def __init__(self, store: CalculationStore):
        self.store = store

    async def record(
        self,
        result: AdjudicationResult,
        expected_source_versions: Optional[Sequence[SourceVersion]] = None,
    ) -> Committed:
        """
        Record a result, superseding the prior valid result for its billing line.

        Args:
            result: Freshly adjudicated result
            expected_source_versions: Tokens to re-check; defaults to the
                tokens captured on the result

        Returns:
            Committed (replayed=True when an identical result was already current)

        Raises:
            ConcurrencyConflict: A source record changed since it was read, or
                the line was recorded by a concurrent commit
            UnrecordableResult: The result is partial or does not balance
        """
        if not result.is_valid:
            raise UnrecordableResult(f"Calculation {result.calculation_id} is not a valid result")
        if not result.balances():
            raise UnrecordableResult(
                f"Calculation {result.calculation_id} does not balance: "
                f"{result.total_insurer_share} + {result.final_patient_share} != {result.service_amount}"
            )

        expected = list(
            expected_source_versions
            if expected_source_versions is not None
            else result.source_version_tokens
        )

        try:
            committed = await self.store.commit(result, expected)
        except ConcurrencyConflict as e:
            logger.warning(f"Commit of calculation {result.calculation_id} rejected: {e.detail}")
            raise

        if committed.replayed:
            logger.info(f"Calculation {committed.result.calculation_id} replayed for line {result.billing_line_id}")
        else:
            logger.info(
                f"Recorded calculation {result.calculation_id} for line {result.billing_line_id}"
                + (f", superseding {committed.superseded_id}" if committed.superseded_id else "")
            )
        return committed
