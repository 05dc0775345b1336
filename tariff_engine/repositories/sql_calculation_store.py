"""
SQL Calculation Store.

Version check, supersede and insert run in one transaction, so a commit
either lands completely or not at all.
"""

from datetime import datetime, timezone
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tariff_engine.models import InsuranceCalculationModel
from tariff_engine.repositories.calculation_store import stale_versions
from tariff_engine.repositories.sql_reference_store import fetch_version_tokens
from tariff_engine.schemas.adjudication import (
    AdjudicationResult,
    Committed,
    CoverageLine,
    SourceVersion,
)
from tariff_engine.utils.errors import ConcurrencyConflict
from tariff_engine.utils.logging import get_logger

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_model(result: AdjudicationResult) -> InsuranceCalculationModel:
    """AdjudicationResult -> row."""
    return InsuranceCalculationModel(
        id=result.calculation_id,
        billing_line_id=result.billing_line_id,
        service_id=str(result.service_id),
        department_id=str(result.department_id) if result.department_id is not None else None,
        patient_id=str(result.patient_id),
        as_of=result.as_of,
        service_amount=result.service_amount,
        total_insurer_share=result.total_insurer_share,
        final_patient_share=result.final_patient_share,
        deductible_applied=result.deductible_applied,
        calculation_type=result.calculation_type,
        coverage_lines=[line.model_dump(mode="json") for line in result.coverage_lines],
        source_versions=[v.model_dump(mode="json") for v in result.source_version_tokens],
        fingerprint=result.fingerprint,
        is_valid=result.is_valid,
        created_at=result.created_at,
    )


def to_result(row: InsuranceCalculationModel) -> AdjudicationResult:
    """
    Row -> AdjudicationResult.

    Identifiers come back as strings, so the rehydrated result's fingerprint
    can differ from the stored one; compare against row.fingerprint instead.
    """
    return AdjudicationResult(
        calculation_id=row.id,
        billing_line_id=row.billing_line_id,
        service_id=row.service_id,
        department_id=row.department_id,
        patient_id=row.patient_id,
        as_of=row.as_of,
        service_amount=row.service_amount,
        coverage_lines=[CoverageLine.model_validate(line) for line in row.coverage_lines],
        final_patient_share=row.final_patient_share,
        deductible_applied=row.deductible_applied,
        calculation_type=row.calculation_type,
        is_valid=row.is_valid,
        created_at=row.created_at,
        source_version_tokens=[SourceVersion.model_validate(v) for v in row.source_versions],
    )


class SqlCalculationStore:
    """CalculationStore backed by the insurance_calculations table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def commit(self, result: AdjudicationResult, expected: Sequence[SourceVersion]) -> Committed:
        """
        Check versions, then replay or supersede-and-insert, atomically.

        Source rows are read FOR SHARE, so an edit cannot land between the
        check and the insert. Two commits racing on the same billing line
        are settled by the unique index on valid rows; the loser gets a
        ConcurrencyConflict and re-runs.

        Raises:
            ConcurrencyConflict: A captured version token is no longer current,
                or another commit recorded this billing line first
        """
        try:
            async with self.session_maker() as session:
                async with session.begin():
                    current_tokens = await fetch_version_tokens(
                        session, [v.key for v in expected], lock=True
                    )
                    stale = stale_versions(expected, current_tokens)
                    if stale:
                        raise ConcurrencyConflict(stale)

                    prior = await self._current_row(session, result.billing_line_id, for_update=True)
                    if prior is not None and prior.fingerprint == result.fingerprint:
                        return Committed(result=to_result(prior), replayed=True)

                    superseded_id = None
                    if prior is not None:
                        prior.is_valid = False
                        prior.superseded_at = utcnow()
                        superseded_id = prior.id
                        # The flip must reach the index before the new valid row does
                        await session.flush()

                    session.add(to_model(result))
        except IntegrityError as e:
            logger.warning(
                f"Billing line {result.billing_line_id} was recorded concurrently; "
                f"calculation {result.calculation_id} not committed"
            )
            raise ConcurrencyConflict(
                [],
                f"Billing line {result.billing_line_id} was recorded by a concurrent commit",
            ) from e

        logger.debug(f"Calculation {result.calculation_id} committed")
        return Committed(result=result, superseded_id=superseded_id)

    async def current(self, billing_line_id: str) -> Optional[AdjudicationResult]:
        async with self.session_maker() as session:
            row = await self._current_row(session, billing_line_id)
            return to_result(row) if row is not None else None

    async def get(self, calculation_id: UUID) -> Optional[AdjudicationResult]:
        async with self.session_maker() as session:
            row = await session.get(InsuranceCalculationModel, calculation_id)
            return to_result(row) if row is not None else None

    async def history(self, billing_line_id: str) -> list[AdjudicationResult]:
        """Every result recorded for a line, oldest first."""
        async with self.session_maker() as session:
            rows = await session.execute(
                select(InsuranceCalculationModel)
                .where(InsuranceCalculationModel.billing_line_id == billing_line_id)
                .order_by(InsuranceCalculationModel.created_at)
            )
            return [to_result(row) for row in rows.scalars().all()]

    @staticmethod
    async def _current_row(
        session: AsyncSession,
        billing_line_id: Optional[str],
        for_update: bool = False,
    ) -> Optional[InsuranceCalculationModel]:
        if billing_line_id is None:
            return None
        query = (
            select(InsuranceCalculationModel)
            .where(
                InsuranceCalculationModel.billing_line_id == billing_line_id,
                InsuranceCalculationModel.is_valid.is_(True),
            )
            .order_by(InsuranceCalculationModel.created_at.desc())
            .limit(1)
        )
        if for_update:
            query = query.with_for_update()
        result = await session.execute(query)
        return result.scalar_one_or_none()
