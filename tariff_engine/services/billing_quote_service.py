"""
Billing Quote Service.

Library entry point used by the billing workflow for each billed line:
1. Load a ReferenceSnapshot
2. Run the Coverage Adjudicator over it
3. Record the result (superseding the line's prior calculation)

A ConcurrencyConflict at step 3 means a tariff, factor or rule changed in
between, or another commit recorded the same line first; the whole sequence
is re-run from a fresh snapshot.
"""

from datetime import date
from typing import Any, Optional

from tariff_engine.core.config import EngineSettings, get_engine_settings
from tariff_engine.repositories.calculation_store import CalculationStore
from tariff_engine.schemas.adjudication import AdjudicationResult, Committed
from tariff_engine.services.calculation_recorder import CalculationRecorder
from tariff_engine.services.coverage_adjudicator import CoverageAdjudicator
from tariff_engine.services.reference_store import ReferenceStore
from tariff_engine.utils.errors import ConcurrencyConflict
from tariff_engine.utils.logging import get_logger

logger = get_logger(__name__)


class BillingQuoteService:
    """Adjudicate-and-record with optimistic concurrency retries."""

    def __init__(
        self,
        reference_store: ReferenceStore,
        calculation_store: CalculationStore,
        settings: Optional[EngineSettings] = None,
    ):
        self.reference_store = reference_store
        self.recorder = CalculationRecorder(calculation_store)
        self.settings = settings or get_engine_settings()

    async def quote(
        self,
        service_id: Any,
        department_id: Any,
        patient_id: Any,
        as_of: date,
        billing_line_id: Optional[str] = None,
    ) -> AdjudicationResult:
        """Adjudicate without recording (price preview)."""
        snapshot = await self.reference_store.load_snapshot(service_id, patient_id, as_of)
        adjudicator = CoverageAdjudicator(snapshot, self.settings)
        return adjudicator.adjudicate(service_id, department_id, patient_id, as_of, billing_line_id)

    async def adjudicate(
        self,
        service_id: Any,
        department_id: Any,
        patient_id: Any,
        as_of: date,
        billing_line_id: Optional[str] = None,
    ) -> Committed:
        """
        Adjudicate a billed line and record the result.

        Args:
            service_id: Billed service
            department_id: Department rendering the service
            patient_id: Patient being billed
            as_of: Date of service
            billing_line_id: Reception item; prior results for it are superseded

        Returns:
            Committed result

        Raises:
            ConcurrencyConflict: Sources kept changing for every attempt
            TariffEngineError: Any adjudication failure (nothing is recorded)
        """
        attempts = self.settings.MAX_RECOMPUTE_ATTEMPTS
        attempt = 1

        while True:
            result = await self.quote(service_id, department_id, patient_id, as_of, billing_line_id)
            try:
                return await self.recorder.record(result)
            except ConcurrencyConflict as e:
                if attempt >= attempts:
                    logger.error(f"Giving up on line {billing_line_id} after {attempt} attempt(s): {e.detail}")
                    raise
                logger.warning(
                    f"Recomputing line {billing_line_id} after conflict "
                    f"(attempt {attempt}/{attempts}): {e.detail}"
                )
                attempt += 1
