"""
Billing Quote Service Tests.

Tests for:
- Adjudicate-and-record of a billed line
- Recompute after tariff edits (prior result invalidated)
- Re-running on concurrency conflicts
- Failures never recorded
"""

from decimal import Decimal

import pytest

from conftest import AS_OF
from tariff_engine.core.config import EngineSettings
from tariff_engine.repositories.calculation_store import InMemoryCalculationStore
from tariff_engine.services.billing_quote_service import BillingQuoteService
from tariff_engine.services.reference_store import InMemoryReferenceStore
from tariff_engine.utils.errors import ConcurrencyConflict, NoApplicableTariff


class EditingReferenceStore:
    """Reference store whose tariff is edited right after each of the first N loads."""

    def __init__(self, inner: InMemoryReferenceStore, tariff_id, edits: int):
        self.inner = inner
        self.tariff_id = tariff_id
        self.edits_left = edits
        self.loads = 0
        self.share = Decimal("70")

    async def load_snapshot(self, service_id, patient_id, as_of):
        snapshot = await self.inner.load_snapshot(service_id, patient_id, as_of)
        self.loads += 1
        if self.edits_left:
            self.edits_left -= 1
            self.share += 1
            self.inner.update_tariff(self.tariff_id, insurer_share_percent=self.share)
        return snapshot

    async def current_versions(self, keys):
        return await self.inner.current_versions(keys)


@pytest.fixture
def priced_clinic(clinic):
    clinic.enroll_primary()
    clinic.tariff = clinic.add_tariff(insurer_share_percent=Decimal("70"))
    return clinic


def service_for(reference_store, settings) -> tuple[BillingQuoteService, InMemoryCalculationStore]:
    calculation_store = InMemoryCalculationStore(reference_store.current_versions)
    return BillingQuoteService(reference_store, calculation_store, settings), calculation_store


def line_args(clinic):
    return (clinic.service_id, clinic.department_id, clinic.patient_id, AS_OF)


@pytest.mark.unit
class TestAdjudicate:
    """Test the adjudicate-and-record path"""

    @pytest.mark.asyncio
    async def test_adjudicate_records_result(self, priced_clinic, settings):
        service, calculation_store = service_for(priced_clinic.reference_store(), settings)

        committed = await service.adjudicate(*line_args(priced_clinic), billing_line_id="line-1")

        assert committed.result.final_patient_share == 300_000
        assert await calculation_store.current("line-1") is committed.result

    @pytest.mark.asyncio
    async def test_quote_does_not_record(self, priced_clinic, settings):
        service, calculation_store = service_for(priced_clinic.reference_store(), settings)

        result = await service.quote(*line_args(priced_clinic), billing_line_id="line-1")

        assert result.total_insurer_share == 700_000
        assert await calculation_store.current("line-1") is None

    @pytest.mark.asyncio
    async def test_rebilling_unchanged_line_replays(self, priced_clinic, settings):
        service, _ = service_for(priced_clinic.reference_store(), settings)

        first = await service.adjudicate(*line_args(priced_clinic), billing_line_id="line-1")
        second = await service.adjudicate(*line_args(priced_clinic), billing_line_id="line-1")

        assert second.replayed is True
        assert second.result.calculation_id == first.result.calculation_id

    @pytest.mark.asyncio
    async def test_recompute_after_tariff_edit(self, priced_clinic, settings):
        reference_store = priced_clinic.reference_store()
        service, calculation_store = service_for(reference_store, settings)
        first = await service.adjudicate(*line_args(priced_clinic), billing_line_id="line-1")

        reference_store.update_tariff(priced_clinic.tariff.tariff_id, insurer_share_percent=Decimal("90"))
        second = await service.adjudicate(*line_args(priced_clinic), billing_line_id="line-1")

        assert second.result.total_insurer_share == 900_000
        assert second.superseded_id == first.result.calculation_id
        prior = await calculation_store.get(first.result.calculation_id)
        assert prior.is_valid is False
        assert prior.total_insurer_share == 700_000
        assert (await calculation_store.current("line-1")).calculation_id == second.result.calculation_id

    @pytest.mark.asyncio
    async def test_failure_not_recorded(self, clinic, settings):
        clinic.enroll_primary()
        service, calculation_store = service_for(clinic.reference_store(), settings)

        with pytest.raises(NoApplicableTariff):
            await service.adjudicate(*line_args(clinic), billing_line_id="line-1")

        assert await calculation_store.history("line-1") == []


@pytest.mark.unit
class TestConflictRetries:
    """Test re-running after a concurrency conflict"""

    @pytest.mark.asyncio
    async def test_conflict_rerun_uses_fresh_data(self, priced_clinic, settings):
        store = EditingReferenceStore(priced_clinic.reference_store(), priced_clinic.tariff.tariff_id, edits=1)
        service, _ = service_for(store, settings)

        committed = await service.adjudicate(*line_args(priced_clinic), billing_line_id="line-1")

        assert store.loads == 2
        assert committed.result.total_insurer_share == 710_000
        assert committed.result.source_version_tokens[0].version == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_configured_attempts(self, priced_clinic):
        settings = EngineSettings(_env_file=None, MAX_RECOMPUTE_ATTEMPTS=2)
        store = EditingReferenceStore(priced_clinic.reference_store(), priced_clinic.tariff.tariff_id, edits=5)
        service, calculation_store = service_for(store, settings)

        with pytest.raises(ConcurrencyConflict):
            await service.adjudicate(*line_args(priced_clinic), billing_line_id="line-1")

        assert store.loads == 2
        assert await calculation_store.current("line-1") is None

    @pytest.mark.asyncio
    async def test_single_attempt_raises_first_conflict(self, priced_clinic):
        settings = EngineSettings(_env_file=None, MAX_RECOMPUTE_ATTEMPTS=1)
        store = EditingReferenceStore(priced_clinic.reference_store(), priced_clinic.tariff.tariff_id, edits=1)
        service, calculation_store = service_for(store, settings)

        with pytest.raises(ConcurrencyConflict) as exc_info:
            await service.adjudicate(*line_args(priced_clinic), billing_line_id="line-1")

        assert store.loads == 1
        assert exc_info.value.stale[0].version == 1
        assert await calculation_store.current("line-1") is None
