"""
Integration Tests for the SQL Stores
Runs the SQLAlchemy reference and calculation stores against SQLite (aiosqlite)
"""

import asyncio
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
import pytest_asyncio

from tariff_engine.core.config import EngineSettings
from tariff_engine.core.enums import BusinessRuleType, FactorScope, FactorType
from tariff_engine.db.connection import (
    check_db_connection,
    create_all,
    create_engine_from_settings,
    make_session_maker,
    session_scope,
)
from tariff_engine.models import (
    BusinessRuleModel,
    FinancialFactorModel,
    InsurancePlanModel,
    PatientInsuranceModel,
    PatientModel,
    ServicePricingModel,
    TariffModel,
)
from tariff_engine.repositories.sql_calculation_store import SqlCalculationStore
from tariff_engine.repositories.sql_reference_store import SqlReferenceStore
from tariff_engine.services.billing_quote_service import BillingQuoteService
from tariff_engine.services.calculation_recorder import CalculationRecorder
from tariff_engine.utils.errors import ConcurrencyConflict, FrozenFactorMutation

AS_OF = date(2024, 6, 1)


@pytest.fixture
def settings(tmp_path) -> EngineSettings:
    return EngineSettings(_env_file=None, DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'tariff.db'}")


@pytest_asyncio.fixture
async def session_maker(settings):
    engine = create_engine_from_settings(settings)
    await create_all(engine)
    yield make_session_maker(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def seeded(session_maker):
    """One flat-priced service, one patient enrolled in a 70% plan."""
    ids = {
        "service_id": uuid4(),
        "department_id": uuid4(),
        "patient_id": uuid4(),
        "insurer_id": uuid4(),
        "plan_id": uuid4(),
        "tariff_id": uuid4(),
    }
    async with session_maker() as session:
        session.add_all(
            [
                ServicePricingModel(service_id=ids["service_id"], flat_price=1_000_000),
                InsurancePlanModel(
                    id=ids["plan_id"],
                    insurer_id=ids["insurer_id"],
                    name="Basic",
                    coverage_percent=Decimal("70"),
                ),
                PatientModel(id=ids["patient_id"], birth_date=date(1980, 5, 5), gender="Female"),
            ]
        )
        await session.flush()
        session.add_all(
            [
                TariffModel(
                    id=ids["tariff_id"],
                    insurer_id=ids["insurer_id"],
                    service_id=ids["service_id"],
                    priority=1,
                    insurer_share_percent=Decimal("70"),
                    start_date=date(2024, 1, 1),
                ),
                PatientInsuranceModel(
                    patient_id=ids["patient_id"],
                    insurer_id=ids["insurer_id"],
                    plan_id=ids["plan_id"],
                    priority=1,
                    start_date=date(2024, 1, 1),
                ),
            ]
        )
        await session.commit()
    return ids


@pytest.fixture
def quote_service(session_maker, settings):
    return BillingQuoteService(
        SqlReferenceStore(session_maker),
        SqlCalculationStore(session_maker),
        settings,
    )


def line_args(ids):
    return (ids["service_id"], ids["department_id"], ids["patient_id"], AS_OF)


class StaleReadCalculationStore(SqlCalculationStore):
    """Sees no current result, as if its read ran before another commit's insert."""

    @staticmethod
    async def _current_row(session, billing_line_id, for_update=False):
        return None


async def edit_tariff(session_maker, tariff_id, **changes):
    async with session_maker() as session:
        tariff = await session.get(TariffModel, tariff_id)
        for name, value in changes.items():
            setattr(tariff, name, value)
        await session.commit()
        return tariff.version_token


@pytest.mark.integration
class TestSqlReferenceStore:
    """Test snapshot loading from the database"""

    @pytest.mark.asyncio
    async def test_snapshot_contents(self, session_maker, seeded):
        snapshot = await SqlReferenceStore(session_maker).load_snapshot(
            seeded["service_id"], seeded["patient_id"], AS_OF
        )

        assert [t.tariff_id for t in snapshot.tariffs] == [seeded["tariff_id"]]
        assert snapshot.tariffs[0].version_token == 1
        assert len(snapshot.enrollments) == 1
        assert seeded["plan_id"] in snapshot.plans
        assert snapshot.patients[seeded["patient_id"]].age_on(AS_OF) == 44

    @pytest.mark.asyncio
    async def test_soft_deleted_tariff_excluded(self, session_maker, seeded):
        await edit_tariff(session_maker, seeded["tariff_id"], is_deleted=True)

        snapshot = await SqlReferenceStore(session_maker).load_snapshot(
            seeded["service_id"], seeded["patient_id"], AS_OF
        )

        assert snapshot.tariffs == []

    @pytest.mark.asyncio
    async def test_stored_rule_compiled(self, session_maker, seeded, quote_service):
        async with session_maker() as session:
            session.add(
                BusinessRuleModel(
                    name="Adults get 90%",
                    rule_type=BusinessRuleType.COVERAGE_PERCENT,
                    priority=10,
                    conditions='{"patient_age": {"min": 18}}',
                    actions='{"set_coverage_percent": 90}',
                )
            )
            await session.commit()

        result = await quote_service.quote(*line_args(seeded))

        assert result.total_insurer_share == 900_000


@pytest.mark.integration
class TestSqlCalculationStore:
    """Test recording through the database"""

    @pytest.mark.asyncio
    async def test_adjudicate_and_record(self, session_maker, seeded, quote_service):
        committed = await quote_service.adjudicate(*line_args(seeded), billing_line_id="line-1")

        stored = await SqlCalculationStore(session_maker).current("line-1")
        assert stored.calculation_id == committed.result.calculation_id
        assert stored.total_insurer_share == 700_000
        assert stored.final_patient_share == 300_000
        assert stored.is_valid is True

    @pytest.mark.asyncio
    async def test_rebilling_replays(self, seeded, quote_service):
        first = await quote_service.adjudicate(*line_args(seeded), billing_line_id="line-1")
        second = await quote_service.adjudicate(*line_args(seeded), billing_line_id="line-1")

        assert second.replayed is True
        assert second.result.calculation_id == first.result.calculation_id

    @pytest.mark.asyncio
    async def test_tariff_edit_supersedes_prior_result(self, session_maker, seeded, quote_service):
        first = await quote_service.adjudicate(*line_args(seeded), billing_line_id="line-1")

        version = await edit_tariff(session_maker, seeded["tariff_id"], insurer_share_percent=Decimal("80"))
        second = await quote_service.adjudicate(*line_args(seeded), billing_line_id="line-1")

        assert version == 2
        assert second.superseded_id == first.result.calculation_id
        history = await SqlCalculationStore(session_maker).history("line-1")
        assert [(r.is_valid, r.total_insurer_share) for r in history] == [(False, 700_000), (True, 800_000)]

    @pytest.mark.asyncio
    async def test_stale_result_conflicts(self, session_maker, seeded, quote_service):
        result = await quote_service.quote(*line_args(seeded), billing_line_id="line-1")
        await edit_tariff(session_maker, seeded["tariff_id"], max_insurer_payment=500_000)

        with pytest.raises(ConcurrencyConflict):
            await CalculationRecorder(SqlCalculationStore(session_maker)).record(result)

        assert await SqlCalculationStore(session_maker).current("line-1") is None



@pytest.mark.integration
class TestConcurrentCommits:
    """Test that one billing line never ends up with two valid results"""

    @pytest.mark.asyncio
    async def test_racing_commits_leave_one_valid_result(self, session_maker, seeded, quote_service):
        store = SqlCalculationStore(session_maker)
        first = await quote_service.quote(*line_args(seeded), billing_line_id="line-1")
        second = await quote_service.quote(*line_args(seeded), billing_line_id="line-1")
        expected = first.source_version_tokens

        outcomes = await asyncio.gather(
            store.commit(first, expected),
            store.commit(second, expected),
            return_exceptions=True,
        )

        for outcome in outcomes:
            assert not isinstance(outcome, Exception) or isinstance(outcome, ConcurrencyConflict)
        history = await store.history("line-1")
        assert len([r for r in history if r.is_valid]) == 1

    @pytest.mark.asyncio
    async def test_late_insert_for_recorded_line_conflicts(self, session_maker, seeded, quote_service):
        first = await quote_service.quote(*line_args(seeded), billing_line_id="line-1")
        second = await quote_service.quote(*line_args(seeded), billing_line_id="line-1")
        await SqlCalculationStore(session_maker).commit(first, first.source_version_tokens)

        with pytest.raises(ConcurrencyConflict, match="concurrent commit") as exc_info:
            await StaleReadCalculationStore(session_maker).commit(second, second.source_version_tokens)

        assert exc_info.value.retryable is True
        assert exc_info.value.stale == []
        history = await SqlCalculationStore(session_maker).history("line-1")
        assert [r.calculation_id for r in history] == [first.calculation_id]

    @pytest.mark.asyncio
    async def test_results_without_billing_line_never_collide(self, session_maker, seeded, quote_service):
        store = SqlCalculationStore(session_maker)
        first = await quote_service.quote(*line_args(seeded))
        second = await quote_service.quote(*line_args(seeded))

        await store.commit(first, first.source_version_tokens)
        await store.commit(second, second.source_version_tokens)

        assert await store.get(second.calculation_id) is not None

@pytest.mark.integration
class TestFrozenFactorGuard:
    """Test that frozen factor rows are append-only"""

    @pytest_asyncio.fixture
    async def factor_id(self, session_maker):
        factor = FinancialFactorModel(
            factor_type=FactorType.TECHNICAL,
            scope=FactorScope.HASHTAGGED,
            financial_year=1403,
            value=Decimal("100000"),
            effective_from=date(2024, 3, 20),
        )
        factor.freeze()
        async with session_maker() as session:
            session.add(factor)
            await session.commit()
            return factor.id

    @pytest.mark.asyncio
    async def test_value_change_rejected(self, session_maker, factor_id):
        async with session_maker() as session:
            factor = await session.get(FinancialFactorModel, factor_id)
            factor.value = Decimal("110000")

            with pytest.raises(FrozenFactorMutation):
                await session.commit()

    @pytest.mark.asyncio
    async def test_unfreeze_rejected(self, session_maker, factor_id):
        async with session_maker() as session:
            factor = await session.get(FinancialFactorModel, factor_id)
            factor.is_frozen = False

            with pytest.raises(FrozenFactorMutation):
                await session.commit()

    @pytest.mark.asyncio
    async def test_deactivation_allowed(self, session_maker, factor_id):
        async with session_maker() as session:
            factor = await session.get(FinancialFactorModel, factor_id)
            factor.is_active = False
            await session.commit()

            assert factor.version_token == 2


@pytest.mark.integration
class TestConnection:
    """Test engine health and unit-of-work sessions"""

    @pytest.mark.asyncio
    async def test_health_check(self, settings):
        engine = create_engine_from_settings(settings)
        try:
            assert await check_db_connection(engine) is True
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_session_scope_commits(self, session_maker, seeded):
        async with session_scope(session_maker) as session:
            tariff = await session.get(TariffModel, seeded["tariff_id"])
            tariff.priority = 2

        async with session_maker() as session:
            assert (await session.get(TariffModel, seeded["tariff_id"])).priority == 2

    @pytest.mark.asyncio
    async def test_session_scope_rolls_back(self, session_maker, seeded):
        with pytest.raises(RuntimeError):
            async with session_scope(session_maker) as session:
                tariff = await session.get(TariffModel, seeded["tariff_id"])
                tariff.priority = 5
                await session.flush()
                raise RuntimeError("abort")

        async with session_maker() as session:
            tariff = await session.get(TariffModel, seeded["tariff_id"])
            assert tariff.priority == 1
            assert tariff.version_token == 1
