"""
SQL Reference Store.

Loads a ReferenceSnapshot from the SQLAlchemy models. Every query carries
its liveness predicate explicitly (is_active, not is_deleted, validity
window); nothing relies on ambient query filters.
"""

from datetime import date
from typing import Any, Optional, Sequence, TypeVar
from uuid import UUID

from pydantic import BaseModel, ValidationError
from sqlalchemy import and_, inspect, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tariff_engine.core.enums import SourceKind
from tariff_engine.models import (
    BusinessRuleModel,
    DepartmentOverrideModel,
    FinancialFactorModel,
    InsurancePlanModel,
    PatientInsuranceModel,
    PatientModel,
    ServicePricingModel,
    TariffModel,
)
from tariff_engine.schemas.records import (
    BusinessRule,
    DepartmentCoefficientOverride,
    FinancialFactor,
    InsurancePlan,
    PatientInsuranceEnrollment,
    PatientProfile,
    ServicePriceSpec,
    ServiceTemplate,
    Tariff,
)
from tariff_engine.services.reference_store import ReferenceSnapshot
from tariff_engine.services.rule_language import compile_rule
from tariff_engine.utils.errors import InvalidCoverageConfiguration, UnknownReference
from tariff_engine.utils.logging import get_logger

logger = get_logger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)

VERSIONED_MODELS = {
    SourceKind.TARIFF: TariffModel,
    SourceKind.FACTOR: FinancialFactorModel,
    SourceKind.RULE: BusinessRuleModel,
}


def live(model: Any):
    """is_active and not is_deleted."""
    return and_(model.is_active.is_(True), model.is_deleted.is_(False))


def in_window(model: Any, as_of: date, start: str = "start_date", end: str = "end_date"):
    """Half-open [start, end) window; a NULL bound is unbounded."""
    start_col = getattr(model, start)
    end_col = getattr(model, end)
    return and_(
        or_(start_col.is_(None), start_col <= as_of),
        or_(end_col.is_(None), end_col > as_of),
    )


def to_record(record_type: type[RecordT], row: Any, **renamed: str) -> RecordT:
    """
    Convert an ORM row into a reference record.

    Args:
        record_type: Target pydantic record
        row: ORM instance
        renamed: record field -> row attribute (e.g. tariff_id="id")
    """
    data = {attr.key: getattr(row, attr.key) for attr in inspect(row).mapper.column_attrs}
    for field_name, attribute in renamed.items():
        data[field_name] = getattr(row, attribute)
    try:
        return record_type.model_validate(data)
    except ValidationError as e:
        raise InvalidCoverageConfiguration(
            f"Stored {record_type.__name__} {getattr(row, 'id', '?')} is invalid: {e.error_count()} error(s)"
        ) from e


def _as_uuid(record_id: str) -> Optional[UUID]:
    try:
        return UUID(record_id)
    except ValueError:
        return None


async def fetch_version_tokens(
    session: AsyncSession,
    keys: Sequence[tuple[SourceKind, str]],
    lock: bool = False,
) -> dict[tuple[SourceKind, str], Optional[int]]:
    """
    Stored version tokens; missing rows map to None.

    With lock=True the rows are read FOR SHARE, so a concurrent edit waits
    until the caller's transaction ends.
    """
    tokens: dict[tuple[SourceKind, str], Optional[int]] = {key: None for key in keys}

    for kind, model in VERSIONED_MODELS.items():
        ids = [uid for k, rid in keys if k == kind and (uid := _as_uuid(rid)) is not None]
        if not ids:
            continue
        query = select(model.id, model.version_token).where(model.id.in_(ids))
        if lock:
            query = query.with_for_update(read=True)
        rows = await session.execute(query)
        for record_id, version in rows.all():
            tokens[(kind, str(record_id))] = version

    return tokens


class SqlReferenceStore:
    """ReferenceStore backed by the SQLAlchemy models."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def load_snapshot(self, service_id: Any, patient_id: Any, as_of: date) -> ReferenceSnapshot:
        """
        Read everything one adjudication of service_id for patient_id can touch.

        Raises:
            UnknownReference: Service has no pricing row
            InvalidCoverageConfiguration: A stored row fails validation
        """
        async with self.session_maker() as session:
            spec = await self._price_spec(session, service_id)

            factors = (
                await session.execute(select(FinancialFactorModel).where(live(FinancialFactorModel)))
            ).scalars().all()

            tariffs = (
                await session.execute(
                    select(TariffModel).where(
                        TariffModel.service_id == service_id,
                        live(TariffModel),
                        in_window(TariffModel, as_of),
                    )
                )
            ).scalars().all()

            enrollments = (
                await session.execute(
                    select(PatientInsuranceModel).where(
                        PatientInsuranceModel.patient_id == patient_id,
                        live(PatientInsuranceModel),
                        in_window(PatientInsuranceModel, as_of),
                    )
                )
            ).scalars().all()

            plan_ids = {e.plan_id for e in enrollments}
            plan_ids.update(e.supplementary_plan_id for e in enrollments if e.supplementary_plan_id)
            plans = []
            if plan_ids:
                plans = (
                    await session.execute(
                        select(InsurancePlanModel).where(InsurancePlanModel.id.in_(plan_ids))
                    )
                ).scalars().all()

            rules = (
                await session.execute(
                    select(BusinessRuleModel).where(
                        live(BusinessRuleModel),
                        in_window(BusinessRuleModel, as_of),
                        or_(BusinessRuleModel.service_id.is_(None), BusinessRuleModel.service_id == service_id),
                        or_(
                            BusinessRuleModel.service_category_id.is_(None),
                            BusinessRuleModel.service_category_id == spec.service_category_id,
                        ),
                    )
                )
            ).scalars().all()

            patient = await session.get(PatientModel, patient_id)

        logger.debug(
            f"Loaded snapshot for service={service_id}, patient={patient_id}: "
            f"{len(tariffs)} tariffs, {len(enrollments)} enrollments, {len(rules)} rules"
        )
        return ReferenceSnapshot(
            price_specs={spec.service_id: spec},
            factors=[to_record(FinancialFactor, row, factor_id="id") for row in factors],
            tariffs=[to_record(Tariff, row, tariff_id="id") for row in tariffs],
            plans={row.id: to_record(InsurancePlan, row, plan_id="id") for row in plans},
            rules=[compile_rule(to_record(BusinessRule, row, rule_id="id")) for row in rules],
            enrollments=[to_record(PatientInsuranceEnrollment, row, enrollment_id="id") for row in enrollments],
            patients={patient.id: to_record(PatientProfile, patient, patient_id="id")} if patient else {},
        )

    async def current_versions(
        self, keys: list[tuple[SourceKind, str]]
    ) -> dict[tuple[SourceKind, str], Optional[int]]:
        async with self.session_maker() as session:
            return await fetch_version_tokens(session, keys)

    async def _price_spec(self, session: AsyncSession, service_id: Any) -> ServicePriceSpec:
        row = (
            await session.execute(select(ServicePricingModel).where(ServicePricingModel.service_id == service_id))
        ).scalar_one_or_none()
        if row is None:
            raise UnknownReference("service", service_id)

        overrides = (
            await session.execute(
                select(DepartmentOverrideModel).where(
                    DepartmentOverrideModel.service_id == service_id,
                    live(DepartmentOverrideModel),
                )
            )
        ).scalars().all()

        data = {attr.key: getattr(row, attr.key) for attr in inspect(row).mapper.column_attrs}
        data["template"] = (
            to_record(ServiceTemplate, row.template, template_id="id") if row.template is not None else None
        )
        data["department_overrides"] = {
            o.department_id: to_record(DepartmentCoefficientOverride, o) for o in overrides
        }
        try:
            return ServicePriceSpec.model_validate(data)
        except ValidationError as e:
            raise InvalidCoverageConfiguration(f"Pricing of service {service_id} is invalid: {e}") from e
