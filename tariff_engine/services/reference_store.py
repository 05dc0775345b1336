"""
Reference Store.

Read-only boundary to the collaborators adjudication depends on:
- Service catalog (price specs, categories)
- Patient insurance registry (enrollments, demographics)
- Tariff, business rule and financial factor stores

Adjudication itself never performs I/O: a ReferenceSnapshot is loaded up
front and everything downstream is a pure computation over it.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional, Protocol

from tariff_engine.core.enums import SourceKind
from tariff_engine.schemas.records import (
    BusinessRule,
    FinancialFactor,
    InsurancePlan,
    PatientInsuranceEnrollment,
    PatientProfile,
    ServicePriceSpec,
    Tariff,
)
from tariff_engine.services.rule_language import CompiledRule, compile_rule
from tariff_engine.utils.errors import FrozenFactorMutation, UnknownReference
from tariff_engine.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ReferenceSnapshot:
    """Everything one adjudication reads, already in memory."""

    price_specs: dict[Any, ServicePriceSpec] = field(default_factory=dict)
    factors: list[FinancialFactor] = field(default_factory=list)
    tariffs: list[Tariff] = field(default_factory=list)
    plans: dict[Any, InsurancePlan] = field(default_factory=dict)
    rules: list[CompiledRule] = field(default_factory=list)
    enrollments: list[PatientInsuranceEnrollment] = field(default_factory=list)
    patients: dict[Any, PatientProfile] = field(default_factory=dict)


class ReferenceStore(Protocol):
    """Source of snapshots and of current version tokens."""

    async def load_snapshot(self, service_id: Any, patient_id: Any, as_of: date) -> ReferenceSnapshot:
        ...

    async def current_versions(self, keys: list[tuple[SourceKind, str]]) -> dict[tuple[SourceKind, str], Optional[int]]:
        ...


class InMemoryReferenceStore:
    """
    Reference store held in process memory.

    Used for demo mode and tests. Edits behave like the persistent stores:
    every change bumps the record's version token, frozen factor values
    cannot change, and deletion is a soft delete.
    """

    def __init__(self) -> None:
        self._services: dict[str, ServicePriceSpec] = {}
        self._factors: dict[str, FinancialFactor] = {}
        self._tariffs: dict[str, Tariff] = {}
        self._plans: dict[str, InsurancePlan] = {}
        self._rules: dict[str, CompiledRule] = {}
        self._enrollments: dict[str, PatientInsuranceEnrollment] = {}
        self._patients: dict[str, PatientProfile] = {}

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def add_service(self, spec: ServicePriceSpec) -> ServicePriceSpec:
        self._services[str(spec.service_id)] = spec
        return spec

    def add_factor(self, factor: FinancialFactor) -> FinancialFactor:
        self._factors[str(factor.factor_id)] = factor
        return factor

    def add_tariff(self, tariff: Tariff) -> Tariff:
        self._tariffs[str(tariff.tariff_id)] = tariff
        return tariff

    def add_plan(self, plan: InsurancePlan) -> InsurancePlan:
        self._plans[str(plan.plan_id)] = plan
        return plan

    def add_rule(self, rule: BusinessRule) -> BusinessRule:
        """Store a rule; it is compiled now so bad JSON fails at load time."""
        self._rules[str(rule.rule_id)] = compile_rule(rule)
        return rule

    def add_enrollment(self, enrollment: PatientInsuranceEnrollment) -> PatientInsuranceEnrollment:
        self._enrollments[str(enrollment.enrollment_id)] = enrollment
        return enrollment

    def add_patient(self, patient: PatientProfile) -> PatientProfile:
        self._patients[str(patient.patient_id)] = patient
        return patient

    # -------------------------------------------------------------------------
    # Edits
    # -------------------------------------------------------------------------

    def update_tariff(self, tariff_id: Any, **changes: Any) -> Tariff:
        """Edit a tariff; bumps its version token."""
        current = self._get(self._tariffs, "tariff", tariff_id)
        updated = current.model_copy(update={**changes, "version_token": current.version_token + 1})
        self._tariffs[str(tariff_id)] = updated
        logger.info(f"Tariff {tariff_id} updated to version {updated.version_token}")
        return updated

    def delete_tariff(self, tariff_id: Any) -> Tariff:
        """Soft-delete a tariff."""
        return self.update_tariff(tariff_id, is_deleted=True)

    def update_rule(self, rule_id: Any, **changes: Any) -> BusinessRule:
        """Edit a rule; bumps its version token and recompiles it."""
        current = self._get(self._rules, "rule", rule_id).rule
        updated = current.model_copy(update={**changes, "version_token": current.version_token + 1})
        self._rules[str(rule_id)] = compile_rule(updated)
        return updated

    def update_factor(self, factor_id: Any, **changes: Any) -> FinancialFactor:
        """Edit a factor; frozen factors cannot be revalued or unfrozen."""
        current = self._get(self._factors, "factor", factor_id)
        if current.is_frozen:
            if "value" in changes and changes["value"] != current.value:
                raise FrozenFactorMutation(
                    f"Factor {factor_id} for year {current.financial_year} is frozen"
                )
            if changes.get("is_frozen") is False:
                raise FrozenFactorMutation(f"Factor {factor_id} cannot be unfrozen")
        updated = current.model_copy(update={**changes, "version_token": current.version_token + 1})
        self._factors[str(factor_id)] = updated
        return updated

    # -------------------------------------------------------------------------
    # ReferenceStore
    # -------------------------------------------------------------------------

    async def load_snapshot(self, service_id: Any, patient_id: Any, as_of: date) -> ReferenceSnapshot:
        """Snapshot of the records one adjudication can touch."""
        spec = self._services.get(str(service_id))
        if spec is None:
            raise UnknownReference("service", service_id)

        enrollments = [e for e in self._enrollments.values() if e.patient_id == patient_id]
        patient = self._patients.get(str(patient_id))

        return ReferenceSnapshot(
            price_specs={spec.service_id: spec},
            factors=list(self._factors.values()),
            tariffs=[t for t in self._tariffs.values() if t.service_id == spec.service_id],
            plans={p.plan_id: p for p in self._plans.values()},
            rules=list(self._rules.values()),
            enrollments=enrollments,
            patients={patient.patient_id: patient} if patient else {},
        )

    async def current_versions(
        self, keys: list[tuple[SourceKind, str]]
    ) -> dict[tuple[SourceKind, str], Optional[int]]:
        return {key: self.current_version(*key) for key in keys}

    def current_version(self, kind: SourceKind, record_id: str) -> Optional[int]:
        """Stored version token, or None if the record is gone."""
        if kind == SourceKind.TARIFF:
            tariff = self._tariffs.get(record_id)
            return tariff.version_token if tariff else None
        if kind == SourceKind.FACTOR:
            factor = self._factors.get(record_id)
            return factor.version_token if factor else None
        compiled = self._rules.get(record_id)
        return compiled.rule.version_token if compiled else None

    @staticmethod
    def _get(table: dict[str, Any], kind: str, record_id: Any) -> Any:
        try:
            return table[str(record_id)]
        except KeyError:
            raise UnknownReference(kind, record_id) from None
