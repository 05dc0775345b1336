"""
Pytest Configuration and Fixtures.
Shared test fixtures for all test modules.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Optional
from uuid import uuid4

import pytest

from tariff_engine.core.config import EngineSettings
from tariff_engine.core.enums import BusinessRuleType, FactorScope, FactorType, InsurerType
from tariff_engine.schemas.records import (
    BusinessRule,
    FinancialFactor,
    InsurancePlan,
    PatientInsuranceEnrollment,
    PatientProfile,
    ServicePriceSpec,
    Tariff,
)
from tariff_engine.services.coverage_adjudicator import CoverageAdjudicator
from tariff_engine.services.reference_store import InMemoryReferenceStore, ReferenceSnapshot
from tariff_engine.services.rule_language import compile_rule

# 2024-06-01 falls in financial year 1403 (starts 2024-03-21)
AS_OF = date(2024, 6, 1)
FINANCIAL_YEAR = 1403
SERVICE_AMOUNT = 1_000_000


class ClinicData:
    """
    A small clinic: one flat-priced service, a patient, and a primary and a
    supplementary insurer with one plan each. Tests add tariffs, rules and
    enrollments, then build a snapshot or a reference store from them.
    """

    def __init__(self, service_amount: int = SERVICE_AMOUNT):
        self.service_id = uuid4()
        self.category_id = uuid4()
        self.department_id = uuid4()
        self.patient_id = uuid4()
        self.primary_insurer_id = uuid4()
        self.primary_plan_id = uuid4()
        self.supplementary_insurer_id = uuid4()
        self.supplementary_plan_id = uuid4()

        self.services = [
            ServicePriceSpec(
                service_id=self.service_id,
                service_category_id=self.category_id,
                flat_price=service_amount,
            )
        ]
        self.plans = [
            InsurancePlan(
                plan_id=self.primary_plan_id,
                insurer_id=self.primary_insurer_id,
                insurer_type=InsurerType.PUBLIC,
                coverage_percent=Decimal("70"),
            ),
            InsurancePlan(
                plan_id=self.supplementary_plan_id,
                insurer_id=self.supplementary_insurer_id,
                insurer_type=InsurerType.SUPPLEMENTARY,
                coverage_percent=Decimal("50"),
            ),
        ]
        self.patients = [
            PatientProfile(patient_id=self.patient_id, birth_date=date(1980, 5, 5), gender="Female")
        ]
        self.factors: list[FinancialFactor] = []
        self.tariffs: list[Tariff] = []
        self.rules: list[BusinessRule] = []
        self.enrollments: list[PatientInsuranceEnrollment] = []

    # -------------------------------------------------------------------------
    # Builders
    # -------------------------------------------------------------------------

    def add_tariff(self, insurer_id: Any = None, **fields: Any) -> Tariff:
        data: dict[str, Any] = {
            "tariff_id": uuid4(),
            "insurer_id": insurer_id or self.primary_insurer_id,
            "service_id": self.service_id,
            "priority": 1,
            "start_date": date(2024, 1, 1),
        }
        data.update(fields)
        tariff = Tariff(**data)
        self.tariffs.append(tariff)
        return tariff

    def add_supplementary_tariff(self, **fields: Any) -> Tariff:
        return self.add_tariff(self.supplementary_insurer_id, **fields)

    def enroll_primary(self, **fields: Any) -> PatientInsuranceEnrollment:
        data: dict[str, Any] = {
            "enrollment_id": uuid4(),
            "patient_id": self.patient_id,
            "insurer_id": self.primary_insurer_id,
            "plan_id": self.primary_plan_id,
            "priority": 1,
            "start_date": date(2024, 1, 1),
        }
        data.update(fields)
        enrollment = PatientInsuranceEnrollment(**data)
        self.enrollments.append(enrollment)
        return enrollment

    def enroll_with_supplementary(self, **fields: Any) -> PatientInsuranceEnrollment:
        """Primary enrollment carrying the supplementary insurer."""
        return self.enroll_primary(
            supplementary_insurer_id=self.supplementary_insurer_id,
            supplementary_plan_id=self.supplementary_plan_id,
            **fields,
        )

    def add_rule(
        self,
        actions: Any,
        conditions: Any = None,
        rule_type: BusinessRuleType = BusinessRuleType.COVERAGE_PERCENT,
        **fields: Any,
    ) -> BusinessRule:
        rule = BusinessRule(
            rule_id=fields.pop("rule_id", uuid4()),
            name=fields.pop("name", "Test rule"),
            rule_type=rule_type,
            conditions=conditions,
            actions=actions,
            **fields,
        )
        self.rules.append(rule)
        return rule

    # -------------------------------------------------------------------------
    # Assembly
    # -------------------------------------------------------------------------

    def snapshot(self) -> ReferenceSnapshot:
        return ReferenceSnapshot(
            price_specs={s.service_id: s for s in self.services},
            factors=list(self.factors),
            tariffs=list(self.tariffs),
            plans={p.plan_id: p for p in self.plans},
            rules=[compile_rule(r) for r in self.rules],
            enrollments=list(self.enrollments),
            patients={p.patient_id: p for p in self.patients},
        )

    def adjudicator(self, settings: Optional[EngineSettings] = None) -> CoverageAdjudicator:
        return CoverageAdjudicator(self.snapshot(), settings or EngineSettings(_env_file=None))

    def adjudicate(self, as_of: date = AS_OF, billing_line_id: Optional[str] = None):
        return self.adjudicator().adjudicate(
            self.service_id, self.department_id, self.patient_id, as_of, billing_line_id
        )

    def reference_store(self) -> InMemoryReferenceStore:
        store = InMemoryReferenceStore()
        for spec in self.services:
            store.add_service(spec)
        for plan in self.plans:
            store.add_plan(plan)
        for patient in self.patients:
            store.add_patient(patient)
        for factor in self.factors:
            store.add_factor(factor)
        for tariff in self.tariffs:
            store.add_tariff(tariff)
        for rule in self.rules:
            store.add_rule(rule)
        for enrollment in self.enrollments:
            store.add_enrollment(enrollment)
        return store


def make_factor(
    value: Any = Decimal("100000"),
    factor_type: FactorType = FactorType.TECHNICAL,
    scope: FactorScope = FactorScope.HASHTAGGED,
    financial_year: int = FINANCIAL_YEAR,
    **fields: Any,
) -> FinancialFactor:
    """Frozen factor for the test financial year unless told otherwise."""
    data: dict[str, Any] = {
        "factor_id": uuid4(),
        "factor_type": factor_type,
        "scope": scope,
        "financial_year": financial_year,
        "value": Decimal(str(value)),
        "effective_from": date(2024, 3, 20),
        "is_frozen": True,
    }
    data.update(fields)
    return FinancialFactor(**data)


@pytest.fixture
def settings() -> EngineSettings:
    """Default settings, ignoring any local .env file."""
    return EngineSettings(_env_file=None)


@pytest.fixture
def clinic() -> ClinicData:
    """Fresh clinic data for each test."""
    return ClinicData()


@pytest.fixture
def as_of() -> date:
    return AS_OF


# Configure pytest markers
def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
