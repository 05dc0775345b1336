"""
Pydantic Schemas for the reference records adjudication reads.

These are the in-memory shapes loaded from the service catalog, the patient
insurance registry and the tariff, rule and factor stores. They are frozen:
adjudication never mutates its inputs.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from tariff_engine.core.enums import (
    BusinessRuleType,
    FactorScope,
    FactorType,
    InsurerType,
)


class ReferenceRecord(BaseModel):
    """Base for loaded reference records."""

    model_config = ConfigDict(frozen=True, from_attributes=True)


# =============================================================================
# Pricing Records
# =============================================================================


class FinancialFactor(ReferenceRecord):
    """Year-bound value multiplied by service coefficients."""

    factor_id: Any
    factor_type: FactorType
    scope: FactorScope
    financial_year: int
    value: Decimal = Field(..., gt=0)
    effective_from: date
    effective_to: Optional[date] = None
    is_frozen: bool = False
    frozen_at: Optional[datetime] = None
    is_active: bool = True
    is_deleted: bool = False
    version_token: int = 1


class ServiceTemplate(ReferenceRecord):
    """Default coefficients shared by services built from one template."""

    template_id: Any
    default_technical_coefficient: Optional[Decimal] = Field(None, ge=0)
    default_professional_coefficient: Optional[Decimal] = Field(None, ge=0)


class DepartmentCoefficientOverride(ReferenceRecord):
    """Coefficients a department charges for a service, keyed by the pair."""

    service_id: Any
    department_id: Any
    override_technical: Optional[Decimal] = Field(None, ge=0)
    override_professional: Optional[Decimal] = Field(None, ge=0)
    is_active: bool = True
    is_deleted: bool = False


class ServicePriceSpec(ReferenceRecord):
    """How one service's base price is derived."""

    service_id: Any
    service_category_id: Optional[Any] = None
    is_coefficient_priced: bool = False
    flat_price: Optional[int] = Field(None, ge=0)
    technical_coefficient: Optional[Decimal] = Field(None, ge=0)
    professional_coefficient: Optional[Decimal] = Field(None, ge=0)
    factor_type: FactorType = FactorType.TECHNICAL
    factor_scope: FactorScope = FactorScope.HASHTAGGED
    split_component_factors: bool = False
    template: Optional[ServiceTemplate] = None
    department_overrides: dict[Any, DepartmentCoefficientOverride] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_price_source(self) -> "ServicePriceSpec":
        """Flat price and coefficients are mutually exclusive."""
        has_coefficients = (
            self.technical_coefficient is not None or self.professional_coefficient is not None
        )
        if self.is_coefficient_priced:
            if self.flat_price is not None:
                raise ValueError("coefficient-priced service cannot carry a flat price")
        else:
            if self.flat_price is None:
                raise ValueError("flat-priced service requires flat_price")
            if has_coefficients:
                raise ValueError("flat-priced service cannot carry coefficients")
        return self


# =============================================================================
# Coverage Records
# =============================================================================


class InsurancePlan(ReferenceRecord):
    """Insurer plan; supplies default shares when a tariff leaves them empty."""

    plan_id: Any
    insurer_id: Any
    insurer_type: InsurerType = InsurerType.PUBLIC
    coverage_percent: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    deductible: Optional[int] = Field(None, ge=0)
    is_active: bool = True
    is_deleted: bool = False


class Tariff(ReferenceRecord):
    """Time-boxed, priority-ranked agreement for one insurer and service."""

    tariff_id: Any
    insurer_id: Any
    service_id: Any
    plan_id: Optional[Any] = None
    priority: int = 0
    tariff_price: Optional[int] = None
    is_flat_rate: bool = False
    patient_share_percent: Optional[Decimal] = None
    insurer_share_percent: Optional[Decimal] = None
    min_patient_copay: Optional[int] = None
    max_insurer_payment: Optional[int] = None
    deductible: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: bool = True
    is_deleted: bool = False
    version_token: int = 1


class PatientInsuranceEnrollment(ReferenceRecord):
    """A patient's enrollment in one insurer plan."""

    enrollment_id: Any
    patient_id: Any
    insurer_id: Any
    plan_id: Any
    priority: int = 1
    is_active: bool = True
    is_deleted: bool = False
    start_date: date
    end_date: Optional[date] = None
    supplementary_insurer_id: Optional[Any] = None
    supplementary_plan_id: Optional[Any] = None

    @model_validator(mode="after")
    def check_supplementary_pair(self) -> "PatientInsuranceEnrollment":
        """Supplementary insurer and plan come together."""
        if (self.supplementary_insurer_id is None) != (self.supplementary_plan_id is None):
            raise ValueError("supplementary insurer and plan must both be set or both be empty")
        return self


class PatientProfile(ReferenceRecord):
    """Demographics rule conditions may refer to."""

    patient_id: Any
    birth_date: Optional[date] = None
    gender: Optional[str] = None

    def age_on(self, as_of: date) -> Optional[int]:
        """Completed years on a date."""
        if self.birth_date is None:
            return None
        years = as_of.year - self.birth_date.year
        if (as_of.month, as_of.day) < (self.birth_date.month, self.birth_date.day):
            years -= 1
        return years


# =============================================================================
# Rule Records
# =============================================================================


class BusinessRule(ReferenceRecord):
    """
    Declarative override rule as stored.

    conditions and actions hold the stored JSON (text or already decoded);
    they are compiled into an AST when the rule is loaded.
    """

    rule_id: Any
    name: str = ""
    rule_type: BusinessRuleType
    priority: int = 0
    insurance_plan_id: Optional[Any] = None
    service_category_id: Optional[Any] = None
    service_id: Optional[Any] = None
    conditions: Any = None
    actions: Any = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: bool = True
    is_deleted: bool = False
    version_token: int = 1
