"""
Pydantic Schemas for the Tariff & Insurance Adjudication Engine.
"""

from tariff_engine.schemas.adjudication import (
    AdjudicationResult,
    Committed,
    CoverageLine,
    SourceVersion,
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

__all__ = [
    # Adjudication
    "AdjudicationResult",
    "Committed",
    "CoverageLine",
    "SourceVersion",
    # Reference records
    "BusinessRule",
    "DepartmentCoefficientOverride",
    "FinancialFactor",
    "InsurancePlan",
    "PatientInsuranceEnrollment",
    "PatientProfile",
    "ServicePriceSpec",
    "ServiceTemplate",
    "Tariff",
]
