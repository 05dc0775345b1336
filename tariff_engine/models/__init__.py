"""
SQLAlchemy Models for the Tariff & Insurance Adjudication Engine.
"""

from tariff_engine.models.base import Base, SoftDeleteModel, TimeStampedModel, UUIDModel
from tariff_engine.models.calculation import InsuranceCalculationModel
from tariff_engine.models.insurance import (
    BusinessRuleModel,
    InsurancePlanModel,
    PatientInsuranceModel,
    PatientModel,
    TariffModel,
)
from tariff_engine.models.pricing import (
    DepartmentOverrideModel,
    FinancialFactorModel,
    ServicePricingModel,
    ServiceTemplateModel,
)

__all__ = [
    "Base",
    "SoftDeleteModel",
    "TimeStampedModel",
    "UUIDModel",
    "InsuranceCalculationModel",
    "BusinessRuleModel",
    "InsurancePlanModel",
    "PatientInsuranceModel",
    "PatientModel",
    "TariffModel",
    "DepartmentOverrideModel",
    "FinancialFactorModel",
    "ServicePricingModel",
    "ServiceTemplateModel",
]
