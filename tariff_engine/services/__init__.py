"""
Services Layer for the Tariff & Insurance Adjudication Engine.

Exports the pricing, rule and adjudication services.
"""

from tariff_engine.services.billing_quote_service import BillingQuoteService
from tariff_engine.services.business_rules_engine import BusinessRuleEngine, RuleEvaluation
from tariff_engine.services.calculation_recorder import CalculationRecorder
from tariff_engine.services.coverage_adjudicator import CoverageAdjudicator, CoverageTerms, Payer
from tariff_engine.services.factor_registry import FactorRegistry
from tariff_engine.services.reference_store import (
    InMemoryReferenceStore,
    ReferenceSnapshot,
    ReferenceStore,
)
from tariff_engine.services.rule_language import CompiledRule, Effect, RuleContext, compile_rule
from tariff_engine.services.service_pricer import ServicePrice, ServicePricer
from tariff_engine.services.tariff_resolver import TariffResolver

__all__ = [
    # Pricing
    "FactorRegistry",
    "ServicePrice",
    "ServicePricer",
    # Coverage
    "TariffResolver",
    "CoverageAdjudicator",
    "CoverageTerms",
    "Payer",
    # Rules
    "BusinessRuleEngine",
    "RuleEvaluation",
    "CompiledRule",
    "Effect",
    "RuleContext",
    "compile_rule",
    # Orchestration
    "BillingQuoteService",
    "CalculationRecorder",
    "InMemoryReferenceStore",
    "ReferenceSnapshot",
    "ReferenceStore",
]
