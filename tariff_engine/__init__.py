"""
Tariff & Insurance Adjudication Engine.

Prices billed clinical services and splits each price across the patient's
insurers and the patient.
"""

from tariff_engine.schemas.adjudication import AdjudicationResult, Committed, CoverageLine
from tariff_engine.services.billing_quote_service import BillingQuoteService
from tariff_engine.services.coverage_adjudicator import CoverageAdjudicator
from tariff_engine.utils.errors import TariffEngineError

__version__ = "0.1.0"

__all__ = [
    "AdjudicationResult",
    "BillingQuoteService",
    "Committed",
    "CoverageAdjudicator",
    "CoverageLine",
    "TariffEngineError",
]
