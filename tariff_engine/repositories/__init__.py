"""
Persistence adapters: calculation stores and the SQL reference store.
"""

from tariff_engine.repositories.calculation_store import CalculationStore, InMemoryCalculationStore
from tariff_engine.repositories.sql_calculation_store import SqlCalculationStore
from tariff_engine.repositories.sql_reference_store import SqlReferenceStore

__all__ = [
    "CalculationStore",
    "InMemoryCalculationStore",
    "SqlCalculationStore",
    "SqlReferenceStore",
]
