"""
Core Enumerations for the Tariff & Insurance Adjudication Engine.
Verified: 2026-10-19
"""

from enum import Enum


# =============================================================================
# Pricing Enums
# =============================================================================


class FactorType(str, Enum):
    """Kind of financial factor a coefficient is multiplied by."""

    TECHNICAL = "technical"
    PROFESSIONAL = "professional"


class FactorScope(str, Enum):
    """Population of services a factor applies to."""

    HASHTAGGED = "hashtagged"  # Services priced off the administratively frozen rate
    STANDARD = "standard"


# =============================================================================
# Insurance Enums
# =============================================================================


class InsurerType(str, Enum):
    """Broad classification of an insurer, available to rule conditions."""

    PUBLIC = "public"
    ARMED_FORCES = "armed_forces"
    PRIVATE = "private"
    SUPPLEMENTARY = "supplementary"
    CHARITY = "charity"


class PayerRank(str, Enum):
    """Position of a payer in the coverage chain."""

    PRIMARY = "primary"
    SUPPLEMENTARY = "supplementary"


class CalculationType(str, Enum):
    """Shape of a persisted insurance calculation."""

    SELF_PAY = "self_pay"  # No active enrollment
    PRIMARY = "primary"  # Primary payer only
    COMBINED = "combined"  # Primary plus one or more supplementary payers


# =============================================================================
# Business Rule Enums
# =============================================================================


class BusinessRuleType(str, Enum):
    """Category of a business rule. The first match per type wins."""

    COVERAGE_PERCENT = "coverage_percent"
    DEDUCTIBLE = "deductible"
    PAYMENT_LIMIT = "payment_limit"
    SUPPLEMENTARY_INSURANCE = "supplementary_insurance"
    VALIDATION = "validation"


class EffectKind(str, Enum):
    """Kinds of effect a matching rule can produce."""

    OVERRIDE_PERCENT = "override_percent"
    OVERRIDE_CAP = "override_cap"
    OVERRIDE_DEDUCTIBLE = "override_deductible"
    SKIP_PAYER = "skip_payer"
    REJECT = "reject"


class ConditionOperator(str, Enum):
    """Comparison operators available in rule conditions."""

    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NOT_IN = "not_in"
    BETWEEN = "between"


# =============================================================================
# Versioned Sources
# =============================================================================


class SourceKind(str, Enum):
    """Kinds of versioned record an adjudication reads."""

    TARIFF = "tariff"
    FACTOR = "factor"
    RULE = "rule"
