"""
Custom Exceptions
Typed failures surfaced by the adjudication engine.

Every failure aborts before anything is written. Only ConcurrencyConflict is
meant to be retried (with a fresh read); everything else points at data an
administrator has to correct.
"""

from typing import TYPE_CHECKING, Any, Optional, Sequence

if TYPE_CHECKING:
    from tariff_engine.schemas.adjudication import AdjudicationResult, SourceVersion


class TariffEngineError(Exception):
    """Base exception for all engine failures."""

    code: str = "tariff_engine_error"
    retryable: bool = False

    def __init__(self, detail: str = "Tariff engine error"):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict[str, Any]:
        """Serializable form for the billing workflow."""
        return {"code": self.code, "detail": self.detail, "retryable": self.retryable}


class NoApplicableTariff(TariffEngineError):
    """Raised when no active tariff covers the insurer/service on a date"""

    code = "no_applicable_tariff"

    def __init__(self, insurer_id: Any, service_id: Any, as_of: Any):
        super().__init__(
            f"No active tariff for insurer {insurer_id} and service {service_id} on {as_of}"
        )
        self.insurer_id = insurer_id
        self.service_id = service_id
        self.as_of = as_of


class AmbiguousTariff(TariffEngineError):
    """Raised when more than one tariff shares the winning priority"""

    code = "ambiguous_tariff"

    def __init__(self, insurer_id: Any, service_id: Any, priority: int, tariff_ids: Sequence[Any]):
        super().__init__(
            f"{len(tariff_ids)} tariffs for insurer {insurer_id} and service {service_id} "
            f"share priority {priority}: {', '.join(str(t) for t in tariff_ids)}"
        )
        self.insurer_id = insurer_id
        self.service_id = service_id
        self.priority = priority
        self.tariff_ids = list(tariff_ids)


class FactorNotFrozen(TariffEngineError):
    """Raised when no frozen factor exists for a year and scope"""

    code = "factor_not_frozen"

    def __init__(self, factor_type: Any, scope: Any, financial_year: int):
        super().__init__(
            f"No frozen {_label(factor_type)} factor for scope {_label(scope)} "
            f"in financial year {financial_year}"
        )
        self.factor_type = factor_type
        self.scope = scope
        self.financial_year = financial_year


class AmbiguousFactor(TariffEngineError):
    """Raised when several active frozen factors match one year and scope"""

    code = "ambiguous_factor"

    def __init__(self, factor_type: Any, scope: Any, financial_year: int, factor_ids: Sequence[Any]):
        super().__init__(
            f"{len(factor_ids)} active frozen {_label(factor_type)} factors for scope "
            f"{_label(scope)} in financial year {financial_year}"
        )
        self.factor_type = factor_type
        self.scope = scope
        self.financial_year = financial_year
        self.factor_ids = list(factor_ids)


class InvalidCoverageConfiguration(TariffEngineError):
    """Raised when pricing or coverage data is internally inconsistent"""

    code = "invalid_coverage_configuration"

    def __init__(self, detail: str = "Invalid coverage configuration"):
        super().__init__(detail)


class InvalidRuleDefinition(InvalidCoverageConfiguration):
    """Raised when a business rule's conditions or actions cannot be parsed"""

    code = "invalid_rule_definition"

    def __init__(self, detail: str, rule_id: Any = None):
        prefix = f"Rule {rule_id}: " if rule_id is not None else ""
        super().__init__(f"{prefix}{detail}")
        self.rule_id = rule_id


class FrozenFactorMutation(InvalidCoverageConfiguration):
    """Raised when a frozen factor's value is edited"""

    code = "frozen_factor_mutation"


class RuleRejected(TariffEngineError):
    """Raised when a business rule rejects the claim for a payer"""

    code = "rule_rejected"

    def __init__(
        self,
        reason: str,
        rule_id: Any = None,
        partial_result: Optional["AdjudicationResult"] = None,
    ):
        super().__init__(reason)
        self.reason = reason
        self.rule_id = rule_id
        # Lines of payers computed before the rejection; diagnostic only
        self.partial_result = partial_result


class ConcurrencyConflict(TariffEngineError):
    """Raised when a source record changed between read and commit"""

    code = "concurrency_conflict"
    retryable = True

    def __init__(self, stale: Sequence["SourceVersion"], message: Optional[str] = None):
        super().__init__(
            message
            or "Source records changed during adjudication: "
            + ", ".join(f"{s.kind.value}:{s.record_id}@{s.version}" for s in stale)
        )
        self.stale = list(stale)


class UnrecordableResult(TariffEngineError):
    """Raised when a result that is partial or unbalanced reaches the recorder"""

    code = "unrecordable_result"


class UnknownReference(TariffEngineError):
    """Raised when a referenced service or patient is missing from the snapshot"""

    code = "unknown_reference"

    def __init__(self, kind: str, reference_id: Any):
        super().__init__(f"Unknown {kind}: {reference_id}")
        self.kind = kind
        self.reference_id = reference_id


def _label(value: Any) -> str:
    return getattr(value, "value", str(value))
