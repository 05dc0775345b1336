"""
Coverage Adjudication Engine.

Turns a service, department, patient and date into an itemized allocation of
the service amount across the patient's insurers and the patient:
- Service pricing (flat or coefficient x frozen factor)
- Payer ordering (primary, then supplementary payers)
- Tariff resolution per payer
- Business rule overrides and rejections
- Deductible, percentage share and cap per payer
- Patient copay floor
- Exact minor-unit balancing with residue assigned to the patient
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from tariff_engine.core.config import EngineSettings, get_engine_settings
from tariff_engine.core.enums import CalculationType, EffectKind, PayerRank, SourceKind
from tariff_engine.core.money import HUNDRED, clamp, percent_of
from tariff_engine.schemas.adjudication import AdjudicationResult, CoverageLine, SourceVersion
from tariff_engine.schemas.records import (
    BusinessRule,
    FinancialFactor,
    InsurancePlan,
    PatientInsuranceEnrollment,
    ServicePriceSpec,
    Tariff,
)
from tariff_engine.services.business_rules_engine import BusinessRuleEngine, RuleEvaluation
from tariff_engine.services.factor_registry import FactorRegistry
from tariff_engine.services.record_filters import is_live, live_as_of
from tariff_engine.services.reference_store import ReferenceSnapshot
from tariff_engine.services.rule_language import RuleContext
from tariff_engine.services.service_pricer import ServicePricer
from tariff_engine.services.tariff_resolver import TariffResolver
from tariff_engine.utils.errors import (
    InvalidCoverageConfiguration,
    NoApplicableTariff,
    RuleRejected,
)
from tariff_engine.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Payer:
    """One position in the coverage chain."""

    rank: PayerRank
    enrollment_id: Any
    insurer_id: Any
    plan_id: Any


@dataclass(frozen=True)
class CoverageTerms:
    """A tariff's terms after plan defaults and rule overrides."""

    percent: Decimal
    deductible: int
    cap: Optional[int]
    min_patient_copay: int


@dataclass
class _LineDraft:
    payer: Payer
    tariff: Optional[Tariff] = None
    percent: Decimal = Decimal("0")
    deductible_applied: int = 0
    gross: int = 0
    capped: int = 0
    is_covered: bool = True
    note: Optional[str] = None

    def finalize(self) -> CoverageLine:
        return CoverageLine(
            payer_rank=self.payer.rank,
            enrollment_id=self.payer.enrollment_id,
            insurer_id=self.payer.insurer_id,
            plan_id=self.payer.plan_id,
            applied_tariff_id=self.tariff.tariff_id if self.tariff else None,
            percent_applied=self.percent,
            deductible_applied=self.deductible_applied,
            gross_allocation=self.gross,
            capped_allocation=self.capped,
            is_covered=self.is_covered,
            note=self.note,
        )


@dataclass
class _Run:
    """Mutable state of one adjudication."""

    service_id: Any
    department_id: Any
    patient_id: Any
    as_of: date
    billing_line_id: Optional[str]
    service_amount: int = 0
    remaining: int = 0
    lines: list[_LineDraft] = field(default_factory=list)
    factors: list[FinancialFactor] = field(default_factory=list)
    tariffs: list[Tariff] = field(default_factory=list)
    rules: dict[str, BusinessRule] = field(default_factory=dict)
    copay_floor: int = 0


class CoverageAdjudicator:
    """
    Core adjudication engine over one ReferenceSnapshot.

    Pure and synchronous: identical snapshots and arguments yield identical
    results (apart from calculation_id and created_at).
    """

    def __init__(self, snapshot: ReferenceSnapshot, settings: Optional[EngineSettings] = None):
        self.snapshot = snapshot
        self.settings = settings or get_engine_settings()
        self.factor_registry = FactorRegistry(snapshot.factors)
        self.pricer = ServicePricer(snapshot.price_specs, self.factor_registry, self.settings)
        self.tariff_resolver = TariffResolver(snapshot.tariffs)
        self.rules_engine = BusinessRuleEngine(snapshot.rules)

    def adjudicate(
        self,
        service_id: Any,
        department_id: Any,
        patient_id: Any,
        as_of: date,
        billing_line_id: Optional[str] = None,
    ) -> AdjudicationResult:
        """
        Adjudicate one billed service.

        Args:
            service_id: Billed service
            department_id: Department rendering the service
            patient_id: Patient being billed
            as_of: Date of service
            billing_line_id: Optional reception item the result prices

        Returns:
            AdjudicationResult (not yet recorded)

        Raises:
            NoApplicableTariff: Primary payer has no tariff on as_of
            AmbiguousTariff / FactorNotFrozen / AmbiguousFactor: Data-integrity failures
            InvalidCoverageConfiguration: Inconsistent tariff, plan or price data
            RuleRejected: A business rule rejected the claim
        """
        run = _Run(
            service_id=service_id,
            department_id=department_id,
            patient_id=patient_id,
            as_of=as_of,
            billing_line_id=billing_line_id,
        )

        # Step 1: Service amount
        price = self.pricer.price_breakdown(service_id, department_id, as_of)
        run.service_amount = price.amount
        run.remaining = price.amount
        run.factors = list(price.factors)
        spec = self.snapshot.price_specs[service_id]

        # Step 2: Payer order
        payers = self.payers_for(patient_id, as_of)

        # Steps 3-4: Allocate payer by payer against what is left
        for payer in payers:
            self._allocate(run, payer, spec)

        # Step 5: Patient copay floor
        self._apply_copay_floor(run)

        # Step 6-7: Balance and assemble
        result = self._assemble(run, payers)
        logger.info(
            f"Adjudicated service={service_id}, patient={patient_id}, as_of={as_of}: "
            f"amount={result.service_amount}, insurers={result.total_insurer_share}, "
            f"patient={result.final_patient_share}, type={result.calculation_type.value}"
        )
        return result

    # -------------------------------------------------------------------------
    # Payers
    # -------------------------------------------------------------------------

    def payers_for(self, patient_id: Any, as_of: date) -> list[Payer]:
        """
        Ordered payers for a patient on a date.

        Enrollments are ordered by priority (then start date); an enrollment's
        own supplementary insurer follows it directly.
        """
        predicate = live_as_of(as_of)
        enrollments = sorted(
            (e for e in self.snapshot.enrollments if e.patient_id == patient_id and predicate(e)),
            key=lambda e: (e.priority, e.start_date, str(e.enrollment_id)),
        )
        if not enrollments:
            return []

        lowest = enrollments[0].priority
        primaries = [e for e in enrollments if e.priority == lowest]
        if len(primaries) > 1:
            raise InvalidCoverageConfiguration(
                f"Patient {patient_id} has {len(primaries)} primary enrollments on {as_of}: "
                f"{', '.join(str(e.enrollment_id) for e in primaries)}"
            )

        payers: list[Payer] = []
        for enrollment in enrollments:
            rank = PayerRank.PRIMARY if not payers else PayerRank.SUPPLEMENTARY
            payers.append(Payer(rank, enrollment.enrollment_id, enrollment.insurer_id, enrollment.plan_id))
            payers.extend(self._supplementary_of(enrollment))
        return payers

    @staticmethod
    def _supplementary_of(enrollment: PatientInsuranceEnrollment) -> list[Payer]:
        if enrollment.supplementary_insurer_id is None:
            return []
        return [
            Payer(
                PayerRank.SUPPLEMENTARY,
                enrollment.enrollment_id,
                enrollment.supplementary_insurer_id,
                enrollment.supplementary_plan_id,
            )
        ]

    # -------------------------------------------------------------------------
    # Per-payer allocation
    # -------------------------------------------------------------------------

    def _allocate(self, run: _Run, payer: Payer, spec: ServicePriceSpec) -> None:
        draft = _LineDraft(payer=payer)

        try:
            tariff = self.tariff_resolver.resolve(payer.insurer_id, run.service_id, run.as_of, payer.plan_id)
        except NoApplicableTariff:
            if payer.rank == PayerRank.PRIMARY:
                raise
            logger.warning(
                f"No tariff for supplementary insurer {payer.insurer_id} on service "
                f"{run.service_id}; recording no coverage"
            )
            draft.is_covered = False
            draft.note = "No applicable tariff"
            run.lines.append(draft)
            return

        run.tariffs.append(tariff)
        plan = self._plan(payer.plan_id)

        evaluation = self.rules_engine.evaluation(self._rule_context(run, payer, plan, spec))
        for rule in evaluation.considered:
            run.rules[str(rule.rule_id)] = rule

        rejection = evaluation.rejection
        if rejection is not None:
            raise RuleRejected(
                rejection.reason or "Rejected by business rule",
                rule_id=rejection.rule_id,
                partial_result=self._assemble(run, None, is_valid=False),
            )

        skip = evaluation.first(EffectKind.SKIP_PAYER)
        if skip is not None and payer.rank == PayerRank.SUPPLEMENTARY:
            logger.info(f"Rule {skip.rule_id} skipped supplementary insurer {payer.insurer_id}")
            draft.tariff = tariff
            draft.is_covered = False
            draft.note = skip.reason
            run.lines.append(draft)
            return

        terms = self.coverage_terms(tariff, plan, evaluation)
        draft.tariff = tariff
        draft.percent = terms.percent

        if tariff.is_flat_rate:
            price = tariff.tariff_price or 0
            draft.deductible_applied = min(price, terms.deductible)
            draft.gross = price - draft.deductible_applied
        else:
            basis = run.remaining
            if tariff.tariff_price is not None:
                basis = min(basis, tariff.tariff_price)
            draft.deductible_applied = min(basis, terms.deductible)
            draft.gross = percent_of(basis - draft.deductible_applied, terms.percent)

        draft.capped = min(clamp(draft.gross, 0, terms.cap), run.remaining)
        run.remaining -= draft.capped
        run.copay_floor += terms.min_patient_copay
        run.lines.append(draft)

    def coverage_terms(
        self,
        tariff: Tariff,
        plan: Optional[InsurancePlan],
        evaluation: Optional[RuleEvaluation] = None,
    ) -> CoverageTerms:
        """
        Effective terms for a payer.

        Rule overrides win over the tariff, and the tariff wins over the
        plan's defaults.

        Raises:
            InvalidCoverageConfiguration: Tariff data is inconsistent
        """
        self.validate_tariff(tariff)
        evaluation = evaluation or RuleEvaluation()

        percent_override = evaluation.first(EffectKind.OVERRIDE_PERCENT)
        if percent_override is not None:
            percent = percent_override.value
        elif tariff.insurer_share_percent is not None:
            percent = tariff.insurer_share_percent
        elif tariff.patient_share_percent is not None:
            percent = HUNDRED - tariff.patient_share_percent
        elif plan is not None:
            percent = plan.coverage_percent
        elif tariff.is_flat_rate:
            percent = Decimal("0")
        else:
            raise InvalidCoverageConfiguration(
                f"Tariff {tariff.tariff_id} sets no share and plan defaults are unavailable"
            )

        deductible_override = evaluation.first(EffectKind.OVERRIDE_DEDUCTIBLE)
        if deductible_override is not None:
            deductible = deductible_override.value
        elif tariff.deductible is not None:
            deductible = tariff.deductible
        elif plan is not None and plan.deductible is not None:
            deductible = plan.deductible
        else:
            deductible = 0

        cap_override = evaluation.first(EffectKind.OVERRIDE_CAP)
        cap = cap_override.value if cap_override is not None else tariff.max_insurer_payment

        return CoverageTerms(
            percent=percent,
            deductible=deductible,
            cap=cap,
            min_patient_copay=tariff.min_patient_copay or 0,
        )

    @staticmethod
    def validate_tariff(tariff: Tariff) -> None:
        """Reject tariffs whose numbers cannot describe a coverage."""
        problems: list[str] = []
        for name in ("insurer_share_percent", "patient_share_percent"):
            value = getattr(tariff, name)
            if value is not None and not Decimal("0") <= value <= HUNDRED:
                problems.append(f"{name} {value} outside [0, 100]")
        if (
            tariff.insurer_share_percent is not None
            and tariff.patient_share_percent is not None
            and tariff.insurer_share_percent + tariff.patient_share_percent != HUNDRED
        ):
            problems.append("insurer and patient shares do not add up to 100")
        for name in ("tariff_price", "min_patient_copay", "max_insurer_payment", "deductible"):
            value = getattr(tariff, name)
            if value is not None and value < 0:
                problems.append(f"{name} is negative")
        if (
            tariff.tariff_price is not None
            and tariff.min_patient_copay is not None
            and tariff.min_patient_copay > tariff.tariff_price
        ):
            problems.append("minimum patient copay exceeds the tariff price")
        if tariff.is_flat_rate and tariff.tariff_price is None:
            problems.append("flat-rate tariff has no tariff price")

        if problems:
            raise InvalidCoverageConfiguration(f"Tariff {tariff.tariff_id}: {'; '.join(problems)}")

    def _plan(self, plan_id: Any) -> Optional[InsurancePlan]:
        plan = self.snapshot.plans.get(plan_id)
        return plan if plan is not None and is_live(plan) else None

    def _rule_context(
        self,
        run: _Run,
        payer: Payer,
        plan: Optional[InsurancePlan],
        spec: ServicePriceSpec,
    ) -> RuleContext:
        patient = self.snapshot.patients.get(run.patient_id)
        return RuleContext(
            as_of=run.as_of,
            service_id=run.service_id,
            service_amount=run.service_amount,
            remaining_amount=run.remaining,
            payer_rank=payer.rank.value,
            insurance_plan_id=payer.plan_id,
            insurer_id=payer.insurer_id,
            insurer_type=plan.insurer_type.value if plan else None,
            service_category_id=spec.service_category_id,
            patient_age=patient.age_on(run.as_of) if patient else None,
            patient_gender=patient.gender if patient else None,
        )

    # -------------------------------------------------------------------------
    # Patient floor and balancing
    # -------------------------------------------------------------------------

    @staticmethod
    def _apply_copay_floor(run: _Run) -> None:
        """
        Raise the patient share to the copay floor.

        The overflow is taken from the lowest-priority payer first, so the
        primary payer's allocation is touched last.
        """
        floor = min(run.copay_floor, run.service_amount)
        overflow = floor - run.remaining
        if overflow <= 0:
            return

        for draft in reversed(run.lines):
            if overflow == 0:
                break
            reduction = min(draft.capped, overflow)
            draft.capped -= reduction
            overflow -= reduction
            run.remaining += reduction

    def _assemble(
        self,
        run: _Run,
        payers: Optional[list[Payer]],
        is_valid: bool = True,
    ) -> AdjudicationResult:
        lines = [draft.finalize() for draft in run.lines]
        insurer_total = sum(line.capped_allocation for line in lines)

        if payers is None:
            calculation_type = CalculationType.PRIMARY if len(lines) <= 1 else CalculationType.COMBINED
        elif not payers:
            calculation_type = CalculationType.SELF_PAY
        elif len(payers) == 1:
            calculation_type = CalculationType.PRIMARY
        else:
            calculation_type = CalculationType.COMBINED

        return AdjudicationResult(
            billing_line_id=run.billing_line_id,
            service_id=run.service_id,
            department_id=run.department_id,
            patient_id=run.patient_id,
            as_of=run.as_of,
            service_amount=run.service_amount,
            coverage_lines=lines,
            # Residue of every rounding lands here, never on an insurer
            final_patient_share=run.service_amount - insurer_total,
            deductible_applied=sum(line.deductible_applied for line in lines),
            calculation_type=calculation_type,
            is_valid=is_valid,
            source_version_tokens=self._source_versions(run),
        )

    @staticmethod
    def _source_versions(run: _Run) -> list[SourceVersion]:
        versions = {
            (SourceKind.TARIFF, str(t.tariff_id)): t.version_token for t in run.tariffs
        }
        versions.update(
            {(SourceKind.FACTOR, str(f.factor_id)): f.version_token for f in run.factors}
        )
        versions.update(
            {(SourceKind.RULE, rule_id): rule.version_token for rule_id, rule in run.rules.items()}
        )
        return [
            SourceVersion(kind=kind, record_id=record_id, version=version)
            for (kind, record_id), version in sorted(versions.items(), key=lambda kv: (kv[0][0].value, kv[0][1]))
        ]
