"""
Business Rule Engine.

Evaluates declarative override rules scoped to an insurance plan, a service
category or a service. Matching rules produce effects that shape one payer's
coverage computation:
- Override coverage percent
- Override payment cap
- Override deductible
- Skip a supplementary payer
- Reject the claim with a reason

Rules never touch stored tariffs.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Union

from tariff_engine.core.enums import BusinessRuleType, EffectKind
from tariff_engine.schemas.records import BusinessRule
from tariff_engine.services.record_filters import live_as_of
from tariff_engine.services.rule_language import (
    CompiledRule,
    Effect,
    RuleContext,
    compile_rule,
)
from tariff_engine.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RuleEvaluation:
    """Effects of one evaluation plus the rules it looked at."""

    effects: list[Effect] = field(default_factory=list)
    considered: list[BusinessRule] = field(default_factory=list)
    matched_rule_ids: list[Any] = field(default_factory=list)

    @property
    def rejection(self) -> Optional[Effect]:
        for effect in self.effects:
            if effect.is_terminal:
                return effect
        return None

    def first(self, kind: EffectKind) -> Optional[Effect]:
        """Highest-priority effect of a kind."""
        for effect in self.effects:
            if effect.kind == kind:
                return effect
        return None


class BusinessRuleEngine:
    """
    Rule evaluator over already-loaded rules.

    Rules are compiled when added. Evaluation order is priority descending
    (ties broken by rule id); within one rule type only the first matching
    rule applies, and a rejection stops evaluation altogether.
    """

    def __init__(self, rules: Iterable[Union[BusinessRule, CompiledRule]] = ()):
        self._rules: dict[Any, CompiledRule] = {}
        for rule in rules:
            self.add_rule(rule)

    def add_rule(self, rule: Union[BusinessRule, CompiledRule]) -> CompiledRule:
        """Compile (if needed) and register a rule."""
        compiled = rule if isinstance(rule, CompiledRule) else compile_rule(rule)
        self._rules[compiled.rule.rule_id] = compiled
        return compiled

    def remove_rule(self, rule_id: Any) -> bool:
        """Remove a rule from the engine."""
        return self._rules.pop(rule_id, None) is not None

    def get_all_rules(self) -> list[BusinessRule]:
        return [c.rule for c in self._rules.values()]

    def candidate_rules(self, context: RuleContext) -> list[CompiledRule]:
        """Live, in-window rules whose scope matches, in evaluation order."""
        predicate = live_as_of(context.as_of)
        candidates = [
            c for c in self._rules.values()
            if predicate(c.rule) and self._scope_matches(c.rule, context)
        ]
        candidates.sort(key=lambda c: (-c.rule.priority, str(c.rule.rule_id)))
        return candidates

    def evaluate(self, context: RuleContext) -> list[Effect]:
        """
        Evaluate applicable rules against the context.

        Args:
            context: Facts for one payer of one adjudication

        Returns:
            Ordered effects; a REJECT effect, if present, is last
        """
        return self.evaluation(context).effects

    def evaluation(self, context: RuleContext) -> RuleEvaluation:
        """Evaluate and keep the considered rules for version capture."""
        result = RuleEvaluation()
        matched_types: set[BusinessRuleType] = set()

        for compiled in self.candidate_rules(context):
            rule = compiled.rule
            result.considered.append(rule)

            if rule.rule_type in matched_types:
                continue
            if not compiled.matches(context):
                continue

            matched_types.add(rule.rule_type)
            result.matched_rule_ids.append(rule.rule_id)
            effects = compiled.effects(context)
            logger.debug(
                f"Rule matched: id={rule.rule_id}, name='{rule.name}', "
                f"type={rule.rule_type.value}, effects={[e.kind.value for e in effects]}"
            )

            for effect in effects:
                result.effects.append(effect)
                if effect.is_terminal:
                    logger.info(f"Rule {rule.rule_id} rejected claim: {effect.reason}")
                    return result

        return result

    @staticmethod
    def _scope_matches(rule: BusinessRule, context: RuleContext) -> bool:
        """Null scope fields are wildcards."""
        if rule.insurance_plan_id is not None and rule.insurance_plan_id != context.insurance_plan_id:
            return False
        if rule.service_category_id is not None and rule.service_category_id != context.service_category_id:
            return False
        if rule.service_id is not None and rule.service_id != context.service_id:
            return False
        return True
