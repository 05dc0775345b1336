"""
Business rule language.

Stored rule conditions and actions are JSON. They are parsed once, when the
rule is loaded, into a small tagged AST and evaluated by an interpreter;
nothing stored is ever executed as code.

Condition forms:
    {"all": [...]}, {"any": [...]}, {"not": {...}}
    {"field": "service_amount", "op": "gte", "value": 500000}
    {"service_amount": {"min": 1, "max": 9}, "patient_gender": "Female"}   (shorthand)

Action forms:
    {"set_coverage_percent": 80, "set_max_payment": 250000}
    [{"type": "reject", "value": "Cosmetic service not covered"}]
"""

import json
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

from tariff_engine.core.enums import BusinessRuleType, ConditionOperator, EffectKind
from tariff_engine.core.money import round_minor, to_decimal
from tariff_engine.schemas.records import BusinessRule
from tariff_engine.utils.errors import InvalidRuleDefinition


# Fields a condition may refer to
CONDITION_FIELDS = frozenset(
    {
        "service_amount",
        "remaining_amount",
        "patient_age",
        "patient_gender",
        "insurer_type",
        "insurance_plan",
        "insurer",
        "service_category",
        "service",
        "payer_rank",
    }
)

NUMERIC_FIELDS = frozenset({"service_amount", "remaining_amount", "patient_age"})
ORDERING_OPERATORS = frozenset(
    {
        ConditionOperator.GT,
        ConditionOperator.GTE,
        ConditionOperator.LT,
        ConditionOperator.LTE,
        ConditionOperator.BETWEEN,
    }
)


# =============================================================================
# Evaluation Context
# =============================================================================


@dataclass
class RuleContext:
    """Facts a rule is evaluated against, for one payer of one adjudication."""

    as_of: date
    service_id: Any
    service_amount: int
    remaining_amount: int
    payer_rank: str
    insurance_plan_id: Optional[Any] = None
    insurer_id: Optional[Any] = None
    insurer_type: Optional[str] = None
    service_category_id: Optional[Any] = None
    patient_age: Optional[int] = None
    patient_gender: Optional[str] = None

    def get(self, field_name: str) -> Any:
        """Value of a condition field."""
        return {
            "service_amount": self.service_amount,
            "remaining_amount": self.remaining_amount,
            "patient_age": self.patient_age,
            "patient_gender": self.patient_gender,
            "insurer_type": self.insurer_type,
            "insurance_plan": self.insurance_plan_id,
            "insurer": self.insurer_id,
            "service_category": self.service_category_id,
            "service": self.service_id,
            "payer_rank": self.payer_rank,
        }[field_name]


# =============================================================================
# Condition AST
# =============================================================================


@dataclass(frozen=True)
class Always:
    """Empty condition; always matches."""

    def evaluate(self, context: RuleContext) -> bool:
        return True


@dataclass(frozen=True)
class Compare:
    """field <op> value"""

    field: str
    op: ConditionOperator
    value: Any

    def evaluate(self, context: RuleContext) -> bool:
        actual = context.get(self.field)
        if actual is None:
            return False
        numeric = self.field in NUMERIC_FIELDS
        op = self.op

        if op == ConditionOperator.IN:
            return any(_equal(actual, v, numeric) for v in self.value)
        if op == ConditionOperator.NOT_IN:
            return not any(_equal(actual, v, numeric) for v in self.value)
        if op == ConditionOperator.EQ:
            return _equal(actual, self.value, numeric)
        if op == ConditionOperator.NE:
            return not _equal(actual, self.value, numeric)

        left = to_decimal(actual)
        if op == ConditionOperator.BETWEEN:
            low, high = self.value
            return to_decimal(low) <= left <= to_decimal(high)
        right = to_decimal(self.value)
        if op == ConditionOperator.GT:
            return left > right
        if op == ConditionOperator.GTE:
            return left >= right
        if op == ConditionOperator.LT:
            return left < right
        return left <= right


@dataclass(frozen=True)
class AllOf:
    children: tuple["Condition", ...]

    def evaluate(self, context: RuleContext) -> bool:
        return all(child.evaluate(context) for child in self.children)


@dataclass(frozen=True)
class AnyOf:
    children: tuple["Condition", ...]

    def evaluate(self, context: RuleContext) -> bool:
        return any(child.evaluate(context) for child in self.children)


@dataclass(frozen=True)
class Not:
    child: "Condition"

    def evaluate(self, context: RuleContext) -> bool:
        return not self.child.evaluate(context)


Condition = Union[Always, Compare, AllOf, AnyOf, Not]


def _equal(actual: Any, expected: Any, numeric: bool) -> bool:
    if numeric:
        return to_decimal(actual) == to_decimal(expected)
    actual = getattr(actual, "value", actual)
    expected = getattr(expected, "value", expected)
    return str(actual).lower() == str(expected).lower()


# =============================================================================
# Effects and Actions
# =============================================================================


@dataclass(frozen=True)
class Effect:
    """In-memory adjustment a matching rule makes to one payer's coverage."""

    kind: EffectKind
    rule_id: Any
    rule_type: BusinessRuleType
    value: Any = None
    reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.kind == EffectKind.REJECT


@dataclass(frozen=True)
class Action:
    """Parsed rule action."""

    name: str
    value: Any = None

    def apply(self, rule: BusinessRule, context: RuleContext) -> Optional[Effect]:
        """Effect this action produces in a context, if any."""
        if self.name == "set_coverage_percent":
            return Effect(EffectKind.OVERRIDE_PERCENT, rule.rule_id, rule.rule_type, value=self.value)
        if self.name == "set_max_payment":
            return Effect(EffectKind.OVERRIDE_CAP, rule.rule_id, rule.rule_type, value=self.value)
        if self.name == "set_deductible":
            return Effect(EffectKind.OVERRIDE_DEDUCTIBLE, rule.rule_id, rule.rule_type, value=self.value)
        if self.name == "reject":
            return Effect(EffectKind.REJECT, rule.rule_id, rule.rule_type, reason=self.value)
        if self.name == "validate_payment_limit":
            if context.service_amount > self.value:
                return Effect(
                    EffectKind.REJECT,
                    rule.rule_id,
                    rule.rule_type,
                    value=self.value,
                    reason=(
                        f"Service amount {context.service_amount:,} exceeds "
                        f"the allowed limit {self.value:,}"
                    ),
                )
            return None
        if self.name == "set_supplementary_applicable":
            if not self.value:
                return Effect(
                    EffectKind.SKIP_PAYER,
                    rule.rule_id,
                    rule.rule_type,
                    reason=rule.name or "Supplementary coverage not applicable",
                )
            return None
        raise InvalidRuleDefinition(f"Unknown action '{self.name}'", rule.rule_id)


@dataclass(frozen=True)
class CompiledRule:
    """A stored rule with its conditions and actions parsed."""

    rule: BusinessRule
    condition: Condition
    actions: tuple[Action, ...] = field(default_factory=tuple)

    def matches(self, context: RuleContext) -> bool:
        return self.condition.evaluate(context)

    def effects(self, context: RuleContext) -> list[Effect]:
        produced = (action.apply(self.rule, context) for action in self.actions)
        return [e for e in produced if e is not None]


# =============================================================================
# Parsing
# =============================================================================


def compile_rule(rule: BusinessRule) -> CompiledRule:
    """Parse a stored rule's conditions and actions."""
    try:
        condition = parse_condition(_decode(rule.conditions))
        actions = parse_actions(_decode(rule.actions))
    except InvalidRuleDefinition as e:
        if e.rule_id is None:
            raise InvalidRuleDefinition(e.detail, rule.rule_id) from e
        raise
    if not actions:
        raise InvalidRuleDefinition("Rule has no actions", rule.rule_id)
    return CompiledRule(rule=rule, condition=condition, actions=tuple(actions))


def _decode(raw: Any) -> Any:
    if isinstance(raw, (bytes, str)):
        if not raw.strip():
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidRuleDefinition(f"Malformed JSON: {e.msg}") from e
    return raw


def parse_condition(node: Any) -> Condition:
    """Parse a decoded condition node."""
    if node is None or node == {} or node == []:
        return Always()
    if isinstance(node, list):
        return AllOf(tuple(parse_condition(child) for child in node))
    if not isinstance(node, dict):
        raise InvalidRuleDefinition(f"Condition must be an object, got {type(node).__name__}")

    if "all" in node or "any" in node:
        key = "all" if "all" in node else "any"
        children = node[key]
        if len(node) != 1 or not isinstance(children, list):
            raise InvalidRuleDefinition(f"'{key}' takes a single list of conditions")
        parsed = tuple(parse_condition(child) for child in children)
        return AllOf(parsed) if key == "all" else AnyOf(parsed)

    if "not" in node:
        if len(node) != 1:
            raise InvalidRuleDefinition("'not' takes a single condition")
        return Not(parse_condition(node["not"]))

    if "field" in node:
        return _parse_compare(node["field"], node.get("op", "eq"), node.get("value"))

    # Shorthand: every key is a field
    parts: list[Condition] = []
    for field_name, expected in node.items():
        if isinstance(expected, dict):
            bounds = {"min": ConditionOperator.GTE, "max": ConditionOperator.LTE, "equals": ConditionOperator.EQ}
            unknown = set(expected) - set(bounds)
            if unknown:
                raise InvalidRuleDefinition(f"Unknown bound(s) {sorted(unknown)} on '{field_name}'")
            for bound, op in bounds.items():
                if bound in expected:
                    parts.append(_parse_compare(field_name, op.value, expected[bound]))
        elif isinstance(expected, list):
            parts.append(_parse_compare(field_name, "in", expected))
        else:
            parts.append(_parse_compare(field_name, "eq", expected))
    return parts[0] if len(parts) == 1 else AllOf(tuple(parts))


def _parse_compare(field_name: Any, op_name: Any, value: Any) -> Compare:
    if field_name not in CONDITION_FIELDS:
        raise InvalidRuleDefinition(f"Unknown condition field '{field_name}'")
    try:
        op = ConditionOperator(str(op_name).lower())
    except ValueError as e:
        raise InvalidRuleDefinition(f"Unknown operator '{op_name}'") from e

    if op in ORDERING_OPERATORS and field_name not in NUMERIC_FIELDS:
        raise InvalidRuleDefinition(f"'{op.value}' only applies to numeric fields, not '{field_name}'")

    if op in (ConditionOperator.IN, ConditionOperator.NOT_IN):
        if not isinstance(value, list):
            raise InvalidRuleDefinition(f"'{op.value}' on '{field_name}' needs a list")
        if field_name in NUMERIC_FIELDS:
            return Compare(field_name, op, tuple(_number(v, field_name) for v in value))
        return Compare(field_name, op, tuple(value))
    if op == ConditionOperator.BETWEEN:
        if not isinstance(value, list) or len(value) != 2:
            raise InvalidRuleDefinition(f"'between' on '{field_name}' needs [low, high]")
        low, high = (_number(v, field_name) for v in value)
        return Compare(field_name, op, (low, high))
    if value is None:
        raise InvalidRuleDefinition(f"Condition on '{field_name}' has no value")
    if op not in (ConditionOperator.EQ, ConditionOperator.NE) or field_name in NUMERIC_FIELDS:
        value = _number(value, field_name)
    return Compare(field_name, op, value)


def _number(value: Any, where: str) -> Decimal:
    if isinstance(value, bool):
        raise InvalidRuleDefinition(f"Expected a number for '{where}', got {value!r}")
    try:
        return to_decimal(value)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise InvalidRuleDefinition(f"Expected a number for '{where}', got {value!r}") from e


def parse_actions(node: Any) -> list[Action]:
    """Parse decoded actions (mapping or list of typed entries)."""
    if node is None:
        return []
    if isinstance(node, dict):
        items = list(node.items())
    elif isinstance(node, list):
        items = []
        for entry in node:
            if not isinstance(entry, dict) or "type" not in entry:
                raise InvalidRuleDefinition("List actions need a 'type'")
            items.append((entry["type"], entry.get("value", entry.get("reason"))))
    else:
        raise InvalidRuleDefinition(f"Actions must be an object or list, got {type(node).__name__}")
    return [_parse_action(str(name).lower(), value) for name, value in items]


def _parse_action(name: str, value: Any) -> Action:
    if name == "set_coverage_percent":
        percent = _number(value, name)
        if not Decimal("0") <= percent <= Decimal("100"):
            raise InvalidRuleDefinition(f"Coverage percent {percent} outside [0, 100]")
        return Action(name, percent)
    if name in ("set_max_payment", "set_deductible", "validate_payment_limit"):
        amount = round_minor(_number(value, name))
        if amount < 0:
            raise InvalidRuleDefinition(f"'{name}' cannot be negative")
        return Action(name, amount)
    if name == "reject":
        reason = str(value).strip() if value is not None else ""
        return Action(name, reason or "Rejected by business rule")
    if name == "set_supplementary_applicable":
        if not isinstance(value, bool):
            raise InvalidRuleDefinition(f"'{name}' needs true or false")
        return Action(name, value)
    raise InvalidRuleDefinition(f"Unknown action '{name}'")
