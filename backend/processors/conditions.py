"""Condition Evaluator - safe evaluation of connection conditions.

Conditions are plain JSON, never code:

    {"field": "data.amount", "operator": "gt", "value": 1000}
    {"logic": "or", "conditions": [{...}, {...}]}
    "variables.approved"            # dotted path, tested for truthiness
    true / false                    # literal

Field paths resolve against {"data", "variables", "context"}; a path whose
first segment is not one of those is looked up in ``data``.
"""

from typing import Any, Callable, Dict, Optional

import structlog

from core.constants import ConditionOperator

logger = structlog.get_logger(__name__)

NAMESPACES = ("data", "variables", "context")

OPERATOR_ALIASES = {
    "==": ConditionOperator.EQUALS,
    "equals": ConditionOperator.EQUALS,
    "!=": ConditionOperator.NOT_EQUALS,
    "not_equals": ConditionOperator.NOT_EQUALS,
    ">": ConditionOperator.GREATER_THAN,
    ">=": ConditionOperator.GREATER_THAN_OR_EQUALS,
    "<": ConditionOperator.LESS_THAN,
    "<=": ConditionOperator.LESS_THAN_OR_EQUALS,
}


class ConditionEvaluator:
    """
    Evaluate connection conditions.

    Uses a small JSON DSL - no eval() or exec(). Anything malformed
    evaluates to False.
    """

    def evaluate(self, condition: Any, scope: Dict[str, Any]) -> bool:
        """
        Evaluate one condition.

        Args:
            condition: Structured condition, condition group, dotted path or bool
            scope: {"data": ..., "variables": ..., "context": ...}

        Returns:
            True if the condition holds
        """
        if condition is None:
            return True
        if isinstance(condition, bool):
            return condition
        if isinstance(condition, str):
            return bool(self.resolve(condition, scope))
        if not isinstance(condition, dict):
            logger.warning("Unsupported condition shape", condition=repr(condition))
            return False

        if "conditions" in condition:
            return self._evaluate_group(condition, scope)
        return self._evaluate_single(condition, scope)

    def _evaluate_group(self, group: Dict[str, Any], scope: Dict[str, Any]) -> bool:
        members = group.get("conditions") or []
        if not isinstance(members, list):
            return False
        if not members:
            return True

        results = [self.evaluate(member, scope) for member in members]
        if str(group.get("logic", "and")).lower() == "or":
            return any(results)
        return all(results)

    def _evaluate_single(self, condition: Dict[str, Any], scope: Dict[str, Any]) -> bool:
        field = condition.get("field")
        if not isinstance(field, str) or not field:
            return False

        operator = self._operator(condition.get("operator", "eq"))
        if operator is None:
            logger.warning("Unknown condition operator", operator=condition.get("operator"))
            return False

        try:
            return self._compare(self.resolve(field, scope), operator, condition.get("value"))
        except Exception as e:
            logger.warning("Condition evaluation failed", field=field, error=str(e))
            return False  # Fail closed

    def _operator(self, raw: Any) -> Optional[ConditionOperator]:
        if isinstance(raw, ConditionOperator):
            return raw
        key = str(raw).strip().lower()
        if key in OPERATOR_ALIASES:
            return OPERATOR_ALIASES[key]
        try:
            return ConditionOperator(key)
        except ValueError:
            return None

    def resolve(self, path: str, scope: Dict[str, Any]) -> Any:
        """
        Get a value using dot notation.

        Example: "data.order.total" -> scope["data"]["order"]["total"]
        """
        parts = path.strip().split(".")
        value: Any = scope if parts[0] in NAMESPACES else scope.get("data", {})

        for part in parts:
            if isinstance(value, dict):
                value = value.get(part)
            elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
                value = value[int(part)]
            else:
                return None
        return value

    def _compare(self, field_value: Any, operator: ConditionOperator, compare_value: Any) -> bool:
        if operator == ConditionOperator.EQUALS:
            return field_value == compare_value

        elif operator == ConditionOperator.NOT_EQUALS:
            return field_value != compare_value

        elif operator == ConditionOperator.GREATER_THAN:
            return self._compare_numeric(field_value, compare_value, lambda a, b: a > b)

        elif operator == ConditionOperator.GREATER_THAN_OR_EQUALS:
            return self._compare_numeric(field_value, compare_value, lambda a, b: a >= b)

        elif operator == ConditionOperator.LESS_THAN:
            return self._compare_numeric(field_value, compare_value, lambda a, b: a < b)

        elif operator == ConditionOperator.LESS_THAN_OR_EQUALS:
            return self._compare_numeric(field_value, compare_value, lambda a, b: a <= b)

        elif operator == ConditionOperator.CONTAINS:
            if field_value is None:
                return False
            if isinstance(field_value, (list, dict)):
                return compare_value in field_value
            return str(compare_value) in str(field_value)

        elif operator == ConditionOperator.NOT_CONTAINS:
            return not self._compare(field_value, ConditionOperator.CONTAINS, compare_value)

        elif operator == ConditionOperator.IN:
            if not isinstance(compare_value, list):
                compare_value = [compare_value]
            return field_value in compare_value

        elif operator == ConditionOperator.NOT_IN:
            if not isinstance(compare_value, list):
                compare_value = [compare_value]
            return field_value not in compare_value

        elif operator == ConditionOperator.IS_EMPTY:
            return field_value in (None, "", [], {})

        elif operator == ConditionOperator.IS_NOT_EMPTY:
            return field_value not in (None, "", [], {})

        return False

    def _compare_numeric(
        self,
        field_value: Any,
        compare_value: Any,
        comparator: Callable[[float, float], bool],
    ) -> bool:
        if field_value is None or compare_value is None:
            return False
        if isinstance(field_value, bool) or isinstance(compare_value, bool):
            return False
        try:
            return comparator(float(field_value), float(compare_value))
        except (ValueError, TypeError):
            return False
