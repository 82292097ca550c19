"""Condition evaluation against events, profiles, sessions and items."""

import re
import operator
from typing import Any, Callable

from ..core.errors import RuleError
from .model import Condition


ConditionEvaluatorFunc = Callable[[Condition, Any], bool]


class ConditionEvaluator:
    """
    Evaluates resolved condition trees against a subject.

    Dispatch is on the ``evaluator`` name of each node's resolved type; a node
    whose type is unresolved never matches.

    Supports:
    - Boolean composition (and, or) over ``subConditions``
    - Event type checks
    - Property comparisons (equals, greaterThan, contains, in, ...)
    - Existence checks (exists, missing)
    - Regex matching
    """

    OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
        "equals": operator.eq,
        "notEquals": operator.ne,
        "greaterThan": operator.gt,
        "lessThan": operator.lt,
        "greaterThanOrEqualTo": operator.ge,
        "lessThanOrEqualTo": operator.le,
        "contains": lambda a, b: b in a if hasattr(a, "__contains__") else False,
        "startsWith": lambda a, b: str(a).startswith(str(b)),
        "endsWith": lambda a, b: str(a).endswith(str(b)),
        "in": lambda a, b: a in b if hasattr(b, "__contains__") else False,
        "notIn": lambda a, b: a not in b if hasattr(b, "__contains__") else True,
    }

    # Operators that can hold for a missing property
    NULL_SAFE_OPERATORS = {"notEquals", "notIn", "missing"}

    def __init__(self):
        self._evaluators: dict[str, ConditionEvaluatorFunc] = {
            "boolean": self._evaluate_boolean,
            "eventType": self._evaluate_event_type,
            "property": self._evaluate_property,
            "matchAll": lambda condition, subject: True,
        }

    def register_evaluator(self, name: str, func: ConditionEvaluatorFunc) -> None:
        """Register a custom evaluator for condition types naming it."""
        self._evaluators[name] = func

    def evaluate(self, condition: Condition, subject: Any) -> bool:
        """Evaluate a (resolved) condition tree against ``subject``."""
        condition_type = condition.condition_type
        if condition_type is None or condition_type.evaluator is None:
            return False

        func = self._evaluators.get(condition_type.evaluator)
        if not func:
            raise RuleError(f"Unknown condition evaluator: {condition_type.evaluator}")
        return func(condition, subject)

    def _evaluate_boolean(self, condition: Condition, subject: Any) -> bool:
        op = condition.operator
        if op == "and":
            return all(self.evaluate(c, subject) for c in condition.sub_conditions)
        if op == "or":
            return any(self.evaluate(c, subject) for c in condition.sub_conditions)
        raise RuleError(f"Unknown boolean operator: {op}")

    def _evaluate_event_type(self, condition: Condition, subject: Any) -> bool:
        expected = condition.parameter_values.get("eventTypeId")
        return getattr(subject, "event_type", None) == expected

    def _evaluate_property(self, condition: Condition, subject: Any) -> bool:
        params = condition.parameter_values
        property_name = params.get("propertyName")
        if not property_name:
            raise RuleError(f"Condition missing 'propertyName': {condition.condition_type_id}")

        value = self._navigate_path(subject, property_name.split("."))
        op = params.get("comparisonOperator", "equals")

        # Existence checks
        if op == "exists":
            return value is not None

        if op == "missing":
            return value is None

        if value is None and op not in self.NULL_SAFE_OPERATORS:
            return False

        # Regex match
        if op == "matchesRegex":
            pattern = params.get("propertyValue", "")
            try:
                return bool(re.search(pattern, str(value)))
            except re.error as e:
                raise RuleError(f"Invalid regex pattern: {pattern} - {e}")

        if op in ("in", "notIn"):
            expected = params.get("propertyValues", params.get("propertyValue"))
        else:
            expected = params.get("propertyValue")

        op_func = self.OPERATORS.get(op)
        if not op_func:
            raise RuleError(f"Unknown operator: {op}")

        try:
            return op_func(value, expected)
        except Exception as e:
            raise RuleError(f"Error evaluating condition: {e}")

    def _navigate_path(self, data: Any, path: list[str]) -> Any:
        """Navigate a dot-separated path through dicts, lists and attributes."""
        current = data
        for part in path:
            if current is None:
                return None

            if isinstance(current, dict):
                current = current.get(part)
            elif isinstance(current, (list, tuple)):
                try:
                    index = int(part)
                    current = current[index] if 0 <= index < len(current) else None
                except ValueError:
                    return None
            elif hasattr(current, part):
                current = getattr(current, part)
            else:
                return None

        return current
