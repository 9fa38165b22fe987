"""Condition node predicates.

A condition node carries a list of predicates:

    {"conditions": [
        {"field": "submission.age", "operator": "greater_than", "value": 18},
        {"field": "submission.email", "operator": "is_not_null"}
    ]}

All predicates must pass (AND). An empty list passes.
"""

from typing import Any, Callable, Optional

from core.constants import SUBMISSION_ROOT


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _equals(actual: Any, expected: Any) -> bool:
    # Loose comparison: form values arrive as strings, configs as numbers
    if actual == expected:
        return True
    left, right = _to_number(actual), _to_number(expected)
    if left is not None and right is not None:
        return left == right
    if actual is None or expected is None:
        return False
    return str(actual) == str(expected)


def _greater_than(actual: Any, expected: Any) -> bool:
    left, right = _to_number(actual), _to_number(expected)
    return left is not None and right is not None and left > right


def _less_than(actual: Any, expected: Any) -> bool:
    left, right = _to_number(actual), _to_number(expected)
    return left is not None and right is not None and left < right


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str):
        return expected is not None and str(expected) in actual
    if isinstance(actual, (list, tuple, set)):
        return any(_equals(item, expected) for item in actual)
    if isinstance(actual, dict):
        return expected in actual
    return False


OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "equals": _equals,
    "not_equals": lambda a, b: not _equals(a, b),
    "greater_than": _greater_than,
    "less_than": _less_than,
    "contains": _contains,
    "is_null": lambda a, _b: a is None,
    "is_not_null": lambda a, _b: a is not None,
}


def _field_path(field: str) -> str:
    path = field.strip()
    if path.startswith("{{") and path.endswith("}}"):
        path = path[2:-2].strip()
    return path


def field_value(context, field: str) -> Any:
    """Look ``field`` up in the context.

    Bare submission field names ("age") fall back to ``submission.age``.
    """
    path = _field_path(field)
    if context.has(path):
        return context.get(path)
    return context.get(f"{SUBMISSION_ROOT}.{path}")


def evaluate_predicate(predicate: dict, context) -> bool:
    operator = predicate.get("operator", "equals")
    compare = OPERATORS.get(operator)
    if compare is None:
        raise ValueError(f"Unsupported condition operator: {operator!r}")

    actual = field_value(context, str(predicate.get("field", "")))
    expected = context.resolve_value(predicate.get("value"))
    return compare(actual, expected)


def evaluate_conditions(predicates: list[dict], context) -> int:
    """Evaluate a condition node; returns the output index (0 true, 1 false)."""
    for predicate in predicates or []:
        if not evaluate_predicate(predicate, context):
            return 1
    return 0
