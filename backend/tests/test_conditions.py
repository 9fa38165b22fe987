"""Tests for condition node predicates."""

import pytest

from workflow.conditions import OPERATORS, evaluate_conditions, evaluate_predicate
from workflow.context import ContextStore


@pytest.fixture
def context():
    store = ContextStore()
    store.set("submission", {"age": "21", "country": "UK", "interests": ["music", "art"], "phone": None})
    store.set("threshold", 18)
    return store


@pytest.mark.unit
class TestOperators:

    @pytest.mark.parametrize("operator,field,value,expected", [
        ("equals", "country", "UK", True),
        ("equals", "age", 21, True),
        ("not_equals", "country", "FR", True),
        ("greater_than", "age", 18, True),
        ("greater_than", "age", 30, False),
        ("less_than", "age", 30, True),
        ("greater_than", "country", 1, False),
        ("contains", "interests", "art", True),
        ("contains", "country", "K", True),
        ("contains", "interests", "sport", False),
        ("is_null", "phone", None, True),
        ("is_null", "missing_field", None, True),
        ("is_not_null", "country", None, True),
    ])
    def test_operator(self, context, operator, field, value, expected):
        predicate = {"field": field, "operator": operator, "value": value}
        assert evaluate_predicate(predicate, context) is expected

    def test_all_operators_registered(self):
        assert set(OPERATORS) == {
            "equals", "not_equals", "greater_than", "less_than",
            "contains", "is_null", "is_not_null",
        }

    def test_unknown_operator_raises(self, context):
        with pytest.raises(ValueError):
            evaluate_predicate({"field": "age", "operator": "between"}, context)


@pytest.mark.unit
class TestFieldResolution:

    def test_full_path(self, context):
        assert evaluate_predicate(
            {"field": "submission.country", "operator": "equals", "value": "UK"}, context
        )

    def test_template_field(self, context):
        assert evaluate_predicate(
            {"field": "{{submission.country}}", "operator": "equals", "value": "UK"}, context
        )

    def test_value_is_resolved_from_context(self, context):
        assert evaluate_predicate(
            {"field": "age", "operator": "greater_than", "value": "{{threshold}}"}, context
        )


@pytest.mark.unit
class TestEvaluateConditions:

    def test_all_must_pass(self, context):
        predicates = [
            {"field": "age", "operator": "greater_than", "value": 18},
            {"field": "country", "operator": "equals", "value": "UK"},
        ]
        assert evaluate_conditions(predicates, context) == 0

    def test_any_failure_picks_false_output(self, context):
        predicates = [
            {"field": "age", "operator": "greater_than", "value": 18},
            {"field": "country", "operator": "equals", "value": "FR"},
        ]
        assert evaluate_conditions(predicates, context) == 1

    def test_empty_list_passes(self, context):
        assert evaluate_conditions([], context) == 0
