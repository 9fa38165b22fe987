"""Tests for the workflow graph model and structural validation."""

import pytest

from actions.registry import ActionRegistry
from core.constants import NodeType
from workflow.graph import WorkflowGraph, validate


def _graph(nodes, connections, **extra):
    return WorkflowGraph.from_dict({"nodes": nodes, "connections": connections, **extra})


START = {"id": "start", "type": "start"}
END = {"id": "done", "type": "end"}


@pytest.mark.unit
class TestGraphModel:
    """Parsing and traversal helpers."""

    def test_from_dict_parses_nodes_and_edges(self, age_definition):
        graph = WorkflowGraph.from_dict(age_definition)
        assert graph.start_node.id == "start"
        assert graph.get_node("welcome").type == NodeType.ACTION
        assert graph.get_node("welcome").action_id == "log"
        assert len(graph.edges) == 4

    def test_next_nodes_by_output_index(self, age_definition):
        graph = WorkflowGraph.from_dict(age_definition)
        assert graph.next_nodes("check_age", 0) == ["welcome"]
        assert graph.next_nodes("check_age", 1) == ["done"]
        assert graph.next_nodes("check_age", 2) == []

    def test_edge_accepts_source_target_spelling(self):
        graph = _graph([START, END], [{"source": "start", "target": "done"}])
        assert graph.next_nodes("start") == ["done"]

    def test_to_dict_round_trips_connections(self, age_definition):
        data = WorkflowGraph.from_dict(age_definition).to_dict()
        assert {"from": "check_age", "to": "done", "output_index": 1} in data["connections"]
        assert data["nodes"][0] == {"id": "start", "type": "start", "config": {}}

    def test_reachable_from(self, age_definition):
        graph = WorkflowGraph.from_dict(age_definition)
        assert graph.reachable_from("welcome") == {"welcome", "done"}

    def test_settings_are_kept_verbatim(self):
        graph = _graph([START, END], [{"from": "start", "to": "done"}], settings={"max_retries": 5})
        assert graph.settings == {"max_retries": 5}


@pytest.mark.unit
class TestValidation:
    """Every structural rule is reported, not just the first."""

    def test_valid_graph(self, age_definition):
        result = validate(WorkflowGraph.from_dict(age_definition), ActionRegistry())
        assert result.is_valid
        assert result.to_dict() == {"valid": True, "violations": []}

    def test_missing_start_and_end(self):
        result = validate(_graph([{"id": "a", "type": "action", "action_id": "log"}], []))
        assert {"single_start", "no_end"} <= result.codes

    def test_two_start_nodes(self):
        nodes = [START, {"id": "start2", "type": "start"}, END]
        result = validate(_graph(nodes, [{"from": "start", "to": "done"}, {"from": "start2", "to": "done"}]))
        assert "single_start" in result.codes

    def test_duplicate_node_id(self):
        result = validate(_graph([START, END, {"id": "done", "type": "end"}], [{"from": "start", "to": "done"}]))
        assert "duplicate_node_id" in result.codes

    def test_edge_to_unknown_node(self):
        result = validate(_graph([START, END], [
            {"from": "start", "to": "done"},
            {"from": "start", "to": "ghost", "output_index": 1},
        ]))
        assert "unknown_node" in result.codes

    def test_self_loop(self):
        node = {"id": "a", "type": "action", "action_id": "log"}
        result = validate(_graph([START, node, END], [
            {"from": "start", "to": "a"},
            {"from": "a", "to": "a"},
            {"from": "a", "to": "done", "output_index": 1},
        ]))
        assert "self_loop" in result.codes

    def test_two_edges_on_same_output(self):
        other = {"id": "other", "type": "end"}
        result = validate(_graph([START, END, other], [
            {"from": "start", "to": "done"},
            {"from": "start", "to": "other"},
        ]))
        assert "duplicate_output" in result.codes

    def test_end_with_outgoing_edge(self):
        node = {"id": "a", "type": "action", "action_id": "log"}
        result = validate(_graph([START, node, END], [
            {"from": "start", "to": "done"},
            {"from": "done", "to": "a"},
            {"from": "a", "to": "done", "output_index": 1},
        ]))
        assert "end_outgoing" in result.codes

    def test_start_with_incoming_edge(self):
        node = {"id": "a", "type": "action", "action_id": "log"}
        result = validate(_graph([START, node, END], [
            {"from": "start", "to": "a"},
            {"from": "a", "to": "start"},
            {"from": "a", "to": "done", "output_index": 1},
        ]))
        assert "start_incoming" in result.codes

    def test_end_unreachable(self):
        node = {"id": "a", "type": "action", "action_id": "log"}
        result = validate(_graph([START, node, END], [{"from": "start", "to": "a"}]))
        assert "end_unreachable" in result.codes

    def test_dead_end_branch(self):
        nodes = [
            START,
            {"id": "check", "type": "condition", "config": {"conditions": []}},
            {"id": "stuck", "type": "action", "action_id": "log"},
            END,
        ]
        result = validate(_graph(nodes, [
            {"from": "start", "to": "check"},
            {"from": "check", "to": "done", "output_index": 0},
            {"from": "check", "to": "stuck", "output_index": 1},
        ]))
        assert "dead_end" in result.codes
        assert any(v.node_id == "stuck" for v in result.violations)

    def test_unresolved_action(self):
        node = {"id": "a", "type": "action", "action_id": "fax_machine"}
        result = validate(
            _graph([START, node, END], [{"from": "start", "to": "a"}, {"from": "a", "to": "done"}]),
            ActionRegistry(),
        )
        assert "unresolved_action" in result.codes

    def test_action_without_id(self):
        node = {"id": "a", "type": "action"}
        result = validate(_graph([START, node, END], [{"from": "start", "to": "a"}, {"from": "a", "to": "done"}]))
        assert "missing_action_id" in result.codes

    def test_unknown_condition_operator(self):
        node = {
            "id": "check",
            "type": "condition",
            "config": {"conditions": [{"field": "age", "operator": "roughly", "value": 18}]},
        }
        result = validate(_graph([START, node, END], [
            {"from": "start", "to": "check"},
            {"from": "check", "to": "done"},
        ]))
        assert "unknown_operator" in result.codes

    def test_registry_is_optional(self):
        node = {"id": "a", "type": "action", "action_id": "fax_machine"}
        result = validate(_graph([START, node, END], [{"from": "start", "to": "a"}, {"from": "a", "to": "done"}]))
        assert result.is_valid

    @pytest.mark.parametrize("limit", [0, -5, 2.5, "100", True])
    def test_invalid_rate_limit_setting(self, limit):
        graph = _graph([START, END], [{"from": "start", "to": "done"}],
                       settings={"max_executions_per_hour": limit})
        assert "invalid_setting" in validate(graph).codes

    def test_rate_limit_setting_accepted(self):
        graph = _graph([START, END], [{"from": "start", "to": "done"}],
                       settings={"max_executions_per_hour": 50})
        assert validate(graph).is_valid
