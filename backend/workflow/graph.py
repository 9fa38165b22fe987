"""Workflow graph model.

A workflow definition is a JSON document of nodes and connections:

    {
        "nodes": [
            {"id": "start", "type": "start"},
            {"id": "check", "type": "condition",
             "config": {"conditions": [{"field": "age", "operator": "greater_than", "value": 18}]}},
            {"id": "mail", "type": "action", "action_id": "send_email", "config": {...}},
            {"id": "done", "type": "end"}
        ],
        "connections": [
            {"from": "start", "to": "check"},
            {"from": "check", "to": "mail", "output_index": 0},
            ...
        ],
        "settings": {"max_retries": 3, "retry_delay_seconds": 60, "timeout_seconds": 300}
    }

The graph is immutable for the lifetime of an execution; ``validate`` and
``next_nodes`` are pure functions over it.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Optional

from core.constants import NodeType, WorkflowStatus
from workflow.conditions import OPERATORS


# ─── Graph Types ───────────────────────────────────────────────


@dataclass(frozen=True)
class Node:
    id: str
    type: NodeType
    action_id: Optional[str] = None
    config: dict[str, Any] = field(default_factory=dict)
    position: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = {"id": self.id, "type": self.type.value, "config": self.config}
        if self.action_id:
            data["action_id"] = self.action_id
        if self.position:
            data["position"] = self.position
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Node":
        return cls(
            id=str(data["id"]),
            type=NodeType(data.get("type", NodeType.ACTION.value)),
            action_id=data.get("action_id"),
            config=dict(data.get("config") or {}),
            position=dict(data.get("position") or {}),
        )


@dataclass(frozen=True)
class Edge:
    source: str
    target: str
    output_index: int = 0

    def to_dict(self) -> dict:
        return {"from": self.source, "to": self.target, "output_index": self.output_index}

    @classmethod
    def from_dict(cls, data: dict) -> "Edge":
        return cls(
            source=str(data.get("from", data.get("source"))),
            target=str(data.get("to", data.get("target"))),
            output_index=int(data.get("output_index", 0)),
        )


@dataclass(frozen=True)
class Violation:
    """One broken structural invariant."""

    code: str
    message: str
    node_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "node_id": self.node_id}


@dataclass
class ValidationResult:
    violations: list[Violation] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.violations

    @property
    def codes(self) -> set[str]:
        return {v.code for v in self.violations}

    def add(self, code: str, message: str, node_id: Optional[str] = None) -> None:
        self.violations.append(Violation(code=code, message=message, node_id=node_id))

    def to_dict(self) -> dict:
        return {
            "valid": self.is_valid,
            "violations": [v.to_dict() for v in self.violations],
        }


# ─── Workflow Graph ────────────────────────────────────────────


class WorkflowGraph:
    """Nodes and edges of one workflow, indexed for traversal."""

    def __init__(
        self,
        nodes: list[Node],
        edges: list[Edge],
        name: str = "",
        status: WorkflowStatus = WorkflowStatus.DRAFT,
        settings: Optional[dict] = None,
    ):
        self.nodes = list(nodes)
        self.edges = list(edges)
        self.name = name
        self.status = status
        self.settings = dict(settings or {})

        self._by_id: dict[str, Node] = {}
        for node in self.nodes:
            self._by_id.setdefault(node.id, node)

        self._outgoing: dict[str, list[Edge]] = {}
        self._incoming: dict[str, list[Edge]] = {}
        for edge in self.edges:
            self._outgoing.setdefault(edge.source, []).append(edge)
            self._incoming.setdefault(edge.target, []).append(edge)

    # ─── Lookup ────────────────────────────────────────────

    def get_node(self, node_id: str) -> Optional[Node]:
        return self._by_id.get(node_id)

    def outgoing(self, node_id: str) -> list[Edge]:
        return list(self._outgoing.get(node_id, []))

    def incoming(self, node_id: str) -> list[Edge]:
        return list(self._incoming.get(node_id, []))

    def nodes_of_type(self, node_type: NodeType) -> list[Node]:
        return [n for n in self.nodes if n.type == node_type]

    @property
    def start_node(self) -> Optional[Node]:
        starts = self.nodes_of_type(NodeType.START)
        return starts[0] if len(starts) == 1 else None

    def next_nodes(self, node_id: str, output_index: int = 0) -> list[str]:
        """Target node ids of the edges leaving ``node_id`` on ``output_index``."""
        return [e.target for e in self._outgoing.get(node_id, []) if e.output_index == output_index]

    def reachable_from(self, node_id: str) -> set[str]:
        """All node ids reachable from ``node_id`` (inclusive)."""
        seen: set[str] = set()
        queue: deque[str] = deque([node_id])
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            for edge in self._outgoing.get(current, []):
                if edge.target not in seen:
                    queue.append(edge.target)
        return seen

    # ─── Serialization ─────────────────────────────────────

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "status": self.status.value,
            "nodes": [n.to_dict() for n in self.nodes],
            "connections": [e.to_dict() for e in self.edges],
            "settings": dict(self.settings),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WorkflowGraph":
        status = data.get("status") or WorkflowStatus.DRAFT.value
        return cls(
            nodes=[Node.from_dict(n) for n in data.get("nodes", [])],
            edges=[Edge.from_dict(e) for e in data.get("connections", data.get("edges", []))],
            name=data.get("name", ""),
            status=WorkflowStatus(status),
            settings=data.get("settings"),
        )


# ─── Validation ────────────────────────────────────────────────


def validate(graph: WorkflowGraph, registry=None) -> ValidationResult:
    """Check the structural invariants of ``graph``.

    Returns every violation found instead of raising, so the same call
    serves the builder on save and the engine before a run. When a
    ``registry`` is given, action ids must resolve in it.
    """
    result = ValidationResult()

    seen_ids: set[str] = set()
    for node in graph.nodes:
        if node.id in seen_ids:
            result.add("duplicate_node_id", f"Node id '{node.id}' is used more than once", node.id)
        seen_ids.add(node.id)

    starts = graph.nodes_of_type(NodeType.START)
    if len(starts) != 1:
        result.add("single_start", f"Workflow must have exactly one start node, found {len(starts)}")

    if not graph.nodes_of_type(NodeType.END):
        result.add("no_end", "Workflow has no end node")

    for edge in graph.edges:
        if edge.source not in seen_ids or edge.target not in seen_ids:
            result.add(
                "unknown_node",
                f"Connection {edge.source} -> {edge.target} references a missing node",
                edge.source,
            )
        if edge.source == edge.target:
            result.add("self_loop", f"Node '{edge.source}' connects to itself", edge.source)
        if edge.output_index < 0:
            result.add("invalid_output_index", f"Negative output index on '{edge.source}'", edge.source)

    for node in graph.nodes:
        indexes = [e.output_index for e in graph.outgoing(node.id)]
        for index in sorted(set(indexes)):
            if indexes.count(index) > 1:
                result.add(
                    "duplicate_output",
                    f"Node '{node.id}' has {indexes.count(index)} edges on output {index}",
                    node.id,
                )

        if node.type == NodeType.START and graph.incoming(node.id):
            result.add("start_incoming", "Start node must not have incoming connections", node.id)
        if node.type == NodeType.END and graph.outgoing(node.id):
            result.add("end_outgoing", f"End node '{node.id}' must not have outgoing connections", node.id)

        if node.type == NodeType.ACTION:
            _check_action(node, registry, result)
        elif node.type == NodeType.CONDITION:
            _check_condition(node, result)

    if len(starts) == 1:
        _check_reachability(graph, starts[0], result)

    _check_settings(graph.settings, result)

    return result


def _check_settings(settings: dict, result: ValidationResult) -> None:
    limit = settings.get("max_executions_per_hour")
    if limit is None:
        return
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        result.add(
            "invalid_setting",
            f"max_executions_per_hour must be a positive integer, got {limit!r}",
        )


def _check_action(node: Node, registry, result: ValidationResult) -> None:
    if not node.action_id:
        result.add("missing_action_id", f"Action node '{node.id}' has no action_id", node.id)
    elif registry is not None and node.action_id not in registry:
        result.add(
            "unresolved_action",
            f"Action '{node.action_id}' on node '{node.id}' is not registered",
            node.id,
        )


def _check_condition(node: Node, result: ValidationResult) -> None:
    for predicate in node.config.get("conditions") or []:
        operator = predicate.get("operator") if isinstance(predicate, dict) else None
        if operator not in OPERATORS:
            result.add(
                "unknown_operator",
                f"Condition on node '{node.id}' uses unsupported operator {operator!r}",
                node.id,
            )


def _check_reachability(graph: WorkflowGraph, start: Node, result: ValidationResult) -> None:
    reachable = graph.reachable_from(start.id)
    ends = {n.id for n in graph.nodes_of_type(NodeType.END)}

    if not reachable & ends:
        result.add("end_unreachable", "No end node is reachable from the start node", start.id)
        return

    for node_id in sorted(reachable):
        node = graph.get_node(node_id)
        if node is None or node.type == NodeType.END:
            continue
        if not graph.outgoing(node_id):
            result.add("dead_end", f"Node '{node_id}' has no outgoing connection", node_id)
        elif not graph.reachable_from(node_id) & ends:
            result.add("dead_end", f"No end node is reachable from '{node_id}'", node_id)
