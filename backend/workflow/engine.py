"""Workflow Execution Engine: graph interpreter.

This is the core of the automation engine. It takes a persisted
execution (a snapshot of the workflow graph plus its context) and walks
it node by node, handling:

- Built-in control flow (start, end, condition, delay)
- Action dispatch through the action registry
- Retry with exponential backoff for integration actions
- Duplicate suppression against the sync ledger
- Hard timeout per node dispatch
- Suspension for long delays and retries, resume on the next turn

One call to ``run_turn`` advances an execution until it completes, fails
or suspends. The caller must hold the execution lease for the duration
of the turn; the interpreter never yields control in the middle of one.

Workflow Definition Schema (the execution's ``workflow_snapshot``):
{
    "nodes": [
        {"id": "start", "type": "start"},
        {"id": "adult", "type": "condition",
         "config": {"conditions": [{"field": "age", "operator": "greater_than", "value": 18}]}},
        {"id": "welcome", "type": "action", "action_id": "send_email",
         "config": {"to": "{{submission.email}}", "subject": "Welcome {{submission.name}}"}},
        {"id": "wait", "type": "delay", "config": {"duration": 2, "unit": "hours"}},
        {"id": "done", "type": "end", "config": {"output": {"email": "{{submission.email}}"}}}
    ],
    "connections": [
        {"from": "start", "to": "adult"},
        {"from": "adult", "to": "welcome", "output_index": 0},
        {"from": "adult", "to": "done", "output_index": 1},
        ...
    ],
    "settings": {"max_retries": 3, "retry_delay_seconds": 60, "timeout_seconds": 300}
}
"""

import asyncio
import time
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional

import structlog

from app.config import get_settings
from core.constants import (
    REASON_RETRY,
    REASON_SCHEDULED_DELAY,
    ExecutionStatus,
    NodeType,
    SyncStatus,
)
from core.exceptions import AutomationError, NotFoundError, RetryExhausted
from core.logging_config import execution_log_context
from workflow.conditions import evaluate_conditions
from workflow.context import ContextStore
from workflow.graph import Node, WorkflowGraph
from workflow.ledger import SyncLedger
from workflow.results import Failure, NodeResult, Success, Waiting
from workflow.retry_strategies import RetryCoordinator, RetryPolicy
from workflow.state import ExecutionRecord, HistoryEntry, delay_seconds, utcnow
from workflow.store import ExecutionStore

logger = structlog.get_logger(__name__)

# Only these node types may suspend an execution
SUSPENDABLE_NODE_TYPES = (NodeType.ACTION, NodeType.DELAY)


class Interpreter:
    """Walks a workflow graph for one execution at a time.

    Storage ports are injected; the interpreter keeps no per-execution
    state between turns, so one instance serves every execution in the
    process.
    """

    def __init__(
        self,
        registry,
        store: ExecutionStore,
        ledger: SyncLedger,
        coordinator: Optional[RetryCoordinator] = None,
        *,
        inline_delay_threshold: Optional[float] = None,
        node_timeout: Optional[float] = None,
        max_node_visits: Optional[int] = None,
        default_policy: Optional[RetryPolicy] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        settings = get_settings()
        self._registry = registry
        self._store = store
        self._ledger = ledger
        self._coordinator = coordinator or RetryCoordinator()
        self._inline_delay_threshold = (
            inline_delay_threshold
            if inline_delay_threshold is not None
            else settings.INLINE_DELAY_THRESHOLD_SECONDS
        )
        self._node_timeout = node_timeout or settings.NODE_TIMEOUT_SECONDS
        self._max_node_visits = max_node_visits or settings.MAX_NODE_VISITS
        self._default_policy = default_policy or RetryPolicy(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            base_delay=settings.RETRY_BASE_DELAY_SECONDS,
        )
        self._sleep = sleep or asyncio.sleep

    # ─── Turn ──────────────────────────────────────────────────

    async def run_turn(self, execution_id: str) -> ExecutionRecord:
        """Advance one execution until it completes, fails or suspends.

        A waiting execution is resumed: after a ``retry`` wait the same
        node is dispatched again, after any other wait the node counts as
        done and the walk continues along its default edge.

        Returns the execution as stored after the turn.
        """
        record = await self._store.get(execution_id)
        if record is None:
            raise NotFoundError(f"Execution {execution_id} not found")

        with execution_log_context(record.id, record.workflow_id):
            if record.status == ExecutionStatus.CANCELLED:
                logger.info("turn_skipped", reason="cancelled")
                return record
            if record.is_terminal:
                logger.info("turn_skipped", reason=record.status.value)
                return record

            try:
                return await self._walk(record)
            finally:
                self._coordinator.forget(record.id)

    async def _walk(self, record: ExecutionRecord) -> ExecutionRecord:
        graph = WorkflowGraph.from_dict(record.workflow_snapshot)
        context = ContextStore.from_snapshot(record.context)
        settings = self._workflow_settings(graph)
        policy = RetryPolicy.from_settings(settings, self._default_policy)
        timeout = float(settings["timeout_seconds"])
        self._coordinator.load(record.id, record.attempt_counters)

        node_id = record.current_node_id
        if node_id is None:
            start = graph.start_node
            if start is None:
                return await self._fail(record, context, None, Failure("Workflow has no start node"))
            node_id = start.id

        pending: Optional[NodeResult] = None
        redispatch_node: Optional[str] = None
        if record.status == ExecutionStatus.WAITING or record.is_claimed:
            pending = self._resume_result(record, node_id)
            if pending is None:
                redispatch_node = node_id
            logger.info(
                "execution_resumed",
                node_id=node_id,
                reason=record.waiting_reason,
                redispatch=pending is None,
            )
            record.status = ExecutionStatus.RUNNING
            record.resume_after = None
            record.waiting_reason = None

        visits = 0
        while True:
            if visits >= self._max_node_visits:
                return await self._fail(
                    record, context, None,
                    Failure(f"Node visit limit of {self._max_node_visits} exceeded"),
                )
            visits += 1

            node = graph.get_node(node_id)
            if node is None:
                return await self._fail(
                    record, context, None, Failure(f"Node '{node_id}' does not exist in workflow")
                )

            revisited = record.visited(node.id)
            started = time.monotonic()
            if pending is not None:
                result, pending = pending, None
            else:
                logger.debug("node_dispatched", node_id=node.id, node_type=node.type.value)
                result = await self._dispatch(
                    record, node, context, policy, timeout, redispatch=node.id == redispatch_node
                )
                redispatch_node = None

            if isinstance(result, Waiting) and node.type not in SUSPENDABLE_NODE_TYPES:
                result = Failure(f"Node type '{node.type.value}' cannot suspend the execution")

            if isinstance(result, Success):
                try:
                    self._store_output(node, context, result, revisited)
                except AutomationError as e:
                    result = Failure(e.message)

            record.current_node_id = node.id
            record.history.append(HistoryEntry(
                node_id=node.id,
                node_type=node.type.value,
                result=result.to_dict(),
                duration_ms=int((time.monotonic() - started) * 1000),
            ))

            if isinstance(result, Waiting):
                return await self._suspend(record, context, node, result)
            if isinstance(result, Failure):
                return await self._fail(record, context, node, result)

            if node.type == NodeType.END:
                return await self._complete(record, context, node, result)

            next_id = self._select_next(graph, node, result)
            if next_id is None:
                return await self._fail(
                    record, context, node,
                    Failure(f"No connection leaves node '{node.id}' on output {result.output_index}"),
                )
            node_id = next_id

    def _workflow_settings(self, graph: WorkflowGraph) -> dict:
        return {
            "max_retries": self._default_policy.max_attempts,
            "retry_delay_seconds": self._default_policy.base_delay,
            "timeout_seconds": self._node_timeout,
            **graph.settings,
        }

    @staticmethod
    def _resume_result(record: ExecutionRecord, node_id: str) -> Optional[NodeResult]:
        """Result that completes a waiting node, or None to dispatch it again."""
        if record.waiting_reason == REASON_RETRY:
            return None
        waited = 0.0
        for entry in reversed(record.history):
            if entry.node_id == node_id and entry.result.get("kind") == Waiting.kind:
                waited = float(entry.result.get("resume_after") or 0)
                break
        return Success(output={"waited_seconds": waited})

    @staticmethod
    def _select_next(graph: WorkflowGraph, node: Node, result: Success) -> Optional[str]:
        targets = graph.next_nodes(node.id, result.output_index)
        if not targets and node.type == NodeType.ACTION and result.output_index > 1:
            targets = graph.next_nodes(node.id, 0)
        return targets[0] if targets else None

    @staticmethod
    def _store_output(node: Node, context: ContextStore, result: Success, revisited: bool) -> None:
        context.set(node.id, result.output, override=revisited)
        variable = node.config.get("output_variable") if node.type == NodeType.ACTION else None
        if variable:
            context.set(str(variable), result.output, override=revisited)

    # ─── Dispatch ──────────────────────────────────────────────

    async def _dispatch(
        self,
        record: ExecutionRecord,
        node: Node,
        context: ContextStore,
        policy: RetryPolicy,
        timeout: float,
        redispatch: bool = False,
    ) -> NodeResult:
        """Run one node. Never raises; every error becomes a Failure."""
        try:
            if node.type == NodeType.ACTION:
                return await self._dispatch_action(record, node, context, policy, timeout, redispatch)
            return await self._with_timeout(self._run_builtin(node, context), node, timeout)
        except Exception as e:
            logger.error("node_crashed", node_id=node.id, error=str(e), exc_info=True)
            return Failure(message=str(e) or type(e).__name__, retryable=False)

    async def _with_timeout(self, awaitable: Awaitable[NodeResult], node: Node, timeout: float) -> NodeResult:
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("node_timed_out", node_id=node.id, timeout=timeout)
            return Failure(message=f"Node '{node.id}' timed out after {timeout}s", retryable=True)

    async def _run_builtin(self, node: Node, context: ContextStore) -> NodeResult:
        if node.type == NodeType.START:
            return Success()

        if node.type == NodeType.END:
            return Success(output=context.resolve_config(node.config.get("output") or {}))

        if node.type == NodeType.CONDITION:
            index = evaluate_conditions(node.config.get("conditions") or [], context)
            return Success(output={"result": index == 0}, output_index=index)

        if node.type == NodeType.DELAY:
            config = context.resolve_config(node.config)
            seconds = delay_seconds(config.get("duration", 0), config.get("unit") or "seconds")
            if seconds > self._inline_delay_threshold:
                return Waiting(resume_after=seconds, reason=REASON_SCHEDULED_DELAY)
            await self._sleep(seconds)
            return Success(output={"delayed_seconds": seconds})

        return Failure(message=f"Unsupported node type: {node.type.value}")

    async def _dispatch_action(
        self,
        record: ExecutionRecord,
        node: Node,
        context: ContextStore,
        policy: RetryPolicy,
        timeout: float,
        redispatch: bool = False,
    ) -> NodeResult:
        action = self._registry.resolve(node.action_id)
        config = context.resolve_config(node.config)
        view = context.view()
        integration_id = getattr(action, "integration_id", None)
        attempt_number = self._coordinator.count(record.id, node.id) + 1

        # A node sent again after a retry or an interrupted turn may already have been accepted
        if integration_id and (redispatch or attempt_number > 1):
            prior = await self._ledger.latest_status(record.submission_id, integration_id)
            if prior is not None and prior.status == SyncStatus.SUCCESS:
                await self._ledger.record(
                    record.submission_id,
                    integration_id,
                    SyncStatus.SKIPPED,
                    external_id=prior.external_id,
                    attempt_number=attempt_number,
                )
                self._coordinator.reset(record.id, node.id)
                logger.info(
                    "integration_duplicate_skipped",
                    node_id=node.id,
                    integration_id=integration_id,
                    external_id=prior.external_id,
                )
                return Success(output={"external_id": prior.external_id, "duplicate": True})

        async def operation() -> NodeResult:
            result = await self._with_timeout(action.run(config, view), node, timeout)
            if integration_id:
                await self._record_attempt(record, integration_id, result, attempt_number)
            return result

        if action.retryable:
            return await self._coordinator.attempt(record.id, node.id, operation, policy)
        return await operation()

    async def _record_attempt(
        self,
        record: ExecutionRecord,
        integration_id: str,
        result: NodeResult,
        attempt_number: int,
    ) -> None:
        if isinstance(result, Success):
            external_id = result.output.get("external_id")
            await self._ledger.record(
                record.submission_id,
                integration_id,
                SyncStatus.SUCCESS,
                external_id=str(external_id) if external_id is not None else None,
                attempt_number=attempt_number,
            )
        elif isinstance(result, Failure):
            await self._ledger.record(
                record.submission_id,
                integration_id,
                SyncStatus.FAILED,
                error=result.message,
                attempt_number=attempt_number,
            )

    # ─── Transitions ───────────────────────────────────────────

    async def _suspend(
        self, record: ExecutionRecord, context: ContextStore, node: Node, result: Waiting
    ) -> ExecutionRecord:
        record.status = ExecutionStatus.WAITING
        record.resume_after = utcnow() + timedelta(seconds=result.resume_after)
        record.waiting_reason = result.reason
        logger.info(
            "execution_waiting",
            node_id=node.id,
            reason=result.reason,
            resume_after=record.resume_after.isoformat(),
        )
        return await self._persist(record, context)

    async def _fail(
        self,
        record: ExecutionRecord,
        context: ContextStore,
        node: Optional[Node],
        result: Failure,
    ) -> ExecutionRecord:
        error = result.message
        if node is not None and result.retryable and self._was_retried(node):
            error = RetryExhausted(
                node.id, self._coordinator.count(record.id, node.id), result.message
            ).message

        record.status = ExecutionStatus.FAILED
        record.error = error
        record.resume_after = None
        record.waiting_reason = None
        self._finish(record)
        logger.warning("execution_failed", node_id=node.id if node else None, error=error)
        return await self._persist(record, context)

    async def _complete(
        self, record: ExecutionRecord, context: ContextStore, node: Node, result: Success
    ) -> ExecutionRecord:
        record.status = ExecutionStatus.COMPLETED
        record.output = result.output
        self._finish(record)
        logger.info("execution_completed", node_id=node.id, duration_ms=record.duration_ms)
        return await self._persist(record, context)

    def _was_retried(self, node: Node) -> bool:
        if node.type != NodeType.ACTION:
            return False
        action = self._registry.get(node.action_id)
        return bool(action is not None and action.retryable)

    @staticmethod
    def _finish(record: ExecutionRecord) -> None:
        record.completed_at = utcnow()
        record.duration_ms = int((record.completed_at - record.started_at).total_seconds() * 1000)

    async def _persist(self, record: ExecutionRecord, context: ContextStore) -> ExecutionRecord:
        record.context = context.snapshot()
        record.attempt_counters = self._coordinator.export(record.id)
        if await self._store.save(record):
            return record

        # Cancelled while the turn was in flight; the cancellation stands
        logger.info("turn_discarded", reason="cancelled")
        stored = await self._store.get(record.id)
        return stored or record
