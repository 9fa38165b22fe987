"""Automation service: workflows, executions and sync history.

Wires the storage ports, action registry, retry coordinator, interpreter
and scheduler together and is the only entry point the API routes and
Celery tasks use.
"""

import logging
from datetime import timedelta
from typing import Any, Optional
from uuid import uuid4

from actions.registry import ActionRegistry, get_action_registry
from app.config import get_settings
from core.constants import SUBMISSION_ROOT, SYSTEM_ROOT, ExecutionStatus, WorkflowStatus
from core.exceptions import ConflictError, NotFoundError, RateLimitExceededError, ValidationError
from core.rate_limit import InMemoryRateLimiter, RateLimiter, create_rate_limiter
from workflow.context import ContextStore
from workflow.engine import Interpreter
from workflow.graph import ValidationResult, WorkflowGraph, validate
from workflow.lease import InMemoryLeaseManager, LeaseManager, create_lease_manager
from workflow.ledger import InMemorySyncLedger, SqlSyncLedger, SyncLedger, SyncRecord
from workflow.retry_strategies import RetryCoordinator
from workflow.scheduler import Scheduler
from workflow.state import ExecutionRecord, utcnow
from workflow.store import (
    ExecutionStore,
    InMemoryExecutionStore,
    InMemoryWorkflowStore,
    SqlExecutionStore,
    SqlWorkflowStore,
    StoredWorkflow,
    WorkflowStore,
)

logger = logging.getLogger(__name__)


def submission_id_for(payload: dict, execution_id: str) -> str:
    """``payload["id"]``, else ``payload["submission_id"]``, else the execution id."""
    for key in ("id", "submission_id"):
        value = payload.get(key)
        if value not in (None, ""):
            return str(value)
    return execution_id


class AutomationService:
    """Service facade over the execution engine."""

    def __init__(
        self,
        workflows: WorkflowStore,
        executions: ExecutionStore,
        ledger: SyncLedger,
        lease: LeaseManager,
        rate_limiter: Optional[RateLimiter] = None,
        registry: Optional[ActionRegistry] = None,
        coordinator: Optional[RetryCoordinator] = None,
        interpreter: Optional[Interpreter] = None,
    ):
        settings = get_settings()
        self.workflows = workflows
        self.executions = executions
        self.ledger = ledger
        self.lease = lease
        self.rate_limiter = rate_limiter or InMemoryRateLimiter()
        self.registry = registry or get_action_registry()
        self.interpreter = interpreter or Interpreter(
            registry=self.registry,
            store=executions,
            ledger=ledger,
            coordinator=coordinator or RetryCoordinator(),
        )
        self.scheduler = Scheduler(
            executions, self.interpreter, lease, batch_size=settings.SCHEDULER_BATCH_SIZE
        )

    @classmethod
    def in_memory(cls, **kwargs) -> "AutomationService":
        """Service backed by process-local stores."""
        return cls(
            workflows=kwargs.pop("workflows", None) or InMemoryWorkflowStore(),
            executions=kwargs.pop("executions", None) or InMemoryExecutionStore(),
            ledger=kwargs.pop("ledger", None) or InMemorySyncLedger(),
            lease=kwargs.pop("lease", None) or InMemoryLeaseManager(),
            **kwargs,
        )

    # ─── Workflows ─────────────────────────────────────────

    def validate_workflow(self, definition: dict) -> ValidationResult:
        """Structural check of a workflow definition against the registry."""
        return validate(WorkflowGraph.from_dict(definition or {}), self.registry)

    def _require_valid(self, graph: WorkflowGraph) -> None:
        result = validate(graph, self.registry)
        if not result.is_valid:
            raise ValidationError(
                "Workflow definition is invalid",
                violations=[v.to_dict() for v in result.violations],
            )

    async def create_workflow(
        self,
        name: str,
        definition: dict,
        status: WorkflowStatus = WorkflowStatus.DRAFT,
        settings: Optional[dict] = None,
        description: str = "",
    ) -> StoredWorkflow:
        """Create a workflow. Active workflows must be valid."""
        workflow = StoredWorkflow(
            id=str(uuid4()),
            name=name,
            status=WorkflowStatus(status),
            definition=definition or {},
            settings=settings or {},
            description=description,
        )
        if workflow.status == WorkflowStatus.ACTIVE:
            self._require_valid(workflow.graph())
        saved = await self.workflows.save(workflow)
        logger.info(f"Workflow {saved.id} created ({saved.status.value})")
        return saved

    async def get_workflow(self, workflow_id: str) -> StoredWorkflow:
        workflow = await self.workflows.get(workflow_id)
        if workflow is None:
            raise NotFoundError(f"Workflow {workflow_id} not found")
        return workflow

    async def set_workflow_status(self, workflow_id: str, status: WorkflowStatus) -> StoredWorkflow:
        """Activate, archive or return a workflow to draft."""
        workflow = await self.get_workflow(workflow_id)
        status = WorkflowStatus(status)
        if status == WorkflowStatus.ACTIVE:
            self._require_valid(workflow.graph())
        workflow.status = status
        return await self.workflows.save(workflow)

    # ─── Executions ────────────────────────────────────────

    async def start_execution(
        self,
        workflow_id: str,
        payload: Optional[dict] = None,
        run: bool = True,
    ) -> str:
        """Trigger a workflow for one submission.

        Snapshots the graph, seeds ``submission.*`` and ``system.*`` into
        the context, persists the execution and, when ``run`` is set,
        runs its first turn under the execution lease.

        Returns the execution id.
        """
        workflow = await self.get_workflow(workflow_id)
        if workflow.status != WorkflowStatus.ACTIVE:
            raise ConflictError(
                f"Workflow {workflow_id} is {workflow.status.value}; only active workflows run"
            )
        graph = workflow.graph()
        self._require_valid(graph)
        await self._check_rate_limit(workflow.id, graph)

        payload = dict(payload or {})
        execution_id = str(uuid4())
        submission_id = submission_id_for(payload, execution_id)
        started_at = utcnow()

        context = ContextStore()
        context.set(SUBMISSION_ROOT, payload)
        context.set(SYSTEM_ROOT, {
            "execution_id": execution_id,
            "workflow_id": workflow.id,
            "submission_id": submission_id,
            "started_at": started_at.isoformat(),
        })

        record = ExecutionRecord(
            id=execution_id,
            workflow_id=workflow.id,
            submission_id=submission_id,
            workflow_snapshot=graph.to_dict(),
            context=context.snapshot(),
            current_node_id=graph.start_node.id,
            status=ExecutionStatus.RUNNING,
            started_at=started_at,
        )
        await self.executions.create(record)
        logger.info(f"Execution {execution_id} created for workflow {workflow.id} (submission {submission_id})")

        if run:
            await self.scheduler.run(execution_id)
        return execution_id

    async def _check_rate_limit(self, workflow_id: str, graph: WorkflowGraph) -> None:
        limit = graph.settings.get("max_executions_per_hour")
        if limit is None:
            limit = get_settings().DEFAULT_MAX_EXECUTIONS_PER_HOUR
        allowed, retry_after = await self.rate_limiter.hit(f"workflow:{workflow_id}", int(limit))
        if not allowed:
            logger.warning(f"Workflow {workflow_id} hit its limit of {limit} executions per hour")
            raise RateLimitExceededError(workflow_id, int(limit), retry_after)

    async def run_execution(self, execution_id: str) -> ExecutionRecord:
        """Run one turn of a running execution (worker entry point)."""
        return await self.scheduler.run(execution_id)

    async def resume(self, execution_id: str, force: bool = False) -> ExecutionRecord:
        return await self.scheduler.resume(execution_id, force=force)

    async def resume_due(self, now=None) -> list[ExecutionRecord]:
        return await self.scheduler.resume_due(now)

    async def due_executions(self, now=None) -> list[str]:
        return await self.scheduler.due_executions(now)

    async def cancel(self, execution_id: str) -> ExecutionRecord:
        """Cancel a running or waiting execution.

        A node already in flight finishes, but its turn is discarded.
        """
        if await self.executions.mark_cancelled(execution_id):
            logger.info(f"Execution {execution_id} cancelled")
            return await self.get_execution(execution_id)

        record = await self.get_execution(execution_id)
        raise ConflictError(f"Execution {execution_id} is already {record.status.value}")

    async def get_execution(self, execution_id: str) -> ExecutionRecord:
        record = await self.executions.get(execution_id)
        if record is None:
            raise NotFoundError(f"Execution {execution_id} not found")
        return record

    async def statistics(self, workflow_id: Optional[str] = None, period: str = "day") -> dict[str, Any]:
        stats = await self.executions.statistics(workflow_id=workflow_id, period=period)
        return {"period": period, "workflow_id": workflow_id, **stats}

    async def cleanup_old_executions(self, retention_days: Optional[int] = None) -> int:
        """Delete finished executions older than the retention window."""
        days = retention_days if retention_days is not None else get_settings().EXECUTION_RETENTION_DAYS
        deleted = await self.executions.delete_finished_before(utcnow() - timedelta(days=days))
        logger.info(f"Cleaned up {deleted} executions older than {days} days")
        return deleted

    # ─── Sync ledger ───────────────────────────────────────

    async def sync_history(self, submission_id: str) -> list[SyncRecord]:
        return await self.ledger.history(submission_id)

    async def sync_stats(self, integration_id: Optional[str] = None, period: str = "all") -> dict[str, Any]:
        stats = await self.ledger.stats(integration_id=integration_id, period=period)
        return {"period": period, "integration_id": integration_id, **stats}


# Singleton
_service: Optional[AutomationService] = None


def get_automation_service() -> AutomationService:
    """Get or create the process-wide service backed by the SQL stores."""
    global _service
    if _service is None:
        from db.database import AsyncSessionLocal

        _service = AutomationService(
            workflows=SqlWorkflowStore(AsyncSessionLocal),
            executions=SqlExecutionStore(AsyncSessionLocal),
            ledger=SqlSyncLedger(AsyncSessionLocal),
            lease=create_lease_manager(),
            rate_limiter=create_rate_limiter(),
        )
    return _service
