"""Celery tasks for workflow executions.

These tasks bridge the Celery worker with the automation service.
A trigger enqueues ``start_execution``; the beat poller enqueues one
``resume_execution`` per waiting execution that has become due.

Each task runs the async service in its own event loop with a
task-local database engine.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Optional

from core.exceptions import AutomationError, LeaseUnavailableError
from worker.celery_app import celery_app

logger = logging.getLogger(__name__)


# ─── Service helpers (run inside the task's event loop) ──────────

@asynccontextmanager
async def task_service():
    """AutomationService wired to a task-local engine.

    Leases and rate limits must be visible to every worker process, so
    the process-local backends are rejected here.
    """
    from core.rate_limit import create_rate_limiter
    from db.worker_session import worker_session_factory
    from services.automation_service import AutomationService
    from workflow.lease import create_lease_manager
    from workflow.ledger import SqlSyncLedger
    from workflow.store import SqlExecutionStore, SqlWorkflowStore

    lease = create_lease_manager(shared=True)
    rate_limiter = create_rate_limiter(shared=True)
    try:
        async with worker_session_factory() as session_factory:
            yield AutomationService(
                workflows=SqlWorkflowStore(session_factory),
                executions=SqlExecutionStore(session_factory),
                ledger=SqlSyncLedger(session_factory),
                lease=lease,
                rate_limiter=rate_limiter,
            )
    finally:
        await lease.close()
        await rate_limiter.close()


def run_with_service(operation: Callable[[Any], Awaitable[Any]]) -> Any:
    """Run ``operation(service)`` to completion on a fresh event loop."""

    async def _run():
        async with task_service() as service:
            return await operation(service)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(_run())
    finally:
        loop.close()


def _summary(record) -> dict:
    return {
        "execution_id": record.id,
        "status": record.status.value,
        "current_node_id": record.current_node_id,
        "resume_after": record.resume_after.isoformat() if record.resume_after else None,
        "error": record.error,
    }


# ─── Execution tasks ─────────────────────────────────────────────

@celery_app.task(
    name="worker.tasks.executions.start_execution",
    queue="executions",
)
def start_execution(workflow_id: str, payload: Optional[dict] = None) -> dict:
    """Create an execution for a submission and run its first turn."""
    logger.info(f"Starting execution for workflow {workflow_id}")

    async def _start(service):
        execution_id = await service.start_execution(workflow_id, payload or {})
        return _summary(await service.get_execution(execution_id))

    try:
        return run_with_service(_start)
    except AutomationError as exc:
        logger.error(f"Could not start workflow {workflow_id}: {exc.message}")
        return {"workflow_id": workflow_id, "status": "rejected", "error": exc.message}


@celery_app.task(
    name="worker.tasks.executions.resume_execution",
    queue="executions",
)
def resume_execution(execution_id: str) -> dict:
    """Re-enter the interpreter for a waiting execution that is due."""
    logger.info(f"Resuming execution {execution_id}")

    async def _resume(service):
        return _summary(await service.resume(execution_id))

    try:
        return run_with_service(_resume)
    except LeaseUnavailableError:
        # Another worker is already advancing it
        logger.info(f"Execution {execution_id} is leased elsewhere, skipping")
        return {"execution_id": execution_id, "status": "skipped"}
    except AutomationError as exc:
        logger.warning(f"Execution {execution_id} not resumed: {exc.message}")
        return {"execution_id": execution_id, "status": "skipped", "error": exc.message}


@celery_app.task(
    name="worker.tasks.executions.cancel_execution",
    queue="executions",
)
def cancel_execution(execution_id: str) -> dict:
    """Mark an execution cancelled; an in-flight turn is discarded on save."""

    async def _cancel(service):
        return _summary(await service.cancel(execution_id))

    try:
        return run_with_service(_cancel)
    except AutomationError as exc:
        logger.warning(f"Execution {execution_id} not cancelled: {exc.message}")
        return {"execution_id": execution_id, "status": "unchanged", "error": exc.message}


@celery_app.task(
    name="worker.tasks.executions.poll_due_executions",
    queue="executions",
)
def poll_due_executions() -> dict:
    """Enqueue a resume task for every waiting execution whose time has come."""

    async def _due(service):
        return await service.due_executions()

    due = run_with_service(_due)
    for execution_id in due:
        resume_execution.delay(execution_id)
    if due:
        logger.info(f"Enqueued {len(due)} due executions")
    return {"enqueued": len(due)}
