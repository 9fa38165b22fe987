"""Suspension/resume scheduler.

Waiting executions carry a persisted ``resume_after`` timestamp. The
scheduler finds the ones that are due and re-enters the interpreter for
each, holding the execution lease so that no two workers advance the
same execution.

In production ``due_executions`` is polled by a Celery beat task which
enqueues one ``resume_execution`` task per id; ``resume_due`` does the
same work inline for single-process deployments and tests.
"""

from datetime import datetime, timedelta
from typing import Optional

import structlog

from app.config import get_settings
from core.constants import REASON_RETRY, ExecutionStatus
from core.exceptions import ConflictError, LeaseUnavailableError, NotFoundError
from workflow.engine import Interpreter
from workflow.lease import LeaseManager
from workflow.state import ExecutionRecord, utcnow
from workflow.store import ExecutionStore

logger = structlog.get_logger(__name__)


class Scheduler:

    def __init__(
        self,
        store: ExecutionStore,
        interpreter: Interpreter,
        lease: LeaseManager,
        batch_size: int = 100,
        claim_seconds: Optional[int] = None,
    ):
        self._store = store
        self._interpreter = interpreter
        self._lease = lease
        self._batch_size = batch_size
        self._claim_seconds = claim_seconds or get_settings().EXECUTION_LEASE_SECONDS

    async def due_executions(self, now: Optional[datetime] = None) -> list[str]:
        """Ids of waiting executions whose resume time has passed."""
        return await self._store.list_due(now or utcnow(), limit=self._batch_size)

    async def run(self, execution_id: str) -> ExecutionRecord:
        """Run one turn of a running execution under its lease."""
        async with self._lease.hold(execution_id):
            return await self._interpreter.run_turn(execution_id)

    async def resume(
        self, execution_id: str, force: bool = False, now: Optional[datetime] = None
    ) -> ExecutionRecord:
        """Re-enter the interpreter for a waiting execution.

        The execution is claimed in the store before the turn starts, so
        it no longer shows up as due while the turn is in flight.

        Raises ConflictError when the execution is not waiting, is
        already being resumed, or is not due yet. ``force`` skips the
        due check for delays but never for a pending retry.
        """
        now = now or utcnow()
        async with self._lease.hold(execution_id):
            record = await self._store.get(execution_id)
            if record is None:
                raise NotFoundError(f"Execution {execution_id} not found")
            if record.status != ExecutionStatus.WAITING and not record.is_claimed:
                raise ConflictError(
                    f"Execution {execution_id} is {record.status.value}, not waiting"
                )
            if record.is_claimed and not record.is_due(now):
                raise ConflictError(f"Execution {execution_id} is already being resumed")
            if not record.is_due(now) and (not force or record.waiting_reason == REASON_RETRY):
                raise ConflictError(
                    f"Execution {execution_id} is not due until {record.resume_after.isoformat()}"
                )

            claim_until = now + timedelta(seconds=self._claim_seconds)
            if not await self._store.claim(execution_id, now, claim_until):
                raise ConflictError(f"Execution {execution_id} is already being resumed")

            logger.info("execution_resume", execution_id=execution_id, reason=record.waiting_reason)
            return await self._interpreter.run_turn(execution_id)

    async def resume_due(self, now: Optional[datetime] = None) -> list[ExecutionRecord]:
        """Resume every due execution in turn; busy or already-advanced ones are skipped."""
        resumed = []
        for execution_id in await self.due_executions(now):
            try:
                resumed.append(await self.resume(execution_id, now=now))
            except (LeaseUnavailableError, ConflictError) as e:
                logger.info("execution_resume_skipped", execution_id=execution_id, reason=e.message)
        return resumed
