"""Storage ports for workflows and executions.

Each port has a process-local implementation (tests, single-process
runs) and a SQLAlchemy implementation. Every SQL call opens its own
short-lived session from the injected factory, so one store instance is
safe to share between concurrent turns.
"""

import copy
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, case, delete, func, or_, select, update

from core.constants import ExecutionStatus, WorkflowStatus
from core.exceptions import ValidationError
from db.models.execution import Execution
from db.models.workflow import Workflow
from workflow.graph import WorkflowGraph
from workflow.state import ExecutionRecord, HistoryEntry, as_utc, utcnow

FINISHED_STATUSES = (
    ExecutionStatus.COMPLETED,
    ExecutionStatus.FAILED,
    ExecutionStatus.CANCELLED,
)


STATS_PERIODS = {
    "hour": timedelta(hours=1),
    "day": timedelta(hours=24),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
}


@dataclass
class StoredWorkflow:
    id: str
    name: str
    status: WorkflowStatus
    definition: dict
    settings: dict
    description: str = ""
    version: int = 1

    def graph(self) -> WorkflowGraph:
        return WorkflowGraph.from_dict({
            **(self.definition or {}),
            "name": self.name,
            "status": self.status.value,
            "settings": {**(self.definition or {}).get("settings", {}), **(self.settings or {})},
        })

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status.value,
            "definition": self.definition,
            "settings": self.settings,
            "version": self.version,
        }


def stats_since(period: str, now: Optional[datetime] = None) -> datetime:
    if period not in STATS_PERIODS:
        raise ValidationError(f"Unknown stats period: {period!r}")
    return (now or utcnow()) - STATS_PERIODS[period]


def summarize_executions(records: list[ExecutionRecord]) -> dict:
    """Aggregate counts and timing over a set of executions."""
    total = len(records)
    by_status = {status: 0 for status in ExecutionStatus}
    for record in records:
        by_status[record.status] += 1
    durations = [r.duration_ms for r in records if r.status in FINISHED_STATUSES]
    completed = by_status[ExecutionStatus.COMPLETED]
    return {
        "total": total,
        "completed": completed,
        "failed": by_status[ExecutionStatus.FAILED],
        "running": by_status[ExecutionStatus.RUNNING],
        "waiting": by_status[ExecutionStatus.WAITING],
        "cancelled": by_status[ExecutionStatus.CANCELLED],
        "success_rate": round(completed / total * 100, 2) if total else 0.0,
        "avg_time_ms": round(sum(durations) / len(durations), 2) if durations else 0.0,
        "max_time_ms": max(durations) if durations else 0,
        "min_time_ms": min(durations) if durations else 0,
    }


# ─── Ports ─────────────────────────────────────────────────────

class WorkflowStore(ABC):

    @abstractmethod
    async def get(self, workflow_id: str) -> Optional[StoredWorkflow]:
        ...

    @abstractmethod
    async def save(self, workflow: StoredWorkflow) -> StoredWorkflow:
        ...


class ExecutionStore(ABC):

    @abstractmethod
    async def create(self, record: ExecutionRecord) -> ExecutionRecord:
        ...

    @abstractmethod
    async def get(self, execution_id: str) -> Optional[ExecutionRecord]:
        ...

    @abstractmethod
    async def save(self, record: ExecutionRecord) -> bool:
        """Persist ``record``.

        Returns False, and writes nothing, when the stored execution was
        cancelled in the meantime; cancellation always wins.
        """
        ...

    @abstractmethod
    async def mark_cancelled(self, execution_id: str) -> bool:
        """Atomically move a non-terminal execution to ``cancelled``."""
        ...

    @abstractmethod
    async def claim(self, execution_id: str, now: datetime, claim_until: datetime) -> bool:
        """Atomically take a waiting execution for resumption.

        Moves it to ``running`` while keeping its waiting reason, with
        ``resume_after`` set to ``claim_until``. Succeeds for a waiting
        execution, or for a claimed one whose claim expired before
        ``now``. Returns False if another worker got there first.
        """
        ...

    @abstractmethod
    async def list_due(self, now: datetime, limit: int = 100) -> list[str]:
        """Ids of due waiting executions and expired claims, oldest first."""
        ...

    @abstractmethod
    async def delete_finished_before(self, cutoff: datetime) -> int:
        ...

    @abstractmethod
    async def statistics(self, workflow_id: Optional[str] = None, period: str = "day") -> dict:
        ...


# ─── In-memory ─────────────────────────────────────────────────

class InMemoryWorkflowStore(WorkflowStore):

    def __init__(self):
        self._items: dict[str, StoredWorkflow] = {}

    async def get(self, workflow_id: str) -> Optional[StoredWorkflow]:
        item = self._items.get(workflow_id)
        return copy.deepcopy(item) if item else None

    async def save(self, workflow: StoredWorkflow) -> StoredWorkflow:
        self._items[workflow.id] = copy.deepcopy(workflow)
        return workflow


class InMemoryExecutionStore(ExecutionStore):

    def __init__(self):
        self._items: dict[str, dict] = {}
        self._lock = threading.Lock()

    async def create(self, record: ExecutionRecord) -> ExecutionRecord:
        with self._lock:
            self._items[record.id] = record.to_dict()
        return record

    async def get(self, execution_id: str) -> Optional[ExecutionRecord]:
        with self._lock:
            data = self._items.get(execution_id)
        return ExecutionRecord.from_dict(copy.deepcopy(data)) if data else None

    async def save(self, record: ExecutionRecord) -> bool:
        with self._lock:
            current = self._items.get(record.id)
            if current and current["status"] == ExecutionStatus.CANCELLED.value:
                return False
            self._items[record.id] = record.to_dict()
        return True

    async def mark_cancelled(self, execution_id: str) -> bool:
        with self._lock:
            current = self._items.get(execution_id)
            if not current or ExecutionStatus(current["status"]).is_terminal:
                return False
            now = utcnow()
            current["status"] = ExecutionStatus.CANCELLED.value
            current["resume_after"] = None
            current["completed_at"] = now.isoformat()
        return True

    async def claim(self, execution_id: str, now: datetime, claim_until: datetime) -> bool:
        with self._lock:
            current = self._items.get(execution_id)
            if not current:
                return False
            record = ExecutionRecord.from_dict(current)
            if not (record.status == ExecutionStatus.WAITING or (record.is_claimed and record.is_due(now))):
                return False
            current["status"] = ExecutionStatus.RUNNING.value
            current["resume_after"] = claim_until.isoformat()
        return True

    async def list_due(self, now: datetime, limit: int = 100) -> list[str]:
        with self._lock:
            records = [ExecutionRecord.from_dict(data) for data in self._items.values()]
        due = [r for r in records if r.is_due(now)]
        due.sort(key=lambda r: r.resume_after or r.started_at)
        return [r.id for r in due[:limit]]

    async def delete_finished_before(self, cutoff: datetime) -> int:
        with self._lock:
            doomed = [
                execution_id
                for execution_id, data in self._items.items()
                if data["status"] in {s.value for s in FINISHED_STATUSES}
                and data.get("completed_at")
                and as_utc(datetime.fromisoformat(data["completed_at"])) < as_utc(cutoff)
            ]
            for execution_id in doomed:
                del self._items[execution_id]
        return len(doomed)

    async def statistics(self, workflow_id: Optional[str] = None, period: str = "day") -> dict:
        since = stats_since(period)
        with self._lock:
            records = [ExecutionRecord.from_dict(data) for data in self._items.values()]
        return summarize_executions([
            r for r in records
            if (workflow_id is None or r.workflow_id == workflow_id) and r.started_at >= since
        ])


# ─── SQLAlchemy ────────────────────────────────────────────────

def _workflow_from_row(row: Workflow) -> StoredWorkflow:
    return StoredWorkflow(
        id=row.id,
        name=row.name,
        description=row.description or "",
        status=WorkflowStatus(row.status),
        definition=row.definition or {},
        settings=row.settings or {},
        version=row.version,
    )


def _execution_values(record: ExecutionRecord) -> dict:
    return {
        "workflow_id": record.workflow_id,
        "submission_id": record.submission_id,
        "workflow_snapshot": record.workflow_snapshot,
        "context": record.context,
        "current_node_id": record.current_node_id,
        "status": record.status.value,
        "attempt_counters": record.attempt_counters,
        "resume_after": record.resume_after,
        "waiting_reason": record.waiting_reason,
        "history": [entry.to_dict() for entry in record.history],
        "output": record.output,
        "error": record.error,
        "started_at": record.started_at,
        "completed_at": record.completed_at,
        "duration_ms": record.duration_ms,
    }


def _execution_from_row(row: Execution) -> ExecutionRecord:
    return ExecutionRecord(
        id=row.id,
        workflow_id=row.workflow_id,
        submission_id=row.submission_id,
        workflow_snapshot=row.workflow_snapshot or {},
        context=row.context or {},
        current_node_id=row.current_node_id,
        status=ExecutionStatus(row.status),
        attempt_counters=dict(row.attempt_counters or {}),
        resume_after=as_utc(row.resume_after),
        waiting_reason=row.waiting_reason,
        history=[HistoryEntry.from_dict(h) for h in row.history or []],
        output=row.output or {},
        error=row.error,
        started_at=as_utc(row.started_at),
        completed_at=as_utc(row.completed_at),
        duration_ms=row.duration_ms or 0,
    )


def _expired_claim(now: datetime):
    return and_(
        Execution.status == ExecutionStatus.RUNNING.value,
        Execution.waiting_reason.is_not(None),
        Execution.resume_after <= now,
    )


class SqlWorkflowStore(WorkflowStore):

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def get(self, workflow_id: str) -> Optional[StoredWorkflow]:
        async with self._session_factory() as session:
            result = await session.execute(select(Workflow).where(Workflow.id == workflow_id))
            row = result.scalar_one_or_none()
        return _workflow_from_row(row) if row else None

    async def save(self, workflow: StoredWorkflow) -> StoredWorkflow:
        async with self._session_factory() as session:
            row = await session.get(Workflow, workflow.id)
            if row is None:
                row = Workflow(id=workflow.id)
                session.add(row)
            elif row.definition != workflow.definition:
                workflow.version = row.version + 1
            row.name = workflow.name
            row.description = workflow.description
            row.status = workflow.status.value
            row.definition = workflow.definition
            row.settings = workflow.settings
            row.version = workflow.version
            await session.commit()
        return workflow


class SqlExecutionStore(ExecutionStore):

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def create(self, record: ExecutionRecord) -> ExecutionRecord:
        async with self._session_factory() as session:
            session.add(Execution(id=record.id, **_execution_values(record)))
            await session.commit()
        return record

    async def get(self, execution_id: str) -> Optional[ExecutionRecord]:
        async with self._session_factory() as session:
            result = await session.execute(select(Execution).where(Execution.id == execution_id))
            row = result.scalar_one_or_none()
        return _execution_from_row(row) if row else None

    async def save(self, record: ExecutionRecord) -> bool:
        stmt = (
            update(Execution)
            .where(
                Execution.id == record.id,
                Execution.status != ExecutionStatus.CANCELLED.value,
            )
            .values(**_execution_values(record))
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount == 1

    async def mark_cancelled(self, execution_id: str) -> bool:
        stmt = (
            update(Execution)
            .where(
                Execution.id == execution_id,
                Execution.status.in_([
                    ExecutionStatus.RUNNING.value,
                    ExecutionStatus.WAITING.value,
                ]),
            )
            .values(
                status=ExecutionStatus.CANCELLED.value,
                resume_after=None,
                completed_at=utcnow(),
            )
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount == 1

    async def claim(self, execution_id: str, now: datetime, claim_until: datetime) -> bool:
        stmt = (
            update(Execution)
            .where(
                Execution.id == execution_id,
                or_(Execution.status == ExecutionStatus.WAITING.value, _expired_claim(now)),
            )
            .values(status=ExecutionStatus.RUNNING.value, resume_after=claim_until)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount == 1

    async def list_due(self, now: datetime, limit: int = 100) -> list[str]:
        query = (
            select(Execution.id)
            .where(
                or_(
                    and_(
                        Execution.status == ExecutionStatus.WAITING.value,
                        Execution.resume_after <= now,
                    ),
                    _expired_claim(now),
                )
            )
            .order_by(Execution.resume_after.asc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def delete_finished_before(self, cutoff: datetime) -> int:
        stmt = delete(Execution).where(
            Execution.status.in_([s.value for s in FINISHED_STATUSES]),
            Execution.completed_at < cutoff,
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount or 0

    async def statistics(self, workflow_id: Optional[str] = None, period: str = "day") -> dict:
        since = stats_since(period)

        def _count(status: ExecutionStatus):
            return func.coalesce(func.sum(case((Execution.status == status.value, 1), else_=0)), 0)

        finished = Execution.status.in_([s.value for s in FINISHED_STATUSES])
        finished_duration = case((finished, Execution.duration_ms), else_=None)
        query = select(
            func.count(Execution.id),
            _count(ExecutionStatus.COMPLETED),
            _count(ExecutionStatus.FAILED),
            _count(ExecutionStatus.RUNNING),
            _count(ExecutionStatus.WAITING),
            _count(ExecutionStatus.CANCELLED),
            func.avg(finished_duration),
            func.max(finished_duration),
            func.min(finished_duration),
        ).where(Execution.started_at >= since)
        if workflow_id:
            query = query.where(Execution.workflow_id == workflow_id)

        async with self._session_factory() as session:
            row = (await session.execute(query)).one()

        total, completed, failed, running, waiting, cancelled, avg_ms, max_ms, min_ms = row
        total = int(total or 0)
        return {
            "total": total,
            "completed": int(completed),
            "failed": int(failed),
            "running": int(running),
            "waiting": int(waiting),
            "cancelled": int(cancelled),
            "success_rate": round(int(completed) / total * 100, 2) if total else 0.0,
            "avg_time_ms": round(float(avg_ms or 0), 2),
            "max_time_ms": int(max_ms or 0),
            "min_time_ms": int(min_ms or 0),
        }
