"""Persisted execution state.

An ``ExecutionRecord`` is everything needed to continue a run on any
worker: the workflow snapshot taken at trigger time, the context
snapshot, the node to (re-)enter, per-node retry counters, and the
time after which a waiting execution may be resumed.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from core.constants import DELAY_UNIT_SECONDS, ExecutionStatus
from workflow.results import NodeResult, result_from_dict


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes coming back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def delay_seconds(duration: Any, unit: str = "seconds") -> float:
    """Convert a (duration, unit) pair to seconds; negative durations clamp to 0."""
    if unit not in DELAY_UNIT_SECONDS:
        raise ValueError(f"Unknown delay unit: {unit!r}")
    return max(float(duration or 0), 0.0) * DELAY_UNIT_SECONDS[unit]


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return as_utc(value)
    return as_utc(datetime.fromisoformat(value))


@dataclass
class HistoryEntry:
    """One visited node and what it produced."""
    node_id: str
    node_type: str
    result: dict[str, Any]
    timestamp: datetime = field(default_factory=utcnow)
    duration_ms: int = 0

    @property
    def node_result(self) -> NodeResult:
        return result_from_dict(self.result)

    def to_dict(self) -> dict:
        return {
            "node_id": self.node_id,
            "node_type": self.node_type,
            "result": self.result,
            "timestamp": _iso(self.timestamp),
            "duration_ms": self.duration_ms,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HistoryEntry":
        return cls(
            node_id=data["node_id"],
            node_type=data.get("node_type", ""),
            result=data.get("result", {}),
            timestamp=_parse(data.get("timestamp")) or utcnow(),
            duration_ms=data.get("duration_ms", 0),
        )


@dataclass
class ExecutionRecord:
    id: str
    workflow_id: str
    submission_id: str
    workflow_snapshot: dict[str, Any]
    context: dict[str, Any] = field(default_factory=dict)
    current_node_id: Optional[str] = None
    status: ExecutionStatus = ExecutionStatus.RUNNING
    attempt_counters: dict[str, int] = field(default_factory=dict)
    resume_after: Optional[datetime] = None
    waiting_reason: Optional[str] = None
    history: list[HistoryEntry] = field(default_factory=list)
    output: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    duration_ms: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_claimed(self) -> bool:
        """A resume is in flight: running, but still carrying its wait.

        While claimed, ``resume_after`` holds the claim expiry.
        """
        return self.status == ExecutionStatus.RUNNING and self.waiting_reason is not None

    def is_due(self, now: datetime) -> bool:
        if self.status != ExecutionStatus.WAITING and not self.is_claimed:
            return False
        return self.resume_after is None or as_utc(self.resume_after) <= as_utc(now)

    def visited(self, node_id: str) -> bool:
        return any(entry.node_id == node_id for entry in self.history)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "submission_id": self.submission_id,
            "workflow_snapshot": self.workflow_snapshot,
            "context": self.context,
            "current_node_id": self.current_node_id,
            "status": self.status.value,
            "attempt_counters": dict(self.attempt_counters),
            "resume_after": _iso(self.resume_after),
            "waiting_reason": self.waiting_reason,
            "history": [entry.to_dict() for entry in self.history],
            "output": self.output,
            "error": self.error,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "duration_ms": self.duration_ms,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExecutionRecord":
        return cls(
            id=data["id"],
            workflow_id=data["workflow_id"],
            submission_id=data.get("submission_id") or data["id"],
            workflow_snapshot=data.get("workflow_snapshot") or {},
            context=data.get("context") or {},
            current_node_id=data.get("current_node_id"),
            status=ExecutionStatus(data.get("status", ExecutionStatus.RUNNING.value)),
            attempt_counters=dict(data.get("attempt_counters") or {}),
            resume_after=_parse(data.get("resume_after")),
            waiting_reason=data.get("waiting_reason"),
            history=[HistoryEntry.from_dict(h) for h in data.get("history") or []],
            output=data.get("output") or {},
            error=data.get("error"),
            started_at=_parse(data.get("started_at")) or utcnow(),
            completed_at=_parse(data.get("completed_at")),
            duration_ms=data.get("duration_ms", 0),
        )
