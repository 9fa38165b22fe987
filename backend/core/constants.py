"""Constants and enums for the automation engine."""

from enum import Enum


class ExecutionStatus(str, Enum):
    """Workflow execution status."""

    RUNNING = "running"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ExecutionStatus.COMPLETED,
            ExecutionStatus.FAILED,
            ExecutionStatus.CANCELLED,
        )


class WorkflowStatus(str, Enum):
    """Workflow status."""

    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class NodeType(str, Enum):
    """Node types understood by the interpreter."""

    START = "start"
    END = "end"
    CONDITION = "condition"
    ACTION = "action"
    DELAY = "delay"


class SyncStatus(str, Enum):
    """Outcome of one external-system call attempt."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class LogLevel(str, Enum):
    """Log level accepted by the log action."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


# Delay unit -> seconds
DELAY_UNIT_SECONDS: dict[str, int] = {
    "seconds": 1,
    "minutes": 60,
    "hours": 3600,
}

# Waiting reasons
REASON_SCHEDULED_DELAY = "scheduled delay"
REASON_RETRY = "retry"

# Root key under which the triggering submission is seeded into the context
SUBMISSION_ROOT = "submission"
SYSTEM_ROOT = "system"
