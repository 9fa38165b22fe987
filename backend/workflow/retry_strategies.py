"""Retry policy and backoff coordinator for integration actions.

A retryable ``Failure`` never sleeps in the worker. The coordinator turns
it into a ``Waiting(delay, "retry")`` so the execution suspends through
the same channel as a long delay node, and the scheduler re-dispatches
the node once the delay has elapsed.

Usage:
    coordinator = RetryCoordinator()
    policy = RetryPolicy(max_attempts=3, base_delay=60)
    result = await coordinator.attempt(execution_id, node_id, call_action, policy)
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import structlog

from core.constants import REASON_RETRY
from workflow.results import Failure, NodeResult, Success, Waiting

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff: ``delay = base_delay * 2 ** attempts_so_far``."""
    max_attempts: int = 3
    base_delay: float = 60.0
    max_delay: Optional[float] = None

    @classmethod
    def from_settings(cls, settings: dict, default: Optional["RetryPolicy"] = None) -> "RetryPolicy":
        """Build a policy from workflow settings (``max_retries``, ``retry_delay_seconds``)."""
        default = default or cls()
        return cls(
            max_attempts=int(settings.get("max_retries", default.max_attempts)),
            base_delay=float(settings.get("retry_delay_seconds", default.base_delay)),
            max_delay=settings.get("max_retry_delay_seconds", default.max_delay),
        )

    def to_dict(self) -> dict:
        return {
            "max_attempts": self.max_attempts,
            "base_delay": self.base_delay,
            "max_delay": self.max_delay,
        }

    def compute_delay(self, attempts_so_far: int) -> float:
        """Delay before the retry that follows ``attempts_so_far`` earlier retries."""
        delay = self.base_delay * (2 ** attempts_so_far)
        if self.max_delay is not None:
            delay = min(delay, float(self.max_delay))
        return float(delay)

    def should_retry(self, attempts_so_far: int) -> bool:
        return attempts_so_far < self.max_attempts


class RetryCoordinator:
    """Tracks retry counts per (execution, node) and schedules backoff.

    Counters live in memory for the duration of a turn. The interpreter
    seeds them from the persisted execution record with ``load`` and
    writes them back with ``export`` before suspending.
    """

    def __init__(self):
        self._counters: dict[tuple[str, str], int] = {}

    # ─── Counter bookkeeping ───────────────────────────────

    def count(self, execution_id: str, node_id: str) -> int:
        return self._counters.get((execution_id, node_id), 0)

    def load(self, execution_id: str, counters: dict[str, int]) -> None:
        self.forget(execution_id)
        for node_id, value in (counters or {}).items():
            self._counters[(execution_id, node_id)] = int(value)

    def export(self, execution_id: str) -> dict[str, int]:
        return {
            node_id: value
            for (exec_id, node_id), value in self._counters.items()
            if exec_id == execution_id
        }

    def reset(self, execution_id: str, node_id: str) -> None:
        self._counters.pop((execution_id, node_id), None)

    def forget(self, execution_id: str) -> None:
        for key in [k for k in self._counters if k[0] == execution_id]:
            del self._counters[key]

    # ─── Attempt ───────────────────────────────────────────

    async def attempt(
        self,
        execution_id: str,
        node_id: str,
        operation: Callable[[], Awaitable[NodeResult]],
        policy: RetryPolicy,
    ) -> NodeResult:
        """Run ``operation`` once and apply the retry policy to its result.

        - Success resets the node's counter and passes through.
        - A retryable Failure under budget becomes ``Waiting(delay, "retry")``.
        - An exhausted or non-retryable Failure is returned unmodified.
        """
        result = await operation()

        if isinstance(result, Success):
            self._counters.pop((execution_id, node_id), None)
            return result

        if not isinstance(result, Failure) or not result.retryable:
            return result

        attempts_so_far = self.count(execution_id, node_id)
        if not policy.should_retry(attempts_so_far):
            logger.warning(
                "retry_exhausted",
                execution_id=execution_id,
                node_id=node_id,
                attempts=attempts_so_far,
                error=result.message,
            )
            return result

        delay = policy.compute_delay(attempts_so_far)
        self._counters[(execution_id, node_id)] = attempts_so_far + 1
        logger.info(
            "retry_scheduled",
            execution_id=execution_id,
            node_id=node_id,
            retry_number=attempts_so_far + 1,
            delay=delay,
            error=result.message,
        )
        return Waiting(resume_after=delay, reason=REASON_RETRY)
