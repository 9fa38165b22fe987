"""Utility actions: structured logging and pauses."""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from actions.base_action import BaseAction, SchemaField
from app.config import get_settings
from core.constants import DELAY_UNIT_SECONDS, REASON_SCHEDULED_DELAY, LogLevel
from workflow.results import NodeResult, Success, Waiting
from workflow.state import delay_seconds

logger = structlog.get_logger("workflow.log_action")


class LogAction(BaseAction):
    """Write a message to the application log.

    Config:
        message: Text to log
        level: debug | info | warning | error (default: info)
        include_variables: Attach the full context snapshot
    """

    action_id = "log"
    display_name = "Log Message"
    description = "Write a message to the execution log"
    category = "utility"
    icon = "📝"

    async def execute(self, config: Dict[str, Any], context) -> NodeResult:
        level = LogLevel(str(config.get("level") or LogLevel.INFO.value).lower())
        message = str(config.get("message") or "")
        fields: Dict[str, Any] = {}
        if config.get("include_variables"):
            fields["variables"] = context.snapshot()

        getattr(logger, level.value)("workflow_log", message=message, **fields)
        return Success(output={"logged": True, "level": level.value, "message": message})

    @classmethod
    def describe_schema(cls) -> List[SchemaField]:
        return [
            SchemaField("message", "textarea", "Message", required=True),
            SchemaField(
                "level", "select", "Level", default=LogLevel.INFO.value,
                options=[lvl.value for lvl in LogLevel],
            ),
            SchemaField("include_variables", "checkbox", "Include variables", default=False),
        ]


class SleepAction(BaseAction):
    """Pause the workflow.

    Short pauses sleep in the worker; anything above the inline
    threshold suspends the execution until the scheduler resumes it.
    """

    action_id = "sleep"
    display_name = "Wait"
    description = "Pause before continuing"
    category = "utility"
    icon = "⏱️"

    def __init__(
        self,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        inline_threshold: Optional[float] = None,
    ):
        self._sleep = sleep or asyncio.sleep
        self._threshold = inline_threshold

    async def execute(self, config: Dict[str, Any], context) -> NodeResult:
        seconds = delay_seconds(config.get("duration", 0), config.get("unit") or "seconds")
        threshold = self._threshold
        if threshold is None:
            threshold = get_settings().INLINE_DELAY_THRESHOLD_SECONDS

        if seconds > threshold:
            return Waiting(resume_after=seconds, reason=REASON_SCHEDULED_DELAY)

        await self._sleep(seconds)
        return Success(output={"slept_seconds": seconds})

    @classmethod
    def describe_schema(cls) -> List[SchemaField]:
        return [
            SchemaField("duration", "number", "Duration", required=True, default=1),
            SchemaField(
                "unit", "select", "Unit", default="seconds",
                options=list(DELAY_UNIT_SECONDS),
            ),
        ]


UTILITY_ACTION_TYPES = {
    "log": LogAction,
    "sleep": SleepAction,
}
