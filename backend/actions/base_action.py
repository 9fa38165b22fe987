"""
Base action interface for all workflow action implementations.

Every action type (email, webhook, CRM sync, etc.) must inherit from
BaseAction and implement the execute() method. Actions that deliver
data to an external system inherit from IntegrationAction instead so
the interpreter can wrap them with retry/backoff and the sync ledger.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog

from core.exceptions import ActionFailure
from workflow.results import Failure, NodeResult, Success, Waiting

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SchemaField:
    """One configurable field shown by the workflow editor."""
    name: str
    type: str
    label: str
    required: bool = False
    conditional_on: Optional[Dict[str, Any]] = None
    default: Any = None
    options: Optional[List[str]] = None
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "name": self.name,
            "type": self.type,
            "label": self.label,
            "required": self.required,
            "conditional_on": self.conditional_on,
        }
        if self.default is not None:
            data["default"] = self.default
        if self.options:
            data["options"] = list(self.options)
        if self.description:
            data["description"] = self.description
        return data


class BaseAction(ABC):
    """
    Abstract base class for all action implementations.

    Subclasses must implement:
    - execute(config, context) -> NodeResult
    - action_id (class property)
    - display_name (class property)
    """

    action_id: str = "base"
    display_name: str = "Base Action"
    description: str = "Abstract base action"
    category: str = "general"
    icon: str = "⚙️"
    retryable: bool = False

    @abstractmethod
    async def execute(self, config: Dict[str, Any], context) -> NodeResult:
        """
        Execute the action with its rendered configuration.

        Args:
            config: Node config with every template already resolved
            context: Read-only view of the execution context

        Returns:
            Success, Failure or Waiting
        """
        pass

    async def run(self, config: Dict[str, Any], context) -> NodeResult:
        """
        Run the action with timing and error handling.

        This is the main entry point called by the interpreter. Raised
        ActionFailure keeps its retryable flag; anything else becomes a
        non-retryable Failure carrying the exception text.
        """
        start = time.monotonic()
        logger.info(
            "Action starting",
            action_id=self.action_id,
            action_name=self.display_name,
        )
        try:
            result = await self.execute(config, context)
        except ActionFailure as e:
            result = Failure(message=e.message, retryable=e.retryable)
        except Exception as e:
            logger.error(
                "Action crashed",
                action_id=self.action_id,
                error=str(e),
                exc_info=True,
            )
            result = Failure(message=str(e) or type(e).__name__, retryable=False)

        duration_ms = (time.monotonic() - start) * 1000
        if isinstance(result, Failure):
            logger.warning(
                "Action failed",
                action_id=self.action_id,
                error=result.message,
                retryable=result.retryable,
                duration_ms=round(duration_ms, 2),
            )
        else:
            logger.info(
                "Action completed",
                action_id=self.action_id,
                waiting=isinstance(result, Waiting),
                duration_ms=round(duration_ms, 2),
            )
        return result

    @classmethod
    def describe_schema(cls) -> List[SchemaField]:
        """
        Return the configurable fields of this action.

        Override in subclasses to define expected config shape.
        """
        return []

    @classmethod
    def describe(cls) -> Dict[str, Any]:
        return {
            "action_id": cls.action_id,
            "display_name": cls.display_name,
            "description": cls.description,
            "category": cls.category,
            "icon": cls.icon,
            "retryable": cls.retryable,
            "integration_id": getattr(cls, "integration_id", None),
            "schema": [f.to_dict() for f in cls.describe_schema()],
        }


class IntegrationAction(BaseAction):
    """Action that delivers submission data to an external system.

    Retryable failures go through the retry coordinator, and every
    attempt is written to the sync ledger under ``integration_id``.
    A successful Success output should carry ``external_id``.
    """

    integration_id: str = "integration"
    category: str = "integrations"
    retryable: bool = True

    @staticmethod
    def is_retryable_status(status_code: int) -> bool:
        return status_code == 429 or status_code >= 500

    @staticmethod
    def submission_data(context) -> Dict[str, Any]:
        data = context.get("submission") or {}
        return dict(data) if isinstance(data, dict) else {}

    @staticmethod
    def get_nested_value(data: Any, path: str) -> Any:
        """Dot-path lookup that returns None instead of raising."""
        current = data
        for part in str(path).split("."):
            if isinstance(current, dict):
                current = current.get(part)
            elif isinstance(current, list):
                try:
                    current = current[int(part)]
                except (ValueError, IndexError):
                    return None
            else:
                return None
        return current

    @classmethod
    def map_fields(cls, source: Dict[str, Any], mapping: Dict[str, str]) -> Dict[str, Any]:
        """Build ``{target: source[path]}``; keys starting with ``_`` are options, not fields."""
        return {
            target: cls.get_nested_value(source, path)
            for target, path in (mapping or {}).items()
            if not str(target).startswith("_")
        }

    def success(self, external_id: Optional[str], **output: Any) -> Success:
        return Success(output={"external_id": external_id, **output})
