"""
Action registry: central registry for all available workflow actions.

Maintains a mapping of action_id strings to their implementations.
Built-in actions are registered on construction; the process-wide
registry is frozen afterwards and is read-only at runtime.
"""

from typing import Dict, Optional, Type, Union

from actions.base_action import BaseAction
from actions.implementations.email_action import EMAIL_ACTION_TYPES
from actions.implementations.google_sheets_action import GOOGLE_SHEETS_ACTION_TYPES
from actions.implementations.http_action import HTTP_ACTION_TYPES
from actions.implementations.integration_action import INTEGRATION_ACTION_TYPES
from actions.implementations.utility_action import UTILITY_ACTION_TYPES
from core.exceptions import ActionNotFoundError, ConflictError


class ActionRegistry:
    """Central registry for all action implementations."""

    def __init__(self, register_builtins: bool = True):
        self._actions: Dict[str, BaseAction] = {}
        self._frozen = False
        if register_builtins:
            self._register_builtin_actions()

    def _register_builtin_actions(self):
        """Register all built-in action types."""
        # Communication
        for action_id, action_class in EMAIL_ACTION_TYPES.items():
            self.register(action_id, action_class)

        # HTTP and webhooks
        for action_id, action_class in HTTP_ACTION_TYPES.items():
            self.register(action_id, action_class)

        # External systems (ledger + retry)
        for action_id, action_class in INTEGRATION_ACTION_TYPES.items():
            self.register(action_id, action_class)
        for action_id, action_class in GOOGLE_SHEETS_ACTION_TYPES.items():
            self.register(action_id, action_class)

        # Logging and pauses
        for action_id, action_class in UTILITY_ACTION_TYPES.items():
            self.register(action_id, action_class)

    def register(self, action_id: str, implementation: Union[BaseAction, Type[BaseAction]]):
        """Register an action. Only allowed before ``freeze()``."""
        if self._frozen:
            raise ConflictError(f"Action registry is frozen; cannot register '{action_id}'")
        if action_id in self._actions:
            raise ConflictError(f"Action '{action_id}' is already registered")
        if isinstance(implementation, type):
            implementation = implementation()
        self._actions[action_id] = implementation

    def freeze(self) -> "ActionRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def resolve(self, action_id: str) -> BaseAction:
        """Get an action by id or raise ActionNotFoundError."""
        action = self._actions.get(action_id)
        if action is None:
            raise ActionNotFoundError(action_id)
        return action

    def get(self, action_id: str) -> Optional[BaseAction]:
        return self._actions.get(action_id)

    def __contains__(self, action_id: object) -> bool:
        return action_id in self._actions

    def __len__(self) -> int:
        return len(self._actions)

    def list_all(self) -> list:
        """List all registered actions with metadata and schema."""
        return [{**action.describe(), "action_id": action_id} for action_id, action in self._actions.items()]

    def describe(self, action_id: str) -> dict:
        return {**self.resolve(action_id).describe(), "action_id": action_id}

    @property
    def available_types(self) -> list:
        return list(self._actions.keys())


# Singleton
_registry: Optional[ActionRegistry] = None


def get_action_registry() -> ActionRegistry:
    """Get or create the singleton action registry, frozen after built-ins load."""
    global _registry
    if _registry is None:
        _registry = ActionRegistry().freeze()
    return _registry
