"""Execution context: the variable environment of one execution.

Values live in a nested mapping addressed by dotted paths:

    submission.email          -> the triggering form's email field
    check_age.output_index    -> output of node ``check_age``
    system.execution_id       -> values seeded by the engine

Templates reference paths as ``{{ path }}``. Resolution degrades instead
of failing: an unknown path renders as an empty string.
"""

import copy
import json
import re
from collections.abc import Mapping
from typing import Any, Iterator, Optional

import structlog

from core.exceptions import ConfigResolutionError, DuplicateKeyError

logger = structlog.get_logger(__name__)

TEMPLATE_PATTERN = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")

_MISSING = object()


def lookup_path(data: Any, path: str) -> Any:
    """Resolve a dot-notation ``path`` inside ``data``.

    Walks dict keys (accepting ``step_1``/``step-1`` spellings) and list
    indexes. Raises ConfigResolutionError when any segment is missing.
    """
    current = data
    for part in path.strip().split("."):
        if isinstance(current, Mapping):
            if part in current:
                current = current[part]
                continue
            alt = part.replace("_", "-") if "_" in part else part.replace("-", "_")
            if alt in current:
                current = current[alt]
                continue
            raise ConfigResolutionError(path)
        if isinstance(current, (list, tuple)):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                raise ConfigResolutionError(path) from None
            continue
        raise ConfigResolutionError(path)
    return current


def stringify(value: Any) -> str:
    """Text form of a context value used inside templates."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


class ContextStore:
    """Mutable, write-once variable environment for a single execution."""

    def __init__(self, data: Optional[dict] = None):
        self._data: dict[str, Any] = copy.deepcopy(data) if data else {}

    # ─── Writes ────────────────────────────────────────────

    def set(self, key: str, value: Any, override: bool = False) -> None:
        """Store ``value`` under dotted ``key``.

        Raises DuplicateKeyError if the key already holds a value and
        ``override`` is not set.
        """
        if not key:
            raise ValueError("Context key must not be empty")
        if not override and self.has(key):
            raise DuplicateKeyError(key)

        parts = key.split(".")
        target = self._data
        for depth, part in enumerate(parts[:-1], start=1):
            child = target.get(part)
            if not isinstance(child, dict):
                # A scalar on the way down only gives way to an explicit override
                if part in target and not override:
                    raise DuplicateKeyError(".".join(parts[:depth]))
                child = {}
                target[part] = child
            target = child
        target[parts[-1]] = copy.deepcopy(value)

    # ─── Reads ─────────────────────────────────────────────

    def has(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def get(self, key: str, default: Any = None) -> Any:
        try:
            return lookup_path(self._data, key)
        except ConfigResolutionError:
            return default

    def resolve(self, template: str) -> str:
        """Substitute every ``{{ path }}`` token in ``template``.

        Unresolvable paths become empty strings; this never raises.
        """
        if not isinstance(template, str):
            return stringify(template)
        return TEMPLATE_PATTERN.sub(lambda m: stringify(self._lookup_or_blank(m.group(1))), template)

    def resolve_value(self, value: Any) -> Any:
        """Resolve a single config value.

        A string that is exactly one ``{{ path }}`` token yields the raw
        referenced value (dicts and numbers keep their type); any other
        string is rendered with ``resolve``.
        """
        if not isinstance(value, str):
            return value
        match = TEMPLATE_PATTERN.fullmatch(value.strip())
        if match:
            return self._lookup_or_blank(match.group(1))
        if "{{" not in value:
            return value
        return self.resolve(value)

    def resolve_config(self, config: Any) -> Any:
        """Recursively resolve every string inside a config structure."""
        if isinstance(config, dict):
            return {key: self.resolve_config(value) for key, value in config.items()}
        if isinstance(config, list):
            return [self.resolve_config(item) for item in config]
        return self.resolve_value(config)

    def _lookup_or_blank(self, path: str) -> Any:
        try:
            return lookup_path(self._data, path)
        except ConfigResolutionError as exc:
            logger.debug("template_unresolved", path=exc.path)
            return ""

    # ─── Persistence ───────────────────────────────────────

    def snapshot(self) -> dict[str, Any]:
        """Deep copy of the full environment, safe to serialize."""
        return copy.deepcopy(self._data)

    @classmethod
    def from_snapshot(cls, data: Optional[dict]) -> "ContextStore":
        return cls(data or {})

    def view(self) -> "ContextView":
        return ContextView(self)


class ContextView(Mapping):
    """Read-only window onto a ContextStore handed to actions."""

    def __init__(self, store: ContextStore):
        self._store = store

    def __getitem__(self, key: str) -> Any:
        value = self._store.get(key, _MISSING)
        if value is _MISSING:
            raise KeyError(key)
        return copy.deepcopy(value)

    def __iter__(self) -> Iterator[str]:
        return iter(self._store.snapshot())

    def __len__(self) -> int:
        return len(self._store.snapshot())

    def get(self, key: str, default: Any = None) -> Any:
        value = self._store.get(key, _MISSING)
        return default if value is _MISSING else copy.deepcopy(value)

    def resolve(self, template: str) -> str:
        return self._store.resolve(template)

    def snapshot(self) -> dict[str, Any]:
        return self._store.snapshot()
