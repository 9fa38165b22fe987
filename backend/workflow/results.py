"""Node results.

Every node dispatch produces exactly one of three outcomes:

- ``Success(output)``: the node finished; ``output_index`` picks the
  outgoing edge (condition nodes use 0 = true, 1 = false).
- ``Failure(message, retryable)``: the node failed; retryable failures
  from integration actions feed the retry coordinator.
- ``Waiting(resume_after, reason)``: the execution must suspend for
  ``resume_after`` seconds before the node is completed or re-attempted.
"""

from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class Success:
    output: dict[str, Any] = field(default_factory=dict)
    output_index: int = 0

    kind = "success"

    def to_dict(self) -> dict:
        return {"kind": self.kind, "output": self.output, "output_index": self.output_index}


@dataclass(frozen=True)
class Failure:
    message: str
    retryable: bool = False

    kind = "failure"

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, "retryable": self.retryable}


@dataclass(frozen=True)
class Waiting:
    resume_after: float
    reason: str = ""

    kind = "waiting"

    def to_dict(self) -> dict:
        return {"kind": self.kind, "resume_after": self.resume_after, "reason": self.reason}


NodeResult = Union[Success, Failure, Waiting]


def result_from_dict(data: dict) -> NodeResult:
    """Rebuild a NodeResult from its ``to_dict`` form."""
    kind = data.get("kind")
    if kind == Success.kind:
        return Success(output=data.get("output") or {}, output_index=data.get("output_index", 0))
    if kind == Failure.kind:
        return Failure(message=data.get("message", ""), retryable=data.get("retryable", False))
    if kind == Waiting.kind:
        return Waiting(resume_after=data.get("resume_after", 0), reason=data.get("reason", ""))
    raise ValueError(f"Unknown node result kind: {kind!r}")
