"""Workflow schemas."""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional

from api.schemas.common import ViolationSchema
from core.constants import NodeType, WorkflowStatus


class NodeSchema(BaseModel):
    """A node of the workflow graph."""

    id: str = Field(description="Unique, stable node id")
    type: NodeType = Field(description="start, end, condition, action or delay")
    action_id: Optional[str] = Field(default=None, description="Registered action id (action nodes)")
    config: Dict[str, Any] = Field(default_factory=dict, description="Literal or {{template}} values")
    position: Optional[Dict[str, Any]] = Field(default=None, description="Editor layout; ignored by the engine")


class ConnectionSchema(BaseModel):
    """A directed edge between two nodes."""

    source: str = Field(alias="from", description="Source node id")
    target: str = Field(alias="to", description="Target node id")
    output_index: int = Field(default=0, ge=0, description="0 = default/true, 1 = false/else")

    class Config:
        populate_by_name = True


class WorkflowDefinition(BaseModel):
    """Nodes, connections and per-workflow settings."""

    nodes: List[NodeSchema] = Field(default_factory=list)
    connections: List[ConnectionSchema] = Field(default_factory=list)
    settings: Dict[str, Any] = Field(
        default_factory=dict,
        description="max_retries, retry_delay_seconds, timeout_seconds",
    )

    def to_definition(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class WorkflowCreate(BaseModel):
    """Request to create a workflow."""

    name: str = Field(min_length=1, max_length=255)
    description: str = Field(default="")
    status: WorkflowStatus = Field(default=WorkflowStatus.DRAFT)
    definition: WorkflowDefinition


class WorkflowStatusUpdate(BaseModel):
    """Request to activate, archive or return a workflow to draft."""

    status: WorkflowStatus


class WorkflowResponse(BaseModel):
    """Workflow information response."""

    id: str
    name: str
    description: str
    status: WorkflowStatus
    definition: Dict[str, Any]
    settings: Dict[str, Any]
    version: int


class ValidationResponse(BaseModel):
    """Result of validating a workflow definition."""

    valid: bool
    violations: List[ViolationSchema]
