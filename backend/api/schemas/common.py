"""Common schemas used across the API."""

from pydantic import BaseModel, Field
from typing import Optional


class MessageResponse(BaseModel):
    """Simple message response."""

    message: str


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str = Field(description="Human-readable error message")
    request_id: Optional[str] = Field(default=None, description="X-Request-ID of the failed request")


class ViolationSchema(BaseModel):
    """One broken structural rule of a workflow graph."""

    code: str = Field(description="Machine-readable violation code")
    message: str = Field(description="Human-readable explanation")
    node_id: Optional[str] = Field(default=None, description="Offending node, when there is one")
