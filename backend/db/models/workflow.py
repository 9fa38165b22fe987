"""Workflow model."""

from typing import Optional

from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import WorkflowStatus
from db.base import BaseModel


class Workflow(BaseModel):
    """A form-automation workflow definition.

    Attributes:
        id: Unique identifier (UUID string)
        name: Workflow name
        description: Workflow description
        status: draft, active or archived; only active workflows run
        definition: JSON graph (nodes + connections)
        settings: JSON workflow settings (retries, timeouts)
        version: Incremented on every definition change
    """

    __tablename__ = "workflows"

    name: Mapped[str] = mapped_column(nullable=False, index=True)
    description: Mapped[str] = mapped_column(nullable=False, default="")
    status: Mapped[str] = mapped_column(
        default=WorkflowStatus.DRAFT.value, index=True
    )
    definition: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    settings: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    version: Mapped[int] = mapped_column(default=1)
