"""Database models for the automation engine.

This module imports all models to ensure they are registered
with SQLAlchemy's declarative base.
"""

from db.models.workflow import Workflow
from db.models.execution import Execution
from db.models.sync_record import SyncRecord

__all__ = [
    "Workflow",
    "Execution",
    "SyncRecord",
]
