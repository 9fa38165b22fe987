"""API v1 aggregated router.

All v1 endpoints are registered here and mounted under /api/v1 in main.py.
"""

from fastapi import APIRouter

from api.routes import action_types, executions, health, sync, workflows

api_v1_router = APIRouter()

# Health
api_v1_router.include_router(
    health.router,
    tags=["Health"],
)

# Workflows (definitions, validation, triggering)
api_v1_router.include_router(
    workflows.router,
    prefix="/workflows",
    tags=["Workflows"],
)

# Executions
api_v1_router.include_router(
    executions.router,
    prefix="/executions",
    tags=["Executions"],
)

# Sync ledger
api_v1_router.include_router(
    sync.router,
    prefix="/sync",
    tags=["Sync"],
)

# Action Types (for workflow editor)
api_v1_router.include_router(
    action_types.router,
    prefix="/action-types",
    tags=["Action Types"],
)
