"""Action Types API routes.

Exposes registered actions to the frontend for the workflow editor.
"""

from fastapi import APIRouter

from actions.registry import get_action_registry

router = APIRouter()


@router.get("", summary="List all available action types")
async def list_action_types():
    """Get all registered actions with their config schemas.

    Used by the visual workflow editor to populate the node palette.
    """
    registry = get_action_registry()
    return {
        "action_types": registry.list_all(),
        "count": len(registry.available_types),
    }


@router.get("/{action_id}", summary="Get action type details")
async def get_action_type(action_id: str):
    """Get details and config schema for a specific action.

    Unknown ids raise ActionNotFoundError, which maps to 404.
    """
    return get_action_registry().describe(action_id)
