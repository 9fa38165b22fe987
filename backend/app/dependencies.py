"""FastAPI dependency injection functions."""

from services.automation_service import AutomationService, get_automation_service


def get_service() -> AutomationService:
    """
    Provide the automation service for API endpoints.

    Tests override this dependency with an in-memory service.
    """
    return get_automation_service()
