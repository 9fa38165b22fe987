"""Workflow API routes."""

from fastapi import APIRouter, Depends, status

from api.schemas.execution import ExecutionCreate, ExecutionDetailResponse
from api.schemas.workflow import (
    ValidationResponse,
    WorkflowCreate,
    WorkflowDefinition,
    WorkflowResponse,
    WorkflowStatusUpdate,
)
from app.dependencies import get_service
from services.automation_service import AutomationService

router = APIRouter()


@router.post("", response_model=WorkflowResponse, status_code=status.HTTP_201_CREATED)
async def create_workflow(
    body: WorkflowCreate,
    service: AutomationService = Depends(get_service),
):
    """Create a workflow. Active workflows are validated first."""
    definition = body.definition.to_definition()
    workflow = await service.create_workflow(
        name=body.name,
        definition=definition,
        status=body.status,
        settings=definition.get("settings"),
        description=body.description,
    )
    return workflow.to_dict()


@router.post("/validate", response_model=ValidationResponse)
async def validate_workflow(
    body: WorkflowDefinition,
    service: AutomationService = Depends(get_service),
):
    """Check a definition without saving it; returns every violation."""
    return service.validate_workflow(body.to_definition()).to_dict()


@router.get("/{workflow_id}", response_model=WorkflowResponse)
async def get_workflow(
    workflow_id: str,
    service: AutomationService = Depends(get_service),
):
    workflow = await service.get_workflow(workflow_id)
    return workflow.to_dict()


@router.put("/{workflow_id}/status", response_model=WorkflowResponse)
async def update_workflow_status(
    workflow_id: str,
    body: WorkflowStatusUpdate,
    service: AutomationService = Depends(get_service),
):
    """Activate, archive or return a workflow to draft."""
    workflow = await service.set_workflow_status(workflow_id, body.status)
    return workflow.to_dict()


@router.post(
    "/{workflow_id}/executions",
    response_model=ExecutionDetailResponse,
    status_code=status.HTTP_201_CREATED,
)
async def start_execution(
    workflow_id: str,
    body: ExecutionCreate,
    service: AutomationService = Depends(get_service),
):
    """Trigger the workflow for a submission and run its first turn."""
    execution_id = await service.start_execution(workflow_id, body.payload)
    record = await service.get_execution(execution_id)
    return record.to_dict()
