"""
Workflow Configuration Admin API.

Routes
------
POST   /admin/workflow                     - create a configuration
GET    /admin/workflow                     - list configurations (?active_only=true)
GET    /admin/workflow/{config_id}         - fetch one configuration
PUT    /admin/workflow/{config_id}         - partial update
POST   /admin/workflow/{config_id}/activate
POST   /admin/workflow/{config_id}/deactivate
DELETE /admin/workflow/{config_id}
GET    /admin/workflow/{config_id}/validate
GET    /admin/workflow/{config_id}/link    - applicant link (?base_url=...)
GET    /admin/statistics                   - session + workflow counts
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends

from api.dependencies import get_session_store, get_workflow_store
from models.schemas import (
    AdminStatisticsResponse,
    DeleteResponse,
    StatisticsResponse,
    WorkflowCreateRequest,
    WorkflowLinkResponse,
    WorkflowListResponse,
    WorkflowResponse,
    WorkflowUpdateRequest,
    WorkflowValidationResponse,
)
from services.session_manager import SessionStore
from services.workflow_config_service import WorkflowConfigStore
from utils.config import KYC_LINK_BASE_URL

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["Admin Workflow"])


# ── workflow configurations ──────────────────────────────────────────────
@router.post("/workflow", response_model=WorkflowResponse)
async def create_workflow(
    body: WorkflowCreateRequest,
    workflows: WorkflowConfigStore = Depends(get_workflow_store),
):
    config = workflows.create_configuration(
        name=body.name,
        steps=body.steps,
        form_id=body.form_id,
        created_by=body.created_by,
    )
    return WorkflowResponse(configuration=config)


@router.get("/workflow", response_model=WorkflowListResponse)
async def list_workflows(
    active_only: bool = False,
    workflows: WorkflowConfigStore = Depends(get_workflow_store),
):
    configs = workflows.list_configurations(active_only=active_only)
    return WorkflowListResponse(total=len(configs), configurations=configs)


@router.get("/workflow/{config_id}", response_model=WorkflowResponse)
async def get_workflow(config_id: str, workflows: WorkflowConfigStore = Depends(get_workflow_store)):
    return WorkflowResponse(configuration=workflows.get_configuration(config_id))


@router.put("/workflow/{config_id}", response_model=WorkflowResponse)
async def update_workflow(
    config_id: str,
    body: WorkflowUpdateRequest,
    workflows: WorkflowConfigStore = Depends(get_workflow_store),
):
    """Update a configuration. Sessions already started keep their snapshot."""
    updates = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None}
    if "steps" in updates:
        updates["steps"] = body.steps
    return WorkflowResponse(configuration=workflows.update_configuration(config_id, updates))


@router.post("/workflow/{config_id}/activate", response_model=WorkflowResponse)
async def activate_workflow(config_id: str, workflows: WorkflowConfigStore = Depends(get_workflow_store)):
    return WorkflowResponse(configuration=workflows.activate(config_id))


@router.post("/workflow/{config_id}/deactivate", response_model=WorkflowResponse)
async def deactivate_workflow(config_id: str, workflows: WorkflowConfigStore = Depends(get_workflow_store)):
    return WorkflowResponse(configuration=workflows.deactivate(config_id))


@router.delete("/workflow/{config_id}", response_model=DeleteResponse)
async def delete_workflow(config_id: str, workflows: WorkflowConfigStore = Depends(get_workflow_store)):
    workflows.delete_configuration(config_id)
    return DeleteResponse(message=f"Workflow configuration {config_id} deleted")


@router.get("/workflow/{config_id}/validate", response_model=WorkflowValidationResponse)
async def validate_workflow(config_id: str, workflows: WorkflowConfigStore = Depends(get_workflow_store)):
    validation = workflows.validate_configuration(config_id)
    return WorkflowValidationResponse(config_id=config_id, **validation)


@router.get("/workflow/{config_id}/link", response_model=WorkflowLinkResponse)
async def workflow_link(
    config_id: str,
    base_url: Optional[str] = None,
    workflows: WorkflowConfigStore = Depends(get_workflow_store),
):
    link = workflows.generate_link(config_id, base_url or KYC_LINK_BASE_URL)
    return WorkflowLinkResponse(config_id=config_id, link=link)


# ── statistics ───────────────────────────────────────────────────────────
@router.get("/statistics", response_model=AdminStatisticsResponse)
async def admin_statistics(
    store: SessionStore = Depends(get_session_store),
    workflows: WorkflowConfigStore = Depends(get_workflow_store),
):
    return AdminStatisticsResponse(
        sessions=StatisticsResponse(**store.get_statistics()),
        workflows=workflows.get_statistics(),
    )
