"""Workflow API Routes - Workflow administration, export/import and availability"""
from typing import Any, Dict, List, Optional, Union
from fastapi import APIRouter, Depends, HTTPException, status, Query, UploadFile, File
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..deps import get_current_user_dep, get_correlation_id_dep, require_admin_dep
from ...config.settings import settings
from ...domain.models import (
    ActorContext, CaseAttributes, Workflow, WorkflowState, WorkflowTransition, AvailableTransition
)
from ...domain.transfer_models import ImportResult
from ...domain.enums import RecordType, StateType, RequirementType, ActionType
from ...domain.errors import DomainError
from ...services.workflow_service import WorkflowService
from ...services.workflow_transfer_service import WorkflowTransferService
from ...services.case_service import CaseService
from ...utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================

class CreateWorkflowRequest(BaseModel):
    """Request to create a new workflow"""
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    match_config: Optional[Dict[str, Any]] = None
    is_active: bool = True
    is_default: bool = False


class UpdateWorkflowRequest(BaseModel):
    """Partial workflow update; omitted fields are unchanged"""
    code: Optional[str] = Field(None, min_length=1, max_length=50)
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    match_config: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None
    is_default: Optional[bool] = None


class DuplicateWorkflowRequest(BaseModel):
    code: Optional[str] = Field(None, min_length=1, max_length=50)
    name: Optional[str] = Field(None, min_length=1, max_length=200)


class StateRequest(BaseModel):
    """Request to add a state"""
    name: str = Field(..., min_length=1, max_length=200)
    code: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None
    state_type: StateType = StateType.NORMAL
    color: Optional[str] = None
    sla_hours: Optional[float] = Field(None, ge=0)
    sort_order: int = 0
    viewable_role_ids: List[str] = Field(default_factory=list)
    position_x: Optional[float] = None
    position_y: Optional[float] = None
    is_active: bool = True


class UpdateStateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    code: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = None
    state_type: Optional[StateType] = None
    color: Optional[str] = None
    sla_hours: Optional[float] = Field(None, ge=0)
    sort_order: Optional[int] = None
    viewable_role_ids: Optional[List[str]] = None
    position_x: Optional[float] = None
    position_y: Optional[float] = None
    is_active: Optional[bool] = None


class RequirementRequest(BaseModel):
    requirement_id: Optional[str] = None
    requirement_type: RequirementType
    field_name: Optional[str] = None
    field_value: Optional[Any] = None
    is_mandatory: bool = True
    error_message: Optional[str] = None


class ActionRequest(BaseModel):
    """Action definition; config may be sent as an object or a JSON string"""
    action_id: Optional[str] = None
    action_type: ActionType
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    config: Union[Dict[str, Any], str] = Field(default_factory=dict)
    execution_order: int = 0
    is_async: bool = False
    is_active: bool = True


class TransitionRequest(BaseModel):
    """Request to add a transition"""
    name: str = Field(..., min_length=1, max_length=200)
    code: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None
    from_state_id: str
    to_state_id: str
    allowed_roles: List[str] = Field(default_factory=list)
    assign_department_id: Optional[str] = None
    auto_detect_department: bool = False
    assign_user_id: Optional[str] = None
    assignment_role_id: Optional[str] = None
    auto_match_user: bool = False
    manual_select_user: bool = False
    requirements: List[RequirementRequest] = Field(default_factory=list)
    actions: List[ActionRequest] = Field(default_factory=list)
    is_active: bool = True
    sort_order: int = 0


class UpdateTransitionRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    code: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = None
    from_state_id: Optional[str] = None
    to_state_id: Optional[str] = None
    allowed_roles: Optional[List[str]] = None
    assign_department_id: Optional[str] = None
    auto_detect_department: Optional[bool] = None
    assign_user_id: Optional[str] = None
    assignment_role_id: Optional[str] = None
    auto_match_user: Optional[bool] = None
    manual_select_user: Optional[bool] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


class RolesRequest(BaseModel):
    role_ids: List[str] = Field(default_factory=list)


class RequirementsRequest(BaseModel):
    requirements: List[RequirementRequest] = Field(default_factory=list)


class ActionsRequest(BaseModel):
    actions: List[ActionRequest] = Field(default_factory=list)


class MatchPreviewRequest(BaseModel):
    """Case attributes to run through the matcher"""
    record_type: RecordType
    classification_id: Optional[str] = None
    location_id: Optional[str] = None
    source: Optional[str] = None
    severity: Optional[int] = None
    priority: Optional[int] = None


class WorkflowListResponse(BaseModel):
    """Response for workflow list"""
    items: List[Workflow]
    total: int


# ============================================================================
# Workflows
# ============================================================================

@router.get("", response_model=WorkflowListResponse)
async def list_workflows(
    active_only: bool = Query(False),
    record_type: Optional[RecordType] = Query(None),
    actor: ActorContext = Depends(get_current_user_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """
    List workflows

    record_type narrows the list to workflows whose match config covers it
    (including "all" and the legacy "both").
    """
    workflows = WorkflowService().list_workflows(active_only=active_only, record_type=record_type)
    return WorkflowListResponse(items=workflows, total=len(workflows))


@router.post("", response_model=Workflow, status_code=status.HTTP_201_CREATED)
async def create_workflow(
    request: CreateWorkflowRequest,
    actor: ActorContext = Depends(require_admin_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Create an empty workflow; states and transitions are added afterwards"""
    try:
        workflow = WorkflowService().create_workflow(
            code=request.code,
            name=request.name,
            actor=actor,
            description=request.description,
            match_config=request.match_config,
            is_active=request.is_active,
            is_default=request.is_default
        )
        logger.info(
            f"Created workflow: {workflow.code}",
            extra={"workflow_id": workflow.workflow_id, "actor_email": actor.email}
        )
        return workflow
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/deleted", response_model=WorkflowListResponse)
async def list_deleted_workflows(
    actor: ActorContext = Depends(require_admin_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Soft-deleted workflows that can still be restored"""
    workflows = WorkflowService().list_deleted_workflows()
    return WorkflowListResponse(items=workflows, total=len(workflows))


@router.post("/import", response_model=ImportResult, status_code=status.HTTP_201_CREATED)
async def import_workflow(
    file: UploadFile = File(...),
    actor: ActorContext = Depends(require_admin_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """
    Import a workflow export file

    Always creates a new workflow. Missing roles, departments and users are
    dropped and reported in warnings; classifications and locations are
    created when unknown.
    """
    try:
        # One byte past the limit is enough to reject the upload
        content = await file.read(settings.import_max_bytes + 1)
        result = WorkflowTransferService().import_file(content, actor)
        logger.info(
            f"Imported workflow {result.code} from {file.filename}",
            extra={"workflow_id": result.workflow_id, "actor_email": actor.email}
        )
        return result
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())
    finally:
        await file.close()


@router.post("/match-preview")
async def preview_match(
    request: MatchPreviewRequest,
    actor: ActorContext = Depends(require_admin_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Which workflow a case with these attributes would get, with per-workflow reasons"""
    try:
        attributes = CaseAttributes.model_validate(request.model_dump())
        return WorkflowService().preview_match(attributes, request.record_type)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/{workflow_id}", response_model=Workflow)
async def get_workflow(
    workflow_id: str,
    actor: ActorContext = Depends(get_current_user_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Get a workflow with its live states and transitions"""
    try:
        return WorkflowService().get_workflow(workflow_id)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.put("/{workflow_id}", response_model=Workflow)
async def update_workflow(
    workflow_id: str,
    request: UpdateWorkflowRequest,
    actor: ActorContext = Depends(require_admin_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    try:
        return WorkflowService().update_workflow(
            workflow_id, request.model_dump(exclude_unset=True), actor
        )
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.delete("/{workflow_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_workflow(
    workflow_id: str,
    actor: ActorContext = Depends(require_admin_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Soft delete; cases already on the workflow keep running"""
    try:
        WorkflowService().delete_workflow(workflow_id, actor)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("/{workflow_id}/restore", response_model=Workflow)
async def restore_workflow(
    workflow_id: str,
    actor: ActorContext = Depends(require_admin_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    try:
        return WorkflowService().restore_workflow(workflow_id, actor)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.delete("/{workflow_id}/permanent", status_code=status.HTTP_204_NO_CONTENT)
async def delete_workflow_permanently(
    workflow_id: str,
    actor: ActorContext = Depends(require_admin_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Remove a workflow with its states and transitions; refused while cases reference it"""
    try:
        WorkflowService().delete_workflow_permanently(workflow_id, actor)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("/{workflow_id}/duplicate", response_model=Workflow, status_code=status.HTTP_201_CREATED)
async def duplicate_workflow(
    workflow_id: str,
    request: Optional[DuplicateWorkflowRequest] = None,
    actor: ActorContext = Depends(require_admin_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    try:
        request = request or DuplicateWorkflowRequest()
        return WorkflowService().duplicate_workflow(
            workflow_id, actor, code=request.code, name=request.name
        )
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("/{workflow_id}/default", response_model=Workflow)
async def set_default_workflow(
    workflow_id: str,
    actor: ActorContext = Depends(require_admin_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Make the workflow the fallback for its match record type"""
    try:
        return WorkflowService().set_default(workflow_id, actor)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("/{workflow_id}/validate")
async def validate_workflow(
    workflow_id: str,
    actor: ActorContext = Depends(get_current_user_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """
    Readiness report

    Lists problems such as a missing initial state or unreachable states.
    Saving is never blocked by these findings.
    """
    try:
        return WorkflowService().validate_workflow(workflow_id)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/{workflow_id}/export")
async def export_workflow(
    workflow_id: str,
    actor: ActorContext = Depends(require_admin_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Download the workflow as a portable JSON document keyed by natural codes"""
    try:
        document = WorkflowTransferService().export_workflow(workflow_id)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())

    filename = f"workflow_{document.workflow.code.lower()}.json"
    return JSONResponse(
        content=document.model_dump(mode="json"),
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


@router.get("/{workflow_id}/transitions/available", response_model=List[AvailableTransition])
def get_available_transitions(
    workflow_id: str,
    case_id: str = Query(..., min_length=1),
    actor: ActorContext = Depends(get_current_user_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """
    Transitions leaving the case's current state

    Each entry says whether the current actor can execute it now and which
    requirements it carries.
    """
    try:
        return CaseService().get_available_transitions_for_workflow(workflow_id, case_id, actor)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


# ============================================================================
# States
# ============================================================================

@router.get("/{workflow_id}/states", response_model=List[WorkflowState])
async def list_states(
    workflow_id: str,
    actor: ActorContext = Depends(get_current_user_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    try:
        return WorkflowService().list_states(workflow_id)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("/{workflow_id}/states", response_model=WorkflowState, status_code=status.HTTP_201_CREATED)
async def add_state(
    workflow_id: str,
    request: StateRequest,
    actor: ActorContext = Depends(require_admin_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    try:
        return WorkflowService().add_state(workflow_id, request.model_dump(), actor)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.put("/{workflow_id}/states/{state_id}", response_model=WorkflowState)
async def update_state(
    workflow_id: str,
    state_id: str,
    request: UpdateStateRequest,
    actor: ActorContext = Depends(require_admin_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    try:
        return WorkflowService().update_state(
            workflow_id, state_id, request.model_dump(exclude_unset=True), actor
        )
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.delete("/{workflow_id}/states/{state_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_state(
    workflow_id: str,
    state_id: str,
    actor: ActorContext = Depends(require_admin_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Soft delete; refused while any case is in the state"""
    try:
        WorkflowService().delete_state(workflow_id, state_id, actor)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


# ============================================================================
# Transitions
# ============================================================================

@router.get("/{workflow_id}/transitions", response_model=List[WorkflowTransition])
async def list_transitions(
    workflow_id: str,
    actor: ActorContext = Depends(get_current_user_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    try:
        return WorkflowService().list_transitions(workflow_id)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("/{workflow_id}/transitions", response_model=WorkflowTransition, status_code=status.HTTP_201_CREATED)
async def add_transition(
    workflow_id: str,
    request: TransitionRequest,
    actor: ActorContext = Depends(require_admin_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    try:
        return WorkflowService().add_transition(workflow_id, request.model_dump(), actor)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.put("/{workflow_id}/transitions/{transition_id}", response_model=WorkflowTransition)
async def update_transition(
    workflow_id: str,
    transition_id: str,
    request: UpdateTransitionRequest,
    actor: ActorContext = Depends(require_admin_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    try:
        return WorkflowService().update_transition(
            workflow_id, transition_id, request.model_dump(exclude_unset=True), actor
        )
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.put("/{workflow_id}/transitions/{transition_id}/roles", response_model=WorkflowTransition)
async def set_transition_roles(
    workflow_id: str,
    transition_id: str,
    request: RolesRequest,
    actor: ActorContext = Depends(require_admin_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Replace the allowed roles; an empty list lets anyone execute the transition"""
    try:
        return WorkflowService().set_allowed_roles(workflow_id, transition_id, request.role_ids, actor)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.put("/{workflow_id}/transitions/{transition_id}/requirements", response_model=WorkflowTransition)
async def set_transition_requirements(
    workflow_id: str,
    transition_id: str,
    request: RequirementsRequest,
    actor: ActorContext = Depends(require_admin_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    try:
        return WorkflowService().set_requirements(
            workflow_id, transition_id, [r.model_dump() for r in request.requirements], actor
        )
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.put("/{workflow_id}/transitions/{transition_id}/actions", response_model=WorkflowTransition)
async def set_transition_actions(
    workflow_id: str,
    transition_id: str,
    request: ActionsRequest,
    actor: ActorContext = Depends(require_admin_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    try:
        return WorkflowService().set_actions(
            workflow_id, transition_id, [a.model_dump() for a in request.actions], actor
        )
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.delete("/{workflow_id}/transitions/{transition_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_transition(
    workflow_id: str,
    transition_id: str,
    actor: ActorContext = Depends(require_admin_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    try:
        WorkflowService().delete_transition(workflow_id, transition_id, actor)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())
