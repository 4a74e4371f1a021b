"""Case API Routes - Case creation, transitions and history"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr, Field

from ..deps import get_current_user_dep, get_correlation_id_dep
from ...domain.models import (
    ActorContext, Case, CaseComment, TransitionPayload, TransitionHistory,
    AvailableTransition, AssignmentPreview, ExecuteResult
)
from ...domain.enums import RecordType
from ...domain.errors import DomainError
from ...services.case_service import CaseService
from ...utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================

class CreateCaseRequest(BaseModel):
    """Request to open a case; the workflow is matched when workflow_id is omitted"""
    record_type: RecordType
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = Field(None, max_length=10000)
    workflow_id: Optional[str] = None
    classification_id: Optional[str] = None
    location_id: Optional[str] = None
    source: Optional[str] = None
    severity: Optional[int] = None
    priority: Optional[int] = None
    reporter_email: Optional[EmailStr] = None
    reporter_name: Optional[str] = None
    custom_fields: Dict[str, Any] = Field(default_factory=dict)
    due_date: Optional[datetime] = None


class CommentListResponse(BaseModel):
    items: List[CaseComment]


# ============================================================================
# Routes
# ============================================================================

# Case routes are plain functions: the engine does blocking Mongo and action
# work, so FastAPI runs them in its threadpool.

@router.post("", response_model=Case, status_code=status.HTTP_201_CREATED)
def create_case(
    request: CreateCaseRequest,
    actor: ActorContext = Depends(get_current_user_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """
    Open a case

    The case starts in the workflow's initial state at version 1.
    """
    try:
        case = CaseService().create_case(request.model_dump(), actor)
        logger.info(
            f"Created case {case.case_number}",
            extra={"case_id": case.case_id, "workflow_id": case.workflow_id, "actor_email": actor.email}
        )
        return case
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/{case_id}", response_model=Case, response_model_exclude={"pending_history", "pending_actions"})
def get_case(
    case_id: str,
    actor: ActorContext = Depends(get_current_user_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    try:
        return CaseService().get_case(case_id)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/{case_id}/transitions/available", response_model=List[AvailableTransition])
def get_available_transitions(
    case_id: str,
    actor: ActorContext = Depends(get_current_user_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Transitions leaving the current state with their readiness for this actor"""
    try:
        return CaseService().get_available_transitions(case_id, actor)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("/{case_id}/transition", response_model=ExecuteResult)
def execute_transition(
    case_id: str,
    payload: TransitionPayload,
    actor: ActorContext = Depends(get_current_user_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """
    Execute a transition

    payload.version must equal the case's current version. Responses:
    409 CONFLICT when another transition committed first, 422
    REQUIREMENT_NOT_MET for a missing mandatory input, 409
    AMBIGUOUS_ASSIGNMENT when a department must be chosen, 403 FORBIDDEN
    when the actor lacks an allowed role.

    side_effects_failed is true when the transition committed but an
    action failed; see action_results.
    """
    try:
        result = CaseService().execute_transition(case_id, payload, actor)
        logger.info(
            f"Case {case_id} moved to {result.new_state_name or result.new_state_id} (v{result.version})",
            extra={
                "case_id": case_id,
                "transition_id": payload.transition_id,
                "history_id": result.history_id,
                "actor_email": actor.email,
            }
        )
        return result
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post(
    "/{case_id}/transitions/{transition_id}/assignment-preview",
    response_model=AssignmentPreview
)
def preview_assignment(
    case_id: str,
    transition_id: str,
    actor: ActorContext = Depends(get_current_user_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Departments and users the transition would choose from, before executing it"""
    try:
        return CaseService().preview_assignment(case_id, transition_id)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/{case_id}/history", response_model=List[TransitionHistory])
def get_history(
    case_id: str,
    actor: ActorContext = Depends(get_current_user_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    """Transition history ordered by revision number"""
    try:
        return CaseService().get_history(case_id)
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/{case_id}/comments", response_model=CommentListResponse)
def get_comments(
    case_id: str,
    actor: ActorContext = Depends(get_current_user_dep),
    correlation_id: str = Depends(get_correlation_id_dep)
):
    try:
        return CommentListResponse(items=CaseService().get_comments(case_id))
    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())
