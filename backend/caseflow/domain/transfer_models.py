"""Workflow Export/Import Document Models

Cross references are carried by natural key (state code, role code,
classification name, location code, department code, user email) so a
document can move between environments whose ids differ.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict

from .enums import MatchRecordType, StateType, RequirementType, ActionType


EXPORT_FORMAT_VERSION = "1.0"


class ExportedMatchConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    classification_names: List[str] = Field(default_factory=list)
    location_codes: List[str] = Field(default_factory=list)
    sources: List[str] = Field(default_factory=list)
    severity_min: Optional[int] = None
    severity_max: Optional[int] = None
    priority_min: Optional[int] = None
    priority_max: Optional[int] = None
    record_type: MatchRecordType = MatchRecordType.ALL


class ExportedWorkflow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: str
    name: str
    description: Optional[str] = None
    is_active: bool = True
    is_default: bool = False
    match_config: ExportedMatchConfig = Field(default_factory=ExportedMatchConfig)


class ExportedState(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: str
    name: str
    description: Optional[str] = None
    state_type: StateType = StateType.NORMAL
    color: str = "#6b7280"
    sla_hours: Optional[float] = None
    sort_order: int = 0
    viewable_role_codes: List[str] = Field(default_factory=list)
    position_x: Optional[float] = None
    position_y: Optional[float] = None
    is_active: bool = True


class ExportedTransition(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: str
    name: str
    description: Optional[str] = None
    from_state_code: str
    to_state_code: str
    allowed_role_codes: List[str] = Field(default_factory=list)
    assign_department_code: Optional[str] = None
    auto_detect_department: bool = False
    assign_user_email: Optional[str] = None
    assignment_role_code: Optional[str] = None
    auto_match_user: bool = False
    manual_select_user: bool = False
    is_active: bool = True
    sort_order: int = 0


class ExportedRequirement(BaseModel):
    model_config = ConfigDict(extra="ignore")

    requirement_type: RequirementType
    field_name: Optional[str] = None
    field_value: Optional[Any] = None
    is_mandatory: bool = True
    error_message: Optional[str] = None


class ExportedAction(BaseModel):
    model_config = ConfigDict(extra="ignore")

    action_type: ActionType
    name: str
    description: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)
    execution_order: int = 0
    is_async: bool = False
    is_active: bool = True


class WorkflowExportDocument(BaseModel):
    """Top-level export document"""
    model_config = ConfigDict(extra="ignore")

    format_version: str = EXPORT_FORMAT_VERSION
    exported_at: datetime
    workflow: ExportedWorkflow
    states: List[ExportedState] = Field(default_factory=list)
    transitions: List[ExportedTransition] = Field(default_factory=list)
    requirements_by_transition: Dict[str, List[ExportedRequirement]] = Field(default_factory=dict)
    actions_by_transition: Dict[str, List[ExportedAction]] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list, description="References the exporter could not resolve")


class ImportResult(BaseModel):
    workflow_id: str
    code: str
    warnings: List[str] = Field(default_factory=list)
