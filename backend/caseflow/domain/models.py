"""Domain Models - Pydantic schemas for all entities"""
import json
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field, EmailStr, ConfigDict, field_validator, model_validator

from .enums import (
    RecordType, MatchRecordType, StateType, RequirementType, ActionType,
    EmailRecipient, ActionResultStatus, OutboxStatus, NotificationStatus,
    UnmetReason, UPDATABLE_CASE_FIELDS
)


# ============================================================================
# User & Identity Snapshots
# ============================================================================

class UserSnapshot(BaseModel):
    """Snapshot of user info at a point in time"""
    model_config = ConfigDict(extra="ignore")

    user_id: str = Field(..., description="Directory user ID")
    email: EmailStr = Field(..., description="User email")
    display_name: str = Field(..., description="User display name")


class ActorContext(BaseModel):
    """Current actor context from JWT token"""
    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(..., description="Directory user ID (sub claim)")
    email: EmailStr = Field(..., description="User email")
    display_name: str = Field(..., description="User display name")
    roles: List[str] = Field(default_factory=list, description="Role IDs held by the actor")
    is_super_admin: bool = Field(default=False)

    def snapshot(self) -> UserSnapshot:
        return UserSnapshot(user_id=self.user_id, email=self.email, display_name=self.display_name)

    def has_any_role(self, role_ids: List[str]) -> bool:
        """True when no roles are required, the actor is super admin, or sets intersect"""
        if not role_ids or self.is_super_admin:
            return True
        return bool(set(role_ids) & set(self.roles))


# ============================================================================
# Match Configuration
# ============================================================================

class MatchConfig(BaseModel):
    """Rules selecting which cases a workflow applies to (empty = no restriction)"""
    model_config = ConfigDict(extra="forbid")

    classification_ids: List[str] = Field(default_factory=list)
    location_ids: List[str] = Field(default_factory=list)
    sources: List[str] = Field(default_factory=list)
    severity_min: Optional[int] = None
    severity_max: Optional[int] = None
    priority_min: Optional[int] = None
    priority_max: Optional[int] = None
    record_type: MatchRecordType = Field(default=MatchRecordType.ALL)

    @model_validator(mode="after")
    def check_ranges(self) -> "MatchConfig":
        for name in ("severity", "priority"):
            low = getattr(self, f"{name}_min")
            high = getattr(self, f"{name}_max")
            if low is not None and high is not None and low > high:
                raise ValueError(f"{name}_min must not exceed {name}_max")
        return self

    def specificity(self) -> int:
        """Number of restricting list criteria"""
        return sum(1 for values in (self.classification_ids, self.location_ids, self.sources) if values)


# ============================================================================
# Workflow Definition
# ============================================================================

class WorkflowState(BaseModel):
    """A stage a case can occupy"""
    model_config = ConfigDict(extra="ignore")

    state_id: str
    workflow_id: str
    name: str
    code: str
    description: Optional[str] = None
    state_type: StateType = Field(default=StateType.NORMAL)
    color: str = Field(default="#6b7280")
    sla_hours: Optional[float] = Field(default=None, ge=0, description="Resolution target once the case enters this state")
    sort_order: int = Field(default=0)
    viewable_role_ids: List[str] = Field(default_factory=list)
    position_x: Optional[float] = None
    position_y: Optional[float] = None
    is_active: bool = Field(default=True)
    deleted_at: Optional[datetime] = None


class TransitionRequirement(BaseModel):
    """Precondition checked before a transition executes"""
    model_config = ConfigDict(extra="ignore")

    requirement_id: str
    requirement_type: RequirementType
    field_name: Optional[str] = None
    field_value: Optional[Any] = None
    is_mandatory: bool = Field(default=True)
    error_message: Optional[str] = None

    @model_validator(mode="after")
    def check_field_requirement(self) -> "TransitionRequirement":
        if self.requirement_type == RequirementType.FIELD_VALUE and not self.field_name:
            raise ValueError("field_value requirements need field_name")
        return self

    def describe(self) -> Dict[str, Any]:
        return {
            "requirement_id": self.requirement_id,
            "type": self.requirement_type.value,
            "is_mandatory": self.is_mandatory,
            "error_message": self.error_message,
            "field_name": self.field_name,
        }


class EmailActionConfig(BaseModel):
    """Email action: enqueued to the notification outbox"""
    model_config = ConfigDict(extra="forbid")

    enabled: bool = Field(default=True)
    recipients: List[EmailRecipient] = Field(default_factory=lambda: [EmailRecipient.ASSIGNEE])
    custom_emails: List[EmailStr] = Field(default_factory=list)
    subject_template: str = Field(default="[{{case_number}}] {{title}} moved to {{new_state}}")
    body_template: Optional[str] = None
    include_incident_details: bool = Field(default=True)
    include_transition_info: bool = Field(default=True)
    include_comments: bool = Field(default=False)

    @model_validator(mode="after")
    def check_recipients(self) -> "EmailActionConfig":
        if not self.recipients:
            raise ValueError("email actions need at least one recipient group")
        if EmailRecipient.CUSTOM in self.recipients and not self.custom_emails:
            raise ValueError("custom recipients need at least one custom email")
        return self


class NotificationActionConfig(BaseModel):
    """In-app notification action"""
    model_config = ConfigDict(extra="forbid")

    recipients: List[EmailRecipient] = Field(default_factory=lambda: [EmailRecipient.ASSIGNEE])
    custom_user_ids: List[str] = Field(default_factory=list)
    title_template: str = Field(default="{{case_number}} moved to {{new_state}}")
    message_template: str = Field(default="{{performed_by}} moved {{title}} from {{old_state}} to {{new_state}}")

    @model_validator(mode="after")
    def check_recipients(self) -> "NotificationActionConfig":
        if not self.recipients:
            raise ValueError("notification actions need at least one recipient group")
        if EmailRecipient.CUSTOM in self.recipients and not self.custom_user_ids:
            raise ValueError("custom recipients need at least one custom user id")
        return self


class WebhookActionConfig(BaseModel):
    """Outbound HTTP call"""
    model_config = ConfigDict(extra="forbid")

    url: str
    method: Literal["POST", "PUT", "PATCH"] = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)
    include_case: bool = Field(default=True)
    timeout_seconds: Optional[float] = Field(default=None, gt=0)

    @field_validator("url")
    @classmethod
    def check_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("webhook url must be http or https")
        return value


class FieldUpdateActionConfig(BaseModel):
    """Writes one case field after the transition commits"""
    model_config = ConfigDict(extra="forbid")

    field_name: str
    value: Any = None

    @field_validator("field_name")
    @classmethod
    def check_field(cls, value: str) -> str:
        if value in UPDATABLE_CASE_FIELDS:
            return value
        if value.startswith("custom_fields.") and len(value) > len("custom_fields."):
            return value
        raise ValueError(f"field '{value}' cannot be updated by an action")


ACTION_CONFIG_MODELS = {
    ActionType.EMAIL: EmailActionConfig,
    ActionType.NOTIFICATION: NotificationActionConfig,
    ActionType.WEBHOOK: WebhookActionConfig,
    ActionType.FIELD_UPDATE: FieldUpdateActionConfig,
}

ActionConfig = Union[EmailActionConfig, NotificationActionConfig, WebhookActionConfig, FieldUpdateActionConfig]


class TransitionAction(BaseModel):
    """Automated side effect of a transition"""
    model_config = ConfigDict(extra="ignore")

    action_id: str
    action_type: ActionType
    name: str
    description: Optional[str] = None
    config: ActionConfig
    execution_order: int = Field(default=0)
    is_async: bool = Field(default=False)
    is_active: bool = Field(default=True)

    @model_validator(mode="before")
    @classmethod
    def parse_config(cls, data: Any) -> Any:
        """Pick the config model from action_type; accepts a JSON string config"""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        action_type = ActionType(data.get("action_type"))
        config = data.get("config") or {}
        if isinstance(config, str):
            config = json.loads(config) if config.strip() else {}
        model = ACTION_CONFIG_MODELS[action_type]
        if not isinstance(config, model):
            if isinstance(config, BaseModel):
                config = config.model_dump()
            config = model.model_validate(config)
        data["config"] = config
        return data


class WorkflowTransition(BaseModel):
    """Directed, guarded edge between two states"""
    model_config = ConfigDict(extra="ignore")

    transition_id: str
    workflow_id: str
    name: str
    code: str
    description: Optional[str] = None
    from_state_id: str
    to_state_id: str
    allowed_roles: List[str] = Field(default_factory=list, description="Role IDs; empty means anyone")
    assign_department_id: Optional[str] = None
    auto_detect_department: bool = Field(default=False)
    assign_user_id: Optional[str] = None
    assignment_role_id: Optional[str] = None
    auto_match_user: bool = Field(default=False)
    manual_select_user: bool = Field(default=False)
    requirements: List[TransitionRequirement] = Field(default_factory=list)
    actions: List[TransitionAction] = Field(default_factory=list)
    is_active: bool = Field(default=True)
    sort_order: int = Field(default=0)
    deleted_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_assignment_modes(self) -> "WorkflowTransition":
        user_modes = [bool(self.assign_user_id), self.auto_match_user, self.manual_select_user]
        if sum(user_modes) > 1:
            raise ValueError("assign_user_id, auto_match_user and manual_select_user are mutually exclusive")
        if self.auto_detect_department and self.assign_department_id:
            raise ValueError("auto_detect_department and assign_department_id are mutually exclusive")
        return self

    def ordered_actions(self) -> List[TransitionAction]:
        return sorted(self.actions, key=lambda a: a.execution_order)


class Workflow(BaseModel):
    """Workflow definition with its live states and transitions"""
    model_config = ConfigDict(extra="ignore")

    workflow_id: str
    code: str
    name: str
    description: Optional[str] = None
    version: int = Field(default=1, description="Bumped on structural edits")
    is_active: bool = Field(default=True)
    is_default: bool = Field(default=False)
    match_config: MatchConfig = Field(default_factory=MatchConfig)
    states: List[WorkflowState] = Field(default_factory=list)
    transitions: List[WorkflowTransition] = Field(default_factory=list)
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None

    def get_state(self, state_id: Optional[str]) -> Optional[WorkflowState]:
        for state in self.states:
            if state.state_id == state_id:
                return state
        return None

    def get_transition(self, transition_id: str) -> Optional[WorkflowTransition]:
        for transition in self.transitions:
            if transition.transition_id == transition_id:
                return transition
        return None

    def initial_states(self) -> List[WorkflowState]:
        states = [s for s in self.states if s.state_type == StateType.INITIAL and s.is_active]
        return sorted(states, key=lambda s: s.sort_order)

    def outgoing(self, state_id: str) -> List[WorkflowTransition]:
        """Active transitions leaving a state, in display order"""
        transitions = [
            t for t in self.transitions
            if t.from_state_id == state_id and t.is_active
        ]
        return sorted(transitions, key=lambda t: (t.sort_order, t.name))


# ============================================================================
# Cases
# ============================================================================

class Feedback(BaseModel):
    """Reporter feedback captured on a transition"""
    model_config = ConfigDict(extra="forbid")

    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class ActionResult(BaseModel):
    """Outcome of one action, appended to the history row"""
    model_config = ConfigDict(extra="ignore")

    action_id: str
    action_type: ActionType
    name: str
    is_async: bool = False
    status: ActionResultStatus
    detail: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    executed_at: datetime


class TransitionHistory(BaseModel):
    """Immutable record of one committed transition"""
    model_config = ConfigDict(extra="ignore")

    history_id: str
    case_id: str
    record_type: RecordType
    workflow_id: str
    transition_id: str
    transition_name: str
    from_state_id: str
    from_state_name: Optional[str] = None
    to_state_id: str
    to_state_name: Optional[str] = None
    revision_number: int = Field(..., ge=1)
    performed_by: UserSnapshot
    comment: Optional[str] = None
    attachment_ids: List[str] = Field(default_factory=list)
    feedback: Optional[Feedback] = None
    old_values: Dict[str, Any] = Field(default_factory=dict)
    new_values: Dict[str, Any] = Field(default_factory=dict)
    action_results: List[ActionResult] = Field(default_factory=list)
    transitioned_at: datetime
    correlation_id: Optional[str] = None


class ActionOutbox(BaseModel):
    """Async actions of one transition, executed in order by the worker"""
    model_config = ConfigDict(extra="ignore")

    outbox_id: str
    history_id: str
    case_id: str
    workflow_id: str
    transition_id: str
    actions: List[TransitionAction]
    context: Dict[str, Any] = Field(default_factory=dict)
    completed_action_ids: List[str] = Field(default_factory=list)
    status: OutboxStatus = Field(default=OutboxStatus.PENDING)
    retry_count: int = Field(default=0)
    last_error: Optional[str] = None
    next_retry_at: Optional[datetime] = None
    locked_until: Optional[datetime] = None
    locked_by: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class Case(BaseModel):
    """Incident, request, complaint or query (one model, keyed by record_type)"""
    model_config = ConfigDict(extra="ignore")

    case_id: str
    case_number: str
    record_type: RecordType
    title: str
    description: Optional[str] = None
    workflow_id: str
    current_state_id: str
    version: int = Field(default=1, description="Optimistic concurrency version")
    classification_id: Optional[str] = None
    location_id: Optional[str] = None
    source: Optional[str] = None
    severity: Optional[int] = None
    priority: Optional[int] = None
    assignee_id: Optional[str] = None
    assignee_ids: List[str] = Field(default_factory=list)
    department_id: Optional[str] = None
    reporter_email: Optional[EmailStr] = None
    reporter_name: Optional[str] = None
    created_by: UserSnapshot
    custom_fields: Dict[str, Any] = Field(default_factory=dict)
    attachment_ids: List[str] = Field(default_factory=list)
    feedback: Optional[Feedback] = None
    due_date: Optional[datetime] = None
    sla_deadline: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    pending_history: Optional[TransitionHistory] = Field(
        default=None, description="History row committed with the state change, not yet materialised"
    )
    pending_actions: Optional[ActionOutbox] = Field(
        default=None, description="Async actions committed with the state change, not yet queued"
    )

    def field_value(self, field_name: str) -> Any:
        """Resolve a case field by name (custom_fields.<key> supported)"""
        if field_name.startswith("custom_fields."):
            return self.custom_fields.get(field_name.split(".", 1)[1])
        if field_name in self.custom_fields and field_name not in type(self).model_fields:
            return self.custom_fields[field_name]
        value = getattr(self, field_name, None)
        if hasattr(value, "value"):
            return value.value
        return value


class CaseAttributes(BaseModel):
    """Case fields workflow matching looks at"""
    model_config = ConfigDict(extra="ignore")

    classification_id: Optional[str] = None
    location_id: Optional[str] = None
    source: Optional[str] = None
    severity: Optional[int] = None
    priority: Optional[int] = None


class CaseComment(BaseModel):
    """Comment captured with a transition"""
    model_config = ConfigDict(extra="ignore")

    comment_id: str
    case_id: str
    body: str
    author: UserSnapshot
    transition_history_id: Optional[str] = None
    created_at: datetime


class TransitionPayload(BaseModel):
    """Caller input for executing a transition"""
    model_config = ConfigDict(extra="forbid")

    transition_id: str
    comment: Optional[str] = None
    attachments: List[str] = Field(default_factory=list)
    feedback: Optional[Feedback] = None
    department_id: Optional[str] = None
    user_id: Optional[str] = None
    version: int


class AvailableTransition(BaseModel):
    """A transition leaving the case's current state, with its readiness"""
    transition_id: str
    name: str
    code: str
    to_state_id: str
    to_state_name: Optional[str] = None
    can_execute: bool
    requirements: List[Dict[str, Any]] = Field(default_factory=list)
    reason: Optional[UnmetReason] = None
    auto_detect_department: bool = False
    manual_select_user: bool = False


class AssignmentOutcome(BaseModel):
    """Department/user assignment computed for a transition (not yet applied)"""
    department_id: Optional[str] = None
    department_changed: bool = False
    assignee_id: Optional[str] = None
    assignee_ids: List[str] = Field(default_factory=list)
    user_changed: bool = False


class AssignmentPreview(BaseModel):
    """Candidates a transition would choose from"""
    transition_id: str
    departments: List[Dict[str, Any]] = Field(default_factory=list)
    single_match: bool = False
    matched_department_id: Optional[str] = None
    users: List[Dict[str, Any]] = Field(default_factory=list)


class ExecuteResult(BaseModel):
    """Outcome of a committed transition"""
    case_id: str
    new_state_id: str
    new_state_name: Optional[str] = None
    version: int
    history_id: str
    revision_number: int
    assignment: AssignmentOutcome
    action_results: List[ActionResult] = Field(default_factory=list)
    side_effects_failed: bool = False


# ============================================================================
# Directory Reference Data
# ============================================================================

class Role(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role_id: str
    code: str
    name: str


class Classification(BaseModel):
    model_config = ConfigDict(extra="ignore")

    classification_id: str
    name: str
    is_active: bool = True


class Location(BaseModel):
    model_config = ConfigDict(extra="ignore")

    location_id: str
    name: str
    code: Optional[str] = None
    is_active: bool = True


class Department(BaseModel):
    """Department with the classification/location scope it handles"""
    model_config = ConfigDict(extra="ignore")

    department_id: str
    code: str
    name: str
    manager_id: Optional[str] = Field(None, description="Department head user ID")
    classification_ids: List[str] = Field(default_factory=list)
    location_ids: List[str] = Field(default_factory=list)
    is_active: bool = True


class DirectoryUser(BaseModel):
    """Assignable user with roles and scope"""
    model_config = ConfigDict(extra="ignore")

    user_id: str
    email: EmailStr
    display_name: str
    role_ids: List[str] = Field(default_factory=list)
    department_ids: List[str] = Field(default_factory=list)
    classification_ids: List[str] = Field(default_factory=list)
    location_ids: List[str] = Field(default_factory=list)
    is_active: bool = True

    def snapshot(self) -> UserSnapshot:
        return UserSnapshot(user_id=self.user_id, email=self.email, display_name=self.display_name)


# ============================================================================
# Outboxes & Notifications
# ============================================================================

class NotificationOutbox(BaseModel):
    """Rendered email waiting for the delivery service"""
    model_config = ConfigDict(extra="ignore")

    notification_id: str
    case_id: str
    history_id: Optional[str] = None
    action_id: Optional[str] = None
    recipients: List[EmailStr]
    subject: str
    body: str
    status: NotificationStatus = Field(default=NotificationStatus.PENDING)
    retry_count: int = Field(default=0)
    last_error: Optional[str] = None
    created_at: datetime
    sent_at: Optional[datetime] = None


class InAppNotification(BaseModel):
    """In-app notification for the notification bell"""
    model_config = ConfigDict(extra="ignore")

    notification_id: str
    recipient_user_id: str
    recipient_email: Optional[EmailStr] = None
    title: str
    message: str
    case_id: Optional[str] = None
    history_id: Optional[str] = None
    action_url: Optional[str] = None
    is_read: bool = Field(default=False)
    created_at: datetime
