"""Workflow Service - Workflow administration business logic"""
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from ..domain.models import (
    Workflow, WorkflowState, WorkflowTransition, MatchConfig, CaseAttributes, ActorContext
)
from ..domain.enums import RecordType
from ..domain.errors import (
    AlreadyExistsError, ConflictError, ValidationError, StateNotFoundError
)
from ..engine.catalog import WorkflowCatalog, compatible_match_types
from ..engine.matcher import WorkflowMatcher
from ..repositories.workflow_repo import WorkflowRepository
from ..repositories.case_repo import CaseRepository
from ..utils.idgen import (
    generate_workflow_id, generate_state_id, generate_transition_id,
    generate_requirement_id, generate_action_id
)
from ..utils.time import utc_now
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Transition fields an update may change (endpoints included)
TRANSITION_EDITABLE_FIELDS = (
    "name", "code", "description", "from_state_id", "to_state_id", "allowed_roles",
    "assign_department_id", "auto_detect_department", "assign_user_id",
    "assignment_role_id", "auto_match_user", "manual_select_user",
    "is_active", "sort_order",
)


def _invalid(e: PydanticValidationError, what: str) -> ValidationError:
    return ValidationError(
        f"Invalid {what}",
        details={"errors": e.errors(include_url=False, include_context=False)}
    )


class WorkflowService:
    """Service for workflow catalog administration"""

    def __init__(
        self,
        repo: Optional[WorkflowRepository] = None,
        case_repo: Optional[CaseRepository] = None
    ):
        self.repo = repo or WorkflowRepository()
        self.case_repo = case_repo or CaseRepository()
        self.catalog = WorkflowCatalog(self.repo)
        self.matcher = WorkflowMatcher(self.catalog)

    # =========================================================================
    # Workflows
    # =========================================================================

    def create_workflow(
        self,
        code: str,
        name: str,
        actor: ActorContext,
        description: Optional[str] = None,
        match_config: Optional[Dict[str, Any]] = None,
        is_active: bool = True,
        is_default: bool = False
    ) -> Workflow:
        """Create an empty workflow (states and transitions are added separately)"""
        code = code.strip().upper()
        if self.repo.code_exists(code):
            raise AlreadyExistsError(f"Workflow code '{code}' is already in use", details={"code": code})

        try:
            config = MatchConfig.model_validate(match_config or {})
        except PydanticValidationError as e:
            raise _invalid(e, "match config")

        now = utc_now()
        workflow = Workflow(
            workflow_id=generate_workflow_id(),
            code=code,
            name=name,
            description=description,
            is_active=is_active,
            is_default=False,
            match_config=config,
            created_by=actor.email,
            created_at=now,
            updated_at=now,
        )
        self.repo.create_workflow(workflow)

        if is_default:
            return self.set_default(workflow.workflow_id, actor)
        return workflow

    def get_workflow(self, workflow_id: str) -> Workflow:
        """Workflow with its live states and transitions"""
        return self.catalog.get(workflow_id)

    def list_workflows(
        self,
        active_only: bool = False,
        record_type: Optional[RecordType] = None
    ) -> List[Workflow]:
        if record_type:
            return self.repo.list_workflows(active_only=active_only, record_types=compatible_match_types(record_type))
        return self.repo.list_workflows(active_only=active_only)

    def list_deleted_workflows(self) -> List[Workflow]:
        return self.repo.list_workflows(deleted=True)

    def update_workflow(self, workflow_id: str, updates: Dict[str, Any], actor: ActorContext) -> Workflow:
        """
        Update name, description, code, is_active, is_default or match_config

        Setting is_default clears the flag on other workflows of the same
        match record type.
        """
        current = self.repo.get_workflow_or_raise(workflow_id)
        updates = {k: v for k, v in updates.items() if v is not None}
        make_default = updates.pop("is_default", None)

        if "code" in updates:
            updates["code"] = updates["code"].strip().upper()
            if self.repo.code_exists(updates["code"], exclude_workflow_id=workflow_id):
                raise AlreadyExistsError(
                    f"Workflow code '{updates['code']}' is already in use",
                    details={"code": updates["code"]}
                )

        if "match_config" in updates:
            try:
                config = MatchConfig.model_validate(updates["match_config"])
            except PydanticValidationError as e:
                raise _invalid(e, "match config")
            updates["match_config"] = config.model_dump()
            if current.is_default and config.record_type != current.match_config.record_type:
                self.repo.clear_default(config.record_type, except_workflow_id=workflow_id)

        if updates:
            current = self.repo.update_workflow(workflow_id, updates)

        if make_default is True:
            current = self.set_default(workflow_id, actor)
        elif make_default is False and current.is_default:
            current = self.repo.update_workflow(workflow_id, {"is_default": False})

        logger.info(
            f"Updated workflow {current.code}",
            extra={"workflow_id": workflow_id, "actor_email": actor.email}
        )
        return current

    def set_default(self, workflow_id: str, actor: ActorContext) -> Workflow:
        """Make this the default for its match record type"""
        workflow = self.repo.get_workflow_or_raise(workflow_id)
        cleared = self.repo.clear_default(workflow.match_config.record_type, except_workflow_id=workflow_id)
        updated = self.repo.update_workflow(workflow_id, {"is_default": True})
        logger.info(
            f"Workflow {workflow.code} is now default for {workflow.match_config.record_type.value}"
            f" ({cleared} previous default cleared)",
            extra={"workflow_id": workflow_id, "actor_email": actor.email}
        )
        return updated

    def delete_workflow(self, workflow_id: str, actor: ActorContext) -> None:
        """Soft delete; existing cases keep their workflow"""
        self.repo.soft_delete_workflow(workflow_id)
        logger.info(f"Deleted workflow {workflow_id}", extra={"workflow_id": workflow_id, "actor_email": actor.email})

    def restore_workflow(self, workflow_id: str, actor: ActorContext) -> Workflow:
        deleted = self.repo.get_workflow_or_raise(workflow_id, include_deleted=True)
        if self.repo.code_exists(deleted.code, exclude_workflow_id=workflow_id):
            raise AlreadyExistsError(
                f"Another workflow now uses code '{deleted.code}'; rename it before restoring",
                details={"code": deleted.code}
            )
        restored = self.repo.restore_workflow(workflow_id)
        logger.info(f"Restored workflow {restored.code}", extra={"workflow_id": workflow_id, "actor_email": actor.email})
        return restored

    def delete_workflow_permanently(self, workflow_id: str, actor: ActorContext) -> None:
        if self.case_repo.list_cases(workflow_id=workflow_id, limit=1):
            raise ConflictError(
                "Workflow still has cases and cannot be removed permanently",
                details={"workflow_id": workflow_id}
            )
        self.repo.delete_workflow_permanently(workflow_id)
        logger.info(
            f"Permanently deleted workflow {workflow_id}",
            extra={"workflow_id": workflow_id, "actor_email": actor.email}
        )

    def duplicate_workflow(
        self,
        workflow_id: str,
        actor: ActorContext,
        code: Optional[str] = None,
        name: Optional[str] = None
    ) -> Workflow:
        """Copy a workflow with fresh ids; the copy is inactive and never default"""
        source = self.catalog.get(workflow_id)
        new_code = (code or f"{source.code}_COPY").strip().upper()
        suffix = 2
        base_code = new_code
        while self.repo.code_exists(new_code):
            new_code = f"{base_code}_{suffix}"
            suffix += 1

        now = utc_now()
        copy = Workflow(
            workflow_id=generate_workflow_id(),
            code=new_code,
            name=name or f"Copy of {source.name}",
            description=source.description,
            is_active=False,
            is_default=False,
            match_config=source.match_config,
            created_by=actor.email,
            created_at=now,
            updated_at=now,
        )
        self.repo.create_workflow(copy)

        state_map: Dict[str, str] = {}
        states = []
        for state in source.states:
            state_map[state.state_id] = generate_state_id()
            states.append(state.model_copy(update={
                "state_id": state_map[state.state_id],
                "workflow_id": copy.workflow_id,
            }))
        self.repo.create_states_bulk(states)

        transitions = []
        for transition in source.transitions:
            transitions.append(transition.model_copy(update={
                "transition_id": generate_transition_id(),
                "workflow_id": copy.workflow_id,
                "from_state_id": state_map[transition.from_state_id],
                "to_state_id": state_map[transition.to_state_id],
                "requirements": [
                    r.model_copy(update={"requirement_id": generate_requirement_id()})
                    for r in transition.requirements
                ],
                "actions": [
                    a.model_copy(update={"action_id": generate_action_id()})
                    for a in transition.actions
                ],
            }))
        self.repo.create_transitions_bulk(transitions)

        logger.info(
            f"Duplicated workflow {source.code} as {new_code}",
            extra={"workflow_id": copy.workflow_id, "actor_email": actor.email}
        )
        return self.catalog.get(copy.workflow_id)

    # =========================================================================
    # States
    # =========================================================================

    def list_states(self, workflow_id: str) -> List[WorkflowState]:
        self.repo.get_workflow_or_raise(workflow_id)
        return self.repo.list_states(workflow_id)

    def add_state(self, workflow_id: str, data: Dict[str, Any], actor: ActorContext) -> WorkflowState:
        self.repo.get_workflow_or_raise(workflow_id)
        data = {k: v for k, v in data.items() if v is not None}
        data["code"] = data.get("code", "").strip().upper()
        self._ensure_state_code_free(workflow_id, data["code"])

        try:
            state = WorkflowState.model_validate({
                **data,
                "state_id": generate_state_id(),
                "workflow_id": workflow_id,
            })
        except PydanticValidationError as e:
            raise _invalid(e, "state")

        self.repo.create_state(state)
        self.repo.touch_structure(workflow_id)
        logger.info(
            f"Added state {state.code}",
            extra={"workflow_id": workflow_id, "actor_email": actor.email}
        )
        return state

    def update_state(
        self,
        workflow_id: str,
        state_id: str,
        updates: Dict[str, Any],
        actor: ActorContext
    ) -> WorkflowState:
        current = self.repo.get_state_or_raise(workflow_id, state_id)
        updates = {k: v for k, v in updates.items() if v is not None}
        if "code" in updates:
            updates["code"] = updates["code"].strip().upper()
            if updates["code"] != current.code:
                self._ensure_state_code_free(workflow_id, updates["code"])

        try:
            merged = WorkflowState.model_validate({**current.model_dump(), **updates})
        except PydanticValidationError as e:
            raise _invalid(e, "state")

        updated = self.repo.update_state(state_id, merged.model_dump(exclude={"state_id", "workflow_id"}))
        self.repo.touch_structure(workflow_id)
        logger.info(f"Updated state {updated.code}", extra={"workflow_id": workflow_id, "actor_email": actor.email})
        return updated

    def delete_state(self, workflow_id: str, state_id: str, actor: ActorContext) -> None:
        """Soft delete; refused while cases sit in the state"""
        state = self.repo.get_state_or_raise(workflow_id, state_id)
        in_state = self.case_repo.count_in_state(state_id)
        if in_state:
            raise ConflictError(
                f"{in_state} case(s) are in state '{state.name}'; move them before deleting it",
                details={"state_id": state_id, "case_count": in_state}
            )
        self.repo.soft_delete_state(state_id)
        self.repo.touch_structure(workflow_id)
        logger.info(f"Deleted state {state.code}", extra={"workflow_id": workflow_id, "actor_email": actor.email})

    def _ensure_state_code_free(self, workflow_id: str, code: str) -> None:
        if not code:
            raise ValidationError("State code is required")
        if any(s.code == code for s in self.repo.list_states(workflow_id)):
            raise AlreadyExistsError(f"State code '{code}' already exists in this workflow", details={"code": code})

    # =========================================================================
    # Transitions
    # =========================================================================

    def list_transitions(self, workflow_id: str) -> List[WorkflowTransition]:
        return self.catalog.get(workflow_id).transitions

    def add_transition(self, workflow_id: str, data: Dict[str, Any], actor: ActorContext) -> WorkflowTransition:
        self.repo.get_workflow_or_raise(workflow_id)
        data = {k: v for k, v in data.items() if v is not None}
        data["code"] = data.get("code", "").strip().upper()
        self._check_endpoints(workflow_id, data.get("from_state_id"), data.get("to_state_id"))
        self._ensure_transition_code_free(workflow_id, data["code"])

        requirements = data.pop("requirements", [])
        actions = data.pop("actions", [])
        try:
            transition = WorkflowTransition.model_validate({
                **data,
                "transition_id": generate_transition_id(),
                "workflow_id": workflow_id,
                "requirements": self._with_ids(requirements, "requirement_id", generate_requirement_id),
                "actions": self._with_ids(actions, "action_id", generate_action_id),
            })
        except PydanticValidationError as e:
            raise _invalid(e, "transition")

        self.repo.create_transition(transition)
        self.repo.touch_structure(workflow_id)
        logger.info(
            f"Added transition {transition.code}",
            extra={"workflow_id": workflow_id, "transition_id": transition.transition_id, "actor_email": actor.email}
        )
        return transition

    def update_transition(
        self,
        workflow_id: str,
        transition_id: str,
        updates: Dict[str, Any],
        actor: ActorContext
    ) -> WorkflowTransition:
        current = self.repo.get_transition_or_raise(workflow_id, transition_id)
        updates = {k: v for k, v in updates.items() if k in TRANSITION_EDITABLE_FIELDS and v is not None}
        if "code" in updates:
            updates["code"] = updates["code"].strip().upper()
            if updates["code"] != current.code:
                self._ensure_transition_code_free(workflow_id, updates["code"])
        self._check_endpoints(
            workflow_id,
            updates.get("from_state_id", current.from_state_id),
            updates.get("to_state_id", current.to_state_id)
        )
        return self._replace_transition(workflow_id, current, updates, actor)

    def set_allowed_roles(
        self,
        workflow_id: str,
        transition_id: str,
        role_ids: List[str],
        actor: ActorContext
    ) -> WorkflowTransition:
        current = self.repo.get_transition_or_raise(workflow_id, transition_id)
        return self._replace_transition(workflow_id, current, {"allowed_roles": list(dict.fromkeys(role_ids))}, actor)

    def set_requirements(
        self,
        workflow_id: str,
        transition_id: str,
        requirements: List[Dict[str, Any]],
        actor: ActorContext
    ) -> WorkflowTransition:
        """Replace the requirement list; declaration order is evaluation order"""
        current = self.repo.get_transition_or_raise(workflow_id, transition_id)
        return self._replace_transition(
            workflow_id, current,
            {"requirements": self._with_ids(requirements, "requirement_id", generate_requirement_id)},
            actor
        )

    def set_actions(
        self,
        workflow_id: str,
        transition_id: str,
        actions: List[Dict[str, Any]],
        actor: ActorContext
    ) -> WorkflowTransition:
        current = self.repo.get_transition_or_raise(workflow_id, transition_id)
        return self._replace_transition(
            workflow_id, current,
            {"actions": self._with_ids(actions, "action_id", generate_action_id)},
            actor
        )

    def delete_transition(self, workflow_id: str, transition_id: str, actor: ActorContext) -> None:
        transition = self.repo.get_transition_or_raise(workflow_id, transition_id)
        self.repo.soft_delete_transition(transition_id)
        self.repo.touch_structure(workflow_id)
        logger.info(
            f"Deleted transition {transition.code}",
            extra={"workflow_id": workflow_id, "transition_id": transition_id, "actor_email": actor.email}
        )

    def _replace_transition(
        self,
        workflow_id: str,
        current: WorkflowTransition,
        updates: Dict[str, Any],
        actor: ActorContext
    ) -> WorkflowTransition:
        try:
            merged = WorkflowTransition.model_validate({**current.model_dump(), **updates})
        except PydanticValidationError as e:
            raise _invalid(e, "transition")

        self.repo.replace_transition(merged)
        self.repo.touch_structure(workflow_id)
        logger.info(
            f"Updated transition {merged.code} ({', '.join(sorted(updates)) or 'no fields'})",
            extra={"workflow_id": workflow_id, "transition_id": merged.transition_id, "actor_email": actor.email}
        )
        return merged

    def _check_endpoints(self, workflow_id: str, from_state_id: Optional[str], to_state_id: Optional[str]) -> None:
        """Both endpoint states must be live states of the same workflow"""
        for state_id in (from_state_id, to_state_id):
            if not state_id:
                raise ValidationError("Transitions need from_state_id and to_state_id")
            try:
                self.repo.get_state_or_raise(workflow_id, state_id)
            except StateNotFoundError:
                raise ValidationError(
                    f"State {state_id} does not belong to workflow {workflow_id}",
                    details={"state_id": state_id}
                )

    def _ensure_transition_code_free(self, workflow_id: str, code: str) -> None:
        if not code:
            raise ValidationError("Transition code is required")
        if any(t.code == code for t in self.repo.list_transitions(workflow_id)):
            raise AlreadyExistsError(
                f"Transition code '{code}' already exists in this workflow",
                details={"code": code}
            )

    @staticmethod
    def _with_ids(items: List[Any], key: str, make_id) -> List[Dict[str, Any]]:
        result = []
        for item in items or []:
            data = item.model_dump() if hasattr(item, "model_dump") else dict(item)
            if not data.get(key):
                data[key] = make_id()
            result.append(data)
        return result

    # =========================================================================
    # Validation & matching preview
    # =========================================================================

    def validate_workflow(self, workflow_id: str) -> Dict[str, Any]:
        """Readiness report; never blocks saving"""
        return self.catalog.readiness(workflow_id)

    def preview_match(self, attributes: CaseAttributes, record_type: RecordType) -> Dict[str, Any]:
        """Which workflow a case with these attributes would get, and why"""
        return self.matcher.explain(attributes, RecordType(record_type))
