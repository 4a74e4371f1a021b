"""Workflow Transfer Service - JSON export and import of workflows

Documents reference other records by natural key so a workflow exported from
one environment can be imported into another. On import:
- classifications and locations are looked up and created when missing
- roles, departments and users are looked up only; an unresolved reference
  is dropped with a warning. A transition left without any of its allowed
  roles is imported inactive, and user auto-match or manual selection is
  switched off when its assignment role is unknown
- a workflow code already in use gets an _IMPORTED suffix
- the imported workflow is never the default
"""
import json
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from ..config.settings import settings
from ..domain.models import (
    Workflow, WorkflowState, WorkflowTransition, MatchConfig, Classification,
    Location, ActorContext
)
from ..domain.transfer_models import (
    EXPORT_FORMAT_VERSION, WorkflowExportDocument, ExportedWorkflow, ExportedMatchConfig,
    ExportedState, ExportedTransition, ExportedRequirement, ExportedAction, ImportResult
)
from ..domain.enums import ActionType
from ..domain.errors import ValidationError, ImportFileTooLargeError
from ..engine.catalog import WorkflowCatalog
from ..repositories.workflow_repo import WorkflowRepository
from ..repositories.directory_repo import DirectoryRepository
from ..utils.idgen import (
    generate_workflow_id, generate_state_id, generate_transition_id,
    generate_requirement_id, generate_action_id, generate_lookup_id
)
from ..utils.time import utc_now
from ..utils.logger import get_logger

logger = get_logger(__name__)

IMPORT_SUFFIX = "_IMPORTED"


class WorkflowTransferService:
    """Export/import of a workflow with its states, transitions, requirements and actions"""

    def __init__(
        self,
        repo: Optional[WorkflowRepository] = None,
        directory_repo: Optional[DirectoryRepository] = None
    ):
        self.repo = repo or WorkflowRepository()
        self.directory = directory_repo or DirectoryRepository()
        self.catalog = WorkflowCatalog(self.repo)

    # =========================================================================
    # Export
    # =========================================================================

    def export_workflow(self, workflow_id: str) -> WorkflowExportDocument:
        workflow = self.catalog.get(workflow_id)
        state_codes = {s.state_id: s.code for s in workflow.states}
        warnings: List[str] = []

        document = WorkflowExportDocument(
            format_version=EXPORT_FORMAT_VERSION,
            exported_at=utc_now(),
            workflow=ExportedWorkflow(
                code=workflow.code,
                name=workflow.name,
                description=workflow.description,
                is_active=workflow.is_active,
                is_default=workflow.is_default,
                match_config=self._export_match_config(workflow.match_config),
            ),
            states=[
                ExportedState(
                    **state.model_dump(include={
                        "code", "name", "description", "state_type", "color", "sla_hours",
                        "sort_order", "position_x", "position_y", "is_active",
                    }),
                    viewable_role_codes=self._role_codes(
                        state.viewable_role_ids, f"state {state.code}", warnings
                    ),
                )
                for state in workflow.states
            ],
        )

        for transition in workflow.transitions:
            document.transitions.append(self._export_transition(transition, state_codes, warnings))
            document.requirements_by_transition[transition.code] = [
                ExportedRequirement(**r.model_dump(exclude={"requirement_id"}))
                for r in transition.requirements
            ]
            document.actions_by_transition[transition.code] = [
                self._export_action_config(a.model_dump(exclude={"action_id"}))
                for a in transition.ordered_actions()
            ]

        document.warnings = warnings
        logger.info(
            f"Exported workflow {workflow.code}: {len(document.states)} states, "
            f"{len(document.transitions)} transitions, {len(warnings)} warning(s)",
            extra={"workflow_id": workflow_id}
        )
        return document

    def _export_match_config(self, config: MatchConfig) -> ExportedMatchConfig:
        names = []
        for classification_id in config.classification_ids:
            classification = self.directory.get_classification(classification_id)
            if classification:
                names.append(classification.name)
        codes = []
        for location_id in config.location_ids:
            location = self.directory.get_location(location_id)
            if location:
                codes.append(location.code or location.name)
        return ExportedMatchConfig(
            classification_names=names,
            location_codes=codes,
            **config.model_dump(include={
                "sources", "severity_min", "severity_max", "priority_min", "priority_max", "record_type",
            }),
        )

    def _export_transition(
        self,
        transition: WorkflowTransition,
        state_codes: Dict[str, str],
        warnings: List[str]
    ) -> ExportedTransition:
        label = f"transition {transition.code}"
        department = (
            self.directory.get_department(transition.assign_department_id)
            if transition.assign_department_id else None
        )
        user = self.directory.get_user(transition.assign_user_id) if transition.assign_user_id else None

        # No surviving role means nobody but a super admin may run it
        allowed_role_codes = self._role_codes(transition.allowed_roles, label, warnings)
        is_active = transition.is_active
        if transition.allowed_roles and not allowed_role_codes and is_active:
            is_active = False
            warnings.append(f"{label}: none of its allowed roles exist; exported inactive")

        auto_match_user = transition.auto_match_user
        manual_select_user = transition.manual_select_user
        assignment_role_code = None
        if transition.assignment_role_id:
            assignment_role = self.directory.get_role(transition.assignment_role_id)
            if assignment_role:
                assignment_role_code = assignment_role.code
            elif auto_match_user or manual_select_user:
                auto_match_user = manual_select_user = False
                warnings.append(
                    f"{label}: assignment role '{transition.assignment_role_id}' not found; "
                    f"user assignment disabled"
                )

        return ExportedTransition(
            code=transition.code,
            name=transition.name,
            description=transition.description,
            from_state_code=state_codes[transition.from_state_id],
            to_state_code=state_codes[transition.to_state_id],
            allowed_role_codes=allowed_role_codes,
            assign_department_code=department.code if department else None,
            auto_detect_department=transition.auto_detect_department,
            assign_user_email=user.email if user else None,
            assignment_role_code=assignment_role_code,
            auto_match_user=auto_match_user,
            manual_select_user=manual_select_user,
            is_active=is_active,
            sort_order=transition.sort_order,
        )

    def _export_action_config(self, data: Dict[str, Any]) -> ExportedAction:
        config = dict(data.get("config") or {})
        if data["action_type"] == ActionType.NOTIFICATION and config.get("custom_user_ids"):
            users = self.directory.get_users(config.pop("custom_user_ids"))
            config["custom_user_emails"] = [u.email for u in users]
        data["config"] = config
        return ExportedAction.model_validate(data)

    def _role_codes(self, role_ids: List[str], label: str, warnings: List[str]) -> List[str]:
        codes = []
        for role_id in role_ids:
            role = self.directory.get_role(role_id)
            if role:
                codes.append(role.code)
            else:
                warnings.append(f"{label}: role '{role_id}' no longer exists; left out")
        return codes

    # =========================================================================
    # Import
    # =========================================================================

    def parse_document(self, content: bytes) -> WorkflowExportDocument:
        """
        Decode an uploaded export file

        Raises:
            ImportFileTooLargeError: over the configured size limit
            ValidationError: not JSON or not an export document
        """
        if len(content) > settings.import_max_bytes:
            raise ImportFileTooLargeError(
                f"Import file exceeds {settings.import_max_mb} MB",
                details={"size": len(content), "max_bytes": settings.import_max_bytes}
            )
        try:
            raw = json.loads(content)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValidationError(f"Import file is not valid JSON: {e}")

        try:
            document = WorkflowExportDocument.model_validate(raw)
        except PydanticValidationError as e:
            raise ValidationError(
                "Import file is not a workflow export",
                details={"errors": e.errors(include_url=False, include_context=False)}
            )

        if document.format_version.split(".")[0] != EXPORT_FORMAT_VERSION.split(".")[0]:
            raise ValidationError(
                f"Unsupported export format version {document.format_version}",
                details={"supported": EXPORT_FORMAT_VERSION}
            )
        return document

    def import_file(self, content: bytes, actor: ActorContext) -> ImportResult:
        return self.import_workflow(self.parse_document(content), actor)

    def import_workflow(self, document: WorkflowExportDocument, actor: ActorContext) -> ImportResult:
        """
        Create a new workflow from an export document

        Everything is resolved and validated before the first write.
        """
        warnings: List[str] = [f"export: {w}" for w in document.warnings]
        now = utc_now()
        workflow_id = generate_workflow_id()
        code = self._unique_code(document.workflow.code.strip().upper())
        if code != document.workflow.code.strip().upper():
            warnings.append(f"Workflow code '{document.workflow.code}' is in use; imported as '{code}'")

        workflow = Workflow(
            workflow_id=workflow_id,
            code=code,
            name=document.workflow.name,
            description=document.workflow.description,
            is_active=document.workflow.is_active,
            is_default=False,
            match_config=self._import_match_config(document.workflow.match_config),
            created_by=actor.email,
            created_at=now,
            updated_at=now,
        )
        if document.workflow.is_default:
            warnings.append("Imported workflow is not made default; set it explicitly if needed")

        states, state_ids = self._import_states(document.states, workflow_id, warnings)
        transitions = self._import_transitions(document, workflow_id, state_ids, warnings)

        self.repo.create_workflow(workflow)
        self.repo.create_states_bulk(states)
        self.repo.create_transitions_bulk(transitions)

        logger.info(
            f"Imported workflow {code}: {len(states)} states, {len(transitions)} transitions, "
            f"{len(warnings)} warning(s)",
            extra={"workflow_id": workflow_id, "actor_email": actor.email}
        )
        return ImportResult(workflow_id=workflow_id, code=code, warnings=warnings)

    def _unique_code(self, code: str) -> str:
        if not self.repo.code_exists(code):
            return code
        candidate = f"{code}{IMPORT_SUFFIX}"
        counter = 2
        while self.repo.code_exists(candidate):
            candidate = f"{code}{IMPORT_SUFFIX}_{counter}"
            counter += 1
        return candidate

    def _import_match_config(self, exported: ExportedMatchConfig) -> MatchConfig:
        classification_ids = []
        for name in exported.classification_names:
            classification = self.directory.get_classification_by_name(name)
            if classification is None:
                classification = self.directory.save_classification(
                    Classification(classification_id=generate_lookup_id("CLS"), name=name)
                )
                logger.info(f"Created classification '{name}' during import")
            classification_ids.append(classification.classification_id)

        location_ids = []
        for location_code in exported.location_codes:
            location = self.directory.get_location_by_code(location_code)
            if location is None:
                location = self.directory.save_location(
                    Location(location_id=generate_lookup_id("LOC"), name=location_code, code=location_code)
                )
                logger.info(f"Created location '{location_code}' during import")
            location_ids.append(location.location_id)

        try:
            return MatchConfig(
                classification_ids=classification_ids,
                location_ids=location_ids,
                **exported.model_dump(include={
                    "sources", "severity_min", "severity_max", "priority_min", "priority_max", "record_type",
                }),
            )
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid match config in import file",
                details={"errors": e.errors(include_url=False, include_context=False)}
            )

    def _import_states(
        self,
        exported_states: List[ExportedState],
        workflow_id: str,
        warnings: List[str]
    ) -> Tuple[List[WorkflowState], Dict[str, str]]:
        states: List[WorkflowState] = []
        state_ids: Dict[str, str] = {}
        for exported in exported_states:
            state_code = exported.code.strip().upper()
            if state_code in state_ids:
                raise ValidationError(f"Duplicate state code '{state_code}' in import file")
            state_ids[state_code] = generate_state_id()
            states.append(WorkflowState(
                state_id=state_ids[state_code],
                workflow_id=workflow_id,
                viewable_role_ids=self._role_ids(exported.viewable_role_codes, f"state {state_code}", warnings),
                **{**exported.model_dump(exclude={"viewable_role_codes"}), "code": state_code},
            ))
        return states, state_ids

    def _import_transitions(
        self,
        document: WorkflowExportDocument,
        workflow_id: str,
        state_ids: Dict[str, str],
        warnings: List[str]
    ) -> List[WorkflowTransition]:
        transitions: List[WorkflowTransition] = []
        seen_codes = set()
        for exported in document.transitions:
            label = f"transition {exported.code}"
            if exported.code in seen_codes:
                raise ValidationError(f"Duplicate transition code '{exported.code}' in import file")
            seen_codes.add(exported.code)

            endpoints = []
            for state_code in (exported.from_state_code, exported.to_state_code):
                state_id = state_ids.get(state_code.strip().upper())
                if state_id is None:
                    raise ValidationError(
                        f"{label} references unknown state '{state_code}'",
                        details={"transition": exported.code, "state_code": state_code}
                    )
                endpoints.append(state_id)

            department_id = None
            if exported.assign_department_code:
                department = self.directory.get_department_by_code(exported.assign_department_code)
                if department:
                    department_id = department.department_id
                else:
                    warnings.append(f"{label}: department '{exported.assign_department_code}' not found; dropped")

            user_id = None
            if exported.assign_user_email:
                user = self.directory.get_user_by_email(exported.assign_user_email)
                if user:
                    user_id = user.user_id
                else:
                    warnings.append(f"{label}: user '{exported.assign_user_email}' not found; dropped")

            allowed_roles = self._role_ids(exported.allowed_role_codes, label, warnings)
            is_active = exported.is_active
            if exported.allowed_role_codes and not allowed_roles and is_active:
                is_active = False
                warnings.append(f"{label}: none of its allowed roles exist; imported inactive")

            assignment_role_ids = self._role_ids(
                [exported.assignment_role_code] if exported.assignment_role_code else [], label, warnings
            )
            auto_match_user = exported.auto_match_user
            manual_select_user = exported.manual_select_user
            if exported.assignment_role_code and not assignment_role_ids and (auto_match_user or manual_select_user):
                auto_match_user = manual_select_user = False
                warnings.append(f"{label}: user assignment disabled until an assignment role is set")

            try:
                transitions.append(WorkflowTransition(
                    transition_id=generate_transition_id(),
                    workflow_id=workflow_id,
                    code=exported.code.strip().upper(),
                    name=exported.name,
                    description=exported.description,
                    from_state_id=endpoints[0],
                    to_state_id=endpoints[1],
                    allowed_roles=allowed_roles,
                    assign_department_id=department_id,
                    auto_detect_department=exported.auto_detect_department,
                    assign_user_id=user_id,
                    assignment_role_id=assignment_role_ids[0] if assignment_role_ids else None,
                    auto_match_user=auto_match_user,
                    manual_select_user=manual_select_user,
                    is_active=is_active,
                    sort_order=exported.sort_order,
                    requirements=[
                        {**r.model_dump(), "requirement_id": generate_requirement_id()}
                        for r in document.requirements_by_transition.get(exported.code, [])
                    ],
                    actions=[
                        action for action in (
                            self._import_action(a, label, warnings)
                            for a in document.actions_by_transition.get(exported.code, [])
                        ) if action is not None
                    ],
                ))
            except PydanticValidationError as e:
                raise ValidationError(
                    f"Invalid {label} in import file",
                    details={"errors": e.errors(include_url=False, include_context=False)}
                )
        return transitions

    def _import_action(self, exported: ExportedAction, label: str, warnings: List[str]) -> Optional[Dict[str, Any]]:
        data = exported.model_dump()
        config = dict(data.get("config") or {})
        if exported.action_type == ActionType.NOTIFICATION and "custom_user_emails" in config:
            user_ids = []
            for email in config.pop("custom_user_emails"):
                user = self.directory.get_user_by_email(email)
                if user:
                    user_ids.append(user.user_id)
                else:
                    warnings.append(f"{label}: notification recipient '{email}' not found; dropped")
            config["custom_user_ids"] = user_ids
            if not user_ids:
                recipients = [r for r in config.get("recipients", []) if r != "custom"]
                if not recipients:
                    warnings.append(f"{label}: action '{exported.name}' has no resolvable recipients; dropped")
                    return None
                config["recipients"] = recipients
        data["config"] = config
        data["action_id"] = generate_action_id()
        return data

    def _role_ids(self, codes: List[str], label: str, warnings: List[str]) -> List[str]:
        role_ids = []
        for role_code in codes:
            role = self.directory.get_role_by_code(role_code)
            if role:
                role_ids.append(role.role_id)
            else:
                warnings.append(f"{label}: role '{role_code}' not found; dropped")
        return role_ids
