"""
Transition Engine - Orchestrates case creation and transition execution

=============================================================================
EXECUTE PIPELINE
=============================================================================

1. Load the case (flushing a staged history row left by a crash)
2. Version check                       -> ConcurrencyError
3. Resolve transition from the state   -> InvalidTransitionError
4. Role check                          -> ForbiddenError
5. Mandatory requirements              -> RequirementNotMetError
6. Assignment (department, then user)  -> AmbiguousAssignmentError
7. Commit: one compare-and-swap write of state, assignment, version + 1,
   the staged history row and the staged async actions
8. Materialise history (comment, attachments, feedback)
9. Dispatch actions; their failures are recorded, never raised. Staged
   async actions left by a failed dispatch are queued by the worker

Steps 1-6 only read, so a failure there leaves the case untouched.
=============================================================================
"""
from typing import Any, Dict, List, Optional

from ..domain.models import (
    Case, CaseAttributes, Workflow, WorkflowTransition, TransitionPayload,
    TransitionHistory, ActorContext, AvailableTransition, AssignmentOutcome,
    AssignmentPreview, ExecuteResult, ActionResult
)
from ..domain.enums import RecordType, StateType, ActionResultStatus
from ..domain.errors import WorkflowValidationError, TransitionNotFoundError, ActionExecutionError
from ..repositories.case_repo import CaseRepository
from ..utils.idgen import generate_case_id, generate_case_number, generate_history_id
from ..utils.logger import get_logger, get_correlation_id
from ..utils.time import utc_now, add_hours
from .catalog import WorkflowCatalog
from .matcher import WorkflowMatcher
from .transition_validator import TransitionValidator
from .assignment_resolver import AssignmentResolver
from .history_recorder import HistoryRecorder
from .action_executor import ActionExecutor

logger = get_logger(__name__)

# Case fields whose before/after values go into the history row
TRACKED_FIELDS = (
    "current_state_id",
    "department_id",
    "assignee_id",
    "assignee_ids",
    "sla_deadline",
    "closed_at",
)


class TransitionEngine:
    """
    Central orchestrator for case transitions

    Collaborators are injectable so tests can share one set of repositories.
    """

    def __init__(
        self,
        case_repo: Optional[CaseRepository] = None,
        catalog: Optional[WorkflowCatalog] = None,
        matcher: Optional[WorkflowMatcher] = None,
        validator: Optional[TransitionValidator] = None,
        assignment: Optional[AssignmentResolver] = None,
        recorder: Optional[HistoryRecorder] = None,
        executor: Optional[ActionExecutor] = None
    ):
        self.case_repo = case_repo or CaseRepository()
        self.catalog = catalog or WorkflowCatalog()
        self.matcher = matcher or WorkflowMatcher(self.catalog)
        self.validator = validator or TransitionValidator()
        self.assignment = assignment or AssignmentResolver()
        self.recorder = recorder or HistoryRecorder(case_repo=self.case_repo)
        self.executor = executor or ActionExecutor(recorder=self.recorder, case_repo=self.case_repo)

    # =========================================================================
    # Case Creation
    # =========================================================================

    def create_case(
        self,
        record_type: RecordType,
        title: str,
        actor: ActorContext,
        attributes: CaseAttributes,
        workflow_id: Optional[str] = None,
        description: Optional[str] = None,
        reporter_email: Optional[str] = None,
        reporter_name: Optional[str] = None,
        custom_fields: Optional[Dict[str, Any]] = None,
        due_date=None
    ) -> Case:
        """
        Create a case in its workflow's initial state

        The workflow is the explicit workflow_id when given, otherwise the
        one WorkflowMatcher selects for the case attributes.

        Raises:
            NoWorkflowMatchError: nothing matches and no default exists
            WorkflowValidationError: the workflow has no initial state
        """
        record_type = RecordType(record_type)
        if workflow_id:
            workflow = self.catalog.get(workflow_id)
        else:
            workflow = self.matcher.match(attributes, record_type)

        initial = self.catalog.initial_state(workflow)
        if initial is None:
            raise WorkflowValidationError(
                f"Workflow {workflow.code} has no initial state",
                details={"workflow_id": workflow.workflow_id}
            )

        now = utc_now()
        case = Case(
            case_id=generate_case_id(),
            case_number=generate_case_number(record_type),
            record_type=record_type,
            title=title,
            description=description,
            workflow_id=workflow.workflow_id,
            current_state_id=initial.state_id,
            version=1,
            classification_id=attributes.classification_id,
            location_id=attributes.location_id,
            source=attributes.source,
            severity=attributes.severity,
            priority=attributes.priority,
            reporter_email=reporter_email,
            reporter_name=reporter_name,
            created_by=actor.snapshot(),
            custom_fields=custom_fields or {},
            due_date=due_date,
            sla_deadline=add_hours(now, initial.sla_hours) if initial.sla_hours else None,
            created_at=now,
            updated_at=now,
        )
        self.case_repo.create_case(case)

        logger.info(
            f"Case {case.case_number} attached to workflow {workflow.code}, state {initial.code}",
            extra={"case_id": case.case_id, "workflow_id": workflow.workflow_id, "actor_email": actor.email}
        )
        return case

    # =========================================================================
    # Reads
    # =========================================================================

    def load_case(self, case_id: str) -> Case:
        """Get a case, materialising a staged history row first"""
        case = self.case_repo.get_case_or_raise(case_id)
        if case.pending_history is not None:
            logger.warning(
                "Found staged history row; flushing",
                extra={"case_id": case_id, "history_id": case.pending_history.history_id}
            )
            self.recorder.flush_pending(case)
            case = self.case_repo.get_case_or_raise(case_id)
        return case

    def available_transitions(self, case_id: str, actor: ActorContext) -> List[AvailableTransition]:
        case = self.load_case(case_id)
        workflow = self.catalog.get(case.workflow_id)
        return self.validator.available_transitions(case, workflow, actor)

    def preview_assignment(self, case_id: str, transition_id: str) -> AssignmentPreview:
        case = self.load_case(case_id)
        workflow = self.catalog.get(case.workflow_id)
        transition = workflow.get_transition(transition_id)
        if transition is None:
            raise TransitionNotFoundError(f"Transition {transition_id} not found in workflow {workflow.code}")
        return self.assignment.preview(case, transition)

    def history(self, case_id: str) -> List[TransitionHistory]:
        self.load_case(case_id)
        return self.recorder.list_for_case(case_id)

    # =========================================================================
    # Execute
    # =========================================================================

    def execute(self, case_id: str, payload: TransitionPayload, actor: ActorContext) -> ExecuteResult:
        """
        Execute a transition on a case

        Raises:
            ConcurrencyError, InvalidTransitionError, ForbiddenError,
            RequirementNotMetError, AmbiguousAssignmentError
        """
        case = self.load_case(case_id)
        self.validator.check_version(case, payload.version)

        workflow = self.catalog.get(case.workflow_id)
        transition = self.validator.resolve_transition(case, workflow, payload.transition_id)
        self.validator.check(case, transition, actor, payload)

        outcome = self.assignment.resolve(case, transition, payload)
        updates = self._build_updates(case, workflow, transition, outcome, payload)
        history = self._build_history(case, workflow, transition, updates, payload, actor)
        context = self._action_context(case, transition, history)
        staged = self.executor.stage(
            transition.actions,
            case_id=case.case_id,
            history_id=history.history_id,
            context=context,
            workflow_id=workflow.workflow_id,
            transition_id=transition.transition_id,
        )

        committed = self.case_repo.commit_transition(case.case_id, case.version, updates, history, staged)

        # The transition is committed; nothing below may fail the call
        try:
            self.recorder.flush_pending(committed)
        except Exception as e:
            logger.error(
                f"Could not materialise history after commit; left staged: {e}",
                extra={"case_id": case.case_id, "history_id": history.history_id}
            )

        logger.info(
            f"Transition '{transition.name}' executed on {case.case_number}: "
            f"{history.from_state_name} -> {history.to_state_name}",
            extra={
                "case_id": case.case_id,
                "workflow_id": workflow.workflow_id,
                "transition_id": transition.transition_id,
                "history_id": history.history_id,
                "actor_email": actor.email,
            }
        )

        results: List[ActionResult] = []
        try:
            results = self.executor.dispatch(
                transition.actions,
                case_id=case.case_id,
                history_id=history.history_id,
                context=context,
                workflow_id=workflow.workflow_id,
                transition_id=transition.transition_id,
                outbox_id=staged.outbox_id if staged else None,
            )
            if staged:
                self.case_repo.clear_pending_actions(case.case_id, staged.outbox_id)
            side_effects_failed = any(
                r.status in (ActionResultStatus.FAILED, ActionResultStatus.TIMED_OUT) for r in results
            )
        except Exception as e:
            logger.error(
                f"Action dispatch failed after commit: {e}",
                extra={
                    "case_id": case.case_id,
                    "history_id": history.history_id,
                    "error_code": ActionExecutionError.error_code,
                },
                exc_info=True
            )
            side_effects_failed = True

        if side_effects_failed:
            logger.warning(
                "Transition committed but some actions failed",
                extra={"case_id": case.case_id, "history_id": history.history_id}
            )

        return ExecuteResult(
            case_id=case.case_id,
            new_state_id=history.to_state_id,
            new_state_name=history.to_state_name,
            version=committed.version,
            history_id=history.history_id,
            revision_number=history.revision_number,
            assignment=outcome,
            action_results=results,
            side_effects_failed=side_effects_failed,
        )

    def _build_updates(
        self,
        case: Case,
        workflow: Workflow,
        transition: WorkflowTransition,
        outcome: AssignmentOutcome,
        payload: TransitionPayload
    ) -> Dict[str, Any]:
        now = utc_now()
        to_state = workflow.get_state(transition.to_state_id)
        updates: Dict[str, Any] = {"current_state_id": transition.to_state_id}

        if outcome.department_changed:
            updates["department_id"] = outcome.department_id
        if outcome.user_changed:
            updates["assignee_id"] = outcome.assignee_id
            updates["assignee_ids"] = outcome.assignee_ids
        if payload.feedback is not None:
            updates["feedback"] = payload.feedback.model_dump()

        if to_state.sla_hours:
            updates["sla_deadline"] = add_hours(now, to_state.sla_hours)
        if to_state.state_type == StateType.TERMINAL:
            updates["closed_at"] = now
        elif case.closed_at is not None:
            updates["closed_at"] = None
        return updates

    def _build_history(
        self,
        case: Case,
        workflow: Workflow,
        transition: WorkflowTransition,
        updates: Dict[str, Any],
        payload: TransitionPayload,
        actor: ActorContext
    ) -> TransitionHistory:
        old_values = {f: getattr(case, f) for f in TRACKED_FIELDS if f in updates}
        new_values = {f: updates[f] for f in TRACKED_FIELDS if f in updates}
        from_state = workflow.get_state(case.current_state_id)
        to_state = workflow.get_state(transition.to_state_id)

        return TransitionHistory(
            history_id=generate_history_id(),
            case_id=case.case_id,
            record_type=case.record_type,
            workflow_id=workflow.workflow_id,
            transition_id=transition.transition_id,
            transition_name=transition.name,
            from_state_id=case.current_state_id,
            from_state_name=from_state.name if from_state else None,
            to_state_id=transition.to_state_id,
            to_state_name=to_state.name if to_state else None,
            revision_number=case.version,
            performed_by=actor.snapshot(),
            comment=payload.comment.strip() if payload.comment and payload.comment.strip() else None,
            attachment_ids=[a for a in payload.attachments if a and a.strip()],
            feedback=payload.feedback,
            old_values=old_values,
            new_values=new_values,
            transitioned_at=utc_now(),
            correlation_id=get_correlation_id(),
        )

    def _action_context(
        self,
        case: Case,
        transition: WorkflowTransition,
        history: TransitionHistory
    ) -> Dict[str, Any]:
        """Transition facts actions need; case fields are re-read at dispatch"""
        return {
            "transition_id": transition.transition_id,
            "transition_name": transition.name,
            "from_state_name": history.from_state_name,
            "to_state_name": history.to_state_name,
            "previous_assignee_ids": list(case.assignee_ids) or ([case.assignee_id] if case.assignee_id else []),
            "performed_by": history.performed_by.model_dump(),
            "comment": history.comment,
        }
