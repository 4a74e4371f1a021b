"""Workflow Catalog - Read side of workflow definitions"""
from typing import Any, Dict, List, Optional, Set

from ..domain.models import Workflow, WorkflowState, WorkflowTransition
from ..domain.enums import RecordType, MatchRecordType, StateType, LEGACY_BOTH_TYPES
from ..domain.errors import WorkflowNotFoundError
from ..repositories.workflow_repo import WorkflowRepository
from ..utils.logger import get_logger

logger = get_logger(__name__)


def compatible_match_types(record_type: RecordType) -> List[MatchRecordType]:
    """Match record types a case of this kind may be attached to"""
    record_type = RecordType(record_type)
    types = [MatchRecordType(record_type.value), MatchRecordType.ALL]
    if record_type in LEGACY_BOTH_TYPES:
        types.append(MatchRecordType.BOTH)
    return types


class WorkflowCatalog:
    """
    Source of truth for workflow definitions

    Reads assemble a workflow with its live states and transitions:
    soft-deleted states and transitions are never returned, and neither is a
    transition whose endpoint state has been deleted.
    """

    def __init__(self, repo: Optional[WorkflowRepository] = None):
        self.repo = repo or WorkflowRepository()

    def get(self, workflow_id: str) -> Workflow:
        """
        Get a workflow with states and transitions

        Raises:
            WorkflowNotFoundError: unknown or soft-deleted workflow
        """
        header = self.repo.get_workflow(workflow_id)
        if header is None:
            raise WorkflowNotFoundError(f"Workflow {workflow_id} not found")
        return self._assemble(header)

    def list_active(self, record_type: Optional[RecordType] = None) -> List[Workflow]:
        """Active workflows, optionally only those a record type can match"""
        match_types = compatible_match_types(record_type) if record_type else None
        headers = self.repo.list_workflows(active_only=True, record_types=match_types)
        return [self._assemble(h) for h in headers]

    def _assemble(self, header: Workflow) -> Workflow:
        states = self.repo.list_states(header.workflow_id)
        live_state_ids = {s.state_id for s in states}
        transitions = [
            t for t in self.repo.list_transitions(header.workflow_id)
            if t.from_state_id in live_state_ids and t.to_state_id in live_state_ids
        ]
        return header.model_copy(update={"states": states, "transitions": transitions})

    # =========================================================================
    # Readiness validation
    # =========================================================================

    def validate(self, workflow: Workflow) -> Dict[str, Any]:
        """
        Check a workflow is ready to take cases

        Returns:
            {"is_valid": bool, "errors": [...], "warnings": [...]}
        """
        errors: List[Dict[str, Any]] = []
        warnings: List[Dict[str, Any]] = []

        active_states = [s for s in workflow.states if s.is_active]
        state_ids = {s.state_id for s in workflow.states}
        initial_states = workflow.initial_states()

        if not active_states:
            errors.append({
                "type": "NO_STATES",
                "message": "Workflow must have at least one state",
                "path": "states"
            })
        if not initial_states:
            errors.append({
                "type": "NO_INITIAL_STATE",
                "message": "Workflow must have an initial state",
                "path": "states"
            })
        elif len(initial_states) > 1:
            warnings.append({
                "type": "MULTIPLE_INITIAL_STATES",
                "message": f"New cases start in '{initial_states[0].name}'; other initial states are only reachable by transition",
                "path": "states"
            })

        for index, transition in enumerate(workflow.transitions):
            for end in ("from_state_id", "to_state_id"):
                if getattr(transition, end) not in state_ids:
                    errors.append({
                        "type": "INVALID_STATE_REFERENCE",
                        "message": f"Transition '{transition.name}' references a state outside this workflow",
                        "path": f"transitions[{index}].{end}"
                    })

        for state in workflow.states:
            if state.state_type == StateType.TERMINAL and workflow.outgoing(state.state_id):
                warnings.append({
                    "type": "TERMINAL_HAS_TRANSITIONS",
                    "message": f"Terminal state '{state.name}' has outgoing transitions",
                    "path": f"states.{state.code}"
                })

        if initial_states:
            reachable: Set[str] = set()
            for initial in initial_states:
                reachable |= self._find_reachable_states(initial.state_id, workflow.transitions)
            for state in active_states:
                if state.state_id not in reachable:
                    warnings.append({
                        "type": "UNREACHABLE_STATE",
                        "message": f"State '{state.name}' is not reachable from an initial state",
                        "path": f"states.{state.code}"
                    })

        return {
            "is_valid": len(errors) == 0,
            "errors": errors,
            "warnings": warnings
        }

    def readiness(self, workflow_id: str) -> Dict[str, Any]:
        """Validate a stored workflow, also reporting transitions hidden by deleted states"""
        workflow = self.get(workflow_id)
        report = self.validate(workflow)
        visible = {t.transition_id for t in workflow.transitions}
        for t in self.repo.list_transitions(workflow_id):
            if t.transition_id not in visible:
                report["warnings"].append({
                    "type": "HIDDEN_TRANSITION",
                    "message": f"Transition '{t.name}' points at a deleted state and is ignored",
                    "path": f"transitions.{t.code}"
                })
        return report

    def _find_reachable_states(self, start_state_id: str, transitions: List[WorkflowTransition]) -> Set[str]:
        """All states reachable from start over active transitions"""
        reachable = {start_state_id}
        to_visit = [start_state_id]

        while to_visit:
            current = to_visit.pop()
            for t in transitions:
                if t.is_active and t.from_state_id == current and t.to_state_id not in reachable:
                    reachable.add(t.to_state_id)
                    to_visit.append(t.to_state_id)

        return reachable

    def initial_state(self, workflow: Workflow) -> Optional[WorkflowState]:
        """State new cases start in (first initial state by sort order)"""
        initial = workflow.initial_states()
        return initial[0] if initial else None
