"""Assignment Resolver - Department and user side effects of a transition"""
from typing import Any, Dict, List, Optional

from ..domain.models import (
    Case, WorkflowTransition, TransitionPayload, Department, DirectoryUser,
    AssignmentOutcome, AssignmentPreview
)
from ..domain.enums import AssignmentKind
from ..domain.errors import AmbiguousAssignmentError
from ..repositories.directory_repo import DirectoryRepository
from ..utils.logger import get_logger

logger = get_logger(__name__)


def _department_row(department: Department) -> Dict[str, Any]:
    return {"department_id": department.department_id, "code": department.code, "name": department.name}


def _user_row(user: DirectoryUser) -> Dict[str, Any]:
    return {"user_id": user.user_id, "email": user.email, "display_name": user.display_name}


def _scope_admits(scope: List[str], value: Optional[str]) -> bool:
    """Empty user scope is unrestricted"""
    return not scope or value is None or value in scope


class AssignmentResolver:
    """
    Computes assignment before the commit; never mutates anything

    Department runs first so user matching can be narrowed to a
    department resolved by the same transition.
    """

    def __init__(self, directory_repo: Optional[DirectoryRepository] = None):
        self.directory = directory_repo or DirectoryRepository()

    # =========================================================================
    # Candidates
    # =========================================================================

    def department_candidates(self, case: Case) -> List[Department]:
        """
        Active departments whose scope covers the case

        Every case criterion with a value must be listed in the department's
        scope; a case with neither classification nor location has none.
        """
        if not case.classification_id and not case.location_id:
            return []

        candidates = []
        for department in self.directory.list_active_departments():
            if case.classification_id and case.classification_id not in department.classification_ids:
                continue
            if case.location_id and case.location_id not in department.location_ids:
                continue
            candidates.append(department)
        return candidates

    def user_candidates(
        self,
        case: Case,
        transition: WorkflowTransition,
        department_id: Optional[str] = None
    ) -> List[DirectoryUser]:
        """Users holding the assignment role whose scope admits the case"""
        users = self.directory.list_active_users(role_id=transition.assignment_role_id)
        return [
            user for user in users
            if _scope_admits(user.classification_ids, case.classification_id)
            and _scope_admits(user.location_ids, case.location_id)
            and (department_id is None or department_id in user.department_ids)
        ]

    # =========================================================================
    # Resolution
    # =========================================================================

    def resolve(
        self,
        case: Case,
        transition: WorkflowTransition,
        payload: TransitionPayload
    ) -> AssignmentOutcome:
        """
        Compute the assignment a transition applies

        Raises:
            AmbiguousAssignmentError: several candidates and no valid explicit choice
        """
        outcome = AssignmentOutcome(
            department_id=case.department_id,
            assignee_id=case.assignee_id,
            assignee_ids=list(case.assignee_ids),
        )

        self._resolve_department(case, transition, payload, outcome)
        self._resolve_user(case, transition, payload, outcome)

        if outcome.department_changed or outcome.user_changed:
            logger.info(
                f"Resolved assignment for transition {transition.code}: "
                f"department={outcome.department_id} assignees={outcome.assignee_ids}",
                extra={"case_id": case.case_id, "transition_id": transition.transition_id}
            )
        return outcome

    def _resolve_department(
        self,
        case: Case,
        transition: WorkflowTransition,
        payload: TransitionPayload,
        outcome: AssignmentOutcome
    ) -> None:
        if transition.auto_detect_department:
            candidates = self.department_candidates(case)
            if not candidates:
                return

            chosen: Optional[str] = None
            candidate_ids = [d.department_id for d in candidates]
            if payload.department_id and payload.department_id in candidate_ids:
                chosen = payload.department_id
            elif len(candidates) == 1 and not payload.department_id:
                chosen = candidates[0].department_id
            else:
                raise AmbiguousAssignmentError(
                    "Several departments match this case; choose one of the candidates",
                    kind=AssignmentKind.DEPARTMENT.value,
                    candidates=[_department_row(d) for d in candidates]
                )
            outcome.department_id = chosen
            outcome.department_changed = True

        elif transition.assign_department_id:
            outcome.department_id = transition.assign_department_id
            outcome.department_changed = True

    def _resolve_user(
        self,
        case: Case,
        transition: WorkflowTransition,
        payload: TransitionPayload,
        outcome: AssignmentOutcome
    ) -> None:
        if transition.assign_user_id:
            outcome.assignee_id = transition.assign_user_id
            outcome.assignee_ids = [transition.assign_user_id]
            outcome.user_changed = True
            return

        if not (transition.auto_match_user or transition.manual_select_user):
            return

        department_id = outcome.department_id if outcome.department_changed else None
        candidates = self.user_candidates(case, transition, department_id)

        if transition.auto_match_user:
            if not candidates:
                return
            outcome.assignee_ids = [u.user_id for u in candidates]
            outcome.assignee_id = candidates[0].user_id
            outcome.user_changed = True
            return

        candidate_ids = [u.user_id for u in candidates]
        if not payload.user_id or payload.user_id not in candidate_ids:
            raise AmbiguousAssignmentError(
                "Select an assignee from the matching users",
                kind=AssignmentKind.USER.value,
                candidates=[_user_row(u) for u in candidates]
            )
        outcome.assignee_id = payload.user_id
        outcome.assignee_ids = [payload.user_id]
        outcome.user_changed = True

    # =========================================================================
    # Preview
    # =========================================================================

    def preview(self, case: Case, transition: WorkflowTransition) -> AssignmentPreview:
        """Candidate sets the client shows before submitting a transition"""
        departments: List[Department] = []
        matched_department_id: Optional[str] = None

        if transition.auto_detect_department:
            departments = self.department_candidates(case)
            if len(departments) == 1:
                matched_department_id = departments[0].department_id
        elif transition.assign_department_id:
            matched_department_id = transition.assign_department_id
            fixed = self.directory.get_department(transition.assign_department_id)
            departments = [fixed] if fixed else []

        users: List[DirectoryUser] = []
        if transition.auto_match_user or transition.manual_select_user:
            users = self.user_candidates(case, transition, matched_department_id)
        elif transition.assign_user_id:
            fixed_user = self.directory.get_user(transition.assign_user_id)
            users = [fixed_user] if fixed_user else []

        return AssignmentPreview(
            transition_id=transition.transition_id,
            departments=[_department_row(d) for d in departments],
            single_match=len(departments) == 1,
            matched_department_id=matched_department_id,
            users=[_user_row(u) for u in users],
        )
