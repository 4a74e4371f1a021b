"""Transition Validator - Which transitions are legal, and may this one run"""
from typing import Any, List, Optional

from ..domain.models import (
    Case, Workflow, WorkflowTransition, TransitionRequirement, TransitionPayload,
    ActorContext, AvailableTransition
)
from ..domain.enums import RequirementType, UnmetReason
from ..domain.errors import (
    ConcurrencyError, ForbiddenError, InvalidTransitionError, RequirementNotMetError
)
from ..utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_REQUIREMENT_MESSAGES = {
    RequirementType.COMMENT: "A comment is required for this transition",
    RequirementType.ATTACHMENT: "At least one attachment is required for this transition",
    RequirementType.FEEDBACK: "A feedback rating is required for this transition",
}


def _values_equal(actual: Any, expected: Any) -> bool:
    if actual == expected:
        return True
    return actual is not None and expected is not None and str(actual) == str(expected)


class TransitionValidator:
    """
    Read-only checks over a case and its workflow

    Nothing here mutates state: listing and checking can run with any
    amount of concurrency.
    """

    # =========================================================================
    # Listing
    # =========================================================================

    def available_transitions(
        self,
        case: Case,
        workflow: Workflow,
        actor: ActorContext
    ) -> List[AvailableTransition]:
        """Active transitions leaving the current state, with readiness for this actor"""
        results = []
        for transition in workflow.outgoing(case.current_state_id):
            to_state = workflow.get_state(transition.to_state_id)
            reason: Optional[UnmetReason] = None

            if not actor.has_any_role(transition.allowed_roles):
                reason = UnmetReason.FORBIDDEN_ROLE
            elif not all(self._could_be_met(r, case) for r in transition.requirements if r.is_mandatory):
                reason = UnmetReason.REQUIREMENT_UNMET

            results.append(AvailableTransition(
                transition_id=transition.transition_id,
                name=transition.name,
                code=transition.code,
                to_state_id=transition.to_state_id,
                to_state_name=to_state.name if to_state else None,
                can_execute=reason is None,
                requirements=[r.describe() for r in transition.requirements],
                reason=reason,
                auto_detect_department=transition.auto_detect_department,
                manual_select_user=transition.manual_select_user,
            ))
        return results

    def _could_be_met(self, requirement: TransitionRequirement, case: Case) -> bool:
        """Comment/attachment/feedback are supplied at execute time; field values are checked now"""
        if requirement.requirement_type == RequirementType.FIELD_VALUE:
            return self._field_matches(requirement, case)
        return True

    # =========================================================================
    # Execute-time checks
    # =========================================================================

    def check_version(self, case: Case, expected_version: int) -> None:
        if expected_version != case.version:
            raise ConcurrencyError(
                f"Case {case.case_number} was modified. Please refresh and try again.",
                details={"expected_version": expected_version, "current_version": case.version}
            )

    def resolve_transition(self, case: Case, workflow: Workflow, transition_id: str) -> WorkflowTransition:
        """
        Find the transition and confirm it leaves the case's current state

        Raises:
            InvalidTransitionError: unknown, inactive or from another state
        """
        transition = workflow.get_transition(transition_id)
        if transition is None or not transition.is_active:
            raise InvalidTransitionError(
                f"Transition {transition_id} is not available in workflow {workflow.code}",
                details={"transition_id": transition_id}
            )
        if transition.from_state_id != case.current_state_id:
            raise InvalidTransitionError(
                f"Transition '{transition.name}' does not start from the case's current state",
                details={
                    "transition_id": transition_id,
                    "from_state_id": transition.from_state_id,
                    "current_state_id": case.current_state_id,
                }
            )
        return transition

    def check_role(self, transition: WorkflowTransition, actor: ActorContext) -> None:
        if not actor.has_any_role(transition.allowed_roles):
            logger.warning(
                f"Actor lacks a role for transition {transition.code}",
                extra={"transition_id": transition.transition_id, "actor_email": actor.email}
            )
            raise ForbiddenError(
                f"You are not allowed to perform '{transition.name}'",
                details={"transition_id": transition.transition_id, "allowed_roles": transition.allowed_roles}
            )

    def check_requirements(
        self,
        case: Case,
        transition: WorkflowTransition,
        payload: TransitionPayload
    ) -> None:
        """
        Evaluate mandatory requirements in declaration order

        Raises:
            RequirementNotMetError: naming the first unmet requirement
        """
        for requirement in transition.requirements:
            if not requirement.is_mandatory:
                continue
            if not self._is_met(requirement, case, payload):
                message = requirement.error_message or self._default_message(requirement)
                raise RequirementNotMetError(message, requirement=requirement.describe())

    def check(
        self,
        case: Case,
        transition: WorkflowTransition,
        actor: ActorContext,
        payload: TransitionPayload
    ) -> None:
        """Role then requirements"""
        self.check_role(transition, actor)
        self.check_requirements(case, transition, payload)

    def _is_met(self, requirement: TransitionRequirement, case: Case, payload: TransitionPayload) -> bool:
        requirement_type = requirement.requirement_type
        if requirement_type == RequirementType.COMMENT:
            return bool(payload.comment and payload.comment.strip())
        if requirement_type == RequirementType.ATTACHMENT:
            return any(a and a.strip() for a in payload.attachments)
        if requirement_type == RequirementType.FEEDBACK:
            return payload.feedback is not None and payload.feedback.rating is not None
        if requirement_type == RequirementType.FIELD_VALUE:
            return self._field_matches(requirement, case)
        return False

    def _field_matches(self, requirement: TransitionRequirement, case: Case) -> bool:
        """Without an expected value the field only has to be filled in"""
        actual = case.field_value(requirement.field_name)
        if requirement.field_value is None:
            return actual not in (None, "", [])
        return _values_equal(actual, requirement.field_value)

    def _default_message(self, requirement: TransitionRequirement) -> str:
        if requirement.requirement_type == RequirementType.FIELD_VALUE:
            if requirement.field_value is None:
                return f"Field '{requirement.field_name}' must be set for this transition"
            return f"Field '{requirement.field_name}' must be '{requirement.field_value}' for this transition"
        return DEFAULT_REQUIREMENT_MESSAGES[requirement.requirement_type]
