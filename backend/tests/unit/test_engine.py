"""Tests for TransitionEngine case creation and transition execution"""
from datetime import timedelta

import pytest

from caseflow.domain.models import CaseAttributes, TransitionPayload, Feedback
from caseflow.domain.enums import RecordType
from caseflow.domain.errors import (
    ConcurrencyError, ForbiddenError, InvalidTransitionError, NoWorkflowMatchError,
    RequirementNotMetError, ValidationError, WorkflowNotFoundError
)
from caseflow.engine import TransitionEngine
from caseflow.utils.time import ensure_utc, utc_now


# =============================================================================
# Case creation
# =============================================================================

class TestCreateCase:

    def test_starts_in_initial_state_at_version_one(self, workflow_factory, case_factory):
        built = workflow_factory()

        case = case_factory(built.workflow_id)

        assert case.current_state_id == built.states["OPEN"]
        assert case.version == 1
        assert case.case_number.startswith("INC-")
        # Open carries a 4 hour target
        remaining = ensure_utc(case.sla_deadline) - utc_now()
        assert timedelta(hours=3, minutes=59) < remaining <= timedelta(hours=4)

    def test_workflow_is_matched_when_not_given(self, workflow_factory, engine, admin_actor):
        workflow_factory(code="GENERIC", is_default=True)
        network = workflow_factory(
            code="NETWORK",
            match_config={"record_type": "incident", "classification_ids": ["CLS-network"]}
        )

        case = engine.create_case(
            record_type=RecordType.INCIDENT,
            title="Switch down",
            actor=admin_actor,
            attributes=CaseAttributes(classification_id="CLS-network"),
        )

        assert case.workflow_id == network.workflow_id

    def test_no_match_and_no_default(self, workflow_factory, engine, admin_actor):
        workflow_factory(match_config={"record_type": "request"})

        with pytest.raises(NoWorkflowMatchError):
            engine.create_case(
                record_type=RecordType.INCIDENT,
                title="Switch down",
                actor=admin_actor,
                attributes=CaseAttributes(),
            )

    def test_unknown_explicit_workflow(self, engine, admin_actor):
        with pytest.raises(WorkflowNotFoundError):
            engine.create_case(
                record_type=RecordType.INCIDENT,
                title="Switch down",
                actor=admin_actor,
                attributes=CaseAttributes(),
                workflow_id="WF-missing",
            )


# =============================================================================
# Execute
# =============================================================================

class TestExecute:

    def test_missing_comment_leaves_case_untouched(self, workflow_factory, case_factory, engine, admin_actor):
        built = workflow_factory()
        case = case_factory(built.workflow_id)

        with pytest.raises(RequirementNotMetError) as exc_info:
            engine.execute(
                case.case_id,
                TransitionPayload(transition_id=built.transitions["START"], comment="   ", version=1),
                admin_actor
            )

        assert isinstance(exc_info.value, ValidationError)
        assert exc_info.value.http_status == 422
        assert exc_info.value.details["requirement"]["type"] == "comment"
        unchanged = engine.load_case(case.case_id)
        assert unchanged.version == 1
        assert unchanged.current_state_id == built.states["OPEN"]
        assert engine.history(case.case_id) == []

    def test_commit_moves_state_and_records_history(self, workflow_factory, case_factory, engine, admin_actor):
        built = workflow_factory()
        case = case_factory(built.workflow_id)

        result = engine.execute(
            case.case_id,
            TransitionPayload(transition_id=built.transitions["START"], comment="ack", version=1),
            admin_actor
        )

        assert result.new_state_name == "In Progress"
        assert result.version == 2
        assert result.revision_number == 1
        assert result.side_effects_failed is False

        history = engine.history(case.case_id)
        assert len(history) == 1
        assert history[0].comment == "ack"
        assert history[0].from_state_name == "Open"
        assert history[0].performed_by.email == "admin@caseflow.io"
        assert history[0].old_values["current_state_id"] == built.states["OPEN"]
        assert history[0].new_values["current_state_id"] == built.states["IN_PROGRESS"]
        comments = engine.case_repo.list_comments(case.case_id)
        assert [c.body for c in comments] == ["ack"]

    def test_stale_version_is_rejected(self, workflow_factory, case_factory, engine, admin_actor):
        built = workflow_factory()
        case = case_factory(built.workflow_id)
        engine.execute(
            case.case_id,
            TransitionPayload(transition_id=built.transitions["START"], comment="ack", version=1),
            admin_actor
        )

        with pytest.raises(ConcurrencyError) as exc_info:
            engine.execute(
                case.case_id,
                TransitionPayload(transition_id=built.transitions["RESOLVE"], version=1),
                admin_actor
            )

        assert exc_info.value.http_status == 409
        assert exc_info.value.details == {"expected_version": 1, "current_version": 2}

    def test_concurrent_executions_commit_once(self, workflow_factory, case_factory, engine, admin_actor):
        built = workflow_factory(transitions=[
            {"code": "START", "from": "OPEN", "to": "IN_PROGRESS"},
            {"code": "FAST_RESOLVE", "from": "OPEN", "to": "RESOLVED"},
        ])
        case = case_factory(built.workflow_id)
        # Both callers read version 1 before either commits
        stale = engine.load_case(case.case_id)
        slower = TransitionEngine()
        slower.load_case = lambda case_id: stale

        engine.execute(
            case.case_id,
            TransitionPayload(transition_id=built.transitions["START"], version=1),
            admin_actor
        )
        with pytest.raises(ConcurrencyError):
            slower.execute(
                case.case_id,
                TransitionPayload(transition_id=built.transitions["FAST_RESOLVE"], version=1),
                admin_actor
            )

        current = engine.load_case(case.case_id)
        assert current.version == 2
        assert current.current_state_id == built.states["IN_PROGRESS"]
        assert len(engine.history(case.case_id)) == 1

    def test_transition_from_another_state(self, workflow_factory, case_factory, engine, admin_actor):
        built = workflow_factory()
        case = case_factory(built.workflow_id)

        with pytest.raises(InvalidTransitionError):
            engine.execute(
                case.case_id,
                TransitionPayload(transition_id=built.transitions["CLOSE"], version=1),
                admin_actor
            )

    def test_role_is_enforced(self, workflow_factory, case_factory, engine, admin_actor, viewer_actor):
        built = workflow_factory()
        case = case_factory(built.workflow_id)
        engine.execute(
            case.case_id,
            TransitionPayload(transition_id=built.transitions["START"], comment="ack", version=1),
            admin_actor
        )

        with pytest.raises(ForbiddenError):
            engine.execute(
                case.case_id,
                TransitionPayload(transition_id=built.transitions["RESOLVE"], version=2),
                viewer_actor
            )

    def test_terminal_state_closes_and_reopen_clears(self, workflow_factory, case_factory, engine, agent_actor):
        built = workflow_factory(transitions=[
            {"code": "RESOLVE", "from": "OPEN", "to": "RESOLVED"},
            {"code": "CLOSE", "from": "RESOLVED", "to": "CLOSED",
             "requirements": [{"requirement_type": "feedback"}]},
        ])
        case = case_factory(built.workflow_id)
        engine.execute(case.case_id, TransitionPayload(transition_id=built.transitions["RESOLVE"], version=1), agent_actor)

        engine.execute(
            case.case_id,
            TransitionPayload(
                transition_id=built.transitions["CLOSE"], version=2,
                feedback=Feedback(rating=4, comment="quick fix")
            ),
            agent_actor
        )

        closed = engine.load_case(case.case_id)
        assert closed.closed_at is not None
        assert closed.feedback.rating == 4
        assert engine.history(case.case_id)[-1].feedback.comment == "quick fix"

    def test_sla_deadline_follows_target_state(self, workflow_factory, case_factory, engine, admin_actor):
        built = workflow_factory()
        case = case_factory(built.workflow_id)

        engine.execute(
            case.case_id,
            TransitionPayload(transition_id=built.transitions["START"], comment="ack", version=1),
            admin_actor
        )

        moved = engine.load_case(case.case_id)
        remaining = ensure_utc(moved.sla_deadline) - utc_now()
        assert timedelta(hours=23, minutes=59) < remaining <= timedelta(hours=24)

    def test_available_transitions_reflect_role(self, workflow_factory, case_factory, engine, admin_actor, viewer_actor):
        built = workflow_factory()
        case = case_factory(built.workflow_id)
        engine.execute(
            case.case_id,
            TransitionPayload(transition_id=built.transitions["START"], comment="ack", version=1),
            admin_actor
        )

        listed = {t.code: t for t in engine.available_transitions(case.case_id, viewer_actor)}

        assert set(listed) == {"RESOLVE"}
        assert listed["RESOLVE"].can_execute is False
        assert listed["RESOLVE"].reason.value == "forbidden_role"
