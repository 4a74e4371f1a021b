"""Tests for WorkflowCatalog reads and readiness validation"""
import pytest

from caseflow.engine.catalog import WorkflowCatalog, compatible_match_types
from caseflow.domain.enums import RecordType, MatchRecordType
from caseflow.domain.errors import WorkflowNotFoundError


def test_get_assembles_live_states_and_transitions(workflow_factory):
    built = workflow_factory()

    workflow = WorkflowCatalog().get(built.workflow_id)

    assert [s.code for s in workflow.states] == ["OPEN", "IN_PROGRESS", "RESOLVED", "CLOSED"]
    assert {t.code for t in workflow.transitions} == {"START", "RESOLVE", "CLOSE", "REOPEN"}
    assert workflow.version > 1  # structural edits bump the version


def test_deleted_state_hides_its_transitions(workflow_factory, workflow_service, admin_actor):
    built = workflow_factory()
    workflow_service.delete_state(built.workflow_id, built.states["CLOSED"], admin_actor)

    catalog = WorkflowCatalog()
    workflow = catalog.get(built.workflow_id)
    report = catalog.readiness(built.workflow_id)

    assert "CLOSED" not in [s.code for s in workflow.states]
    assert "CLOSE" not in [t.code for t in workflow.transitions]
    assert any(w["type"] == "HIDDEN_TRANSITION" for w in report["warnings"])


def test_soft_deleted_workflow_is_not_found(workflow_factory, workflow_service, admin_actor):
    built = workflow_factory()
    workflow_service.delete_workflow(built.workflow_id, admin_actor)

    with pytest.raises(WorkflowNotFoundError):
        WorkflowCatalog().get(built.workflow_id)


def test_validate_reports_missing_initial_state(workflow_service, admin_actor):
    workflow = workflow_service.create_workflow(code="EMPTY", name="Empty", actor=admin_actor)

    report = WorkflowCatalog().readiness(workflow.workflow_id)

    assert report["is_valid"] is False
    assert {e["type"] for e in report["errors"]} == {"NO_STATES", "NO_INITIAL_STATE"}


def test_validate_warns_about_unreachable_states(workflow_factory):
    built = workflow_factory(transitions=[
        {"code": "START", "from": "OPEN", "to": "IN_PROGRESS"},
    ])

    report = WorkflowCatalog().readiness(built.workflow_id)

    assert report["is_valid"] is True
    unreachable = [w["path"] for w in report["warnings"] if w["type"] == "UNREACHABLE_STATE"]
    assert unreachable == ["states.RESOLVED", "states.CLOSED"]


def test_compatible_match_types_includes_legacy_both():
    assert MatchRecordType.BOTH in compatible_match_types(RecordType.INCIDENT)
    assert MatchRecordType.BOTH in compatible_match_types(RecordType.REQUEST)
    assert compatible_match_types(RecordType.COMPLAINT) == [MatchRecordType.COMPLAINT, MatchRecordType.ALL]
