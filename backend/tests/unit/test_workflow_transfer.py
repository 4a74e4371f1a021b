"""Tests for workflow export and import"""
import json

import pytest

from caseflow.config.settings import settings
from caseflow.domain.enums import RequirementType
from caseflow.domain.errors import ImportFileTooLargeError, InvalidTransitionError, ValidationError
from caseflow.domain.models import TransitionPayload
from caseflow.engine.catalog import WorkflowCatalog
from caseflow.repositories.workflow_repo import WorkflowRepository
from caseflow.services.workflow_transfer_service import WorkflowTransferService


ROUTED_TRANSITIONS = [
    {"code": "START", "from": "OPEN", "to": "IN_PROGRESS",
     "requirements": [{"requirement_type": "comment", "error_message": "Say what you are doing"}],
     "assign_department_id": "DEP-netops", "assign_user_id": "USR-agent"},
    {"code": "RESOLVE", "from": "IN_PROGRESS", "to": "RESOLVED", "allowed_roles": ["ROL-agent"],
     "actions": [
         {"action_type": "notification", "name": "Tell tech", "execution_order": 2,
          "config": {"recipients": ["custom"], "custom_user_ids": ["USR-tech"]}},
         {"action_type": "email", "name": "Mail reporter", "execution_order": 1, "is_async": True,
          "config": {"recipients": ["reporter"]}},
     ]},
    {"code": "CLOSE", "from": "RESOLVED", "to": "CLOSED"},
]


@pytest.fixture
def transfer(mongo_db):
    return WorkflowTransferService()


@pytest.fixture
def exported(workflow_factory, transfer, directory):
    built = workflow_factory(
        match_config={"record_type": "incident", "classification_ids": ["CLS-network"], "location_ids": ["LOC-hq"]},
        is_default=True,
        transitions=ROUTED_TRANSITIONS,
    )
    return transfer.export_workflow(built.workflow_id)


def _file(document) -> bytes:
    return document.model_dump_json().encode("utf-8")


class TestExport:

    def test_uses_natural_keys(self, exported):
        assert exported.format_version == "1.0"
        assert exported.workflow.code == "INCIDENT_STANDARD"
        assert exported.workflow.match_config.classification_names == ["Network"]
        assert exported.workflow.match_config.location_codes == ["HQ"]
        assert [s.code for s in exported.states] == ["OPEN", "IN_PROGRESS", "RESOLVED", "CLOSED"]

        by_code = {t.code: t for t in exported.transitions}
        assert by_code["START"].from_state_code == "OPEN"
        assert by_code["START"].assign_department_code == "NETOPS"
        assert by_code["START"].assign_user_email == "agent@caseflow.io"
        assert by_code["RESOLVE"].allowed_role_codes == ["AGENT"]

    def test_requirements_and_actions_are_keyed_by_transition_code(self, exported):
        requirement = exported.requirements_by_transition["START"][0]
        assert requirement.requirement_type == RequirementType.COMMENT
        assert requirement.error_message == "Say what you are doing"

        actions = exported.actions_by_transition["RESOLVE"]
        assert [a.name for a in actions] == ["Mail reporter", "Tell tech"]
        assert actions[1].config["custom_user_emails"] == ["tech@caseflow.io"]
        assert "custom_user_ids" not in actions[1].config
        assert exported.actions_by_transition["CLOSE"] == []

    def test_vanished_roles_are_reported_and_fail_closed(self, workflow_factory, transfer, directory, mongo_db):
        built = workflow_factory(transitions=[
            {"code": "START", "from": "OPEN", "to": "IN_PROGRESS", "allowed_roles": ["ROL-supervisor"]},
            {"code": "ASSIGN", "from": "IN_PROGRESS", "to": "RESOLVED",
             "assignment_role_id": "ROL-supervisor", "manual_select_user": True},
            {"code": "CLOSE", "from": "RESOLVED", "to": "CLOSED"},
        ])
        mongo_db["roles"].delete_one({"role_id": "ROL-supervisor"})

        document = transfer.export_workflow(built.workflow_id)

        by_code = {t.code: t for t in document.transitions}
        assert by_code["START"].allowed_role_codes == []
        assert by_code["START"].is_active is False
        assert by_code["ASSIGN"].manual_select_user is False
        assert by_code["ASSIGN"].assignment_role_code is None
        assert "transition START: role 'ROL-supervisor' no longer exists; left out" in document.warnings
        assert "transition START: none of its allowed roles exist; exported inactive" in document.warnings
        assert any(w.startswith("transition ASSIGN: assignment role") for w in document.warnings)

    def test_export_warnings_carry_into_import(self, workflow_factory, transfer, directory, mongo_db, admin_actor):
        built = workflow_factory(transitions=[
            {"code": "START", "from": "OPEN", "to": "IN_PROGRESS", "allowed_roles": ["ROL-supervisor"]},
            {"code": "CLOSE", "from": "IN_PROGRESS", "to": "CLOSED"},
        ])
        mongo_db["roles"].delete_one({"role_id": "ROL-supervisor"})

        result = transfer.import_file(_file(transfer.export_workflow(built.workflow_id)), admin_actor)

        assert "export: transition START: none of its allowed roles exist; exported inactive" in result.warnings
        start = {t.code: t for t in WorkflowCatalog().get(result.workflow_id).transitions}["START"]
        assert start.is_active is False


class TestImport:

    def test_round_trip_renames_clashing_code(self, exported, transfer, admin_actor):
        result = transfer.import_file(_file(exported), admin_actor)

        assert result.code == "INCIDENT_STANDARD_IMPORTED"
        assert "Workflow code 'INCIDENT_STANDARD' is in use; imported as 'INCIDENT_STANDARD_IMPORTED'" in result.warnings

        workflow = WorkflowCatalog().get(result.workflow_id)
        assert workflow.is_default is False
        assert workflow.match_config.classification_ids == ["CLS-network"]
        transitions = {t.code: t for t in workflow.transitions}
        assert transitions["RESOLVE"].allowed_roles == ["ROL-agent"]
        assert transitions["START"].assign_department_id == "DEP-netops"
        assert transitions["START"].assign_user_id == "USR-agent"
        notify = [a for a in transitions["RESOLVE"].actions if a.name == "Tell tech"][0]
        assert notify.config.custom_user_ids == ["USR-tech"]
        assert WorkflowCatalog().readiness(result.workflow_id)["is_valid"] is True

    def test_second_import_gets_numbered_suffix(self, exported, transfer, admin_actor):
        transfer.import_file(_file(exported), admin_actor)

        result = transfer.import_file(_file(exported), admin_actor)

        assert result.code == "INCIDENT_STANDARD_IMPORTED_2"

    def test_default_flag_is_not_imported(self, exported, transfer, admin_actor):
        result = transfer.import_file(_file(exported), admin_actor)

        assert "Imported workflow is not made default; set it explicitly if needed" in result.warnings

    def test_unknown_references_are_dropped_with_warnings(self, exported, transfer, admin_actor):
        by_code = {t.code: t for t in exported.transitions}
        by_code["START"].assign_department_code = "GHOST"

        result = transfer.import_file(_file(exported), admin_actor)

        assert "transition START: department 'GHOST' not found; dropped" in result.warnings
        transitions = {t.code: t for t in WorkflowCatalog().get(result.workflow_id).transitions}
        assert transitions["START"].assign_department_id is None
        assert transitions["START"].is_active is True

    def test_transition_without_known_roles_is_imported_inactive(self, exported, transfer, admin_actor):
        by_code = {t.code: t for t in exported.transitions}
        by_code["RESOLVE"].allowed_role_codes = ["AUDITOR"]

        result = transfer.import_file(_file(exported), admin_actor)

        assert "transition RESOLVE: role 'AUDITOR' not found; dropped" in result.warnings
        assert "transition RESOLVE: none of its allowed roles exist; imported inactive" in result.warnings
        transitions = {t.code: t for t in WorkflowCatalog().get(result.workflow_id).transitions}
        assert transitions["RESOLVE"].is_active is False

    def test_partially_known_roles_keep_the_transition_active(self, exported, transfer, admin_actor):
        by_code = {t.code: t for t in exported.transitions}
        by_code["RESOLVE"].allowed_role_codes = ["AUDITOR", "AGENT"]

        result = transfer.import_file(_file(exported), admin_actor)

        transitions = {t.code: t for t in WorkflowCatalog().get(result.workflow_id).transitions}
        assert transitions["RESOLVE"].allowed_roles == ["ROL-agent"]
        assert transitions["RESOLVE"].is_active is True

    def test_unknown_assignment_role_switches_off_auto_match(
        self, directory, workflow_factory, case_factory, engine, transfer, admin_actor
    ):
        built = workflow_factory(code="AUTO", transitions=[
            {"code": "START", "from": "OPEN", "to": "IN_PROGRESS",
             "assignment_role_id": "ROL-agent", "auto_match_user": True},
            {"code": "CLOSE", "from": "IN_PROGRESS", "to": "CLOSED"},
        ])
        document = transfer.export_workflow(built.workflow_id)
        document.transitions[0].assignment_role_code = "AUDITOR"

        result = transfer.import_file(_file(document), admin_actor)

        assert "transition START: user assignment disabled until an assignment role is set" in result.warnings
        start = {t.code: t for t in WorkflowCatalog().get(result.workflow_id).transitions}["START"]
        assert start.auto_match_user is False
        assert start.manual_select_user is False
        assert start.assignment_role_id is None

        case = case_factory(result.workflow_id)
        executed = engine.execute(
            case.case_id, TransitionPayload(transition_id=start.transition_id, version=1), admin_actor
        )
        assert executed.assignment.assignee_ids == []
        assert engine.load_case(case.case_id).assignee_ids == []

    def test_role_restricted_transition_stays_closed_after_import(
        self, directory, workflow_factory, case_factory, engine, transfer, admin_actor, viewer_actor, agent_actor
    ):
        built = workflow_factory(code="GUARDED", transitions=[
            {"code": "START", "from": "OPEN", "to": "IN_PROGRESS", "allowed_roles": ["ROL-supervisor"]},
            {"code": "CLOSE", "from": "IN_PROGRESS", "to": "CLOSED"},
        ])
        document = transfer.export_workflow(built.workflow_id)
        document.transitions[0].allowed_role_codes = ["AUDITOR"]

        result = transfer.import_file(_file(document), admin_actor)
        start = {t.code: t for t in WorkflowCatalog().get(result.workflow_id).transitions}["START"]
        case = case_factory(result.workflow_id)

        for actor in (viewer_actor, agent_actor):
            with pytest.raises(InvalidTransitionError):
                engine.execute(case.case_id, TransitionPayload(transition_id=start.transition_id, version=1), actor)
        assert engine.load_case(case.case_id).version == 1

    def test_missing_match_lookups_are_created(self, exported, transfer, admin_actor, directory):
        exported.workflow.match_config.classification_names = ["Water"]
        exported.workflow.match_config.location_codes = ["SOUTH"]

        result = transfer.import_file(_file(exported), admin_actor)

        water = directory.get_classification_by_name("Water")
        south = directory.get_location_by_code("SOUTH")
        assert water is not None and south is not None
        config = WorkflowCatalog().get(result.workflow_id).match_config
        assert config.classification_ids == [water.classification_id]
        assert config.location_ids == [south.location_id]

    def test_unknown_state_reference_writes_nothing(self, exported, transfer, admin_actor):
        exported.transitions[0].to_state_code = "NOWHERE"

        with pytest.raises(ValidationError):
            transfer.import_file(_file(exported), admin_actor)

        assert WorkflowRepository().code_exists("INCIDENT_STANDARD_IMPORTED") is False

    def test_oversized_file(self, exported, transfer, admin_actor, monkeypatch):
        monkeypatch.setattr(settings, "import_max_mb", 0)

        with pytest.raises(ImportFileTooLargeError) as exc_info:
            transfer.import_file(_file(exported), admin_actor)

        assert exc_info.value.http_status == 413

    @pytest.mark.parametrize("content", [b"{not json", json.dumps({"workflow": "nope"}).encode()])
    def test_malformed_file(self, transfer, admin_actor, content):
        with pytest.raises(ValidationError):
            transfer.import_file(content, admin_actor)

    def test_unsupported_format_version(self, exported, transfer, admin_actor):
        exported.format_version = "2.0"

        with pytest.raises(ValidationError, match="Unsupported export format version"):
            transfer.import_file(_file(exported), admin_actor)
