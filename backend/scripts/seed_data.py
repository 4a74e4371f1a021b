"""
Seed Data Script - Creates directory data and a sample incident workflow
Run: python -m scripts.seed_data
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from caseflow.repositories.mongo_client import create_indexes
from caseflow.repositories.directory_repo import DirectoryRepository
from caseflow.repositories.workflow_repo import WorkflowRepository
from caseflow.services.workflow_service import WorkflowService
from caseflow.domain.models import (
    ActorContext, Role, Classification, Location, Department, DirectoryUser
)
from caseflow.domain.enums import StateType


SEED_ACTOR = ActorContext(
    user_id="USR-seed",
    email="admin@caseflow.io",
    display_name="System Admin",
    is_super_admin=True
)


def seed_directory(directory: DirectoryRepository) -> None:
    """Roles, a classification, a location, one department and two agents"""
    directory.save_role(Role(role_id="ROL-agent", code="AGENT", name="Agent"))
    directory.save_role(Role(role_id="ROL-supervisor", code="SUPERVISOR", name="Supervisor"))
    directory.save_classification(Classification(classification_id="CLS-network", name="Network"))
    directory.save_location(Location(location_id="LOC-hq", name="Head Office", code="HQ"))
    directory.save_department(Department(
        department_id="DEP-netops",
        code="NETOPS",
        name="Network Operations",
        manager_id="USR-supervisor",
        classification_ids=["CLS-network"],
        location_ids=["LOC-hq"]
    ))
    directory.save_user(DirectoryUser(
        user_id="USR-agent",
        email="agent@caseflow.io",
        display_name="Field Agent",
        role_ids=["ROL-agent"],
        department_ids=["DEP-netops"],
        classification_ids=["CLS-network"],
        location_ids=["LOC-hq"]
    ))
    directory.save_user(DirectoryUser(
        user_id="USR-supervisor",
        email="supervisor@caseflow.io",
        display_name="Shift Supervisor",
        role_ids=["ROL-supervisor"],
        department_ids=["DEP-netops"]
    ))
    print("Seeded directory: 2 roles, 1 department, 2 users")


def create_sample_workflow(service: WorkflowService) -> None:
    """Create the default incident workflow: Open -> In Progress -> Resolved -> Closed"""
    if service.repo.get_by_code("INCIDENT_STANDARD"):
        print("Sample workflow already exists. Skipping seed.")
        return

    workflow = service.create_workflow(
        code="INCIDENT_STANDARD",
        name="Standard Incident",
        description="Default lifecycle for incidents",
        match_config={"record_type": "incident"},
        actor=SEED_ACTOR,
        is_default=True
    )
    print(f"Created workflow: {workflow.workflow_id}")

    states = {}
    for order, (code, name, state_type, sla_hours) in enumerate([
        ("OPEN", "Open", StateType.INITIAL, 4),
        ("IN_PROGRESS", "In Progress", StateType.NORMAL, 24),
        ("RESOLVED", "Resolved", StateType.NORMAL, None),
        ("CLOSED", "Closed", StateType.TERMINAL, None),
    ]):
        state = service.add_state(workflow.workflow_id, {
            "code": code,
            "name": name,
            "state_type": state_type,
            "sla_hours": sla_hours,
            "sort_order": order,
        }, SEED_ACTOR)
        states[code] = state.state_id

    service.add_transition(workflow.workflow_id, {
        "code": "START_WORK",
        "name": "Start Work",
        "from_state_id": states["OPEN"],
        "to_state_id": states["IN_PROGRESS"],
        "auto_detect_department": True,
        "auto_match_user": True,
        "requirements": [{"requirement_type": "comment", "error_message": "Add a note before starting"}],
        "actions": [{
            "action_type": "notification",
            "name": "Notify assignee",
            "config": {"recipients": ["assignee"]},
        }],
    }, SEED_ACTOR)
    service.add_transition(workflow.workflow_id, {
        "code": "RESOLVE",
        "name": "Resolve",
        "from_state_id": states["IN_PROGRESS"],
        "to_state_id": states["RESOLVED"],
        "allowed_roles": ["ROL-agent", "ROL-supervisor"],
        "requirements": [{"requirement_type": "comment"}],
        "actions": [{
            "action_type": "email",
            "name": "Email reporter",
            "is_async": True,
            "config": {"recipients": ["reporter", "creator"]},
        }],
    }, SEED_ACTOR)
    service.add_transition(workflow.workflow_id, {
        "code": "CLOSE",
        "name": "Close",
        "from_state_id": states["RESOLVED"],
        "to_state_id": states["CLOSED"],
        "requirements": [{"requirement_type": "feedback", "is_mandatory": False}],
    }, SEED_ACTOR)
    service.add_transition(workflow.workflow_id, {
        "code": "REOPEN",
        "name": "Reopen",
        "from_state_id": states["RESOLVED"],
        "to_state_id": states["IN_PROGRESS"],
        "requirements": [{"requirement_type": "comment", "error_message": "Say why the incident is reopened"}],
    }, SEED_ACTOR)

    report = service.validate_workflow(workflow.workflow_id)
    print(f"Readiness: valid={report['is_valid']} warnings={len(report['warnings'])}")


def main():
    print("=== Seeding database ===")
    print("-" * 40)

    create_indexes()
    seed_directory(DirectoryRepository())
    create_sample_workflow(WorkflowService(repo=WorkflowRepository()))

    print("-" * 40)
    print("Done!")


if __name__ == "__main__":
    main()
