"""
Pytest Configuration and Fixtures

Repositories run against an in-memory mongomock database that is replaced
for every test. Settings are read from the environment at import time, so
the overrides below must come before any caseflow import.
"""
import os
import tempfile

os.environ.setdefault("LOGS_PATH", tempfile.mkdtemp(prefix="caseflow-logs-"))
os.environ["ACTION_WORKER_ENABLED"] = "false"
os.environ["ENVIRONMENT"] = "development"
os.environ["MONGO_DB"] = "caseflow_test"

from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import mongomock
import pytest

from caseflow.repositories import mongo_client
from caseflow.repositories.directory_repo import DirectoryRepository
from caseflow.services.workflow_service import WorkflowService
from caseflow.engine import TransitionEngine
from caseflow.domain.models import (
    ActorContext, CaseAttributes, Role, Classification, Location, Department, DirectoryUser
)
from caseflow.domain.enums import RecordType, StateType


# Open -> In Progress -> Resolved -> Closed, with a reopen edge
DEFAULT_STATES = (
    ("OPEN", StateType.INITIAL, 4),
    ("IN_PROGRESS", StateType.NORMAL, 24),
    ("RESOLVED", StateType.NORMAL, None),
    ("CLOSED", StateType.TERMINAL, None),
)

DEFAULT_TRANSITIONS = (
    {"code": "START", "from": "OPEN", "to": "IN_PROGRESS",
     "requirements": [{"requirement_type": "comment"}]},
    {"code": "RESOLVE", "from": "IN_PROGRESS", "to": "RESOLVED", "allowed_roles": ["ROL-agent"]},
    {"code": "CLOSE", "from": "RESOLVED", "to": "CLOSED",
     "requirements": [{"requirement_type": "feedback"}]},
    {"code": "REOPEN", "from": "RESOLVED", "to": "IN_PROGRESS"},
)


@pytest.fixture(autouse=True)
def mongo_db(monkeypatch):
    """Fresh in-memory database with production indexes"""
    client = mongomock.MongoClient(tz_aware=True)
    database = client["caseflow_test"]
    monkeypatch.setattr(mongo_client, "_client", client)
    monkeypatch.setattr(mongo_client, "_database", database)
    mongo_client.create_indexes()
    yield database


@pytest.fixture
def admin_actor() -> ActorContext:
    return ActorContext(
        user_id="USR-admin",
        email="admin@caseflow.io",
        display_name="Console Admin",
        is_super_admin=True
    )


@pytest.fixture
def agent_actor() -> ActorContext:
    return ActorContext(
        user_id="USR-agent",
        email="agent@caseflow.io",
        display_name="Field Agent",
        roles=["ROL-agent"]
    )


@pytest.fixture
def viewer_actor() -> ActorContext:
    return ActorContext(
        user_id="USR-viewer",
        email="viewer@caseflow.io",
        display_name="Read Only",
        roles=["ROL-viewer"]
    )


@pytest.fixture
def directory(mongo_db) -> DirectoryRepository:
    """
    Directory seed

    Network cases at HQ map to NETOPS only; network cases in the north
    region map to both NETOPS and FIELD.
    """
    repo = DirectoryRepository()
    repo.save_role(Role(role_id="ROL-agent", code="AGENT", name="Agent"))
    repo.save_role(Role(role_id="ROL-supervisor", code="SUPERVISOR", name="Supervisor"))
    repo.save_classification(Classification(classification_id="CLS-network", name="Network"))
    repo.save_classification(Classification(classification_id="CLS-power", name="Power"))
    repo.save_location(Location(location_id="LOC-hq", name="Head Office", code="HQ"))
    repo.save_location(Location(location_id="LOC-north", name="North Region", code="NORTH"))
    repo.save_department(Department(
        department_id="DEP-netops", code="NETOPS", name="Network Operations",
        manager_id="USR-supervisor",
        classification_ids=["CLS-network"], location_ids=["LOC-hq", "LOC-north"]
    ))
    repo.save_department(Department(
        department_id="DEP-field", code="FIELD", name="Field Services",
        classification_ids=["CLS-network"], location_ids=["LOC-north"]
    ))
    repo.save_department(Department(
        department_id="DEP-power", code="POWER", name="Power Grid",
        classification_ids=["CLS-power"], location_ids=["LOC-hq"]
    ))
    repo.save_user(DirectoryUser(
        user_id="USR-agent", email="agent@caseflow.io", display_name="Field Agent",
        role_ids=["ROL-agent"], department_ids=["DEP-netops"]
    ))
    repo.save_user(DirectoryUser(
        user_id="USR-tech", email="tech@caseflow.io", display_name="North Technician",
        role_ids=["ROL-agent"], department_ids=["DEP-field"], location_ids=["LOC-north"]
    ))
    repo.save_user(DirectoryUser(
        user_id="USR-supervisor", email="supervisor@caseflow.io", display_name="Shift Supervisor",
        role_ids=["ROL-supervisor"], department_ids=["DEP-netops"]
    ))
    return repo


@pytest.fixture
def workflow_service(mongo_db) -> WorkflowService:
    return WorkflowService()


@pytest.fixture
def workflow_factory(workflow_service, admin_actor):
    """
    Build a workflow through the admin service

    transitions entries use state codes under "from"/"to"; the result maps
    state and transition codes to ids.
    """
    def build(
        code: str = "INCIDENT_STANDARD",
        match_config: Optional[Dict[str, Any]] = None,
        is_default: bool = False,
        transitions: Optional[List[Dict[str, Any]]] = None
    ) -> SimpleNamespace:
        workflow = workflow_service.create_workflow(
            code=code,
            name=code.replace("_", " ").title(),
            actor=admin_actor,
            match_config=match_config if match_config is not None else {"record_type": "incident"},
            is_default=is_default
        )
        states = {}
        for order, (state_code, state_type, sla_hours) in enumerate(DEFAULT_STATES):
            state = workflow_service.add_state(workflow.workflow_id, {
                "code": state_code,
                "name": state_code.replace("_", " ").title(),
                "state_type": state_type,
                "sla_hours": sla_hours,
                "sort_order": order,
            }, admin_actor)
            states[state_code] = state.state_id

        transition_ids = {}
        for spec in (transitions if transitions is not None else DEFAULT_TRANSITIONS):
            data = dict(spec)
            data["from_state_id"] = states[data.pop("from")]
            data["to_state_id"] = states[data.pop("to")]
            data.setdefault("name", data["code"].replace("_", " ").title())
            transition = workflow_service.add_transition(workflow.workflow_id, data, admin_actor)
            transition_ids[transition.code] = transition.transition_id

        return SimpleNamespace(
            workflow_id=workflow.workflow_id,
            code=workflow.code,
            states=states,
            transitions=transition_ids
        )
    return build


@pytest.fixture
def engine(mongo_db) -> TransitionEngine:
    return TransitionEngine()


@pytest.fixture
def case_factory(engine, admin_actor):
    """Open an incident on a given workflow"""
    def open_case(workflow_id: str, **attributes):
        attributes.setdefault("classification_id", "CLS-network")
        attributes.setdefault("location_id", "LOC-hq")
        return engine.create_case(
            record_type=RecordType.INCIDENT,
            title="Core router unreachable",
            actor=admin_actor,
            attributes=CaseAttributes(**attributes),
            workflow_id=workflow_id,
            reporter_email="reporter@caseflow.io",
            reporter_name="Night Shift",
        )
    return open_case
