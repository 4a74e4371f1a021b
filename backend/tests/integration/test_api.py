"""
API Integration Tests

Drives the FastAPI app end to end over the in-memory database. Tokens are
minted locally; ENVIRONMENT=development skips signature checks but still
enforces expiry.
"""
import time

import jwt
import pytest
from fastapi.testclient import TestClient

from caseflow.main import app
from caseflow.config.settings import settings
from caseflow.domain.models import InAppNotification
from caseflow.repositories.inapp_notification_repo import InAppNotificationRepository
from caseflow.utils.time import utc_now

TOKEN_SECRET = "integration-test-secret-0123456789abcdef"

API = "/api/v1"


def _token(sub, email, name, roles=None, is_super_admin=False, expires_in=3600):
    claims = {
        "sub": sub,
        "email": email,
        "name": name,
        "roles": roles or [],
        "is_super_admin": is_super_admin,
        "exp": int(time.time()) + expires_in,
    }
    return jwt.encode(claims, TOKEN_SECRET, algorithm="HS256")


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


ADMIN = _auth(_token("USR-admin", "admin@caseflow.io", "Console Admin", is_super_admin=True))
AGENT = _auth(_token("USR-agent", "agent@caseflow.io", "Field Agent", roles=["ROL-agent"]))
VIEWER = _auth(_token("USR-viewer", "viewer@caseflow.io", "Read Only", roles=["ROL-viewer"]))


@pytest.fixture
def client():
    # No context manager: the lifespan (indexes, scheduler) stays out of the tests
    return TestClient(app)


@pytest.fixture
def api_workflow(client):
    """Open -> In Progress -> Closed, created through the admin API"""
    response = client.post(f"{API}/workflows", headers=ADMIN, json={
        "code": "incident_api",
        "name": "Incident API",
        "match_config": {"record_type": "incident"},
        "is_default": True,
    })
    assert response.status_code == 201
    workflow_id = response.json()["workflow_id"]

    states = {}
    for order, (code, state_type) in enumerate([("OPEN", "initial"), ("IN_PROGRESS", "normal"), ("CLOSED", "terminal")]):
        response = client.post(f"{API}/workflows/{workflow_id}/states", headers=ADMIN, json={
            "code": code, "name": code.replace("_", " ").title(), "state_type": state_type, "sort_order": order,
        })
        assert response.status_code == 201
        states[code] = response.json()["state_id"]

    transitions = {}
    for code, source, target, extra in [
        ("START", "OPEN", "IN_PROGRESS", {"requirements": [{"requirement_type": "comment"}]}),
        ("CLOSE", "IN_PROGRESS", "CLOSED", {"allowed_roles": ["ROL-agent"]}),
    ]:
        response = client.post(f"{API}/workflows/{workflow_id}/transitions", headers=ADMIN, json={
            "code": code, "name": code.title(),
            "from_state_id": states[source], "to_state_id": states[target], **extra,
        })
        assert response.status_code == 201
        transitions[code] = response.json()["transition_id"]

    return {"workflow_id": workflow_id, "states": states, "transitions": transitions}


@pytest.fixture
def api_case(client, api_workflow):
    response = client.post(f"{API}/cases", headers=AGENT, json={
        "record_type": "incident",
        "title": "VPN concentrator down",
        "reporter_email": "reporter@caseflow.io",
    })
    assert response.status_code == 201
    return response.json()


# =============================================================================
# Auth & envelope
# =============================================================================

def test_missing_token_is_401_with_envelope(client):
    response = client.get(f"{API}/workflows")

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTHENTICATION_ERROR"
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_expired_token_is_401(client):
    expired = _auth(_token("USR-admin", "admin@caseflow.io", "Console Admin", expires_in=-60))

    response = client.get(f"{API}/workflows", headers=expired)

    assert response.status_code == 401
    assert response.json()["error"]["message"] == "Token has expired"


def test_admin_mutations_need_super_admin(client):
    response = client.post(f"{API}/workflows", headers=VIEWER, json={"code": "X", "name": "X"})

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "FORBIDDEN"


def test_correlation_id_is_echoed(client):
    response = client.get(f"{API}/workflows", headers={**ADMIN, "X-Correlation-Id": "trace-123"})

    assert response.status_code == 200
    assert response.headers["X-Correlation-Id"] == "trace-123"


def test_request_validation_uses_envelope(client):
    response = client.post(f"{API}/workflows", headers=ADMIN, json={"name": "No code"})

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_unknown_workflow_is_404(client):
    response = client.get(f"{API}/workflows/WF-missing", headers=ADMIN)

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "WORKFLOW_NOT_FOUND"


# =============================================================================
# Workflow administration
# =============================================================================

def test_workflow_is_listed_and_ready(client, api_workflow):
    listed = client.get(f"{API}/workflows", headers=VIEWER, params={"record_type": "incident"}).json()
    report = client.post(f"{API}/workflows/{api_workflow['workflow_id']}/validate", headers=VIEWER).json()

    assert listed["total"] == 1
    assert listed["items"][0]["code"] == "INCIDENT_API"
    assert listed["items"][0]["is_default"] is True
    assert report["is_valid"] is True


def test_match_preview(client, api_workflow):
    response = client.post(f"{API}/workflows/match-preview", headers=ADMIN, json={"record_type": "incident"})

    assert response.status_code == 200
    assert response.json()["selected_workflow_id"] == api_workflow["workflow_id"]


def test_delete_state_in_use_is_409(client, api_workflow, api_case):
    response = client.delete(
        f"{API}/workflows/{api_workflow['workflow_id']}/states/{api_workflow['states']['OPEN']}", headers=ADMIN
    )

    assert response.status_code == 409


def test_export_import_round_trip(client, api_workflow):
    exported = client.get(f"{API}/workflows/{api_workflow['workflow_id']}/export", headers=ADMIN)

    assert exported.status_code == 200
    assert exported.headers["Content-Disposition"] == 'attachment; filename="workflow_incident_api.json"'
    assert [t["code"] for t in exported.json()["transitions"]] == ["CLOSE", "START"]
    # No directory is seeded here, so the CLOSE role restriction cannot be resolved
    close = exported.json()["transitions"][0]
    assert close["is_active"] is False
    assert "transition CLOSE: none of its allowed roles exist; exported inactive" in exported.json()["warnings"]

    imported = client.post(
        f"{API}/workflows/import",
        headers=ADMIN,
        files={"file": ("workflow_incident_api.json", exported.content, "application/json")},
    )

    assert imported.status_code == 201
    body = imported.json()
    assert body["code"] == "INCIDENT_API_IMPORTED"
    assert any("not made default" in w for w in body["warnings"])
    copy = client.get(f"{API}/workflows/{body['workflow_id']}", headers=ADMIN).json()
    assert [s["code"] for s in copy["states"]] == ["OPEN", "IN_PROGRESS", "CLOSED"]
    assert copy["is_default"] is False


def test_oversized_import_is_413(client, api_workflow, monkeypatch):
    monkeypatch.setattr(settings, "import_max_mb", 0)

    response = client.post(
        f"{API}/workflows/import",
        headers=ADMIN,
        files={"file": ("big.json", b"{}", "application/json")},
    )

    assert response.status_code == 413
    assert response.json()["error"]["code"] == "IMPORT_TOO_LARGE"


# =============================================================================
# Cases & transitions
# =============================================================================

def test_case_is_created_on_default_workflow(api_case, api_workflow):
    assert api_case["workflow_id"] == api_workflow["workflow_id"]
    assert api_case["current_state_id"] == api_workflow["states"]["OPEN"]
    assert api_case["version"] == 1
    assert api_case["created_by"]["email"] == "agent@caseflow.io"


def test_available_transitions(client, api_case, api_workflow):
    response = client.get(f"{API}/cases/{api_case['case_id']}/transitions/available", headers=AGENT)
    scoped = client.get(
        f"{API}/workflows/{api_workflow['workflow_id']}/transitions/available",
        headers=AGENT, params={"case_id": api_case["case_id"]}
    )

    assert response.status_code == 200
    assert [t["code"] for t in response.json()] == ["START"]
    assert response.json()[0]["requirements"][0]["type"] == "comment"
    assert scoped.json() == response.json()


def test_execute_transition_lifecycle(client, api_case, api_workflow):
    case_id = api_case["case_id"]
    url = f"{API}/cases/{case_id}/transition"
    start = api_workflow["transitions"]["START"]

    missing = client.post(url, headers=AGENT, json={"transition_id": start, "version": 1})
    assert missing.status_code == 422
    assert missing.json()["error"]["code"] == "REQUIREMENT_NOT_MET"

    done = client.post(url, headers=AGENT, json={"transition_id": start, "comment": "ack", "version": 1})
    assert done.status_code == 200
    assert done.json()["version"] == 2
    assert done.json()["new_state_name"] == "In Progress"
    assert done.json()["revision_number"] == 1

    stale = client.post(url, headers=AGENT, json={
        "transition_id": api_workflow["transitions"]["CLOSE"], "version": 1
    })
    assert stale.status_code == 409
    assert stale.json()["error"]["details"]["current_version"] == 2

    history = client.get(f"{API}/cases/{case_id}/history", headers=VIEWER).json()
    assert [h["revision_number"] for h in history] == [1]
    assert history[0]["comment"] == "ack"

    comments = client.get(f"{API}/cases/{case_id}/comments", headers=VIEWER).json()
    assert [c["body"] for c in comments["items"]] == ["ack"]

    case = client.get(f"{API}/cases/{case_id}", headers=VIEWER).json()
    assert case["version"] == 2
    assert "pending_history" not in case


def test_forbidden_transition_is_403(client, api_case, api_workflow):
    url = f"{API}/cases/{api_case['case_id']}/transition"
    client.post(url, headers=AGENT, json={
        "transition_id": api_workflow["transitions"]["START"], "comment": "ack", "version": 1
    })

    response = client.post(url, headers=VIEWER, json={
        "transition_id": api_workflow["transitions"]["CLOSE"], "version": 2
    })

    assert response.status_code == 403


def test_unknown_case_is_404(client):
    response = client.get(f"{API}/cases/CASE-missing", headers=VIEWER)

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "CASE_NOT_FOUND"


# =============================================================================
# Notifications
# =============================================================================

def test_notification_bell(client):
    InAppNotificationRepository().create_notifications_bulk([
        InAppNotification(
            notification_id="NTF-1", recipient_user_id="USR-agent", title="INC-1 moved",
            message="Console Admin moved it", case_id="CASE-1", created_at=utc_now(),
        ),
        InAppNotification(
            notification_id="NTF-2", recipient_user_id="USR-viewer", title="INC-2 moved",
            message="Console Admin moved it", created_at=utc_now(),
        ),
    ])

    listed = client.get(f"{API}/notifications", headers=AGENT).json()
    assert [n["notification_id"] for n in listed["items"]] == ["NTF-1"]
    assert listed["unread_count"] == 1

    read = client.post(f"{API}/notifications/NTF-1/read", headers=AGENT)
    assert read.status_code == 200
    assert read.json()["is_read"] is True
    assert client.get(f"{API}/notifications/unread-count", headers=AGENT).json() == {"unread_count": 0}

    # Someone else's notification
    assert client.post(f"{API}/notifications/NTF-2/read", headers=AGENT).status_code == 404
