"""Tests for the async action outbox worker"""
from datetime import timedelta

import httpx
import pytest
from pymongo.errors import PyMongoError

from caseflow.config.settings import settings
from caseflow.domain.models import TransitionPayload
from caseflow.domain.enums import ActionResultStatus, OutboxStatus
from caseflow.engine import TransitionEngine
from caseflow.engine.action_executor import ActionExecutor, ActionOutboxProcessor
from caseflow.repositories.action_outbox_repo import ActionOutboxRepository
from caseflow.repositories.case_repo import CaseRepository
from caseflow.repositories.history_repo import HistoryRepository
from caseflow.repositories.inapp_notification_repo import InAppNotificationRepository
from caseflow.utils.time import ensure_utc, utc_now


ASYNC_ACTIONS = [
    {"action_type": "notification", "name": "Tell assignee", "execution_order": 1, "is_async": True,
     "config": {"recipients": ["assignee"]}},
    {"action_type": "webhook", "name": "Sync CMDB", "execution_order": 2, "is_async": True,
     "config": {"url": "https://hooks.caseflow.io/cmdb"}},
]


class FlakyHook:
    """Fails the first `failures` calls with 503"""

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        if self.calls <= self.failures:
            return httpx.Response(503)
        return httpx.Response(200)


@pytest.fixture
def queued_case(workflow_factory, case_factory, admin_actor, directory):
    """Execute a transition whose two actions are queued to the outbox"""
    def build(hook: FlakyHook):
        built = workflow_factory(transitions=[{
            "code": "START", "from": "OPEN", "to": "IN_PROGRESS",
            "assign_user_id": "USR-agent", "actions": ASYNC_ACTIONS,
        }])
        case = case_factory(built.workflow_id)
        executor = ActionExecutor(http_client=httpx.Client(transport=httpx.MockTransport(hook)))
        result = TransitionEngine(executor=executor).execute(
            case.case_id, TransitionPayload(transition_id=built.transitions["START"], version=1), admin_actor
        )
        processor = ActionOutboxProcessor(executor=executor, worker_id="worker-test")
        return case, result, processor
    return build


def _make_due(mongo_db, outbox_id):
    mongo_db["action_outbox"].update_one({"outbox_id": outbox_id}, {"$set": {"next_retry_at": None}})


def test_queued_actions_do_not_run_inline(queued_case):
    hook = FlakyHook(failures=0)
    case, result, _ = queued_case(hook)

    assert result.action_results == []
    assert hook.calls == 0
    entry = ActionOutboxRepository().list_for_history(result.history_id)[0]
    assert entry.status == OutboxStatus.PENDING
    assert [a.name for a in entry.actions] == ["Tell assignee", "Sync CMDB"]
    assert CaseRepository().get_case(case.case_id).pending_actions is None


def test_failed_entry_is_retried_with_backoff(queued_case, mongo_db):
    case, result, processor = queued_case(FlakyHook(failures=1))

    stats = processor.process_pending()

    assert stats == {"claimed": 1, "completed": 0, "failed": 1}
    entry = ActionOutboxRepository().list_for_history(result.history_id)[0]
    assert entry.status == OutboxStatus.PENDING
    assert entry.retry_count == 1
    assert "503" in entry.last_error
    delay = ensure_utc(entry.next_retry_at) - utc_now()
    assert timedelta(seconds=settings.action_retry_base_seconds - 5) < delay
    assert entry.completed_action_ids == [entry.actions[0].action_id]
    # Not due yet
    assert processor.process_pending() == {"claimed": 0, "completed": 0, "failed": 0}


def test_retry_skips_completed_actions(queued_case, mongo_db):
    case, result, processor = queued_case(FlakyHook(failures=1))
    processor.process_pending()
    outbox_id = ActionOutboxRepository().list_for_history(result.history_id)[0].outbox_id
    _make_due(mongo_db, outbox_id)

    stats = processor.process_pending()

    assert stats["completed"] == 1
    assert ActionOutboxRepository().get(outbox_id).status == OutboxStatus.COMPLETED
    assert len(InAppNotificationRepository().get_notifications_for_user("USR-agent")) == 1

    history = HistoryRepository().get(result.history_id)
    outcomes = [(r.name, r.status, r.detail.get("attempt")) for r in history.action_results]
    assert outcomes == [
        ("Tell assignee", ActionResultStatus.SUCCEEDED, 1),
        ("Sync CMDB", ActionResultStatus.FAILED, 1),
        ("Sync CMDB", ActionResultStatus.SUCCEEDED, 2),
    ]


def test_entry_fails_after_max_retries(queued_case, mongo_db, monkeypatch):
    monkeypatch.setattr(settings, "action_max_retries", 2)
    case, result, processor = queued_case(FlakyHook(failures=10))
    outbox_id = ActionOutboxRepository().list_for_history(result.history_id)[0].outbox_id

    processor.process_pending()
    _make_due(mongo_db, outbox_id)
    processor.process_pending()

    entry = ActionOutboxRepository().get(outbox_id)
    assert entry.status == OutboxStatus.FAILED
    assert entry.retry_count == 2
    assert entry.next_retry_at is None
    _make_due(mongo_db, outbox_id)
    assert processor.process_pending()["claimed"] == 0


def test_locked_entry_is_not_claimed_twice(queued_case):
    case, result, processor = queued_case(FlakyHook(failures=0))
    outbox_id = ActionOutboxRepository().list_for_history(result.history_id)[0].outbox_id
    repo = ActionOutboxRepository()

    assert repo.acquire_lock(outbox_id, "other-worker", 60) is True
    assert processor.process_pending()["claimed"] == 0
    assert repo.release_lock(outbox_id, "other-worker") is True
    assert processor.process_pending()["completed"] == 1


def test_recovers_staged_history(workflow_factory, case_factory, admin_actor):
    built = workflow_factory()
    case = case_factory(built.workflow_id)
    engine = TransitionEngine()
    # Simulate a crash between the commit and materialising the row
    engine.recorder.flush_pending = lambda committed: None
    engine.execute(
        case.case_id,
        TransitionPayload(transition_id=built.transitions["START"], comment="ack", version=1),
        admin_actor
    )
    assert HistoryRepository().list_for_case(case.case_id) == []

    recovered = ActionOutboxProcessor(worker_id="worker-test").recover_pending_history()

    assert recovered == 1
    history = HistoryRepository().list_for_case(case.case_id)
    assert [h.revision_number for h in history] == [1]
    assert history[0].comment == "ack"


def _failing_create(entry):
    raise PyMongoError("outbox write failed")


def test_outbox_failure_after_commit_is_reported_not_raised(
    workflow_factory, case_factory, admin_actor, directory, mongo_db, monkeypatch
):
    built = workflow_factory(transitions=[{
        "code": "START", "from": "OPEN", "to": "IN_PROGRESS",
        "assign_user_id": "USR-agent", "actions": ASYNC_ACTIONS,
    }])
    case = case_factory(built.workflow_id)
    hook = FlakyHook(failures=0)
    executor = ActionExecutor(http_client=httpx.Client(transport=httpx.MockTransport(hook)))
    monkeypatch.setattr(executor.outbox_repo, "create", _failing_create)

    result = TransitionEngine(executor=executor).execute(
        case.case_id, TransitionPayload(transition_id=built.transitions["START"], version=1), admin_actor
    )

    assert result.version == 2
    assert result.side_effects_failed is True
    stored = CaseRepository().get_case(case.case_id)
    assert stored.version == 2
    assert stored.current_state_id == built.states["IN_PROGRESS"]
    assert [h.revision_number for h in HistoryRepository().list_for_case(case.case_id)] == [1]
    # The async actions stay staged on the case for the worker
    assert stored.pending_actions is not None
    assert [a.name for a in stored.pending_actions.actions] == ["Tell assignee", "Sync CMDB"]
    assert ActionOutboxRepository().list_for_history(result.history_id) == []

    # The worker leaves a freshly staged entry to the request still dispatching it
    processor = ActionOutboxProcessor(
        executor=executor, outbox_repo=ActionOutboxRepository(), worker_id="worker-test"
    )
    assert processor.recover_pending_actions() == 0

    mongo_db["cases"].update_one(
        {"case_id": case.case_id},
        {"$set": {"pending_actions.created_at": utc_now() - timedelta(minutes=10)}}
    )
    assert processor.recover_pending_actions() == 1

    assert CaseRepository().get_case(case.case_id).pending_actions is None
    entry = ActionOutboxRepository().list_for_history(result.history_id)[0]
    assert entry.outbox_id == stored.pending_actions.outbox_id
    assert processor.process_pending() == {"claimed": 1, "completed": 1, "failed": 0}
    assert hook.calls == 1
    assert len(InAppNotificationRepository().get_notifications_for_user("USR-agent")) == 1


def test_recovery_does_not_queue_an_entry_twice(workflow_factory, case_factory, admin_actor, directory, mongo_db):
    built = workflow_factory(transitions=[{
        "code": "START", "from": "OPEN", "to": "IN_PROGRESS",
        "assign_user_id": "USR-agent", "actions": ASYNC_ACTIONS,
    }])
    case = case_factory(built.workflow_id)
    engine = TransitionEngine()
    # Simulate a crash after the outbox write but before the staging was cleared
    engine.case_repo.clear_pending_actions = lambda case_id, outbox_id: False
    result = engine.execute(
        case.case_id, TransitionPayload(transition_id=built.transitions["START"], version=1), admin_actor
    )
    mongo_db["cases"].update_one(
        {"case_id": case.case_id},
        {"$set": {"pending_actions.created_at": utc_now() - timedelta(minutes=10)}}
    )

    recovered = ActionOutboxProcessor(worker_id="worker-test").recover_pending_actions()

    assert recovered == 1
    assert len(ActionOutboxRepository().list_for_history(result.history_id)) == 1
    assert CaseRepository().get_case(case.case_id).pending_actions is None
