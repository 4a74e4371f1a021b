"""Tests for staged history materialisation"""
import pytest

from caseflow.domain.models import TransitionHistory, TransitionPayload
from caseflow.domain.errors import ConflictError
from caseflow.engine.history_recorder import HistoryRecorder
from caseflow.repositories.case_repo import CaseRepository
from caseflow.utils.idgen import generate_history_id
from caseflow.utils.time import utc_now


@pytest.fixture
def recorder(mongo_db):
    return HistoryRecorder()


def _staged(case, built, admin_actor, comment=None, attachments=None):
    """Commit a state change without flushing, as if the process died right after"""
    history = TransitionHistory(
        history_id=generate_history_id(),
        case_id=case.case_id,
        record_type=case.record_type,
        workflow_id=built.workflow_id,
        transition_id=built.transitions["START"],
        transition_name="Start",
        from_state_id=built.states["OPEN"],
        from_state_name="Open",
        to_state_id=built.states["IN_PROGRESS"],
        to_state_name="In Progress",
        revision_number=case.version,
        performed_by=admin_actor.snapshot(),
        comment=comment,
        attachment_ids=attachments or [],
        transitioned_at=utc_now(),
    )
    return CaseRepository().commit_transition(
        case.case_id, case.version, {"current_state_id": built.states["IN_PROGRESS"]}, history
    )


def test_flush_materialises_row_comment_and_attachments(workflow_factory, case_factory, admin_actor, recorder):
    built = workflow_factory()
    case = case_factory(built.workflow_id)
    committed = _staged(case, built, admin_actor, comment="on it", attachments=["ATT-1"])

    entry = recorder.flush_pending(committed)

    assert entry.revision_number == 1
    stored = CaseRepository().get_case(case.case_id)
    assert stored.pending_history is None
    assert stored.attachment_ids == ["ATT-1"]
    comments = CaseRepository().list_comments(case.case_id)
    assert [c.body for c in comments] == ["on it"]
    assert comments[0].transition_history_id == entry.history_id


def test_flush_is_idempotent(workflow_factory, case_factory, admin_actor, recorder):
    built = workflow_factory()
    case = case_factory(built.workflow_id)
    committed = _staged(case, built, admin_actor, comment="on it")

    recorder.flush_pending(committed)
    recorder.flush_pending(committed)

    assert len(recorder.list_for_case(case.case_id)) == 1
    assert len(CaseRepository().list_comments(case.case_id)) == 1


def test_flush_without_staged_row_is_a_no_op(workflow_factory, case_factory, recorder):
    built = workflow_factory()
    case = case_factory(built.workflow_id)

    assert recorder.flush_pending(case) is None


def test_engine_flushes_a_staged_row_on_next_read(workflow_factory, case_factory, admin_actor, engine):
    built = workflow_factory()
    case = case_factory(built.workflow_id)
    _staged(case, built, admin_actor)

    loaded = engine.load_case(case.case_id)

    assert loaded.pending_history is None
    assert loaded.version == 2
    assert [h.revision_number for h in engine.history(case.case_id)] == [1]


def test_duplicate_revision_is_rejected(workflow_factory, case_factory, admin_actor, recorder):
    built = workflow_factory()
    case = case_factory(built.workflow_id)
    committed = _staged(case, built, admin_actor)
    recorder.flush_pending(committed)

    clash = committed.pending_history.model_copy(update={"history_id": generate_history_id()})

    with pytest.raises(ConflictError):
        recorder.append(clash)


def test_revisions_are_gapless(workflow_factory, case_factory, admin_actor, engine):
    built = workflow_factory()
    case = case_factory(built.workflow_id)
    steps = [
        TransitionPayload(transition_id=built.transitions["START"], comment="ack", version=1),
        TransitionPayload(transition_id=built.transitions["RESOLVE"], version=2),
        TransitionPayload(transition_id=built.transitions["REOPEN"], version=3),
        TransitionPayload(transition_id=built.transitions["RESOLVE"], version=4),
    ]
    for payload in steps:
        engine.execute(case.case_id, payload, admin_actor)

    history = engine.history(case.case_id)

    assert [h.revision_number for h in history] == [1, 2, 3, 4]
    assert [h.transition_name for h in history] == ["Start", "Resolve", "Reopen", "Resolve"]
    assert engine.load_case(case.case_id).version == 5
