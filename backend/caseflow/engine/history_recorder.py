"""History Recorder - Append-only transition history"""
from typing import List, Optional

from ..domain.models import Case, CaseComment, TransitionHistory, ActionResult
from ..repositories.history_repo import HistoryRepository
from ..repositories.case_repo import CaseRepository
from ..utils.logger import get_logger

logger = get_logger(__name__)


class HistoryRecorder:
    """
    Writes transition history

    A transition's history row is staged on the case document by the same
    write that commits the state change. flush_pending() materialises the
    staged row (plus the comment and attachment links it carries) and is
    safe to repeat, so a crash between commit and flush loses nothing.
    """

    def __init__(
        self,
        history_repo: Optional[HistoryRepository] = None,
        case_repo: Optional[CaseRepository] = None
    ):
        self.history_repo = history_repo or HistoryRepository()
        self.case_repo = case_repo or CaseRepository()

    def append(self, entry: TransitionHistory) -> TransitionHistory:
        return self.history_repo.append(entry)

    def flush_pending(self, case: Case) -> Optional[TransitionHistory]:
        """Materialise the case's staged history row, if any"""
        pending = case.pending_history
        if pending is None:
            return None

        entry = self.append(pending)

        if pending.comment and pending.comment.strip():
            self.case_repo.add_comment(CaseComment(
                comment_id=f"CMT-{pending.history_id.split('-', 1)[-1]}",
                case_id=case.case_id,
                body=pending.comment.strip(),
                author=pending.performed_by,
                transition_history_id=pending.history_id,
                created_at=pending.transitioned_at,
            ))
        self.case_repo.add_attachments(case.case_id, pending.attachment_ids)
        self.case_repo.clear_pending_history(case.case_id, pending.history_id)

        logger.debug(
            f"Flushed staged history for revision {pending.revision_number}",
            extra={"case_id": case.case_id, "history_id": pending.history_id}
        )
        return entry

    def record_action_results(self, history_id: str, results: List[ActionResult]) -> None:
        """The only mutation of an existing row: append action outcomes"""
        self.history_repo.push_action_results(history_id, results)

    def list_for_case(self, case_id: str) -> List[TransitionHistory]:
        return self.history_repo.list_for_case(case_id)
