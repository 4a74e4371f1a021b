"""History Repository - Append-only transition history"""
from typing import List, Optional
from pymongo.collection import Collection
from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError

from .mongo_client import get_collection, to_document, from_document
from ..domain.models import TransitionHistory, ActionResult
from ..domain.errors import ConflictError, NotFoundError
from ..utils.logger import get_logger

logger = get_logger(__name__)


class HistoryRepository:
    """Repository for transition history (no update/delete beyond action results)"""

    def __init__(self):
        self._history: Collection = get_collection("transition_history")

    def append(self, entry: TransitionHistory) -> TransitionHistory:
        """
        Insert a history row; idempotent on history_id

        Raises:
            ConflictError: another row already holds this case revision
        """
        try:
            self._history.insert_one(to_document(entry, "history_id"))
        except DuplicateKeyError:
            existing = self.get(entry.history_id)
            if existing is not None:
                return existing
            raise ConflictError(
                f"Revision {entry.revision_number} of case {entry.case_id} already recorded",
                details={"case_id": entry.case_id, "revision_number": entry.revision_number}
            )

        logger.info(
            f"Recorded transition {entry.transition_name} (revision {entry.revision_number})",
            extra={"case_id": entry.case_id, "history_id": entry.history_id, "transition_id": entry.transition_id}
        )
        return entry

    def get(self, history_id: str) -> Optional[TransitionHistory]:
        doc = from_document(self._history.find_one({"history_id": history_id}))
        return TransitionHistory.model_validate(doc) if doc else None

    def push_action_results(self, history_id: str, results: List[ActionResult]) -> None:
        """Append action outcomes to an existing row"""
        if not results:
            return
        docs = [to_document(r, "action_id") for r in results]
        for doc in docs:
            doc.pop("_id", None)
        result = self._history.update_one(
            {"history_id": history_id},
            {"$push": {"action_results": {"$each": docs}}}
        )
        if result.matched_count == 0:
            raise NotFoundError(f"History row {history_id} not found")

    def list_for_case(self, case_id: str) -> List[TransitionHistory]:
        cursor = self._history.find({"case_id": case_id}).sort("revision_number", ASCENDING)
        return [TransitionHistory.model_validate(from_document(doc)) for doc in cursor]
