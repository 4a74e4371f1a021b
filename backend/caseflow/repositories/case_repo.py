"""Case Repository - Data access for cases and their comments"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pymongo.collection import Collection
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

from .mongo_client import get_collection, to_document, from_document, to_plain
from ..domain.models import ActionOutbox, Case, CaseComment, TransitionHistory
from ..domain.errors import CaseNotFoundError, ConcurrencyError, AlreadyExistsError
from ..utils.logger import get_logger
from ..utils.time import utc_now

logger = get_logger(__name__)


class CaseRepository:
    """Repository for case operations"""

    def __init__(self):
        self._cases: Collection = get_collection("cases")
        self._comments: Collection = get_collection("case_comments")

    # =========================================================================
    # Case CRUD
    # =========================================================================

    def create_case(self, case: Case) -> Case:
        try:
            self._cases.insert_one(to_document(case, "case_id"))
        except DuplicateKeyError:
            raise AlreadyExistsError(f"Case {case.case_id} already exists")
        logger.info(
            f"Created case: {case.case_number}",
            extra={"case_id": case.case_id, "workflow_id": case.workflow_id}
        )
        return case

    def get_case(self, case_id: str) -> Optional[Case]:
        doc = from_document(self._cases.find_one({"case_id": case_id}))
        return Case.model_validate(doc) if doc else None

    def get_case_or_raise(self, case_id: str) -> Case:
        case = self.get_case(case_id)
        if not case:
            raise CaseNotFoundError(f"Case {case_id} not found")
        return case

    def list_cases(
        self,
        workflow_id: Optional[str] = None,
        state_id: Optional[str] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[Case]:
        query: Dict[str, Any] = {}
        if workflow_id:
            query["workflow_id"] = workflow_id
        if state_id:
            query["current_state_id"] = state_id
        cursor = self._cases.find(query).sort("updated_at", DESCENDING).skip(skip).limit(limit)
        return [Case.model_validate(from_document(doc)) for doc in cursor]

    def count_in_state(self, state_id: str) -> int:
        """Cases currently sitting in a workflow state"""
        return self._cases.count_documents({"current_state_id": state_id})

    # =========================================================================
    # Transition commit (compare-and-swap on version)
    # =========================================================================

    def commit_transition(
        self,
        case_id: str,
        expected_version: int,
        updates: Dict[str, Any],
        pending_history: TransitionHistory,
        pending_actions: Optional[ActionOutbox] = None
    ) -> Case:
        """
        Apply a transition's case changes and stage its history row in one write

        The write only matches when the stored version equals expected_version;
        the version is bumped by exactly one. Async actions, when given, are
        staged in the same write until they reach the action outbox.

        Raises:
            ConcurrencyError: the case moved on since it was read
            CaseNotFoundError: the case does not exist
        """
        set_fields = to_plain(dict(updates))
        set_fields["pending_history"] = to_document(pending_history, "history_id")
        set_fields["pending_history"].pop("_id", None)
        if pending_actions is not None:
            set_fields["pending_actions"] = to_document(pending_actions, "outbox_id")
            set_fields["pending_actions"].pop("_id", None)
        set_fields["version"] = expected_version + 1
        set_fields["updated_at"] = pending_history.transitioned_at

        result = self._cases.find_one_and_update(
            {"case_id": case_id, "version": expected_version},
            {"$set": set_fields},
            return_document=True
        )

        if result is None:
            exists = self._cases.find_one({"case_id": case_id}, {"version": 1})
            if exists:
                raise ConcurrencyError(
                    f"Case {case_id} was modified. Please refresh and try again.",
                    details={"expected_version": expected_version, "current_version": exists.get("version")}
                )
            raise CaseNotFoundError(f"Case {case_id} not found")

        logger.info(
            f"Committed transition on case {case_id}: version {expected_version} -> {expected_version + 1}",
            extra={"case_id": case_id, "history_id": pending_history.history_id}
        )
        return Case.model_validate(from_document(result))

    def clear_pending_history(self, case_id: str, history_id: str) -> bool:
        """Drop the staged history row once it has been materialised"""
        result = self._cases.update_one(
            {"case_id": case_id, "pending_history.history_id": history_id},
            {"$set": {"pending_history": None}}
        )
        return result.modified_count > 0

    def find_with_pending_history(self, limit: int = 100) -> List[Case]:
        """Cases whose staged history row was never materialised"""
        cursor = self._cases.find({"pending_history": {"$ne": None}}).limit(limit)
        return [Case.model_validate(from_document(doc)) for doc in cursor]

    def clear_pending_actions(self, case_id: str, outbox_id: str) -> bool:
        """Drop the staged async actions once their outbox entry exists"""
        result = self._cases.update_one(
            {"case_id": case_id, "pending_actions.outbox_id": outbox_id},
            {"$set": {"pending_actions": None}}
        )
        return result.modified_count > 0

    def find_with_pending_actions(self, staged_before: datetime, limit: int = 100) -> List[Case]:
        """Cases whose staged async actions never reached the outbox"""
        cursor = self._cases.find({
            "pending_actions": {"$ne": None},
            "pending_actions.created_at": {"$lte": staged_before},
        }).limit(limit)
        return [Case.model_validate(from_document(doc)) for doc in cursor]

    def add_attachments(self, case_id: str, attachment_ids: List[str]) -> None:
        if not attachment_ids:
            return
        self._cases.update_one(
            {"case_id": case_id},
            {"$addToSet": {"attachment_ids": {"$each": list(attachment_ids)}}}
        )

    def apply_field_updates(self, case_id: str, updates: Dict[str, Any]) -> Case:
        """Write case fields outside a transition (no version bump)"""
        result = self._cases.find_one_and_update(
            {"case_id": case_id},
            {"$set": {**to_plain(updates), "updated_at": utc_now()}},
            return_document=True
        )
        if result is None:
            raise CaseNotFoundError(f"Case {case_id} not found")
        return Case.model_validate(from_document(result))

    # =========================================================================
    # Comments
    # =========================================================================

    def add_comment(self, comment: CaseComment) -> CaseComment:
        """Insert a comment; re-adding the same comment_id is a no-op"""
        doc = to_document(comment, "comment_id")
        self._comments.update_one(
            {"comment_id": comment.comment_id},
            {"$setOnInsert": doc},
            upsert=True
        )
        return comment

    def list_comments(self, case_id: str) -> List[CaseComment]:
        cursor = self._comments.find({"case_id": case_id}).sort("created_at", ASCENDING)
        return [CaseComment.model_validate(from_document(doc)) for doc in cursor]
