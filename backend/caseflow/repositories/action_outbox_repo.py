"""Action Outbox Repository - Async transition actions awaiting the worker

Locking uses atomic find-and-modify on locked_until so several worker
processes can share one outbox without running an entry twice.
"""
from typing import List, Optional
from datetime import datetime, timedelta
from pymongo.collection import Collection
from pymongo import ASCENDING
from pymongo.errors import PyMongoError

from .mongo_client import get_collection, to_document, from_document
from ..domain.models import ActionOutbox
from ..domain.enums import OutboxStatus
from ..domain.errors import NotFoundError
from ..utils.logger import get_logger
from ..utils.time import utc_now

logger = get_logger(__name__)


class ActionOutboxRepository:
    """Repository for the async action outbox"""

    def __init__(self):
        self._outbox: Collection = get_collection("action_outbox")

    def create(self, entry: ActionOutbox) -> ActionOutbox:
        """Queue an entry; writing the same outbox_id again is a no-op"""
        self._outbox.update_one(
            {"outbox_id": entry.outbox_id},
            {"$setOnInsert": to_document(entry, "outbox_id")},
            upsert=True
        )
        logger.info(
            f"Queued {len(entry.actions)} async action(s)",
            extra={"outbox_id": entry.outbox_id, "case_id": entry.case_id, "history_id": entry.history_id}
        )
        return entry

    def get(self, outbox_id: str) -> Optional[ActionOutbox]:
        doc = from_document(self._outbox.find_one({"outbox_id": outbox_id}))
        return ActionOutbox.model_validate(doc) if doc else None

    def list_for_history(self, history_id: str) -> List[ActionOutbox]:
        cursor = self._outbox.find({"history_id": history_id}).sort("created_at", ASCENDING)
        return [ActionOutbox.model_validate(from_document(doc)) for doc in cursor]

    def get_pending(self, limit: int = 50) -> List[ActionOutbox]:
        """
        Entries ready to run: PENDING, not locked (or lock expired),
        and due for retry (or first attempt)
        """
        now = utc_now()
        try:
            cursor = self._outbox.find({
                "status": OutboxStatus.PENDING.value,
                "$and": [
                    {"$or": [
                        {"next_retry_at": {"$lte": now}},
                        {"next_retry_at": None}
                    ]},
                    {"$or": [
                        {"locked_until": {"$lte": now}},
                        {"locked_until": None}
                    ]}
                ]
            }).sort("created_at", ASCENDING).limit(limit)
            return [ActionOutbox.model_validate(from_document(doc)) for doc in cursor]
        except PyMongoError as e:
            logger.error(f"Database error fetching pending actions: {e}")
            return []

    def acquire_lock(self, outbox_id: str, lock_by: str, lock_duration_seconds: int = 60) -> bool:
        """
        Try to lock an entry for this worker

        Returns:
            True if this worker now holds the lock
        """
        now = utc_now()
        lock_until = now + timedelta(seconds=lock_duration_seconds)
        try:
            result = self._outbox.find_one_and_update(
                {
                    "outbox_id": outbox_id,
                    "status": OutboxStatus.PENDING.value,
                    "$or": [
                        {"locked_until": {"$lte": now}},
                        {"locked_until": None}
                    ]
                },
                {"$set": {"locked_until": lock_until, "locked_by": lock_by}},
            )
        except PyMongoError as e:
            logger.error(f"Database error acquiring lock on {outbox_id}: {e}", extra={"outbox_id": outbox_id})
            return False

        if result is None:
            logger.debug(f"Could not lock {outbox_id} - already locked or done", extra={"outbox_id": outbox_id})
            return False
        return True

    def release_lock(self, outbox_id: str, lock_by: Optional[str] = None) -> bool:
        query = {"outbox_id": outbox_id}
        if lock_by:
            query["locked_by"] = lock_by
        result = self._outbox.update_one(query, {"$set": {"locked_until": None, "locked_by": None}})
        return result.modified_count > 0

    def mark_action_done(self, outbox_id: str, action_id: str) -> None:
        """Remember an action that must not run again on retry"""
        self._outbox.update_one(
            {"outbox_id": outbox_id},
            {"$addToSet": {"completed_action_ids": action_id}}
        )

    def mark_completed(self, outbox_id: str) -> None:
        result = self._outbox.update_one(
            {"outbox_id": outbox_id},
            {"$set": {
                "status": OutboxStatus.COMPLETED.value,
                "completed_at": utc_now(),
                "locked_until": None,
                "locked_by": None,
            }}
        )
        if result.matched_count == 0:
            raise NotFoundError(f"Outbox entry {outbox_id} not found")

    def mark_attempt_failed(
        self,
        outbox_id: str,
        error: str,
        max_retries: int,
        retry_base_seconds: int
    ) -> ActionOutbox:
        """
        Record a failed attempt; schedules an exponential backoff retry
        or marks the entry FAILED once retries are exhausted
        """
        entry = self.get(outbox_id)
        if not entry:
            raise NotFoundError(f"Outbox entry {outbox_id} not found")

        retry_count = entry.retry_count + 1
        next_retry: Optional[datetime] = None
        if retry_count >= max_retries:
            status = OutboxStatus.FAILED
        else:
            status = OutboxStatus.PENDING
            next_retry = utc_now() + timedelta(seconds=retry_base_seconds * (2 ** entry.retry_count))

        result = self._outbox.find_one_and_update(
            {"outbox_id": outbox_id},
            {"$set": {
                "status": status.value,
                "retry_count": retry_count,
                "last_error": error,
                "next_retry_at": next_retry,
                "locked_until": None,
                "locked_by": None,
            }},
            return_document=True
        )
        logger.warning(
            f"Async actions failed (attempt {retry_count}/{max_retries}): {error}",
            extra={"outbox_id": outbox_id, "status": status.value}
        )
        return ActionOutbox.model_validate(from_document(result))
