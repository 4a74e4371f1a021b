"""Notification Repository - Email outbox

Emails rendered by transition actions are queued here; delivery is done by
the mail service that drains this collection.
"""
from typing import List
from pymongo.collection import Collection
from pymongo import ASCENDING

from .mongo_client import get_collection, to_document, from_document
from ..domain.models import NotificationOutbox
from ..domain.enums import NotificationStatus
from ..utils.logger import get_logger

logger = get_logger(__name__)


class NotificationRepository:
    """Repository for email outbox operations"""

    def __init__(self):
        self._outbox: Collection = get_collection("notification_outbox")

    def create_notification(self, notification: NotificationOutbox) -> NotificationOutbox:
        """Queue an email"""
        self._outbox.insert_one(to_document(notification, "notification_id"))
        logger.info(
            f"Queued email to {len(notification.recipients)} recipient(s)",
            extra={"case_id": notification.case_id, "history_id": notification.history_id}
        )
        return notification

    def get_notifications_for_case(self, case_id: str) -> List[NotificationOutbox]:
        cursor = self._outbox.find({"case_id": case_id}).sort("created_at", ASCENDING)
        return [NotificationOutbox.model_validate(from_document(doc)) for doc in cursor]

    def count_pending(self) -> int:
        return self._outbox.count_documents({"status": NotificationStatus.PENDING.value})
