"""In-App Notification Repository - Data access for the notification bell"""
from typing import Any, Dict, List, Optional
from pymongo.collection import Collection
from pymongo import DESCENDING

from .mongo_client import get_collection, to_document, from_document
from ..domain.models import InAppNotification
from ..domain.errors import NotFoundError
from ..utils.logger import get_logger
from ..utils.time import utc_now

logger = get_logger(__name__)


class InAppNotificationRepository:
    """Repository for in-app notification operations"""

    def __init__(self):
        self._collection: Collection = get_collection("inapp_notifications")

    def create_notifications_bulk(self, notifications: List[InAppNotification]) -> List[InAppNotification]:
        if not notifications:
            return []
        self._collection.insert_many([to_document(n, "notification_id") for n in notifications])
        logger.info(f"Created {len(notifications)} in-app notifications")
        return notifications

    def get_notifications_for_user(
        self,
        user_id: str,
        skip: int = 0,
        limit: int = 50,
        unread_only: bool = False
    ) -> List[InAppNotification]:
        """Get notifications for a user, newest first"""
        query: Dict[str, Any] = {"recipient_user_id": user_id}
        if unread_only:
            query["is_read"] = False

        cursor = self._collection.find(query).sort("created_at", DESCENDING).skip(skip).limit(limit)
        return [InAppNotification.model_validate(from_document(doc)) for doc in cursor]

    def get_unread_count(self, user_id: str) -> int:
        return self._collection.count_documents({"recipient_user_id": user_id, "is_read": False})

    def get_notifications_for_case(self, case_id: str) -> List[InAppNotification]:
        cursor = self._collection.find({"case_id": case_id}).sort("created_at", DESCENDING)
        return [InAppNotification.model_validate(from_document(doc)) for doc in cursor]

    def mark_as_read(self, notification_id: str, user_id: str) -> InAppNotification:
        result = self._collection.find_one_and_update(
            {"notification_id": notification_id, "recipient_user_id": user_id},
            {"$set": {"is_read": True, "read_at": utc_now()}},
            return_document=True
        )
        if result is None:
            raise NotFoundError(f"Notification {notification_id} not found")
        return InAppNotification.model_validate(from_document(result))
