"""Repository modules - Data access layer"""
from .mongo_client import get_database, get_collection, create_indexes
from .workflow_repo import WorkflowRepository
from .case_repo import CaseRepository
from .history_repo import HistoryRepository
from .directory_repo import DirectoryRepository
from .action_outbox_repo import ActionOutboxRepository
from .notification_repo import NotificationRepository
from .inapp_notification_repo import InAppNotificationRepository

__all__ = [
    "get_database",
    "get_collection",
    "create_indexes",
    "WorkflowRepository",
    "CaseRepository",
    "HistoryRepository",
    "DirectoryRepository",
    "ActionOutboxRepository",
    "NotificationRepository",
    "InAppNotificationRepository",
]
