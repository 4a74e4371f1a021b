"""User Notifications API - In-app notification bell endpoints"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, HTTPException
from pydantic import BaseModel

from ..deps import get_current_user_dep
from ...domain.models import ActorContext, InAppNotification
from ...domain.errors import DomainError
from ...repositories.inapp_notification_repo import InAppNotificationRepository
from ...utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


# =============================================================================
# Response Models
# =============================================================================

class NotificationResponse(BaseModel):
    """Single notification response"""
    notification_id: str
    title: str
    message: str
    case_id: Optional[str] = None
    action_url: Optional[str] = None
    is_read: bool
    created_at: str


class NotificationListResponse(BaseModel):
    """Notifications with the unread badge count"""
    items: List[NotificationResponse]
    unread_count: int


class UnreadCountResponse(BaseModel):
    unread_count: int


def _to_response(notification: InAppNotification) -> NotificationResponse:
    return NotificationResponse(
        notification_id=notification.notification_id,
        title=notification.title,
        message=notification.message,
        case_id=notification.case_id,
        action_url=notification.action_url,
        is_read=notification.is_read,
        created_at=notification.created_at.isoformat()
    )


# =============================================================================
# Endpoints
# =============================================================================

@router.get("", response_model=NotificationListResponse)
async def get_notifications(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    unread_only: bool = Query(False),
    actor: ActorContext = Depends(get_current_user_dep)
):
    """
    Get notifications for the current user.

    - Sorted by newest first
    - Supports filtering by unread only
    """
    repo = InAppNotificationRepository()
    notifications = repo.get_notifications_for_user(
        user_id=actor.user_id,
        skip=skip,
        limit=limit,
        unread_only=unread_only
    )
    return NotificationListResponse(
        items=[_to_response(n) for n in notifications],
        unread_count=repo.get_unread_count(actor.user_id)
    )


@router.get("/unread-count", response_model=UnreadCountResponse)
async def get_unread_count(
    actor: ActorContext = Depends(get_current_user_dep)
):
    """Lightweight endpoint for polling the notification badge"""
    repo = InAppNotificationRepository()
    return UnreadCountResponse(unread_count=repo.get_unread_count(actor.user_id))


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: str,
    actor: ActorContext = Depends(get_current_user_dep)
):
    repo = InAppNotificationRepository()
    try:
        return _to_response(repo.mark_as_read(notification_id, actor.user_id))
    except DomainError as e:
        logger.warning(f"Failed to mark notification as read: {e}")
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())
