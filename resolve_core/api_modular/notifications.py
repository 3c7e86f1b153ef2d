"""
Notification inbox endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends

from .auth import ResolveSystem, get_resolve_system, get_current_user
from .schemas import notification_response
from ..directory import User


router = APIRouter()


@router.get("")
async def list_notifications(
    unread_only: bool = False,
    limit: Optional[int] = 50,
    user: User = Depends(get_current_user),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """List the current user's notifications, newest first"""
    notifications = system.notifications.list_for_user(user.id, unread_only=unread_only, limit=limit)
    return [notification_response(n) for n in notifications]


@router.get("/unread-count")
async def get_unread_count(
    user: User = Depends(get_current_user),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Number of unread notifications"""
    return {"count": system.notifications.unread_count(user.id)}


@router.put("/{notification_id}/read")
async def mark_notification_read(
    notification_id: str,
    user: User = Depends(get_current_user),
    system: ResolveSystem = Depends(get_resolve_system)
):
    """Mark one notification read"""
    notification = system.notifications.mark_read(notification_id, user.id)
    return notification_response(notification)
