from datetime import datetime
from typing import Optional, List, Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from aslan_crm.db.database import get_db
from aslan_crm.integrations.push_delivery import get_push_sender
from aslan_crm.services.notifications import NotificationService

router = APIRouter(prefix="/notifications", tags=["Notifications"])


class SendNotificationRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    title: str = Field(..., min_length=1, max_length=255)
    body: Optional[str] = None
    task_id: Optional[int] = None
    order_id: Optional[int] = None
    url: Optional[str] = None


class SendNotificationResponse(BaseModel):
    success: bool = True
    saved: bool = True
    sent: int = 0
    total: int = 0
    results: List[dict[str, Any]] = []


class NotificationResponse(BaseModel):
    id: int
    user_id: str
    title: str
    body: Optional[str]
    task_id: Optional[int] = None
    order_id: Optional[int] = None
    url: Optional[str] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class NotificationCountResponse(BaseModel):
    unread: int


class SubscriptionRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    endpoint: str = Field(..., min_length=1, max_length=1000)
    p256dh: Optional[str] = None
    auth: Optional[str] = None


class SubscriptionResponse(BaseModel):
    id: int
    user_id: str
    endpoint: str

    class Config:
        from_attributes = True


@router.post("/send", response_model=SendNotificationResponse)
async def send_notification(
    payload: SendNotificationRequest,
    db: AsyncSession = Depends(get_db),
    sender=Depends(get_push_sender),
):
    """Save to history, then push to every device of the user. No devices is still a success."""
    service = NotificationService(db, sender=sender)
    return await service.send_notification(
        user_id=payload.user_id,
        title=payload.title,
        body=payload.body,
        task_id=payload.task_id,
        order_id=payload.order_id,
        url=payload.url,
    )


@router.get("", response_model=List[NotificationResponse])
async def list_notifications(
    user_id: str,
    limit: int = 50,
    offset: int = 0,
    unread_only: bool = False,
    db: AsyncSession = Depends(get_db),
):
    """Notification history for a user, newest first"""
    service = NotificationService(db)
    return await service.list_notifications(user_id, unread_only=unread_only, limit=limit, offset=offset)


@router.get("/count", response_model=NotificationCountResponse)
async def get_unread_count(user_id: str, db: AsyncSession = Depends(get_db)):
    service = NotificationService(db)
    return NotificationCountResponse(unread=await service.get_unread_count(user_id))


@router.post("/{notification_id}/read")
async def mark_as_read(notification_id: int, user_id: str, db: AsyncSession = Depends(get_db)):
    service = NotificationService(db)
    if not await service.mark_as_read(notification_id, user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    return {"status": "ok"}


@router.post("/read-all")
async def mark_all_as_read(user_id: str, db: AsyncSession = Depends(get_db)):
    service = NotificationService(db)
    count = await service.mark_all_as_read(user_id)
    return {"status": "ok", "marked": count}


@router.post("/subscriptions", response_model=SubscriptionResponse, status_code=status.HTTP_201_CREATED)
async def register_subscription(payload: SubscriptionRequest, db: AsyncSession = Depends(get_db)):
    service = NotificationService(db)
    return await service.register_subscription(payload.user_id, payload.endpoint, payload.p256dh, payload.auth)


@router.delete("/subscriptions", status_code=status.HTTP_204_NO_CONTENT)
async def unregister_subscription(user_id: str, endpoint: str, db: AsyncSession = Depends(get_db)):
    service = NotificationService(db)
    await service.unregister_subscription(user_id, endpoint)
