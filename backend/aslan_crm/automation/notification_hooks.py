"""
Notifications raised by the automation engine.

The engine only queues them while its transaction is open; they are sent
after commit so a delivery problem can never undo created tasks.
"""
from dataclasses import dataclass
from typing import Optional, Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from aslan_crm.core.config import settings
from aslan_crm.core.logging import automation_logger
from aslan_crm.db.models import Task
from aslan_crm.services.notifications import NotificationService


@dataclass
class PendingNotification:
    user_id: str
    title: str
    body: Optional[str] = None
    task_id: Optional[int] = None
    order_id: Optional[int] = None
    url: Optional[str] = None

    @classmethod
    def new_task(cls, task: Task) -> "PendingNotification":
        return cls(
            user_id=task.responsible_user_id,
            title=settings.NEW_TASK_NOTIFICATION_TITLE,
            body=task.title,
            task_id=task.id,
            order_id=task.order_id,
            url=settings.WORKER_DASHBOARD_URL,
        )

    @classmethod
    def task_rejected(cls, task: Task) -> "PendingNotification":
        return cls(
            user_id=task.responsible_user_id,
            title=settings.TASK_REJECTED_NOTIFICATION_TITLE,
            body=task.title,
            task_id=task.id,
            order_id=task.order_id,
            url=settings.WORKER_DASHBOARD_URL,
        )


async def dispatch_notifications(
    db: AsyncSession,
    notifications: Iterable[PendingNotification],
    sender=None,
) -> int:
    """Send queued notifications one by one; returns how many went through."""
    service = NotificationService(db, sender=sender)
    delivered = 0
    for notification in notifications:
        try:
            await service.send_notification(
                user_id=notification.user_id,
                title=notification.title,
                body=notification.body,
                task_id=notification.task_id,
                order_id=notification.order_id,
                url=notification.url,
            )
            delivered += 1
        except Exception as e:
            await db.rollback()
            automation_logger.error(
                "Failed to send automation notification",
                error=e,
                user_id=notification.user_id,
                task_id=notification.task_id,
            )
    return delivered
