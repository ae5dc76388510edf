"""
Notification Service
History records plus best-effort push fan-out to a user's devices.
"""
from datetime import datetime, timezone
from typing import Optional, Any

from sqlalchemy import select, update, delete, func, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from aslan_crm.core.config import settings
from aslan_crm.core.logging import notifications_logger
from aslan_crm.db.models import Notification, PushSubscription
from aslan_crm.integrations.push_delivery import HttpxPushSender, build_payload


class NotificationService:
    """Service for managing notifications"""

    def __init__(self, db: AsyncSession, sender=None):
        self.db = db
        self.sender = sender or HttpxPushSender()

    async def send_notification(
        self,
        user_id: str,
        title: str,
        body: Optional[str] = None,
        task_id: Optional[int] = None,
        order_id: Optional[int] = None,
        url: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Persist a history record, then deliver to every registered endpoint.

        The history insert is committed before any delivery attempt; if it
        fails the error is logged and delivery still runs. A user with no
        subscriptions is a success with nothing sent.
        """
        url = url or settings.DEFAULT_NOTIFICATION_URL
        saved = await self._save_history(user_id, title, body, task_id, order_id, url)

        if not settings.PUSH_ENABLED:
            return {"success": True, "saved": saved, "sent": 0, "total": 0, "results": []}

        subscriptions = await self.list_subscriptions(user_id)
        if not subscriptions:
            notifications_logger.info("No push subscriptions for user", user_id=user_id)
            return {"success": True, "saved": saved, "sent": 0, "total": 0, "results": []}

        payload = build_payload(title, body, task_id=task_id, order_id=order_id, url=url)
        results = []
        for subscription in subscriptions:
            result = await self.sender.send(subscription, payload)
            results.append(result.as_dict())

        sent = sum(1 for r in results if r["success"])
        notifications_logger.info(
            "Push notification delivered",
            user_id=user_id,
            sent=sent,
            total=len(results),
        )
        return {"success": True, "saved": saved, "sent": sent, "total": len(results), "results": results}

    async def _save_history(
        self,
        user_id: str,
        title: str,
        body: Optional[str],
        task_id: Optional[int],
        order_id: Optional[int],
        url: str,
    ) -> bool:
        notification = Notification(
            user_id=user_id,
            title=title,
            body=body,
            task_id=task_id,
            order_id=order_id,
            url=url,
            is_read=False,
        )
        try:
            self.db.add(notification)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            notifications_logger.error("Failed to save notification history", error=e, user_id=user_id)
            return False
        return True

    # ---------------------- History ----------------------

    async def list_notifications(
        self,
        user_id: str,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Notification]:
        query = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            query = query.where(Notification.is_read == False)  # noqa: E712
        query = query.order_by(Notification.created_at.desc(), Notification.id.desc())
        query = query.offset(offset).limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_unread_count(self, user_id: str) -> int:
        result = await self.db.execute(
            select(func.count(Notification.id)).where(
                and_(Notification.user_id == user_id, Notification.is_read == False)  # noqa: E712
            )
        )
        return result.scalar() or 0

    async def mark_as_read(self, notification_id: int, user_id: str) -> bool:
        result = await self.db.execute(
            update(Notification)
            .where(and_(Notification.id == notification_id, Notification.user_id == user_id))
            .values(is_read=True, read_at=datetime.now(timezone.utc))
        )
        await self.db.commit()
        return result.rowcount > 0

    async def mark_all_as_read(self, user_id: str) -> int:
        result = await self.db.execute(
            update(Notification)
            .where(and_(Notification.user_id == user_id, Notification.is_read == False))  # noqa: E712
            .values(is_read=True, read_at=datetime.now(timezone.utc))
        )
        await self.db.commit()
        return result.rowcount

    # ---------------------- Subscriptions ----------------------

    async def list_subscriptions(self, user_id: str) -> list[PushSubscription]:
        result = await self.db.execute(
            select(PushSubscription).where(PushSubscription.user_id == user_id).order_by(PushSubscription.id)
        )
        return list(result.scalars().all())

    async def register_subscription(
        self,
        user_id: str,
        endpoint: str,
        p256dh: Optional[str] = None,
        auth: Optional[str] = None,
    ) -> PushSubscription:
        """Upsert by endpoint; a device that re-subscribes moves to the new user."""
        result = await self.db.execute(select(PushSubscription).where(PushSubscription.endpoint == endpoint))
        subscription = result.scalar_one_or_none()
        if subscription is None:
            subscription = PushSubscription(user_id=user_id, endpoint=endpoint)
            self.db.add(subscription)
        subscription.user_id = user_id
        subscription.p256dh = p256dh
        subscription.auth = auth

        await self.db.commit()
        await self.db.refresh(subscription)
        return subscription

    async def unregister_subscription(self, user_id: str, endpoint: str) -> bool:
        result = await self.db.execute(
            delete(PushSubscription).where(
                and_(PushSubscription.user_id == user_id, PushSubscription.endpoint == endpoint)
            )
        )
        await self.db.commit()
        return result.rowcount > 0
