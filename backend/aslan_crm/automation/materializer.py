"""
Task Materializer
Turns automation settings into concrete tasks for one order.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from aslan_crm.core.logging import automation_logger
from aslan_crm.db.enums import StartCondition, TaskStatus, TaskPriority
from aslan_crm.db.models import AutomationSetting, Order, Task
from aslan_crm.automation.notification_hooks import PendingNotification

ORDER_ID_PLACEHOLDER = "#{order_id}"


def render_title(setting: AutomationSetting, order: Order) -> str:
    template = setting.task_title_template or setting.task_name
    return template.replace(ORDER_ID_PLACEHOLDER, str(order.id))


def render_description(setting: AutomationSetting, order: Order) -> str:
    template = (setting.task_description_template or "").replace(ORDER_ID_PLACEHOLDER, str(order.id))
    return f"{template} (Заказ: {order.title or order.id})"


def compute_due_date(duration_days: Optional[int], now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now + timedelta(days=max(duration_days or 1, 1))


async def task_exists(db: AsyncSession, order_id: int, setting_id: int) -> bool:
    result = await db.execute(
        select(Task.id)
        .where(Task.order_id == order_id, Task.automation_setting_id == setting_id)
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def materialize_setting(
    db: AsyncSession,
    order: Order,
    setting: AutomationSetting,
    notifications: list[PendingNotification],
) -> Optional[int]:
    """
    Create the task for one (order, setting) pair.

    Returns the new task id, or None when the setting has no responsible
    user, the task already exists, or the insert failed. The insert runs
    in a savepoint so a failure only loses this one task.
    """
    if not setting.responsible_user_id:
        automation_logger.debug(
            "Skipping setting without responsible user",
            setting_id=setting.id,
            task_name=setting.task_name,
        )
        return None

    if await task_exists(db, order.id, setting.id):
        automation_logger.debug("Task already exists", order_id=order.id, setting_id=setting.id)
        return None

    due_date = compute_due_date(setting.duration_days)
    task = Task(
        title=render_title(setting, order),
        description=render_description(setting, order),
        responsible_user_id=setting.responsible_user_id,
        order_id=order.id,
        stage_id=setting.stage_id,
        due_date=due_date,
        original_deadline=due_date,
        priority=TaskPriority.medium,
        status=TaskStatus.in_progress,
        salary=setting.payment_amount or 0,
        dispatcher_id=setting.dispatcher_id,
        dispatcher_percentage=setting.dispatcher_percentage or 0,
        automation_setting_id=setting.id,
    )

    try:
        async with db.begin_nested():
            db.add(task)
            await db.flush()
    except SQLAlchemyError as e:
        automation_logger.error(
            "Failed to create task",
            error=e,
            order_id=order.id,
            setting_id=setting.id,
        )
        return None

    automation_logger.info(
        "Task created",
        task_id=task.id,
        order_id=order.id,
        stage_id=setting.stage_id,
        setting_id=setting.id,
    )
    notifications.append(PendingNotification.new_task(task))
    return task.id


async def immediate_settings(db: AsyncSession, stage_id: str) -> list[AutomationSetting]:
    """Settings that start as soon as an order enters the stage."""
    result = await db.execute(
        select(AutomationSetting)
        .where(
            AutomationSetting.stage_id == stage_id,
            AutomationSetting.start_condition == StartCondition.immediate,
            AutomationSetting.depends_on_task_id.is_(None),
        )
        .order_by(AutomationSetting.task_order_position, AutomationSetting.id)
    )
    return list(result.scalars().all())


async def materialize_stage(
    db: AsyncSession,
    order: Order,
    stage_id: str,
    notifications: list[PendingNotification],
) -> list[int]:
    """
    Create the immediate tasks of a stage for an order.

    Safe to call repeatedly: existing (order, setting) tasks are skipped.
    Does not commit.
    """
    created: list[int] = []
    for setting in await immediate_settings(db, stage_id):
        task_id = await materialize_setting(db, order, setting, notifications)
        if task_id is not None:
            created.append(task_id)

    automation_logger.info(
        "Stage materialized",
        order_id=order.id,
        stage_id=stage_id,
        tasks_created=len(created),
    )
    return created
