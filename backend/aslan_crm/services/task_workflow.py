"""
Task workflow: complete, submit for review, confirm, reject.

Status changes are single conditional UPDATEs committed before any
automation runs. Automation problems are logged and reported back next to
the task; they never undo the worker's own action.
"""
from datetime import datetime, timezone
from typing import Optional, Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from aslan_crm.core.automation import run_if_automations_enabled
from aslan_crm.core.logging import automation_logger
from aslan_crm.db.enums import TaskStatus
from aslan_crm.db.models import Task
from aslan_crm.automation.exceptions import TaskNotFound, TaskStateError
from aslan_crm.automation.notification_hooks import PendingNotification, dispatch_notifications
from aslan_crm.automation.service import AutomationService


async def _transition(
    db: AsyncSession,
    task_id: int,
    from_statuses: tuple[TaskStatus, ...],
    **values,
) -> Task:
    """Atomically move a task out of one of from_statuses; commits."""
    res = await db.execute(
        update(Task)
        .where(Task.id == task_id)
        .where(Task.status.in_(from_statuses))
        .values(**values)
        .execution_options(synchronize_session=False)
    )

    if res.rowcount == 0:
        current = await db.get(Task, task_id)
        if current is None:
            raise TaskNotFound(task_id)
        allowed = ", ".join(s.value for s in from_statuses)
        raise TaskStateError(
            f"Task {task_id} is {TaskStatus(current.status).value}, expected one of: {allowed}"
        )

    await db.commit()
    result = await db.execute(select(Task).where(Task.id == task_id).execution_options(populate_existing=True))
    return result.scalar_one()


@run_if_automations_enabled
async def trigger_automation(db: AsyncSession, task: Task, sender=None) -> dict[str, Any]:
    """Run the engine after a task reached `completed`."""
    if task.automation_setting_id is not None:
        result = await AutomationService.create_dependent_tasks(
            db, task.id, task.automation_setting_id, sender=sender
        )
    else:
        result = await AutomationService.check_stage_completion(db, task.order_id, sender=sender)
    return result.model_dump(mode="json")


async def _run_automation(db: AsyncSession, task: Task, sender=None) -> Optional[dict[str, Any]]:
    try:
        return await trigger_automation(db, task, sender=sender)
    except Exception as e:
        await db.rollback()
        await db.refresh(task)
        automation_logger.error(
            "Automation failed after task completion",
            error=e,
            task_id=task.id,
            order_id=task.order_id,
        )
        return {"success": False, "error": getattr(e, "detail", None) or str(e)}


async def complete_task(db: AsyncSession, task_id: int, sender=None) -> tuple[Task, Optional[dict[str, Any]]]:
    """Worker marks an in-progress task as done."""
    now = datetime.now(timezone.utc)
    task = await _transition(
        db,
        task_id,
        (TaskStatus.in_progress,),
        status=TaskStatus.completed,
        completed_at=now,
        updated_at=now,
    )
    automation_logger.info("Task completed", task_id=task.id, order_id=task.order_id)
    return task, await _run_automation(db, task, sender=sender)


async def submit_for_review(db: AsyncSession, task_id: int) -> Task:
    task = await _transition(
        db,
        task_id,
        (TaskStatus.in_progress,),
        status=TaskStatus.under_review,
        updated_at=datetime.now(timezone.utc),
    )
    automation_logger.info("Task submitted for review", task_id=task.id)
    return task


async def confirm_task(
    db: AsyncSession,
    task_id: int,
    confirmed_by: str,
    sender=None,
) -> tuple[Task, Optional[dict[str, Any]]]:
    """Reviewer accepts the work; the task becomes completed."""
    now = datetime.now(timezone.utc)
    task = await _transition(
        db,
        task_id,
        (TaskStatus.under_review,),
        status=TaskStatus.completed,
        completed_at=now,
        confirmed_by=confirmed_by,
        confirmed_at=now,
        updated_at=now,
    )
    automation_logger.info("Task confirmed", task_id=task.id, confirmed_by=confirmed_by)
    return task, await _run_automation(db, task, sender=sender)


async def reject_task(db: AsyncSession, task_id: int, sender=None) -> Task:
    """Reviewer sends the work back; the worker is notified."""
    task = await _transition(
        db,
        task_id,
        (TaskStatus.under_review,),
        status=TaskStatus.in_progress,
        rejection_count=Task.rejection_count + 1,
        confirmed_by=None,
        confirmed_at=None,
        updated_at=datetime.now(timezone.utc),
    )
    automation_logger.info("Task rejected", task_id=task.id, rejection_count=task.rejection_count)

    if task.responsible_user_id:
        await dispatch_notifications(db, [PendingNotification.task_rejected(task)], sender=sender)
        await db.refresh(task)
    return task


async def list_tasks(
    db: AsyncSession,
    order_id: Optional[int] = None,
    responsible_user_id: Optional[str] = None,
    status: Optional[TaskStatus] = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Task]:
    query = select(Task)
    if order_id is not None:
        query = query.where(Task.order_id == order_id)
    if responsible_user_id is not None:
        query = query.where(Task.responsible_user_id == responsible_user_id)
    if status is not None:
        query = query.where(Task.status == status)
    query = query.order_by(Task.id).offset(offset).limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())
