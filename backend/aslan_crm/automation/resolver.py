"""
Dependent-Task Resolver

After a task is completed, create the tasks whose settings wait on that
task's setting, then let the evaluator decide whether the stage is done.
"""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from aslan_crm.core.logging import automation_logger
from aslan_crm.db.enums import TaskStatus
from aslan_crm.db.models import AutomationSetting, Order, Task
from aslan_crm.automation.evaluator import compute_eligibility, evaluate_and_advance
from aslan_crm.automation.exceptions import OrderNotFound, TaskNotFound
from aslan_crm.automation.materializer import materialize_setting
from aslan_crm.automation.notification_hooks import PendingNotification
from aslan_crm.automation.schemas import DependentOutcome, DependentTasksResult


async def dependent_settings(db: AsyncSession, parent_setting_id: int) -> list[AutomationSetting]:
    result = await db.execute(
        select(AutomationSetting)
        .where(AutomationSetting.depends_on_task_id == parent_setting_id)
        .order_by(AutomationSetting.task_order_position, AutomationSetting.id)
    )
    return list(result.scalars().all())


async def parent_task_for(db: AsyncSession, order_id: int, setting_id: int) -> Optional[Task]:
    result = await db.execute(
        select(Task)
        .where(Task.order_id == order_id, Task.automation_setting_id == setting_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def resolve_dependents(
    db: AsyncSession,
    completed_task_id: int,
    automation_setting_id: Optional[int],
    notifications: list[PendingNotification],
) -> DependentTasksResult:
    """
    Materialize the direct dependents of a completed task's setting.

    Created tasks are committed before the stage evaluation runs, and the
    evaluation happens only when every required task of the stage is
    created and completed.
    """
    task = await db.get(Task, completed_task_id, populate_existing=True)
    if task is None:
        raise TaskNotFound(completed_task_id)

    if task.status != TaskStatus.completed:
        automation_logger.info(
            "Parent task not completed, no dependents created",
            task_id=task.id,
            status=TaskStatus(task.status).value,
        )
        return DependentTasksResult(
            completed_task_id=task.id,
            outcome=DependentOutcome.parent_not_completed,
            message="Parent task is not completed",
        )

    setting_id = automation_setting_id or task.automation_setting_id

    # A template named by the caller only counts once its own task is done
    if setting_id != task.automation_setting_id:
        parent_task = await parent_task_for(db, task.order_id, setting_id)
        if parent_task is None or parent_task.status != TaskStatus.completed:
            automation_logger.warning(
                "Parent setting's task not completed, no dependents created",
                task_id=task.id,
                order_id=task.order_id,
                setting_id=setting_id,
                parent_task_id=parent_task.id if parent_task else None,
            )
            return DependentTasksResult(
                completed_task_id=task.id,
                outcome=DependentOutcome.parent_not_completed,
                message="Parent task is not completed",
            )

    order = await db.get(Order, task.order_id, populate_existing=True)
    if order is None:
        raise OrderNotFound(task.order_id)

    if order.status != task.stage_id:
        automation_logger.info(
            "Order moved to different stage, skipping dependents",
            task_id=task.id,
            order_id=order.id,
            order_stage=order.status,
            task_stage=task.stage_id,
        )
        return DependentTasksResult(
            completed_task_id=task.id,
            outcome=DependentOutcome.order_moved,
            message="Order moved to different stage",
            success=True,
        )

    created: list[int] = []
    if setting_id is not None:
        parent = await db.get(AutomationSetting, setting_id)
        parent_stage = parent.stage_id if parent is not None else task.stage_id

        for setting in await dependent_settings(db, setting_id):
            if setting.stage_id != parent_stage:
                automation_logger.warning(
                    "Skipping dependent setting from another stage",
                    setting_id=setting.id,
                    setting_stage=setting.stage_id,
                    parent_setting_id=setting_id,
                    parent_stage=parent_stage,
                )
                continue
            task_id = await materialize_setting(db, order, setting, notifications)
            if task_id is not None:
                created.append(task_id)

    await db.commit()

    result = DependentTasksResult(
        completed_task_id=task.id,
        outcome=DependentOutcome.created if created else DependentOutcome.no_dependents,
        message="Dependent tasks created" if created else "No dependent tasks",
        success=True,
        tasks_created=len(created),
        task_ids=created,
    )
    automation_logger.info(
        "Dependents resolved",
        task_id=task.id,
        order_id=order.id,
        tasks_created=len(created),
    )

    eligibility = await compute_eligibility(db, order.id, order.status)
    if eligibility.all_completed:
        result.stage_check = await evaluate_and_advance(db, order.id, notifications)
    return result
