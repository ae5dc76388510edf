"""
Stage-Completion Evaluator

Moves an order to the next stage once every required task of its current
stage is created and completed, and an active chain link says where to go.
Every "not yet" case is returned as a StageOutcome, never raised.
"""
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from aslan_crm.core.logging import automation_logger
from aslan_crm.db.enums import TaskStatus
from aslan_crm.db.models import AutomationSetting, Order, Task
from aslan_crm.automation.chain_store import StageChainStore
from aslan_crm.automation.exceptions import OrderNotFound
from aslan_crm.automation.locks import OrderLock
from aslan_crm.automation.materializer import materialize_stage
from aslan_crm.automation.notification_hooks import PendingNotification
from aslan_crm.automation.schemas import StageEligibility, StageEvaluation, StageOutcome


async def compute_eligibility(db: AsyncSession, order_id: int, stage_id: str) -> StageEligibility:
    """
    Check the stage's required settings (those with a responsible user)
    against the order's tasks, in position order. The first setting
    without a task, or with an unfinished one, is reported.
    """
    settings_result = await db.execute(
        select(AutomationSetting)
        .where(
            AutomationSetting.stage_id == stage_id,
            AutomationSetting.responsible_user_id.is_not(None),
        )
        .order_by(AutomationSetting.task_order_position, AutomationSetting.id)
    )
    required = list(settings_result.scalars().all())

    tasks_result = await db.execute(
        select(Task).where(
            Task.order_id == order_id,
            Task.automation_setting_id.in_([s.id for s in required]),
        )
    )
    tasks_by_setting = {task.automation_setting_id: task for task in tasks_result.scalars().all()}

    eligibility = StageEligibility(
        stage_id=stage_id,
        required=len(required),
        created=len(tasks_by_setting),
        completed=sum(1 for t in tasks_by_setting.values() if t.status == TaskStatus.completed),
    )
    for setting in required:
        task = tasks_by_setting.get(setting.id)
        if task is None:
            eligibility.missing_task = setting.task_name
            break
        if task.status != TaskStatus.completed:
            eligibility.incomplete_task = setting.task_name
            eligibility.task_status = TaskStatus(task.status).value
            break
    return eligibility


async def _evaluate_locked(
    db: AsyncSession,
    order_id: int,
    notifications: list[PendingNotification],
) -> StageEvaluation:
    result = await db.execute(select(Order).where(Order.id == order_id).execution_options(populate_existing=True))
    order = result.scalar_one_or_none()
    if order is None:
        raise OrderNotFound(order_id)

    from_stage = order.status
    eligibility = await compute_eligibility(db, order.id, from_stage)

    if not eligibility.all_created:
        automation_logger.info(
            "Stage not complete: task not created yet",
            order_id=order_id,
            stage_id=from_stage,
            missing_task=eligibility.missing_task,
        )
        return StageEvaluation(
            order_id=order_id,
            outcome=StageOutcome.missing_task,
            message="Not all tasks created yet",
            from_stage=from_stage,
            missing_task=eligibility.missing_task,
        )

    if not eligibility.all_completed:
        automation_logger.info(
            "Stage not complete: task not completed",
            order_id=order_id,
            stage_id=from_stage,
            incomplete_task=eligibility.incomplete_task,
            task_status=eligibility.task_status,
        )
        return StageEvaluation(
            order_id=order_id,
            outcome=StageOutcome.incomplete_task,
            message="Not all tasks completed",
            from_stage=from_stage,
            incomplete_task=eligibility.incomplete_task,
            task_status=eligibility.task_status,
        )

    links = await StageChainStore.outgoing_links(db, from_stage)
    active = next((link for link in links if link.is_active), None)

    if not links:
        return StageEvaluation(
            order_id=order_id,
            outcome=StageOutcome.no_chain,
            message="No automation chain configured",
            success=True,
            from_stage=from_stage,
        )
    if active is None:
        return StageEvaluation(
            order_id=order_id,
            outcome=StageOutcome.chain_disabled,
            message="Automation disabled",
            success=True,
            from_stage=from_stage,
        )
    if not active.to_stage_id:
        automation_logger.info("Final stage reached", order_id=order_id, stage_id=from_stage)
        return StageEvaluation(
            order_id=order_id,
            outcome=StageOutcome.final_stage,
            message="Final stage reached",
            success=True,
            from_stage=from_stage,
        )

    to_stage = active.to_stage_id
    moved = await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == from_stage)
        .values(status=to_stage, updated_at=datetime.now(timezone.utc))
    )
    if moved.rowcount == 0:
        # Someone else advanced the order between our read and this write
        automation_logger.info("Order already advanced", order_id=order_id, stage_id=from_stage)
        return StageEvaluation(
            order_id=order_id,
            outcome=StageOutcome.already_processing,
            message="Already being processed by another instance",
            from_stage=from_stage,
        )

    task_ids = await materialize_stage(db, order, to_stage, notifications)

    automation_logger.info(
        "Order moved to next stage",
        order_id=order_id,
        from_stage=from_stage,
        to_stage=to_stage,
        tasks_created=len(task_ids),
    )
    message = (
        "Order automatically moved to next stage"
        if task_ids
        else "Order moved but no immediate tasks to create"
    )
    return StageEvaluation(
        order_id=order_id,
        outcome=StageOutcome.advanced,
        message=message,
        success=True,
        from_stage=from_stage,
        to_stage=to_stage,
        tasks_created=len(task_ids),
        task_ids=task_ids,
    )


async def evaluate_and_advance(
    db: AsyncSession,
    order_id: int,
    notifications: list[PendingNotification],
) -> StageEvaluation:
    """
    Evaluate one order under its OrderLock.

    Commits the caller's open transaction before taking the lock, so any
    pending work on `db` is persisted even when the evaluation itself
    changes nothing. Callers that need to keep work uncommitted must use
    a separate session.

    The lock owns the transaction: it commits on return and rolls back on
    error. A busy lock yields `already_processing` without touching data.
    Queued notifications are left for the caller to send after commit.
    """
    if db.in_transaction():
        await db.commit()

    async with OrderLock(db, order_id) as lock:
        if not lock.acquired:
            return StageEvaluation(
                order_id=order_id,
                outcome=StageOutcome.already_processing,
                message="Already being processed by another instance",
            )
        return await _evaluate_locked(db, order_id, notifications)
