"""
Automation Service
Entry points of the stage automation engine.

Each call runs one step of the per-order workflow
(resolve dependents -> evaluate stage -> materialize next stage),
commits it, and only then sends the notifications it queued.
"""
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from aslan_crm.core.logging import automation_logger, log_operation
from aslan_crm.db.enums import StartCondition, TaskStatus
from aslan_crm.db.models import AutomationSetting, Order, StageChainLink, Task
from aslan_crm.automation import evaluator, materializer, resolver
from aslan_crm.automation.exceptions import OrderNotFound
from aslan_crm.automation.notification_hooks import PendingNotification, dispatch_notifications
from aslan_crm.automation.settings_store import AutomationSettingsStore
from aslan_crm.automation.schemas import (
    StageEvaluation,
    DependentTasksResult,
    MaterializeResult,
    AutomationAuditReport,
)


class AutomationService:
    """Service layer for the stage automation engine"""

    @staticmethod
    @log_operation("check_stage_completion", automation_logger)
    async def check_stage_completion(db: AsyncSession, order_id: int, sender=None) -> StageEvaluation:
        """Advance the order if its current stage is finished."""
        notifications: list[PendingNotification] = []
        evaluation = await evaluator.evaluate_and_advance(db, order_id, notifications)
        await dispatch_notifications(db, notifications, sender=sender)
        return evaluation

    @staticmethod
    @log_operation("create_dependent_tasks", automation_logger)
    async def create_dependent_tasks(
        db: AsyncSession,
        completed_task_id: int,
        automation_setting_id: Optional[int] = None,
        sender=None,
    ) -> DependentTasksResult:
        """Create tasks waiting on a completed task, then re-check the stage."""
        notifications: list[PendingNotification] = []
        result = await resolver.resolve_dependents(db, completed_task_id, automation_setting_id, notifications)
        await dispatch_notifications(db, notifications, sender=sender)
        return result

    @staticmethod
    @log_operation("materialize_stage", automation_logger)
    async def materialize_stage(
        db: AsyncSession,
        order_id: int,
        stage_id: Optional[str] = None,
        sender=None,
    ) -> MaterializeResult:
        """Create the immediate tasks of a stage (the order's current one by default)."""
        order = await db.get(Order, order_id)
        if order is None:
            raise OrderNotFound(order_id)

        stage_id = stage_id or order.status
        notifications: list[PendingNotification] = []
        task_ids = await materializer.materialize_stage(db, order, stage_id, notifications)
        await db.commit()
        await dispatch_notifications(db, notifications, sender=sender)

        return MaterializeResult(
            order_id=order_id,
            stage_id=stage_id,
            tasks_created=len(task_ids),
            task_ids=task_ids,
        )

    @staticmethod
    async def audit(db: AsyncSession) -> AutomationAuditReport:
        """Counts over the automation configuration and the tasks it produced."""

        async def count(model_column, *criteria) -> int:
            return await db.scalar(select(func.count(model_column)).where(*criteria)) or 0

        automated = Task.automation_setting_id.is_not(None)
        graph = await AutomationSettingsStore.load_graph(db)

        return AutomationAuditReport(
            total_settings=await count(AutomationSetting.id),
            immediate_settings=await count(
                AutomationSetting.id, AutomationSetting.start_condition == StartCondition.immediate
            ),
            after_task_settings=await count(
                AutomationSetting.id, AutomationSetting.start_condition == StartCondition.after_task
            ),
            settings_with_dependencies=await count(
                AutomationSetting.id, AutomationSetting.depends_on_task_id.is_not(None)
            ),
            settings_without_responsible=await count(
                AutomationSetting.id, AutomationSetting.responsible_user_id.is_(None)
            ),
            active_links=await count(StageChainLink.id, StageChainLink.is_active.is_(True)),
            inactive_links=await count(StageChainLink.id, StageChainLink.is_active.is_(False)),
            automation_tasks=await count(Task.id, automated),
            confirmed_tasks=await count(Task.id, automated, Task.confirmed_by.is_not(None)),
            rejected_tasks=await count(Task.id, automated, Task.rejection_count > 0),
            pending_review_tasks=await count(
                Task.id, automated, Task.status == TaskStatus.under_review, Task.confirmed_by.is_(None)
            ),
            dependency_problems=graph.problems(),
        )
