"""
Automation Settings Store
CRUD and query facade over task templates (automation_settings).

Reads used by the settings screens are cached in Redis; every write
invalidates the cache. The automation engine does not use these cached
reads, it always queries the table.
"""
from typing import Optional, Any

from sqlalchemy import select, update, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from aslan_crm.db.models import AutomationSetting, Task
from aslan_crm.db.enums import StartCondition
from aslan_crm.core.redis import redis_client, AUTOMATION_SETTINGS_KEY
from aslan_crm.core.logging import automation_logger
from aslan_crm.automation.dependency_graph import DependencyGraph, DependencyNode
from aslan_crm.automation.exceptions import (
    AutomationError,
    SettingNotFound,
    SettingValidationError,
    InvalidDependencyError,
    LastStageSettingError,
)
from aslan_crm.automation.schemas import (
    AutomationSettingCreate,
    AutomationSettingUpdate,
    AutomationSettingResponse,
    StageWithTasks,
    SettingsUpdateResult,
)


def resolve_dependency(
    start_condition: Optional[StartCondition],
    depends_on: Optional[int],
) -> tuple[StartCondition, Optional[int]]:
    """
    Normalize the start condition / parent pair.

    immediate never keeps a parent; a parent implies after_task;
    after_task without a parent is rejected.
    """
    if start_condition is None:
        start_condition = StartCondition.after_task if depends_on is not None else StartCondition.immediate
    if start_condition == StartCondition.immediate:
        return start_condition, None
    if depends_on is None:
        raise SettingValidationError("start_condition 'after_task' requires depends_on_task_id")
    return start_condition, depends_on


class AutomationSettingsStore:

    # ---------------------- Reads ----------------------

    @staticmethod
    async def list_settings(db: AsyncSession, use_cache: bool = True) -> list[AutomationSettingResponse]:
        """All templates ordered by stage then position."""
        if use_cache:
            cached = redis_client.get_json(AUTOMATION_SETTINGS_KEY)
            if cached is not None:
                return [AutomationSettingResponse(**row) for row in cached]

        result = await db.execute(
            select(AutomationSetting).order_by(
                AutomationSetting.stage_id,
                AutomationSetting.task_order_position,
                AutomationSetting.id,
            )
        )
        settings = [AutomationSettingResponse.model_validate(s) for s in result.scalars().all()]

        if use_cache:
            redis_client.set_json(AUTOMATION_SETTINGS_KEY, [s.model_dump(mode="json") for s in settings])
        return settings

    @staticmethod
    async def list_by_stage(db: AsyncSession) -> list[StageWithTasks]:
        """Templates grouped per stage, stages in first-seen order."""
        stages: dict[str, StageWithTasks] = {}
        for setting in await AutomationSettingsStore.list_settings(db):
            group = stages.get(setting.stage_id)
            if group is None:
                group = StageWithTasks(stage_id=setting.stage_id, stage_name=setting.stage_name, tasks=[])
                stages[setting.stage_id] = group
            group.tasks.append(setting)
        return list(stages.values())

    @staticmethod
    async def get_setting(db: AsyncSession, setting_id: int) -> AutomationSetting:
        result = await db.execute(select(AutomationSetting).where(AutomationSetting.id == setting_id))
        setting = result.scalar_one_or_none()
        if setting is None:
            raise SettingNotFound(setting_id)
        return setting

    @staticmethod
    async def load_graph(db: AsyncSession) -> DependencyGraph:
        result = await db.execute(
            select(AutomationSetting.id, AutomationSetting.stage_id, AutomationSetting.depends_on_task_id)
        )
        return DependencyGraph(
            DependencyNode(id=row.id, stage_id=row.stage_id, depends_on=row.depends_on_task_id)
            for row in result.all()
        )

    # ---------------------- Writes ----------------------

    @staticmethod
    async def create_setting(db: AsyncSession, payload: AutomationSettingCreate) -> AutomationSetting:
        # An explicit parent without an explicit condition means after_task
        requested = payload.start_condition if "start_condition" in payload.model_fields_set else None
        start_condition, depends_on = resolve_dependency(requested, payload.depends_on_task_id)

        if depends_on is not None:
            parent = await db.get(AutomationSetting, depends_on)
            if parent is None:
                raise InvalidDependencyError(f"Parent setting {depends_on} does not exist")
            if parent.stage_id != payload.stage_id:
                raise InvalidDependencyError(
                    f"Parent setting {depends_on} belongs to stage {parent.stage_id}, not {payload.stage_id}"
                )

        data = payload.model_dump()
        data.update(start_condition=start_condition, depends_on_task_id=depends_on)
        setting = AutomationSetting(**data)
        db.add(setting)
        # A brand new node can't close a cycle, its id is not referenced yet
        await db.flush()
        await db.commit()
        await db.refresh(setting)
        redis_client.invalidate(AUTOMATION_SETTINGS_KEY)

        automation_logger.info(
            "Automation setting created",
            setting_id=setting.id,
            stage_id=setting.stage_id,
            task_name=setting.task_name,
        )
        return setting

    @staticmethod
    async def _apply_update(db: AsyncSession, update_payload: AutomationSettingUpdate) -> AutomationSetting:
        setting = await AutomationSettingsStore.get_setting(db, update_payload.id)
        changes: dict[str, Any] = update_payload.model_dump(exclude_unset=True, exclude={"id"})

        if "start_condition" in changes or "depends_on_task_id" in changes:
            start_condition, depends_on = resolve_dependency(
                changes.get("start_condition"),
                changes.get("depends_on_task_id", setting.depends_on_task_id),
            )
            changes["start_condition"] = start_condition
            changes["depends_on_task_id"] = depends_on

            graph = await AutomationSettingsStore.load_graph(db)
            graph.with_node(
                DependencyNode(id=setting.id, stage_id=setting.stage_id, depends_on=depends_on)
            ).validate_node(setting.id)

        for field, value in changes.items():
            setattr(setting, field, value)
        await db.flush()
        return setting

    @staticmethod
    async def update_settings(
        db: AsyncSession,
        updates: list[AutomationSettingUpdate],
    ) -> SettingsUpdateResult:
        """
        Apply a batch of updates, each in its own savepoint.

        A failing update is rolled back alone; the others are committed and
        the first error is reported back to the caller.
        """
        result = SettingsUpdateResult()

        for update_payload in updates:
            try:
                async with db.begin_nested():
                    await AutomationSettingsStore._apply_update(db, update_payload)
                result.updated += 1
            except (AutomationError, SQLAlchemyError) as e:
                message = getattr(e, "detail", None) or str(e)
                result.failed += 1
                result.errors[update_payload.id] = message
                if result.first_error is None:
                    result.first_error = message
                automation_logger.warning(
                    "Automation setting update failed",
                    setting_id=update_payload.id,
                    reason=message,
                )

        await db.commit()
        redis_client.invalidate(AUTOMATION_SETTINGS_KEY)
        return result

    @staticmethod
    async def delete_setting(db: AsyncSession, setting_id: int) -> None:
        """
        Delete a template. The last template of a stage can't be removed.
        Templates waiting on it become immediate; its tasks keep existing
        but lose their back-reference.
        """
        setting = await AutomationSettingsStore.get_setting(db, setting_id)

        stage_count = await db.scalar(
            select(func.count(AutomationSetting.id)).where(AutomationSetting.stage_id == setting.stage_id)
        )
        if (stage_count or 0) <= 1:
            raise LastStageSettingError(f"Cannot delete the last task of stage {setting.stage_id}")

        await db.execute(
            update(AutomationSetting)
            .where(AutomationSetting.depends_on_task_id == setting_id)
            .values(depends_on_task_id=None, start_condition=StartCondition.immediate)
        )
        await db.execute(
            update(Task)
            .where(Task.automation_setting_id == setting_id)
            .values(automation_setting_id=None)
        )
        await db.delete(setting)
        await db.commit()
        redis_client.invalidate(AUTOMATION_SETTINGS_KEY)

        automation_logger.info("Automation setting deleted", setting_id=setting_id, stage_id=setting.stage_id)
