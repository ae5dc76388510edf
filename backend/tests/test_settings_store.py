import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from aslan_crm.automation.exceptions import (
    DependencyCycleError,
    InvalidDependencyError,
    LastStageSettingError,
    SettingNotFound,
    SettingValidationError,
)
from aslan_crm.automation.schemas import AutomationSettingCreate, AutomationSettingUpdate
from aslan_crm.automation.settings_store import AutomationSettingsStore, resolve_dependency
from aslan_crm.db.enums import StartCondition
from aslan_crm.db.models import AutomationSetting, Task

pytestmark = [pytest.mark.unit, pytest.mark.usefixtures("anyio_backend")]


def _create(stage_id="cutting", task_name="Распил", **kwargs):
    return AutomationSettingCreate(
        stage_id=stage_id,
        stage_name=stage_id.title(),
        task_name=task_name,
        responsible_user_id=kwargs.pop("responsible_user_id", "worker-1"),
        **kwargs,
    )


def test_resolve_dependency_normalizes_pairs():
    assert resolve_dependency(StartCondition.immediate, 5) == (StartCondition.immediate, None)
    assert resolve_dependency(None, 5) == (StartCondition.after_task, 5)
    assert resolve_dependency(None, None) == (StartCondition.immediate, None)
    with pytest.raises(SettingValidationError):
        resolve_dependency(StartCondition.after_task, None)


def test_payload_limits_are_validated():
    with pytest.raises(ValueError):
        _create(dispatcher_percentage=101)
    with pytest.raises(ValueError):
        _create(payment_amount=-1)
    with pytest.raises(ValueError):
        _create(duration_days=0)


@pytest.mark.anyio
async def test_create_with_parent_in_same_stage(test_session):
    parent = await AutomationSettingsStore.create_setting(test_session, _create(task_name="Распил"))
    child = await AutomationSettingsStore.create_setting(
        test_session, _create(task_name="Упаковка", depends_on_task_id=parent.id)
    )

    assert child.start_condition == StartCondition.after_task
    assert child.depends_on_task_id == parent.id


@pytest.mark.anyio
async def test_create_rejects_parent_from_another_stage(test_session):
    parent = await AutomationSettingsStore.create_setting(test_session, _create(stage_id="cutting"))

    with pytest.raises(InvalidDependencyError):
        await AutomationSettingsStore.create_setting(
            test_session, _create(stage_id="edging", depends_on_task_id=parent.id)
        )
    with pytest.raises(InvalidDependencyError):
        await AutomationSettingsStore.create_setting(test_session, _create(depends_on_task_id=9999))


@pytest.mark.anyio
async def test_create_after_task_without_parent_is_rejected(test_session):
    with pytest.raises(SettingValidationError):
        await AutomationSettingsStore.create_setting(
            test_session, _create(start_condition=StartCondition.after_task)
        )


@pytest.mark.anyio
async def test_list_by_stage_groups_in_first_seen_order(test_session, seed):
    await seed.setting("cutting", "B", position=2)
    await seed.setting("cutting", "A", position=1)
    await seed.setting("edging", "E", position=1)

    groups = await AutomationSettingsStore.list_by_stage(test_session)

    assert [g.stage_id for g in groups] == ["cutting", "edging"]
    assert [t.task_name for t in groups[0].tasks] == ["A", "B"]
    assert [t.task_name for t in groups[1].tasks] == ["E"]


@pytest.mark.anyio
async def test_update_many_keeps_successful_updates(test_session, seed, session_factory):
    a = await seed.setting("cutting", "A")
    b = await seed.setting("cutting", "B", depends_on=a.id)
    c = await seed.setting("cutting", "C")

    result = await AutomationSettingsStore.update_settings(
        test_session,
        [
            AutomationSettingUpdate(id=c.id, task_name="C renamed"),
            AutomationSettingUpdate(id=a.id, depends_on_task_id=b.id),  # closes a loop
            AutomationSettingUpdate(id=9999, task_name="ghost"),
            AutomationSettingUpdate(id=b.id, payment_amount=500),
        ],
    )

    assert result.updated == 2
    assert result.failed == 2
    assert "cycle" in result.first_error
    assert set(result.errors) == {a.id, 9999}

    async with session_factory() as check:
        rows = {s.id: s for s in (await check.execute(select(AutomationSetting))).scalars()}
    assert rows[c.id].task_name == "C renamed"
    assert rows[b.id].payment_amount == 500
    assert rows[a.id].depends_on_task_id is None


@pytest.mark.anyio
async def test_update_switching_to_immediate_clears_parent(test_session, seed, session_factory):
    a = await seed.setting("cutting", "A")
    b = await seed.setting("cutting", "B", depends_on=a.id)

    result = await AutomationSettingsStore.update_settings(
        test_session, [AutomationSettingUpdate(id=b.id, start_condition=StartCondition.immediate)]
    )
    assert result.updated == 1

    async with session_factory() as check:
        row = await check.get(AutomationSetting, b.id)
    assert row.start_condition == StartCondition.immediate
    assert row.depends_on_task_id is None


@pytest.mark.anyio
async def test_update_detects_cycle_directly(test_session, seed):
    a = await seed.setting("cutting", "A")
    b = await seed.setting("cutting", "B", depends_on=a.id)

    with pytest.raises(DependencyCycleError):
        await AutomationSettingsStore._apply_update(
            test_session, AutomationSettingUpdate(id=a.id, depends_on_task_id=b.id)
        )
    await test_session.rollback()


@pytest.mark.anyio
async def test_delete_refuses_last_setting_of_stage(test_session, seed):
    only = await seed.setting("painting", "Покраска")

    with pytest.raises(LastStageSettingError):
        await AutomationSettingsStore.delete_setting(test_session, only.id)

    with pytest.raises(SettingNotFound):
        await AutomationSettingsStore.delete_setting(test_session, 9999)


@pytest.mark.anyio
async def test_delete_detaches_dependents_and_tasks(test_session, seed, session_factory):
    a = await seed.setting("cutting", "A")
    b = await seed.setting("cutting", "B", depends_on=a.id)
    order = await seed.order()
    task = await seed.task(order, a)

    await AutomationSettingsStore.delete_setting(test_session, a.id)

    async with session_factory() as check:
        assert await check.get(AutomationSetting, a.id) is None
        child = await check.get(AutomationSetting, b.id)
        assert child.depends_on_task_id is None
        assert child.start_condition == StartCondition.immediate
        kept = await check.get(Task, task.id)
        assert kept is not None
        assert kept.automation_setting_id is None


@pytest.mark.anyio
async def test_database_enforces_value_ranges(test_session):
    for bad in ({"dispatcher_percentage": 150}, {"payment_amount": -5}, {"duration_days": 0}):
        test_session.add(AutomationSetting(stage_id="cutting", stage_name="Распил", task_name="X", **bad))
        with pytest.raises(IntegrityError):
            await test_session.commit()
        await test_session.rollback()

    assert (await test_session.execute(select(AutomationSetting))).scalars().all() == []
