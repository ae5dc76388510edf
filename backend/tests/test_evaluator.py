import pytest
from sqlalchemy import select

from aslan_crm.automation.evaluator import compute_eligibility, evaluate_and_advance
from aslan_crm.automation.exceptions import OrderNotFound
from aslan_crm.automation.schemas import StageOutcome
from aslan_crm.automation.service import AutomationService
from aslan_crm.core.config import settings
from aslan_crm.db.enums import TaskStatus
from aslan_crm.db.models import Notification, Order, Task

pytestmark = pytest.mark.unit


async def _cutting_stage(seed):
    """Two required cutting tasks plus a template nobody is assigned to."""
    a = await seed.setting("cutting", "A", position=1)
    b = await seed.setting("cutting", "B", responsible_user_id="worker-2", position=2)
    await seed.setting("cutting", "Optional", responsible_user_id=None, position=3)
    return a, b


@pytest.mark.anyio
async def test_missing_task_blocks_advance(test_session, seed, push_sender):
    a, b = await _cutting_stage(seed)
    await seed.link("cutting", "edging")
    order = await seed.order()
    await seed.task(order, a, status=TaskStatus.completed)

    result = await AutomationService.check_stage_completion(test_session, order.id, sender=push_sender)

    assert result.outcome == StageOutcome.missing_task
    assert result.message == "Not all tasks created yet"
    assert result.missing_task == "B"
    assert result.success is False
    assert (await test_session.get(Order, order.id)).status == "cutting"


@pytest.mark.anyio
async def test_incomplete_task_blocks_advance(test_session, seed, push_sender):
    a, b = await _cutting_stage(seed)
    await seed.link("cutting", "edging")
    order = await seed.order()
    await seed.task(order, a, status=TaskStatus.completed)
    await seed.task(order, b, status=TaskStatus.under_review)

    result = await AutomationService.check_stage_completion(test_session, order.id, sender=push_sender)

    assert result.outcome == StageOutcome.incomplete_task
    assert result.message == "Not all tasks completed"
    assert result.incomplete_task == "B"
    assert result.task_status == "under_review"


@pytest.mark.anyio
async def test_first_problem_in_position_order_is_reported(test_session, seed, push_sender):
    a, b = await _cutting_stage(seed)
    order = await seed.order()
    await seed.task(order, b, status=TaskStatus.in_progress)

    # A has no task at all and comes first
    result = await AutomationService.check_stage_completion(test_session, order.id, sender=push_sender)
    assert result.outcome == StageOutcome.missing_task
    assert result.missing_task == "A"


@pytest.mark.anyio
async def test_no_chain_configured(test_session, seed, push_sender):
    a, b = await _cutting_stage(seed)
    order = await seed.order()
    await seed.task(order, a, status=TaskStatus.completed)
    await seed.task(order, b, status=TaskStatus.completed)

    result = await AutomationService.check_stage_completion(test_session, order.id, sender=push_sender)

    assert result.outcome == StageOutcome.no_chain
    assert result.message == "No automation chain configured"
    assert result.success is True
    assert (await test_session.get(Order, order.id)).status == "cutting"


@pytest.mark.anyio
async def test_disabled_chain(test_session, seed, push_sender):
    a, b = await _cutting_stage(seed)
    await seed.link("cutting", "edging", is_active=False)
    order = await seed.order()
    await seed.task(order, a, status=TaskStatus.completed)
    await seed.task(order, b, status=TaskStatus.completed)

    result = await AutomationService.check_stage_completion(test_session, order.id, sender=push_sender)

    assert result.outcome == StageOutcome.chain_disabled
    assert result.message == "Automation disabled"


@pytest.mark.anyio
async def test_final_stage(test_session, seed, push_sender):
    p = await seed.setting("painting", "Покраска")
    await seed.link("painting", None)
    order = await seed.order(status="painting")
    await seed.task(order, p, status=TaskStatus.completed)

    result = await AutomationService.check_stage_completion(test_session, order.id, sender=push_sender)

    assert result.outcome == StageOutcome.final_stage
    assert result.message == "Final stage reached"
    assert (await test_session.get(Order, order.id)).status == "painting"


@pytest.mark.anyio
async def test_completed_stage_advances_and_notifies(test_session, seed, push_sender, session_factory):
    a, b = await _cutting_stage(seed)
    await seed.link("cutting", "edging")
    e1 = await seed.setting("edging", "E1", responsible_user_id="edger", position=1)
    await seed.setting("edging", "E2", responsible_user_id="edger", position=2, depends_on=e1.id)
    await seed.subscription("edger", "https://push.example/edger")
    order = await seed.order()
    await seed.task(order, a, status=TaskStatus.completed)
    await seed.task(order, b, status=TaskStatus.completed)

    result = await AutomationService.check_stage_completion(test_session, order.id, sender=push_sender)

    assert result.outcome == StageOutcome.advanced
    assert result.advanced
    assert result.message == "Order automatically moved to next stage"
    assert (result.from_stage, result.to_stage) == ("cutting", "edging")
    assert result.tasks_created == 1

    async with session_factory() as check:
        assert (await check.get(Order, order.id)).status == "edging"
        edging_tasks = (
            await check.execute(select(Task).where(Task.order_id == order.id, Task.stage_id == "edging"))
        ).scalars().all()
        assert [t.id for t in edging_tasks] == result.task_ids
        assert edging_tasks[0].automation_setting_id == e1.id

        history = (await check.execute(select(Notification).where(Notification.user_id == "edger"))).scalars().all()
        assert len(history) == 1
        assert history[0].title == settings.NEW_TASK_NOTIFICATION_TITLE
        assert history[0].task_id == result.task_ids[0]

    assert len(push_sender.sent) == 1
    endpoint, payload = push_sender.sent[0]
    assert endpoint == "https://push.example/edger"
    assert payload["taskId"] == result.task_ids[0]
    assert payload["orderId"] == order.id


@pytest.mark.anyio
async def test_advance_into_stage_without_immediate_tasks(test_session, seed, push_sender):
    a = await seed.setting("cutting", "A")
    await seed.link("cutting", "drilling")
    order = await seed.order()
    await seed.task(order, a, status=TaskStatus.completed)

    result = await AutomationService.check_stage_completion(test_session, order.id, sender=push_sender)

    assert result.outcome == StageOutcome.advanced
    assert result.message == "Order moved but no immediate tasks to create"
    assert result.tasks_created == 0
    assert (await test_session.get(Order, order.id)).status == "drilling"


@pytest.mark.anyio
async def test_first_active_link_wins(test_session, seed, push_sender):
    a = await seed.setting("cutting", "A")
    await seed.link("cutting", "edging", is_active=False, position=1)
    await seed.link("cutting", "drilling", position=2)
    order = await seed.order()
    await seed.task(order, a, status=TaskStatus.completed)

    result = await AutomationService.check_stage_completion(test_session, order.id, sender=push_sender)

    assert result.to_stage == "drilling"


@pytest.mark.anyio
async def test_unknown_order(test_session, push_sender):
    with pytest.raises(OrderNotFound):
        await AutomationService.check_stage_completion(test_session, 9999, sender=push_sender)


@pytest.mark.anyio
async def test_eligibility_counts(test_session, seed):
    a, b = await _cutting_stage(seed)
    order = await seed.order()
    await seed.task(order, a, status=TaskStatus.completed)
    await seed.task(order, b, status=TaskStatus.in_progress)
    await seed.task(order, None, status=TaskStatus.in_progress)  # manual tasks don't count

    eligibility = await compute_eligibility(test_session, order.id, "cutting")

    assert (eligibility.required, eligibility.created, eligibility.completed) == (2, 2, 1)
    assert eligibility.all_created
    assert not eligibility.all_completed
    assert eligibility.incomplete_task == "B"


@pytest.mark.anyio
async def test_stage_without_required_settings_is_complete(test_session, seed):
    order = await seed.order(status="sanding")

    eligibility = await compute_eligibility(test_session, order.id, "sanding")

    assert eligibility.required == 0
    assert eligibility.all_completed


@pytest.mark.anyio
async def test_pending_caller_work_is_committed_before_evaluation(test_session, seed, session_factory):
    order = await seed.order(title="Old title")
    order.title = "Renamed"
    await test_session.flush()
    assert test_session.in_transaction()

    result = await evaluate_and_advance(test_session, order.id, [])

    assert result.outcome == StageOutcome.no_chain
    assert not test_session.in_transaction()
    async with session_factory() as check:
        assert (await check.get(Order, order.id)).title == "Renamed"
