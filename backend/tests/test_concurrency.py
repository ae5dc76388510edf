import asyncio

import pytest
from sqlalchemy import select

from aslan_crm.automation.locks import OrderLock
from aslan_crm.automation.schemas import StageOutcome
from aslan_crm.automation.service import AutomationService
from aslan_crm.db.enums import TaskStatus
from aslan_crm.db.models import Order, Task

pytestmark = pytest.mark.unit


async def _ready_order(seed):
    a = await seed.setting("cutting", "A", position=1)
    b = await seed.setting("cutting", "B", position=2)
    await seed.link("cutting", "edging")
    await seed.setting("edging", "E1", position=1)
    order = await seed.order()
    await seed.task(order, a, status=TaskStatus.completed)
    await seed.task(order, b, status=TaskStatus.completed)
    return order


@pytest.mark.anyio
async def test_held_lock_reports_already_processing(test_session, seed, session_factory, push_sender):
    order = await _ready_order(seed)

    async with session_factory() as other:
        async with OrderLock(other, order.id) as held:
            assert held.acquired
            result = await AutomationService.check_stage_completion(test_session, order.id, sender=push_sender)

    assert result.outcome == StageOutcome.already_processing
    assert result.message == "Already being processed by another instance"
    assert result.success is False

    async with session_factory() as check:
        assert (await check.get(Order, order.id)).status == "cutting"
        edging = (await check.execute(select(Task).where(Task.stage_id == "edging"))).scalars().all()
        assert edging == []


@pytest.mark.anyio
async def test_lock_is_released_after_use(test_session, seed, push_sender):
    order = await _ready_order(seed)

    async with OrderLock(test_session, order.id) as lock:
        assert lock.acquired

    result = await AutomationService.check_stage_completion(test_session, order.id, sender=push_sender)
    assert result.outcome == StageOutcome.advanced


@pytest.mark.anyio
async def test_lock_is_released_on_error(test_session, seed):
    order = await seed.order()

    with pytest.raises(RuntimeError):
        async with OrderLock(test_session, order.id):
            raise RuntimeError("boom")

    async with OrderLock(test_session, order.id) as lock:
        assert lock.acquired


@pytest.mark.anyio
async def test_concurrent_checks_advance_once(seed, session_factory, push_sender):
    order = await _ready_order(seed)

    async def check():
        async with session_factory() as session:
            return await AutomationService.check_stage_completion(session, order.id, sender=push_sender)

    results = await asyncio.gather(check(), check())
    outcomes = [r.outcome for r in results]

    assert outcomes.count(StageOutcome.advanced) == 1
    # The loser either hit the held lock or saw the order already in edging
    other = next(r for r in results if r.outcome != StageOutcome.advanced)
    assert other.outcome in (StageOutcome.already_processing, StageOutcome.incomplete_task)

    async with session_factory() as check_session:
        assert (await check_session.get(Order, order.id)).status == "edging"
        edging = (
            await check_session.execute(select(Task).where(Task.order_id == order.id, Task.stage_id == "edging"))
        ).scalars().all()
        assert len(edging) == 1


@pytest.mark.anyio
async def test_repeated_checks_are_idempotent(test_session, seed, push_sender):
    order = await _ready_order(seed)

    first = await AutomationService.check_stage_completion(test_session, order.id, sender=push_sender)
    second = await AutomationService.check_stage_completion(test_session, order.id, sender=push_sender)

    assert first.outcome == StageOutcome.advanced
    # Now in edging with E1 still open
    assert second.outcome == StageOutcome.incomplete_task
    assert second.incomplete_task == "E1"
