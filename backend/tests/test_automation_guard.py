import pytest

from aslan_crm.core.automation import run_if_automations_enabled
from aslan_crm.core.config import settings
from aslan_crm.db.enums import TaskStatus
from aslan_crm.services import task_workflow

pytestmark = pytest.mark.unit


@pytest.mark.anyio
async def test_automation_decorator_skips_when_disabled(monkeypatch):
    monkeypatch.setattr(settings, 'AUTOMATIONS_ENABLED', False)

    called = False

    @run_if_automations_enabled
    async def _do_something():
        nonlocal called
        called = True
        return 'done'

    res = await _do_something()
    assert res is None
    assert called is False


@pytest.mark.anyio
async def test_automation_decorator_runs_when_enabled(monkeypatch):
    monkeypatch.setattr(settings, 'AUTOMATIONS_ENABLED', True)

    @run_if_automations_enabled
    async def _do_something():
        return 'done'

    res = await _do_something()
    assert res == 'done'


@pytest.mark.anyio
async def test_trigger_automation_respects_guard(monkeypatch, test_session, seed):
    monkeypatch.setattr(settings, 'AUTOMATIONS_ENABLED', False)
    order = await seed.order()
    task = await seed.task(order, None, status=TaskStatus.completed)

    assert await task_workflow.trigger_automation(test_session, task) is None
