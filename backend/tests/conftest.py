import os
from typing import Optional

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from aslan_crm.main import app
from aslan_crm.core.config import settings
from aslan_crm.db.database import Base, build_engine, get_db
from aslan_crm.db.enums import StartCondition, TaskStatus
from aslan_crm.db.models import AutomationSetting, Order, StageChainLink, Task, PushSubscription
from aslan_crm.integrations.push_delivery import DeliveryResult, get_push_sender

# On-disk SQLite so several sessions (and the app) share one database
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test_automation.db"


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="session")
async def test_engine():
    engine = build_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()
    if os.path.exists("./test_automation.db"):
        os.remove("./test_automation.db")


@pytest.fixture(scope="session")
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_session(session_factory):
    async with session_factory() as session:
        yield session


class RecordingSender:
    """Push sender double: remembers every payload instead of calling out."""

    def __init__(self, fail_endpoints: Optional[set] = None):
        self.sent: list[tuple[str, dict]] = []
        self.fail_endpoints = fail_endpoints or set()

    async def send(self, subscription, payload):
        self.sent.append((subscription.endpoint, payload))
        if subscription.endpoint in self.fail_endpoints:
            return DeliveryResult(endpoint=subscription.endpoint, success=False, error="HTTP 410")
        return DeliveryResult(endpoint=subscription.endpoint, success=True)


@pytest.fixture
def push_sender():
    return RecordingSender()


@pytest.fixture(scope="session", autouse=True)
async def override_get_db_for_app(session_factory):
    """Point the app's get_db at the session-scoped test engine, one session per request."""

    async def _override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    yield
    app.dependency_overrides.clear()


@pytest.fixture
async def client(push_sender):
    app.dependency_overrides[get_push_sender] = lambda: push_sender
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.pop(get_push_sender, None)


@pytest.fixture(autouse=True)
async def clean_tables(test_engine):
    """Ensure DB is empty before each test by deleting from all tables (keep schema intact)."""
    async with test_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            await conn.execute(table.delete())
    yield


@pytest.fixture(autouse=True)
def automation_settings_defaults(monkeypatch):
    monkeypatch.setattr(settings, "AUTOMATIONS_ENABLED", True)
    monkeypatch.setattr(settings, "CACHE_ENABLED", False)
    monkeypatch.setattr(settings, "PUSH_ENABLED", True)


class Seeder:
    """Inserts rows directly, bypassing the stores' validation."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def setting(
        self,
        stage_id: str,
        task_name: str,
        responsible_user_id: Optional[str] = "worker-1",
        position: int = 0,
        depends_on: Optional[int] = None,
        **extra,
    ) -> AutomationSetting:
        setting = AutomationSetting(
            stage_id=stage_id,
            stage_name=extra.pop("stage_name", stage_id.title()),
            task_name=task_name,
            task_order_position=position,
            responsible_user_id=responsible_user_id,
            task_title_template=extra.pop("task_title_template", f"{task_name} #{{order_id}}"),
            task_description_template=extra.pop("task_description_template", task_name),
            start_condition=StartCondition.after_task if depends_on else StartCondition.immediate,
            depends_on_task_id=depends_on,
            **extra,
        )
        self.session.add(setting)
        await self.session.commit()
        return setting

    async def link(self, from_stage_id: str, to_stage_id: Optional[str], is_active: bool = True, position: int = 1) -> StageChainLink:
        link = StageChainLink(
            from_stage_id=from_stage_id,
            to_stage_id=to_stage_id,
            is_active=is_active,
            order_position=position,
        )
        self.session.add(link)
        await self.session.commit()
        return link

    async def order(self, status: str = "cutting", title: str = "Кухня") -> Order:
        order = Order(title=title, status=status)
        self.session.add(order)
        await self.session.commit()
        return order

    async def task(
        self,
        order: Order,
        setting: Optional[AutomationSetting] = None,
        status: TaskStatus = TaskStatus.in_progress,
        stage_id: Optional[str] = None,
    ) -> Task:
        task = Task(
            title=setting.task_name if setting else "Manual task",
            responsible_user_id=setting.responsible_user_id if setting else "worker-1",
            order_id=order.id,
            stage_id=stage_id or (setting.stage_id if setting else order.status),
            status=status,
            automation_setting_id=setting.id if setting else None,
        )
        self.session.add(task)
        await self.session.commit()
        return task

    async def subscription(self, user_id: str, endpoint: str) -> PushSubscription:
        subscription = PushSubscription(user_id=user_id, endpoint=endpoint, p256dh="key", auth="secret")
        self.session.add(subscription)
        await self.session.commit()
        return subscription


@pytest.fixture
def seed(test_session):
    return Seeder(test_session)
