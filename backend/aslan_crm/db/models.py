from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, Index, UniqueConstraint, CheckConstraint
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from aslan_crm.db.database import Base
from aslan_crm.db.enums import TaskStatus, TaskPriority, StartCondition


# ------------------ Automation configuration ------------------

class AutomationSetting(Base):
    """
    Task template bound to a production stage.
    When an order enters the stage the engine materializes one task per
    setting; settings with depends_on_task_id wait for their parent's task.
    """
    __tablename__ = "automation_settings"
    __table_args__ = (
        Index("ix_automation_settings_stage", "stage_id", "task_order_position"),
        Index("ix_automation_settings_depends_on", "depends_on_task_id"),
        CheckConstraint("dispatcher_percentage BETWEEN 0 AND 100", name="ck_automation_settings_dispatcher_pct"),
        CheckConstraint("payment_amount >= 0", name="ck_automation_settings_payment"),
        CheckConstraint("duration_days >= 1", name="ck_automation_settings_duration"),
    )

    id = Column(Integer, primary_key=True, index=True)
    stage_id = Column(String(50), nullable=False)
    stage_name = Column(String(100), nullable=False)
    task_name = Column(String(200), nullable=False)
    task_order_position = Column(Integer, nullable=False, default=0)
    responsible_user_id = Column(String(64), nullable=True)  # NULL -> never materialized
    dispatcher_id = Column(String(64), nullable=True)
    dispatcher_percentage = Column(Integer, nullable=False, default=0)
    task_title_template = Column(String(255), nullable=False, default="")
    task_description_template = Column(Text, nullable=False, default="")
    payment_amount = Column(Integer, nullable=False, default=0)
    duration_days = Column(Integer, nullable=False, default=1)
    start_condition = Column(SAEnum(StartCondition, name="startcondition", native_enum=False, length=20), nullable=False, default=StartCondition.immediate.value)
    depends_on_task_id = Column(Integer, ForeignKey("automation_settings.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class StageChainLink(Base):
    """Configured transition from one stage to the next. to_stage_id NULL marks the final stage."""
    __tablename__ = "stage_automation_chain"
    __table_args__ = (
        Index("ix_stage_chain_from_stage", "from_stage_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    from_stage_id = Column(String(50), nullable=False)
    to_stage_id = Column(String(50), nullable=True)
    order_position = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


# ------------------ Orders & Tasks ------------------

class Order(Base):
    __tablename__ = "zakazi"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False, default="")
    status = Column(String(50), nullable=False)  # current stage id
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    tasks = relationship("Task", back_populates="order", order_by="Task.id")


class Task(Base):
    __tablename__ = "zadachi"
    __table_args__ = (
        # One task per order and template; manual tasks (NULL setting) are exempt
        UniqueConstraint("order_id", "automation_setting_id", name="uq_zadachi_order_setting"),
        Index("ix_zadachi_order_stage", "order_id", "stage_id"),
        Index("ix_zadachi_responsible", "responsible_user_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    responsible_user_id = Column(String(64), nullable=True)
    order_id = Column(Integer, ForeignKey("zakazi.id"), nullable=False)
    stage_id = Column(String(50), nullable=True)
    due_date = Column(DateTime(timezone=True), nullable=True)
    original_deadline = Column(DateTime(timezone=True), nullable=True)
    priority = Column(SAEnum(TaskPriority, name="taskpriority", native_enum=False, length=20), nullable=False, default=TaskPriority.medium.value)
    status = Column(SAEnum(TaskStatus, name="taskstatus", native_enum=False, length=20), nullable=False, default=TaskStatus.in_progress.value)
    salary = Column(Integer, nullable=False, default=0)
    dispatcher_id = Column(String(64), nullable=True)
    dispatcher_percentage = Column(Integer, nullable=False, default=0)
    automation_setting_id = Column(Integer, ForeignKey("automation_settings.id", ondelete="SET NULL"), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_by = Column(String(64), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    rejection_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    order = relationship("Order", back_populates="tasks")


# ------------------ Notifications ------------------

class Notification(Base):
    """Notification history; written before any delivery attempt."""
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_created", "user_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False)
    title = Column(String(255), nullable=False)
    body = Column(Text, nullable=True)
    task_id = Column(Integer, nullable=True)
    order_id = Column(Integer, nullable=True)
    url = Column(String(500), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class PushSubscription(Base):
    __tablename__ = "push_subscriptions"
    __table_args__ = (
        Index("ix_push_subscriptions_user_id", "user_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False)
    endpoint = Column(String(1000), nullable=False, unique=True)
    p256dh = Column(String(255), nullable=True)
    auth = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
