"""
Pydantic schemas for the automation engine.
"""
import enum
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from aslan_crm.db.enums import StartCondition


# ---------------------- Automation Setting Schemas ----------------------

class AutomationSettingCreate(BaseModel):
    """Schema for creating a task template"""
    stage_id: str = Field(..., min_length=1, max_length=50)
    stage_name: str = Field(..., min_length=1, max_length=100)
    task_name: str = Field(..., min_length=1, max_length=200)
    task_order_position: int = 0
    responsible_user_id: Optional[str] = None
    dispatcher_id: Optional[str] = None
    dispatcher_percentage: int = Field(0, ge=0, le=100)
    task_title_template: str = ""
    task_description_template: str = ""
    payment_amount: int = Field(0, ge=0)
    duration_days: int = Field(1, ge=1)
    start_condition: StartCondition = StartCondition.immediate
    depends_on_task_id: Optional[int] = None


class AutomationSettingUpdate(BaseModel):
    """Partial update of one template; unset fields are left untouched"""
    id: int
    task_name: Optional[str] = Field(None, min_length=1, max_length=200)
    task_order_position: Optional[int] = None
    responsible_user_id: Optional[str] = None
    dispatcher_id: Optional[str] = None
    dispatcher_percentage: Optional[int] = Field(None, ge=0, le=100)
    task_title_template: Optional[str] = None
    task_description_template: Optional[str] = None
    payment_amount: Optional[int] = Field(None, ge=0)
    duration_days: Optional[int] = Field(None, ge=1)
    start_condition: Optional[StartCondition] = None
    depends_on_task_id: Optional[int] = None


class AutomationSettingResponse(BaseModel):
    id: int
    stage_id: str
    stage_name: str
    task_name: str
    task_order_position: int
    responsible_user_id: Optional[str]
    dispatcher_id: Optional[str]
    dispatcher_percentage: int
    task_title_template: str
    task_description_template: str
    payment_amount: int
    duration_days: int
    start_condition: StartCondition
    depends_on_task_id: Optional[int]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StageWithTasks(BaseModel):
    stage_id: str
    stage_name: str
    tasks: list[AutomationSettingResponse] = []


class SettingsUpdateResult(BaseModel):
    """Outcome of a bulk update; successful rows are kept even when some fail"""
    updated: int = 0
    failed: int = 0
    first_error: Optional[str] = None
    errors: dict[int, str] = {}


# ---------------------- Stage Chain Schemas ----------------------

class StageChainLinkResponse(BaseModel):
    id: int
    from_stage_id: str
    to_stage_id: Optional[str]
    order_position: int
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StageChainLinkCreate(BaseModel):
    from_stage_id: str = Field(..., min_length=1, max_length=50)
    to_stage_id: Optional[str] = Field(None, max_length=50)  # None marks the final stage
    is_active: bool = True


class ChainToggle(BaseModel):
    is_active: bool


class ChainReorderItem(BaseModel):
    id: int
    is_active: bool


# ---------------------- Engine Results ----------------------

class StageOutcome(str, enum.Enum):
    """Every way a stage evaluation can end. Only `advanced` changes data."""
    advanced = "advanced"
    already_processing = "already_processing"
    missing_task = "missing_task"
    incomplete_task = "incomplete_task"
    no_chain = "no_chain"
    chain_disabled = "chain_disabled"
    final_stage = "final_stage"


class DependentOutcome(str, enum.Enum):
    created = "created"
    no_dependents = "no_dependents"
    order_moved = "order_moved"
    parent_not_completed = "parent_not_completed"


class StageEligibility(BaseModel):
    """Whether every required template of a stage has a completed task"""
    stage_id: str
    required: int = 0
    created: int = 0
    completed: int = 0
    missing_task: Optional[str] = None
    incomplete_task: Optional[str] = None
    task_status: Optional[str] = None

    @property
    def all_created(self) -> bool:
        return self.missing_task is None

    @property
    def all_completed(self) -> bool:
        return self.all_created and self.incomplete_task is None


class StageEvaluation(BaseModel):
    order_id: int
    outcome: StageOutcome
    message: str
    success: bool = False
    from_stage: Optional[str] = None
    to_stage: Optional[str] = None
    tasks_created: int = 0
    task_ids: list[int] = []
    missing_task: Optional[str] = None
    incomplete_task: Optional[str] = None
    task_status: Optional[str] = None

    @property
    def advanced(self) -> bool:
        return self.outcome == StageOutcome.advanced


class DependentTasksResult(BaseModel):
    completed_task_id: int
    outcome: DependentOutcome
    message: str
    success: bool = False
    tasks_created: int = 0
    task_ids: list[int] = []
    stage_check: Optional[StageEvaluation] = None


class MaterializeResult(BaseModel):
    order_id: int
    stage_id: str
    tasks_created: int = 0
    task_ids: list[int] = []


# ---------------------- Engine Requests ----------------------

class CheckStageCompletionRequest(BaseModel):
    order_id: int


class CreateDependentTasksRequest(BaseModel):
    completed_task_id: int
    automation_setting_id: Optional[int] = None


class MaterializeStageRequest(BaseModel):
    order_id: int
    stage_id: Optional[str] = None  # defaults to the order's current stage


# ---------------------- Audit ----------------------

class AutomationAuditReport(BaseModel):
    total_settings: int = 0
    immediate_settings: int = 0
    after_task_settings: int = 0
    settings_with_dependencies: int = 0
    settings_without_responsible: int = 0
    active_links: int = 0
    inactive_links: int = 0
    automation_tasks: int = 0
    confirmed_tasks: int = 0
    rejected_tasks: int = 0
    pending_review_tasks: int = 0
    dependency_problems: list[str] = []
