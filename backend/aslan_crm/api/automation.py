"""
Automation Engine API Endpoints
Invocable entry points of the stage automation engine.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from aslan_crm.db.database import get_db
from aslan_crm.integrations.push_delivery import get_push_sender
from aslan_crm.automation.service import AutomationService
from aslan_crm.automation.schemas import (
    CheckStageCompletionRequest,
    CreateDependentTasksRequest,
    MaterializeStageRequest,
    StageEvaluation,
    DependentTasksResult,
    MaterializeResult,
    AutomationAuditReport,
)

router = APIRouter(prefix="/automation", tags=["Automation"])


@router.post("/check-stage-completion", response_model=StageEvaluation)
async def check_stage_completion(
    payload: CheckStageCompletionRequest,
    db: AsyncSession = Depends(get_db),
    sender=Depends(get_push_sender),
):
    """
    Move the order to its next stage when every required task of the
    current stage is completed. "Not yet" answers come back with HTTP 200
    and an `outcome` explaining why nothing happened.
    """
    return await AutomationService.check_stage_completion(db, payload.order_id, sender=sender)


@router.post("/create-dependent-tasks", response_model=DependentTasksResult)
async def create_dependent_tasks(
    payload: CreateDependentTasksRequest,
    db: AsyncSession = Depends(get_db),
    sender=Depends(get_push_sender),
):
    """Create the tasks waiting on a completed task, then re-check the stage."""
    return await AutomationService.create_dependent_tasks(
        db,
        payload.completed_task_id,
        payload.automation_setting_id,
        sender=sender,
    )


@router.post("/materialize-stage", response_model=MaterializeResult)
async def materialize_stage(
    payload: MaterializeStageRequest,
    db: AsyncSession = Depends(get_db),
    sender=Depends(get_push_sender),
):
    return await AutomationService.materialize_stage(db, payload.order_id, payload.stage_id, sender=sender)


@router.get("/audit", response_model=AutomationAuditReport)
async def automation_audit(db: AsyncSession = Depends(get_db)):
    """Configuration and task statistics, plus dependency problems found on re-validation."""
    return await AutomationService.audit(db)
