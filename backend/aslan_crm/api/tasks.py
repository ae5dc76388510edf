"""
Task workflow endpoints (zadachi).
"""
from datetime import datetime
from typing import Optional, Any, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from aslan_crm.db.database import get_db
from aslan_crm.db.enums import TaskStatus, TaskPriority
from aslan_crm.db.models import Task
from aslan_crm.automation.exceptions import TaskNotFound
from aslan_crm.integrations.push_delivery import get_push_sender
from aslan_crm.services import task_workflow

router = APIRouter(prefix="/tasks", tags=["Tasks"])


class TaskResponse(BaseModel):
    id: int
    title: str
    description: Optional[str]
    responsible_user_id: Optional[str]
    order_id: int
    stage_id: Optional[str]
    due_date: Optional[datetime]
    original_deadline: Optional[datetime]
    priority: TaskPriority
    status: TaskStatus
    salary: int
    dispatcher_id: Optional[str]
    dispatcher_percentage: int
    automation_setting_id: Optional[int]
    completed_at: Optional[datetime] = None
    confirmed_by: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    rejection_count: int = 0

    class Config:
        from_attributes = True


class TaskActionResponse(BaseModel):
    task: TaskResponse
    automation: Optional[dict[str, Any]] = None


class ConfirmTaskRequest(BaseModel):
    confirmed_by: str = Field(..., min_length=1, max_length=64)


@router.get("", response_model=List[TaskResponse])
async def list_tasks(
    order_id: Optional[int] = None,
    responsible_user_id: Optional[str] = None,
    status: Optional[TaskStatus] = None,
    limit: int = 100,
    offset: int = 0,
    db: AsyncSession = Depends(get_db),
):
    return await task_workflow.list_tasks(
        db,
        order_id=order_id,
        responsible_user_id=responsible_user_id,
        status=status,
        limit=limit,
        offset=offset,
    )


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(task_id: int, db: AsyncSession = Depends(get_db)):
    task = await db.get(Task, task_id)
    if task is None:
        raise TaskNotFound(task_id)
    return task


@router.post("/{task_id}/complete", response_model=TaskActionResponse)
async def complete_task(
    task_id: int,
    db: AsyncSession = Depends(get_db),
    sender=Depends(get_push_sender),
):
    """
    Mark the task completed, then run the automation engine.
    The task stays completed even when the automation step fails.
    """
    task, automation = await task_workflow.complete_task(db, task_id, sender=sender)
    return TaskActionResponse(task=TaskResponse.model_validate(task), automation=automation)


@router.post("/{task_id}/submit", response_model=TaskResponse)
async def submit_for_review(task_id: int, db: AsyncSession = Depends(get_db)):
    return await task_workflow.submit_for_review(db, task_id)


@router.post("/{task_id}/confirm", response_model=TaskActionResponse)
async def confirm_task(
    task_id: int,
    payload: ConfirmTaskRequest,
    db: AsyncSession = Depends(get_db),
    sender=Depends(get_push_sender),
):
    task, automation = await task_workflow.confirm_task(db, task_id, payload.confirmed_by, sender=sender)
    return TaskActionResponse(task=TaskResponse.model_validate(task), automation=automation)


@router.post("/{task_id}/reject", response_model=TaskResponse)
async def reject_task(
    task_id: int,
    db: AsyncSession = Depends(get_db),
    sender=Depends(get_push_sender),
):
    return await task_workflow.reject_task(db, task_id, sender=sender)
