"""
Order endpoints (zakazi): creation, lookup and manual stage moves.
"""
from datetime import datetime, timezone
from typing import Optional, List

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from aslan_crm.core.logging import api_logger
from aslan_crm.db.database import get_db
from aslan_crm.db.models import Order
from aslan_crm.constants.stages import get_stage_name
from aslan_crm.automation.exceptions import OrderNotFound
from aslan_crm.automation.service import AutomationService
from aslan_crm.integrations.push_delivery import get_push_sender
from aslan_crm.api.tasks import TaskResponse

router = APIRouter(prefix="/orders", tags=["Orders"])

INITIAL_STAGE = "cutting"


class OrderCreate(BaseModel):
    title: str = Field("", max_length=255)
    stage_id: str = Field(INITIAL_STAGE, min_length=1, max_length=50)


class StageMove(BaseModel):
    stage_id: str = Field(..., min_length=1, max_length=50)


class OrderResponse(BaseModel):
    id: int
    title: str
    status: str
    stage_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    tasks: List[TaskResponse] = []


class OrderActionResponse(BaseModel):
    order: OrderResponse
    tasks_created: int = 0
    task_ids: List[int] = []


async def _load_order(db: AsyncSession, order_id: int) -> Order:
    result = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .options(selectinload(Order.tasks))
        .execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if order is None:
        raise OrderNotFound(order_id)
    return order


def _order_to_response(order: Order) -> OrderResponse:
    return OrderResponse(
        id=order.id,
        title=order.title,
        status=order.status,
        stage_name=get_stage_name(order.status),
        created_at=order.created_at,
        updated_at=order.updated_at,
        tasks=[TaskResponse.model_validate(t) for t in order.tasks],
    )


@router.post("", response_model=OrderActionResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: OrderCreate,
    db: AsyncSession = Depends(get_db),
    sender=Depends(get_push_sender),
):
    """Create an order in its initial stage and materialize that stage's tasks."""
    order = Order(title=payload.title, status=payload.stage_id)
    db.add(order)
    await db.commit()
    await db.refresh(order)
    api_logger.info("Order created", order_id=order.id, stage_id=order.status)

    result = await AutomationService.materialize_stage(db, order.id, order.status, sender=sender)
    order = await _load_order(db, order.id)
    return OrderActionResponse(
        order=_order_to_response(order),
        tasks_created=result.tasks_created,
        task_ids=result.task_ids,
    )


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: int, db: AsyncSession = Depends(get_db)):
    return _order_to_response(await _load_order(db, order_id))


@router.patch("/{order_id}/stage", response_model=OrderActionResponse)
async def move_order(
    order_id: int,
    payload: StageMove,
    db: AsyncSession = Depends(get_db),
    sender=Depends(get_push_sender),
):
    """
    Manual stage change (Kanban drag). The target stage's immediate tasks
    are materialized; tasks that already exist are left alone.
    """
    order = await db.get(Order, order_id)
    if order is None:
        raise OrderNotFound(order_id)

    from_stage = order.status
    order.status = payload.stage_id
    order.updated_at = datetime.now(timezone.utc)
    await db.commit()
    api_logger.info("Order moved manually", order_id=order_id, from_stage=from_stage, to_stage=payload.stage_id)

    result = await AutomationService.materialize_stage(db, order_id, payload.stage_id, sender=sender)
    order = await _load_order(db, order_id)
    return OrderActionResponse(
        order=_order_to_response(order),
        tasks_created=result.tasks_created,
        task_ids=result.task_ids,
    )
