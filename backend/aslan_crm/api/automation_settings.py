"""
Automation configuration endpoints: task templates and the stage chain.
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from aslan_crm.db.database import get_db
from aslan_crm.constants.stages import STAGE_NAMES
from aslan_crm.automation.settings_store import AutomationSettingsStore
from aslan_crm.automation.chain_store import StageChainStore
from aslan_crm.automation.schemas import (
    AutomationSettingCreate,
    AutomationSettingUpdate,
    AutomationSettingResponse,
    StageWithTasks,
    SettingsUpdateResult,
    StageChainLinkCreate,
    StageChainLinkResponse,
    ChainToggle,
    ChainReorderItem,
)

router = APIRouter(prefix="/automation", tags=["Automation Settings"])


# ---------------------- Stages ----------------------

@router.get("/stages")
async def list_stages():
    """Built-in production stages with display names."""
    return [{"stage_id": stage_id, "stage_name": name} for stage_id, name in STAGE_NAMES.items()]


# ---------------------- Task Templates ----------------------

@router.get("/settings", response_model=list[AutomationSettingResponse])
async def list_settings(db: AsyncSession = Depends(get_db)):
    return await AutomationSettingsStore.list_settings(db)


@router.get("/settings/by-stage", response_model=list[StageWithTasks])
async def list_settings_by_stage(db: AsyncSession = Depends(get_db)):
    return await AutomationSettingsStore.list_by_stage(db)


@router.post("/settings", response_model=AutomationSettingResponse, status_code=status.HTTP_201_CREATED)
async def create_setting(payload: AutomationSettingCreate, db: AsyncSession = Depends(get_db)):
    setting = await AutomationSettingsStore.create_setting(db, payload)
    return AutomationSettingResponse.model_validate(setting)


@router.put("/settings", response_model=SettingsUpdateResult)
async def update_settings(payload: list[AutomationSettingUpdate], db: AsyncSession = Depends(get_db)):
    """
    Bulk update. Each item is applied on its own: failed items are listed
    in `errors` and `first_error`, the rest are saved.
    """
    return await AutomationSettingsStore.update_settings(db, payload)


@router.delete("/settings/{setting_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_setting(setting_id: int, db: AsyncSession = Depends(get_db)):
    await AutomationSettingsStore.delete_setting(db, setting_id)


# ---------------------- Stage Chain ----------------------

@router.get("/chain", response_model=list[StageChainLinkResponse])
async def list_chain(db: AsyncSession = Depends(get_db)):
    return await StageChainStore.list_links(db)


@router.post("/chain", response_model=StageChainLinkResponse, status_code=status.HTTP_201_CREATED)
async def create_chain_link(payload: StageChainLinkCreate, db: AsyncSession = Depends(get_db)):
    link = await StageChainStore.create_link(db, payload.from_stage_id, payload.to_stage_id, payload.is_active)
    return StageChainLinkResponse.model_validate(link)


@router.patch("/chain/{link_id}", response_model=StageChainLinkResponse)
async def toggle_chain_link(link_id: int, payload: ChainToggle, db: AsyncSession = Depends(get_db)):
    link = await StageChainStore.toggle_link(db, link_id, payload.is_active)
    return StageChainLinkResponse.model_validate(link)


@router.put("/chain/order", response_model=list[StageChainLinkResponse])
async def reorder_chain(payload: list[ChainReorderItem], db: AsyncSession = Depends(get_db)):
    return await StageChainStore.reorder_links(db, payload)
