"""
Stage Chain Store
Ordered list of stage transitions (stage_automation_chain).
"""
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from aslan_crm.db.models import StageChainLink
from aslan_crm.core.redis import redis_client, STAGE_CHAIN_KEY
from aslan_crm.core.logging import automation_logger
from aslan_crm.automation.exceptions import ChainLinkNotFound, ChainConflictError
from aslan_crm.automation.schemas import StageChainLinkResponse, ChainReorderItem


class StageChainStore:

    @staticmethod
    async def list_links(db: AsyncSession, use_cache: bool = True) -> list[StageChainLinkResponse]:
        if use_cache:
            cached = redis_client.get_json(STAGE_CHAIN_KEY)
            if cached is not None:
                return [StageChainLinkResponse(**row) for row in cached]

        result = await db.execute(
            select(StageChainLink).order_by(StageChainLink.order_position, StageChainLink.id)
        )
        links = [StageChainLinkResponse.model_validate(link) for link in result.scalars().all()]

        if use_cache:
            redis_client.set_json(STAGE_CHAIN_KEY, [link.model_dump(mode="json") for link in links])
        return links

    @staticmethod
    async def get_link(db: AsyncSession, link_id: int) -> StageChainLink:
        link = await db.get(StageChainLink, link_id)
        if link is None:
            raise ChainLinkNotFound(link_id)
        return link

    @staticmethod
    async def outgoing_links(db: AsyncSession, from_stage_id: str) -> list[StageChainLink]:
        """Links leaving a stage, lowest position first. Always read from the database."""
        result = await db.execute(
            select(StageChainLink)
            .where(StageChainLink.from_stage_id == from_stage_id)
            .order_by(StageChainLink.order_position, StageChainLink.id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def create_link(
        db: AsyncSession,
        from_stage_id: str,
        to_stage_id: Optional[str],
        is_active: bool = True,
    ) -> StageChainLink:
        """Append a link at the end of the chain."""
        if to_stage_id == from_stage_id:
            raise ChainConflictError(f"Stage {from_stage_id} can't transition to itself")
        if is_active:
            await StageChainStore._ensure_no_other_active(db, from_stage_id)

        last_position = await db.scalar(select(func.max(StageChainLink.order_position)))
        link = StageChainLink(
            from_stage_id=from_stage_id,
            to_stage_id=to_stage_id,
            order_position=(last_position or 0) + 1,
            is_active=is_active,
        )
        db.add(link)
        await db.commit()
        await db.refresh(link)
        redis_client.invalidate(STAGE_CHAIN_KEY)

        automation_logger.info(
            "Stage chain link created",
            link_id=link.id,
            from_stage=from_stage_id,
            to_stage=to_stage_id,
        )
        return link

    @staticmethod
    async def _ensure_no_other_active(db: AsyncSession, from_stage_id: str, exclude_id: Optional[int] = None) -> None:
        query = select(StageChainLink.id).where(
            StageChainLink.from_stage_id == from_stage_id,
            StageChainLink.is_active.is_(True),
        )
        if exclude_id is not None:
            query = query.where(StageChainLink.id != exclude_id)
        other = (await db.execute(query.limit(1))).scalar_one_or_none()
        if other is not None:
            raise ChainConflictError(
                f"Stage {from_stage_id} already has an active transition (link {other})"
            )

    @staticmethod
    async def toggle_link(db: AsyncSession, link_id: int, is_active: bool) -> StageChainLink:
        link = await StageChainStore.get_link(db, link_id)
        if is_active and not link.is_active:
            await StageChainStore._ensure_no_other_active(db, link.from_stage_id, exclude_id=link.id)

        link.is_active = is_active
        await db.commit()
        await db.refresh(link)
        redis_client.invalidate(STAGE_CHAIN_KEY)

        automation_logger.info("Stage chain link toggled", link_id=link_id, is_active=is_active)
        return link

    @staticmethod
    async def reorder_links(db: AsyncSession, items: list[ChainReorderItem]) -> list[StageChainLinkResponse]:
        """
        Rewrite order_position as 1..n following the given order and apply
        the given is_active flags. Everything is checked before anything is
        written, so a rejected reorder leaves the chain untouched.
        """
        links: dict[int, StageChainLink] = {}
        for item in items:
            links[item.id] = await StageChainStore.get_link(db, item.id)

        # Active flags after the reorder, per source stage
        active_by_stage: dict[str, list[int]] = {}
        result = await db.execute(select(StageChainLink))
        for link in result.scalars().all():
            wanted = next((i.is_active for i in items if i.id == link.id), link.is_active)
            if wanted:
                active_by_stage.setdefault(link.from_stage_id, []).append(link.id)
        for stage_id, active_ids in active_by_stage.items():
            if len(active_ids) > 1:
                raise ChainConflictError(
                    f"Stage {stage_id} would have {len(active_ids)} active transitions"
                )

        for position, item in enumerate(items, start=1):
            link = links[item.id]
            link.order_position = position
            link.is_active = item.is_active
        await db.commit()
        redis_client.invalidate(STAGE_CHAIN_KEY)

        automation_logger.info("Stage chain reordered", links=len(items))
        return await StageChainStore.list_links(db, use_cache=False)
