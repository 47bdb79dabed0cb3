# ticketing/services/inventory_ledger.py
from __future__ import annotations

import logging
from typing import Optional, Tuple

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.models.event import Event
from ticketing.services.errors import EngineError, Result

log = logging.getLogger("ticketing.inventory")


class InventoryLedger:
    """
    活动库存账本（events.available / events.seat_counter 的唯一写入方）

    所有变更都是单条条件 UPDATE：
      - reserve : available = available - q  WHERE available >= q
      - release : available = min(available + q, quota)
      - allocate_seats : seat_counter = seat_counter + n  （返回起始偏移）

    不做“先读再写”，并发安全由数据库行级原子性保证。
    调用方负责事务边界（commit / rollback）。
    """

    async def reserve(self, session: AsyncSession, event_id: str, quantity: int) -> Result[int]:
        """扣减可售库存，成功返回扣减后的 available。"""
        if quantity < 1:
            return Result.failure(
                EngineError.invalid_state("invalid_quantity", "quantity must be >= 1", quantity=quantity)
            )

        res = await session.execute(
            update(Event)
            .where(Event.id == event_id, Event.available >= quantity)
            .values(available=Event.available - quantity)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 1:
            available = await self._available(session, event_id)
            log.debug("reserve event=%s qty=%s -> available=%s", event_id, quantity, available)
            return Result.success(int(available or 0))

        # 没扣到：区分“活动不存在”与“库存不足”
        snap = await self.snapshot(session, event_id)
        if snap is None:
            return Result.failure(EngineError.not_found("event_not_found", "event not found", event_id=event_id))
        return Result.failure(
            EngineError.invalid_state(
                "insufficient_inventory",
                "not enough tickets available",
                event_id=event_id,
                requested=quantity,
                available=snap[1],
            )
        )

    async def release(self, session: AsyncSession, event_id: str, quantity: int) -> Result[int]:
        """回补库存（封顶 quota，重复回补不会越界）。"""
        if quantity < 1:
            return Result.failure(
                EngineError.invalid_state("invalid_quantity", "quantity must be >= 1", quantity=quantity)
            )

        capped = case(
            (Event.available + quantity > Event.quota, Event.quota),
            else_=Event.available + quantity,
        )
        res = await session.execute(
            update(Event)
            .where(Event.id == event_id)
            .values(available=capped)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            return Result.failure(EngineError.not_found("event_not_found", "event not found", event_id=event_id))

        available = await self._available(session, event_id)
        log.debug("release event=%s qty=%s -> available=%s", event_id, quantity, available)
        return Result.success(int(available or 0))

    async def allocate_seats(self, session: AsyncSession, event_id: str, count: int) -> Result[int]:
        """
        原子推进座位游标，返回本次分配的起始偏移（0-based）。
        同一活动并发出票拿到的区间互不重叠。
        """
        res = await session.execute(
            update(Event)
            .where(Event.id == event_id)
            .values(seat_counter=Event.seat_counter + count)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            return Result.failure(EngineError.not_found("event_not_found", "event not found", event_id=event_id))

        end = (
            await session.execute(select(Event.seat_counter).where(Event.id == event_id))
        ).scalar_one()
        return Result.success(int(end) - count)

    async def snapshot(self, session: AsyncSession, event_id: str) -> Optional[Tuple[int, int]]:
        """(quota, available)；活动不存在返回 None。"""
        row = (
            await session.execute(select(Event.quota, Event.available).where(Event.id == event_id))
        ).first()
        if row is None:
            return None
        return int(row[0]), int(row[1])

    async def _available(self, session: AsyncSession, event_id: str) -> Optional[int]:
        return (
            await session.execute(select(Event.available).where(Event.id == event_id))
        ).scalar_one_or_none()
