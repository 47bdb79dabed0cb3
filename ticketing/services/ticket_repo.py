# ticketing/services/ticket_repo.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.models.enums import TicketStatus
from ticketing.models.ticket import Ticket


async def get_ticket(session: AsyncSession, ticket_id: str) -> Optional[Ticket]:
    return await session.get(Ticket, ticket_id, populate_existing=True)


async def list_for_order(session: AsyncSession, order_id: str) -> List[Ticket]:
    stmt = (
        select(Ticket)
        .where(Ticket.order_id == order_id)
        .order_by(Ticket.seq.asc())
        .execution_options(populate_existing=True)
    )
    return list((await session.execute(stmt)).scalars().all())


async def count_for_order(
    session: AsyncSession, order_id: str, *, status: Optional[TicketStatus] = None
) -> int:
    stmt = select(func.count()).select_from(Ticket).where(Ticket.order_id == order_id)
    if status is not None:
        stmt = stmt.where(Ticket.status == status)
    return int((await session.execute(stmt)).scalar_one())


async def count_for_event(
    session: AsyncSession, event_id: str, *, status: Optional[TicketStatus] = None
) -> int:
    stmt = select(func.count()).select_from(Ticket).where(Ticket.event_id == event_id)
    if status is not None:
        stmt = stmt.where(Ticket.status == status)
    return int((await session.execute(stmt)).scalar_one())


async def cancel_active_for_order(
    session: AsyncSession, order_id: str, *, now: datetime, reason: Optional[str] = None
) -> int:
    """批量作废 ACTIVE 票（USED 的不动）；返回作废张数。"""
    res = await session.execute(
        update(Ticket)
        .where(Ticket.order_id == order_id, Ticket.status == TicketStatus.ACTIVE)
        .values(status=TicketStatus.CANCELLED, cancelled_at=now, notes=reason)
        .execution_options(synchronize_session=False)
    )
    return int(res.rowcount or 0)


async def mark_used_if_active(
    session: AsyncSession, ticket_id: str, *, now: datetime, operator_id: str
) -> bool:
    res = await session.execute(
        update(Ticket)
        .where(Ticket.id == ticket_id, Ticket.status == TicketStatus.ACTIVE)
        .values(
            status=TicketStatus.USED,
            checked_in=True,
            checked_in_at=now,
            checked_in_by=operator_id,
        )
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1

