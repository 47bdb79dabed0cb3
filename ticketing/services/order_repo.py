# ticketing/services/order_repo.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.models.enums import OrderStatus
from ticketing.models.event import Event
from ticketing.models.order import Order


async def get_event(session: AsyncSession, event_id: str) -> Optional[Event]:
    return await session.get(Event, event_id, populate_existing=True)


async def get_order(session: AsyncSession, order_id: str) -> Optional[Order]:
    # populate_existing：CAS 走的是 Core UPDATE，identity map 里的对象可能是旧的
    return await session.get(Order, order_id, populate_existing=True)


async def get_order_by_no(session: AsyncSession, order_no: str) -> Optional[Order]:
    stmt = select(Order).where(Order.order_no == order_no)
    return (await session.execute(stmt)).scalars().first()


def add_order(session: AsyncSession, order: Order) -> Order:
    session.add(order)
    return order


async def delete_order(session: AsyncSession, order_id: str) -> int:
    """只用于建单补偿：物理删除。"""
    res = await session.execute(
        delete(Order).where(Order.id == order_id).execution_options(synchronize_session=False)
    )
    return int(res.rowcount or 0)


async def update_status_if(
    session: AsyncSession,
    order_id: str,
    *,
    allowed_from: Iterable[OrderStatus],
    new_status: OrderStatus,
    values: Optional[Dict[str, Any]] = None,
) -> bool:
    """
    订单状态 CAS：
      UPDATE orders SET status=:new WHERE id=:id AND status IN (:allowed_from)
    返回是否命中（并发下只有一个调用方能命中）。
    """
    froms = list(allowed_from)
    if not froms:
        return False
    vals: Dict[str, Any] = {"status": new_status}
    if values:
        vals.update(values)
    res = await session.execute(
        update(Order)
        .where(Order.id == order_id, Order.status.in_(froms))
        .values(**vals)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


async def list_orders(
    session: AsyncSession,
    *,
    buyer_id: Optional[str] = None,
    status: Optional[OrderStatus] = None,
    page: int = 1,
    limit: int = 10,
) -> Tuple[List[Order], int]:
    """分页列表 + 总数（按创建时间倒序）。"""
    conds = []
    if buyer_id is not None:
        conds.append(Order.buyer_id == buyer_id)
    if status is not None:
        conds.append(Order.status == status)

    page = max(int(page), 1)
    limit = min(max(int(limit), 1), 100)

    stmt = (
        select(Order)
        .where(*conds)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    rows = list((await session.execute(stmt)).scalars().all())
    total = await count_orders(session, buyer_id=buyer_id, status=status)
    return rows, total


async def count_orders(
    session: AsyncSession,
    *,
    buyer_id: Optional[str] = None,
    status: Optional[OrderStatus] = None,
    event_id: Optional[str] = None,
) -> int:
    stmt = select(func.count()).select_from(Order)
    if buyer_id is not None:
        stmt = stmt.where(Order.buyer_id == buyer_id)
    if status is not None:
        stmt = stmt.where(Order.status == status)
    if event_id is not None:
        stmt = stmt.where(Order.event_id == event_id)
    return int((await session.execute(stmt)).scalar_one())


async def find_expired_ids(
    session: AsyncSession,
    *,
    now: datetime,
    statuses: Sequence[OrderStatus],
    limit: int = 100,
    exclude: Optional[Iterable[str]] = None,
) -> List[str]:
    """过期候选（只读，不加锁；真正的并发控制在状态 CAS）。"""
    stmt = (
        select(Order.id)
        .where(Order.status.in_(list(statuses)), Order.expires_at < now)
        .order_by(Order.expires_at.asc(), Order.id.asc())
        .limit(limit)
    )
    skip = list(exclude or [])
    if skip:
        stmt = stmt.where(Order.id.notin_(skip))
    return [r[0] for r in (await session.execute(stmt)).all()]
