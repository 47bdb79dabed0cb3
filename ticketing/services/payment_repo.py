# ticketing/services/payment_repo.py
from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.models.enums import PaymentStatus
from ticketing.models.payment import Payment


async def get_by_reference(session: AsyncSession, reference_id: str) -> Optional[Payment]:
    stmt = (
        select(Payment)
        .where(Payment.reference_id == reference_id)
        .execution_options(populate_existing=True)
    )
    return (await session.execute(stmt)).scalars().first()


async def get_by_order(session: AsyncSession, order_id: str) -> Optional[Payment]:
    stmt = (
        select(Payment)
        .where(Payment.order_id == order_id)
        .execution_options(populate_existing=True)
    )
    return (await session.execute(stmt)).scalars().first()


async def exists_for_order(session: AsyncSession, order_id: str) -> bool:
    stmt = select(func.count()).select_from(Payment).where(Payment.order_id == order_id)
    return int((await session.execute(stmt)).scalar_one()) > 0


async def update_status_if(
    session: AsyncSession,
    payment_id: str,
    *,
    expected: PaymentStatus,
    new_status: PaymentStatus,
    values: Optional[Dict[str, Any]] = None,
) -> bool:
    """支付状态 CAS：WHERE status = :expected（重复回调只有一次命中）。"""
    vals: Dict[str, Any] = {"status": new_status}
    if values:
        vals.update(values)
    res = await session.execute(
        update(Payment)
        .where(Payment.id == payment_id, Payment.status == expected)
        .values(**vals)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1
