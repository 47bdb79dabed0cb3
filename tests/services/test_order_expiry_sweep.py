from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.models.enums import NotificationCategory, OrderStatus
from ticketing.services import order_repo
from ticketing.services.order_expiry_sweep import sweep_expired_orders
from ticketing.utils.time import utcnow
from tests.services._helpers import (
    available_of,
    count_notifications,
    count_orders,
    count_tickets,
    pay,
    place_order,
)

pytestmark = pytest.mark.asyncio


async def test_sweep_expires_overdue_orders_and_releases_inventory(session: AsyncSession, ticketing, make_event):
    """
    场景：
      - 一张已过截止时间的待支付订单（3 张）
      - 一张未过期的待支付订单（2 张）

    期望：
      - 过期的那张 → EXPIRED，库存回补，过期通知一条，没有票
      - 未过期的保持 AWAITING_PAYMENT
      - sweep 返回 1
    """
    ev = await make_event(quota=10)
    now = utcnow()
    overdue = await place_order(session, ticketing, ev.id, quantity=3, now=now - timedelta(hours=2))
    fresh = await place_order(session, ticketing, ev.id, buyer_id="buyer-2", quantity=2, now=now)
    assert await available_of(session, ev.id) == 5

    expired = await sweep_expired_orders(session, ticketing.lifecycle, now=now)

    assert expired == 1
    o1 = await order_repo.get_order(session, overdue.order.id)
    o2 = await order_repo.get_order(session, fresh.order.id)
    assert o1.status == OrderStatus.EXPIRED
    assert o2.status == OrderStatus.AWAITING_PAYMENT
    await session.commit()

    assert await available_of(session, ev.id) == 8
    assert await count_tickets(session, overdue.order.id) == 0
    assert await count_notifications(session, "buyer-1", NotificationCategory.ORDER_EXPIRED) == 1


async def test_sweep_is_idempotent(session: AsyncSession, ticketing, make_event):
    """
    场景：连续调用两次 sweep
    期望：首次 1，第二次 0；库存只回补一次
    """
    ev = await make_event(quota=10)
    now = utcnow()
    await place_order(session, ticketing, ev.id, quantity=4, now=now - timedelta(hours=3))

    c1 = await sweep_expired_orders(session, ticketing.lifecycle, now=now)
    c2 = await sweep_expired_orders(session, ticketing.lifecycle, now=now)

    assert (c1, c2) == (1, 0)
    assert await available_of(session, ev.id) == 10


async def test_sweep_respects_batch_size(session: AsyncSession, ticketing, make_event):
    """
    场景：3 张过期订单，batch_size=2
    期望：多轮扫描，全部处理掉，不丢单
    """
    ev = await make_event(quota=10)
    now = utcnow()
    for i in range(3):
        await place_order(session, ticketing, ev.id, quantity=1, now=now - timedelta(hours=2, minutes=i))

    expired = await sweep_expired_orders(session, ticketing.lifecycle, now=now, batch_size=2)

    assert expired == 3
    assert await count_orders(session, ev.id, OrderStatus.EXPIRED) == 3
    assert await available_of(session, ev.id) == 10


async def test_sweep_leaves_paid_orders_alone(session: AsyncSession, ticketing, make_event):
    """已支付的订单即使过了截止时间也不动（不在扫描状态集合内）"""
    ev = await make_event(quota=10)
    now = utcnow()
    created = await place_order(session, ticketing, ev.id, quantity=2, now=now - timedelta(hours=2))
    await pay(session, ticketing, created.payment.reference_id)

    expired = await sweep_expired_orders(session, ticketing.lifecycle, now=now)

    assert expired == 0
    order = await order_repo.get_order(session, created.order.id)
    assert order.status == OrderStatus.PAID
    await session.commit()
    assert await count_tickets(session, created.order.id) == 2
    assert await available_of(session, ev.id) == 8
