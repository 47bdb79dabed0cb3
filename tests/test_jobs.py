import asyncio
import uuid
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.pool import NullPool

from ticketing import tasks
from ticketing.core.config import get_settings
from ticketing.db.base import Base, init_models
from ticketing.db.session import create_engine_for, make_session_factory
from ticketing.models.enums import EventStatus, OrderStatus
from ticketing.models.event import Event
from ticketing.models.order import Order
from ticketing.utils.time import utcnow


async def _seed_overdue(url: str) -> tuple:
    """一个活动（quota=10，已扣 4）+ 一张已过期的待支付订单（4 张）"""
    engine = create_engine_for(url, poolclass=NullPool)
    init_models()
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        now = utcnow()
        ev = Event(
            id=str(uuid.uuid4()),
            title="Bandung Indie Fest",
            starts_at=now + timedelta(days=3),
            status=EventStatus.PUBLISHED,
            price=Decimal("75000"),
            quota=10,
            available=6,
        )
        order = Order(
            id=str(uuid.uuid4()),
            order_no="ORD-20260101-JOB001",
            invoice_no="INV-20260101-JOB001",
            buyer_id="buyer-job",
            event_id=ev.id,
            quantity=4,
            unit_price=Decimal("75000"),
            total_amount=Decimal("300000"),
            status=OrderStatus.AWAITING_PAYMENT,
            expires_at=now - timedelta(minutes=5),
        )
        async with make_session_factory(engine)() as s:
            s.add(ev)
            await s.flush()
            s.add(order)
            await s.commit()
        return ev.id, order.id
    finally:
        await engine.dispose()


async def _read(url: str, event_id: str, order_id: str) -> tuple:
    engine = create_engine_for(url, poolclass=NullPool)
    try:
        async with make_session_factory(engine)() as s:
            status = (await s.execute(select(Order.status).where(Order.id == order_id))).scalar_one()
            available = (await s.execute(select(Event.available).where(Event.id == event_id))).scalar_one()
            return status, available
    finally:
        await engine.dispose()


def test_sweep_orders_task_expires_overdue_orders(tmp_path, monkeypatch):
    """
    场景：独立 Job 入口（Celery beat 同一逻辑）连到 DATABASE_URL 扫描
    期望：过期订单 → EXPIRED，库存回到 10；再跑一次返回 0
    """
    url = f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    get_settings.cache_clear()
    try:
        event_id, order_id = asyncio.run(_seed_overdue(url))

        assert tasks.sweep_orders() == 1
        assert asyncio.run(_read(url, event_id, order_id)) == (OrderStatus.EXPIRED, 10)
        assert tasks.sweep_orders() == 0
    finally:
        get_settings.cache_clear()


def test_dispatch_notifications_task_on_empty_outbox(tmp_path, monkeypatch):
    url = f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    get_settings.cache_clear()
    try:
        asyncio.run(_seed_overdue(url))
        assert tasks.dispatch_notifications() == {"sent": 0, "failed": 0}
    finally:
        get_settings.cache_clear()
