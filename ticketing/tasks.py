# ticketing/tasks.py
from __future__ import annotations

import asyncio
import logging
from typing import Dict

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from ticketing.core.config import get_settings
from ticketing.db.session import create_engine_for
from ticketing.jobs.order_expiry import run_once
from ticketing.services.notification_dispatcher import dispatch_due_notifications
from ticketing.worker import celery

log = logging.getLogger("ticketing.tasks")


async def _dispatch_due() -> Dict[str, int]:
    # 每次任务独立 engine（NullPool），避免跨 event loop 复用连接
    engine = create_engine_for(get_settings().DATABASE_URL, poolclass=NullPool)
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with maker() as session:
            return await dispatch_due_notifications(session)
    finally:
        await engine.dispose()


@celery.task(name="ticketing.tasks.dispatch_notifications")
def dispatch_notifications() -> Dict[str, int]:
    """投递到期的待发邮件通知。"""
    result = asyncio.run(_dispatch_due())
    if result["sent"] or result["failed"]:
        log.info("notifications dispatched sent=%d failed=%d", result["sent"], result["failed"])
    return result


@celery.task(name="ticketing.tasks.sweep_orders")
def sweep_orders() -> int:
    """过期订单扫描（与 python -m ticketing.jobs.order_expiry 同一逻辑）。"""
    return asyncio.run(run_once())
