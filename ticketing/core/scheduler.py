# ticketing/core/scheduler.py
from __future__ import annotations

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ticketing.core.config import get_settings
from ticketing.db.session import get_session_factory
from ticketing.services.engine import get_ticketing_engine
from ticketing.services.order_expiry_sweep import sweep_expired_orders

log = logging.getLogger("ticketing.scheduler")

_scheduler: Optional[AsyncIOScheduler] = None


async def _job_sweep_expired_orders() -> None:
    engine = get_ticketing_engine()
    async with get_session_factory()() as session:
        try:
            await sweep_expired_orders(
                session, engine.lifecycle, batch_size=engine.config.sweep_batch_size
            )
        except Exception:
            # 下一轮还会再扫，不让异常打断调度器
            log.exception("scheduled order sweep failed")


def init_scheduler() -> Optional[AsyncIOScheduler]:
    global _scheduler
    s = get_settings()
    if not s.ENABLE_EXPIRY_SCHEDULER or _scheduler is not None:
        return _scheduler
    _scheduler = AsyncIOScheduler(timezone="UTC")
    _scheduler.add_job(
        _job_sweep_expired_orders,
        "interval",
        seconds=s.SWEEP_INTERVAL_SECONDS,
        id="order-expiry-sweep",
        max_instances=1,
        coalesce=True,
    )
    _scheduler.start()
    log.info("expiry scheduler started (every %ss)", s.SWEEP_INTERVAL_SECONDS)
    return _scheduler


def shutdown_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
