# ticketing/jobs/order_expiry.py
"""
订单过期扫描 Job（独立入口）

目标：
  - 只处理 orders(status IN ('pending','awaiting_payment'), expires_at < now)
  - 过期迁移 / 库存回补 / 作废票 由 OrderLifecycleManager 完成
  - 并发安全 & 幂等由状态 CAS 保证，可与 API 进程内的调度器同时运行

用法：
  - 本地/生产均可使用：
        python -m ticketing.jobs.order_expiry
  - 也可以由 Celery beat（ticketing.tasks.sweep_orders）定期调用 run_once()。
"""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from ticketing.core.config import EngineConfig, get_settings
from ticketing.core.logging import setup_logging
from ticketing.db.session import create_engine_for
from ticketing.services.engine import build_engine
from ticketing.services.order_expiry_sweep import sweep_expired_orders
from ticketing.utils.time import utcnow

log = logging.getLogger("ticketing.jobs.order_expiry")


async def run_once() -> int:
    """
    行为：
      - 连接与应用相同的 DATABASE_URL（NullPool，跑完即释放）；
      - 调用 sweep_expired_orders 扫描并过期超时订单；
      - 返回处理数量。
    """
    settings = get_settings()
    config = EngineConfig.from_settings(settings)

    engine = create_engine_for(settings.DATABASE_URL, poolclass=NullPool)
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    ticketing = build_engine(config)

    try:
        async with maker() as session:
            processed = await sweep_expired_orders(
                session,
                ticketing.lifecycle,
                now=utcnow(),
                batch_size=config.sweep_batch_size,
            )
            log.info("[OrderExpiry] expired %d orders (batch_size=%d)", processed, config.sweep_batch_size)
            return processed
    finally:
        await engine.dispose()


async def main() -> None:
    setup_logging(get_settings().LOG_LEVEL)
    await run_once()


if __name__ == "__main__":
    asyncio.run(main())
