# ticketing/services/order_expiry_sweep.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.models.enums import NotificationCategory, OrderStatus
from ticketing.obs.metrics import orders_expired_total
from ticketing.services import order_repo
from ticketing.services.order_lifecycle import OrderLifecycleManager
from ticketing.services.side_effects import best_effort
from ticketing.utils.time import utcnow

log = logging.getLogger("ticketing.sweeper")

SWEEPABLE_STATUSES = (OrderStatus.PENDING, OrderStatus.AWAITING_PAYMENT)


async def sweep_expired_orders(
    session: AsyncSession,
    manager: OrderLifecycleManager,
    *,
    now: Optional[datetime] = None,
    batch_size: int = 100,
) -> int:
    """
    扫描并过期超时未支付的订单。

    语义：
      - 仅处理：status IN ('pending', 'awaiting_payment') AND expires_at < :now
      - 对每个候选 id 调用 manager.transition(EXPIRED)：
          * 首次：状态 CAS 命中 → 回补库存 + 作废票 + 过期通知
          * 已被回调 / 取消抢先处理：transition 返回不变或非法迁移，跳过
      - 每单独立；单条失败记日志后继续

    参数：
      session    : AsyncSession，由调用方提供
      now        : 基准时间，便于测试中用固定时间；None 时取当前 UTC
      batch_size : 单批最多处理多少个 id

    返回：
      int : 本次真正从未支付 -> EXPIRED 的订单数量。
    """
    if now is None:
        now = utcnow()

    total_expired = 0
    seen: Set[str] = set()

    while True:
        # 1) 扫一批候选 id（只读，不加锁）；已处理过的排除，避免失败单反复出现
        ids = await order_repo.find_expired_ids(
            session, now=now, statuses=SWEEPABLE_STATUSES, limit=batch_size, exclude=seen
        )
        await session.commit()
        if not ids:
            break

        # 2) 逐单迁移；并发安全由状态 CAS 保证
        for oid in ids:
            seen.add(oid)
            try:
                res = await manager.transition(
                    session, oid, OrderStatus.EXPIRED, context={"reason": "deadline"}, now=now
                )
            except Exception as e:
                await session.rollback()
                log.exception("sweep: expiring order %s failed: %s", oid, e)
                continue

            if not res.ok:
                log.info("sweep: order %s skipped (%s)", oid, res.error.code if res.error else "-")
                continue

            out = res.unwrap()
            if not out.changed:
                continue

            total_expired += 1
            orders_expired_total.inc()
            await best_effort(
                session,
                "order_expired_notification",
                lambda: manager.notify_order(
                    session,
                    NotificationCategory.ORDER_EXPIRED,
                    out.order,
                    dedup_key=f"order_expired:{out.order.id}",
                ),
                order_id=oid,
            )

        # 本批不满说明已到尾部
        if len(ids) < batch_size:
            break

    if total_expired:
        log.info("sweep: expired %d orders (now=%s)", total_expired, now.isoformat())
    return total_expired
