# ticketing/services/side_effects.py
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.obs.metrics import side_effect_failures_total

log = logging.getLogger("ticketing.side_effects")

T = TypeVar("T")


async def best_effort(
    session: AsyncSession,
    name: str,
    fn: Callable[[], Awaitable[T]],
    *,
    errors: Optional[List[str]] = None,
    **log_ctx: Any,
) -> Optional[T]:
    """
    主状态已提交后的副作用（调用前主事务必须已 commit）：
      - 在 savepoint 内执行：失败只回滚自己，会话里其它对象不被 expire
      - 失败：记日志 + 计数，错误追加到 errors，不向上抛
    主状态绝不因副作用失败而回滚。
    """
    out: Optional[T] = None
    try:
        async with session.begin_nested():
            out = await fn()
    except Exception as e:
        _record(name, e, errors, log_ctx)
        out = None

    try:
        await session.commit()
    except Exception as e:
        await session.rollback()
        _record(name, e, errors, log_ctx)
        return None
    return out


def _record(name: str, e: Exception, errors: Optional[List[str]], ctx: dict) -> None:
    side_effect_failures_total.labels(name).inc()
    log.exception("side effect %s failed ctx=%s: %s", name, ctx, e)
    if errors is not None:
        errors.append(f"{name}: {e}")
