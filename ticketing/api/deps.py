# ticketing/api/deps.py
from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Header
from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.api.problem import raise_problem
from ticketing.db.session import get_session as _get_session
from ticketing.services.engine import TicketingEngine, get_ticketing_engine


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI 依赖：直接 yield AsyncSession。"""
    async for session in _get_session():
        yield session


def get_engine() -> TicketingEngine:
    return get_ticketing_engine()


async def get_buyer_id(x_user_id: str = Header(default="", alias="X-User-Id")) -> str:
    """
    买家身份由上游鉴权层注入 X-User-Id（本服务信任该头）。
    缺失 → 401。
    """
    uid = (x_user_id or "").strip()
    if not uid:
        raise_problem(status_code=401, error_code="missing_user", message="X-User-Id header is required")
    return uid
