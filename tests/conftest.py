# tests/conftest.py
from __future__ import annotations

import os
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import AsyncGenerator, Awaitable, Callable, Optional

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from sqlalchemy.pool import NullPool

# ============================================================
# ★ 在 import ticketing.main 之前固定测试环境 ★
#   - mock 支付，不碰外部渠道
#   - 不启动进程内过期扫描
# ============================================================
os.environ["PAYMENT_MODE"] = "mock"
os.environ["ENABLE_EXPIRY_SCHEDULER"] = "false"
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./ticketing-test.db")

from ticketing.api import deps  # noqa: E402
from ticketing.core.config import EngineConfig  # noqa: E402
from ticketing.db.base import Base, init_models  # noqa: E402
from ticketing.db.session import create_engine_for, make_session_factory  # noqa: E402
from ticketing.main import app  # noqa: E402
from ticketing.models.enums import EventStatus  # noqa: E402
from ticketing.models.event import Event  # noqa: E402
from ticketing.services.engine import TicketingEngine, build_engine  # noqa: E402
from ticketing.utils.time import utcnow  # noqa: E402

EventFactory = Callable[..., Awaitable[Event]]


# =========================================
# 每用例独立 SQLite 文件库（NullPool，避免跨 loop）
# =========================================
@pytest_asyncio.fixture(scope="function")
async def async_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'ticketing.db'}", poolclass=NullPool)
    init_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture(scope="function")
def async_session_maker(async_engine: AsyncEngine):
    return make_session_factory(async_engine)


@pytest_asyncio.fixture(scope="function")
async def session(async_session_maker) -> AsyncGenerator[AsyncSession, None]:
    """
    标准 Session：用例结束时未提交的事务一律回滚
    """
    async with async_session_maker() as sess:
        try:
            yield sess
        finally:
            if sess.in_transaction():
                await sess.rollback()


# =========================================
# 引擎（mock 渠道 + URL 渲染器 + 落库通知）
# =========================================
@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(
        payment_mode="mock",
        app_url="http://testserver",
        public_url="http://cdn.test",
        order_ttl_minutes=60,
        reminder_hours_before=24,
    )


@pytest.fixture
def ticketing(engine_config: EngineConfig) -> TicketingEngine:
    return build_engine(engine_config)


# =========================================
# 种子：一个已发布、未开始的活动
# =========================================
@pytest.fixture
def make_event(async_session_maker) -> EventFactory:
    async def _make(
        *,
        quota: int = 10,
        available: Optional[int] = None,
        price: str = "150000",
        status: EventStatus = EventStatus.PUBLISHED,
        starts_at: Optional[datetime] = None,
        title: str = "Jakarta Jazz Night",
    ) -> Event:
        ev = Event(
            id=str(uuid.uuid4()),
            title=title,
            location="Jakarta",
            category_name="Music",
            starts_at=starts_at or (utcnow() + timedelta(days=7)),
            status=status,
            price=Decimal(price),
            quota=quota,
            available=quota if available is None else available,
            seat_counter=0,
        )
        async with async_session_maker() as sess:
            sess.add(ev)
            await sess.commit()
        return ev

    return _make


# =========================================
# HTTP 客户端（依赖覆盖到测试库 + 测试引擎）
# =========================================
@pytest_asyncio.fixture
async def client(async_session_maker, ticketing: TicketingEngine) -> AsyncGenerator[httpx.AsyncClient, None]:
    async def _session_override() -> AsyncGenerator[AsyncSession, None]:
        async with async_session_maker() as sess:
            yield sess

    app.dependency_overrides[deps.get_session] = _session_override
    app.dependency_overrides[deps.get_engine] = lambda: ticketing
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()
