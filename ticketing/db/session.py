# ticketing/db/session.py
# 统一的异步会话工厂 + FastAPI 依赖
from __future__ import annotations

import re
from collections.abc import AsyncGenerator
from functools import lru_cache
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ticketing.core.config import get_settings


def normalize_async_dsn(url: str) -> str:
    """把各种写法的 DSN 统一到 psycopg3 / aiosqlite。"""
    url = (url or "").strip()
    # 有些环境会把值写成 '"postgresql://..."'
    if len(url) >= 2 and url[0] == url[-1] and url[0] in ("'", '"'):
        url = url[1:-1].strip()
    if url.startswith("sqlite:///"):
        return "sqlite+aiosqlite://" + url[len("sqlite://") :]
    if url.startswith("postgresql+asyncpg://") or url.startswith("postgres+asyncpg://"):
        return re.sub(r"^postgres(?:ql)?\+asyncpg://", "postgresql+psycopg://", url)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def create_engine_for(url: str, *, echo: bool = False, **extra: Any) -> AsyncEngine:
    dsn = normalize_async_dsn(url)
    kwargs: dict[str, Any] = {"echo": echo, **extra}
    backend = make_url(dsn).get_backend_name()
    if backend.startswith("postgresql"):
        kwargs.setdefault("pool_pre_ping", True)
    engine = create_async_engine(dsn, **kwargs)
    if backend == "sqlite":
        _enable_sqlite_savepoints(engine)
    return engine


def _enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """
    pysqlite / aiosqlite 自己管理 BEGIN，会让 SAVEPOINT 语义失效；
    关掉驱动的隐式事务，由 SQLAlchemy 显式发 BEGIN。
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_conn, _record):
        dbapi_conn.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@lru_cache
def get_engine() -> AsyncEngine:
    s = get_settings()
    return create_engine_for(s.DATABASE_URL, echo=s.SQL_ECHO)


@lru_cache
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return make_session_factory(get_engine())


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with get_session_factory()() as session:
        yield session


async def close_engine() -> None:
    if get_engine.cache_info().currsize:
        await get_engine().dispose()
