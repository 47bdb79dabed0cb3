# ticketing/utils/time.py
from __future__ import annotations

from datetime import datetime, timezone

UTC = timezone.utc


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(dt: datetime | None) -> datetime | None:
    """
    统一成带时区的 UTC。

    SQLite 读回的 DateTime(timezone=True) 是 naive，这里按 UTC naive 处理；
    PG 读回的是 aware，直接 astimezone。
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def parse_datetime(value: object) -> datetime | None:
    """渠道回传的 ISO8601 字符串（允许结尾 Z）→ aware UTC；解析不了返回 None。"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    s = str(value).strip()
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(s))
    except ValueError:
        return None
