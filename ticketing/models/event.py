# ticketing/models/event.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from ticketing.db.base import Base
from ticketing.models.enums import EventStatus, str_enum


class Event(Base):
    """
    活动（只保留库存相关字段；目录 CRUD 不在本服务）。

    available / seat_counter 只允许通过 InventoryLedger 的原子 UPDATE 修改。
    """

    __tablename__ = "events"
    __table_args__ = (
        CheckConstraint("available >= 0 AND available <= quota", name="ck_events_available_range"),
        CheckConstraint("seat_counter >= 0", name="ck_events_seat_counter_nonneg"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    category_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[EventStatus] = mapped_column(
        str_enum(EventStatus, "event_status"), nullable=False, default=EventStatus.DRAFT
    )

    price: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    quota: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    available: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # 已分配座位的游标（座位号 = 游标 → 排/号）
    seat_counter: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<Event id={self.id} title={self.title!r} available={self.available}/{self.quota}>"
