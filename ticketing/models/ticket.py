# ticketing/models/ticket.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from ticketing.db.base import Base
from ticketing.models.enums import TicketStatus, str_enum


class Ticket(Base):
    """
    门票（只由 TicketIssuer 写）

    唯一性：
      - ticket_number 全局唯一
      - (event_id, seat_number) 同一场活动座位唯一
      - (order_id, seq) 同一订单序号唯一（防并发重复出票）
    """

    __tablename__ = "tickets"
    __table_args__ = (
        UniqueConstraint("event_id", "seat_number", name="uq_tickets_event_seat"),
        UniqueConstraint("order_id", "seq", name="uq_tickets_order_seq"),
        Index("ix_tickets_status_event", "status", "event_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    order_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    event_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    buyer_id: Mapped[str] = mapped_column(String(64), nullable=False)

    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    ticket_number: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    seat_number: Mapped[str] = mapped_column(String(16), nullable=False)

    status: Mapped[TicketStatus] = mapped_column(
        str_enum(TicketStatus, "ticket_status"), nullable=False, default=TicketStatus.ACTIVE
    )

    checked_in: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    checked_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    checked_in_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    qr_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pdf_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<Ticket no={self.ticket_number} seat={self.seat_number} status={self.status}>"
