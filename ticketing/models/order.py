# ticketing/models/order.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from ticketing.db.base import Base
from ticketing.models.enums import OrderStatus, str_enum


class Order(Base):
    """
    订单主档
    - status 只经由 OrderLifecycleManager.transition 的 CAS 更新
    - total_amount = quantity × unit_price（建单时计算，之后不再改）
    """

    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_orders_quantity_pos"),
        Index("ix_orders_status_expires_at", "status", "expires_at"),
        Index("ix_orders_buyer_created", "buyer_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    # 业务单号
    order_no: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    invoice_no: Mapped[str] = mapped_column(String(32), unique=True)

    buyer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    buyer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    event_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("events.id", ondelete="RESTRICT"), nullable=False, index=True
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    status: Mapped[OrderStatus] = mapped_column(
        str_enum(OrderStatus, "order_status"), nullable=False, default=OrderStatus.PENDING
    )

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<Order id={self.id} no={self.order_no!r} status={self.status} qty={self.quantity}>"
