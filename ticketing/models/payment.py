# ticketing/models/payment.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from ticketing.db.base import Base
from ticketing.models.enums import (
    PaymentChannel,
    PaymentChannelCode,
    PaymentProvider,
    PaymentStatus,
    PaymentType,
    str_enum,
)


class Payment(Base):
    """
    支付单（一单一笔：order_id 唯一）

    - reference_id：与支付渠道对账 / 幂等的关联键（全局唯一）
    - status 只由 WebhookProcessor 写
    """

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    order_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("orders.id", ondelete="CASCADE"), unique=True, nullable=False
    )

    provider: Mapped[PaymentProvider] = mapped_column(
        str_enum(PaymentProvider, "payment_provider"), nullable=False
    )
    type: Mapped[PaymentType] = mapped_column(
        str_enum(PaymentType, "payment_type"), nullable=False, default=PaymentType.INVOICE
    )
    payment_method: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    channel: Mapped[Optional[PaymentChannel]] = mapped_column(
        str_enum(PaymentChannel, "payment_channel"), nullable=True
    )
    channel_code: Mapped[Optional[PaymentChannelCode]] = mapped_column(
        str_enum(PaymentChannelCode, "payment_channel_code"), nullable=True
    )

    reference_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        str_enum(PaymentStatus, "payment_status"), nullable=False, default=PaymentStatus.PENDING
    )
    redirect_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # 渠道元数据（invoice id / 手续费 / 回调原始字段等）；属性名避开 Base.metadata
    meta: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<Payment id={self.id} ref={self.reference_id} status={self.status}>"
