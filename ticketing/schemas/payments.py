# ticketing/schemas/payments.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import Field

from ticketing.models.enums import (
    PaymentChannel,
    PaymentChannelCode,
    PaymentProvider,
    PaymentStatus,
    PaymentType,
)
from ticketing.schemas.common import _Base


class PaymentOut(_Base):
    id: str
    order_id: str
    reference_id: str
    provider: PaymentProvider
    type: PaymentType
    payment_method: Optional[str] = None
    channel: Optional[PaymentChannel] = None
    channel_code: Optional[PaymentChannelCode] = None
    amount: Decimal
    status: PaymentStatus
    redirect_url: Optional[str] = None
    paid_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="meta")


class WebhookAck(_Base):
    """回调响应：永远 200，成功与否看 success。"""

    success: bool
    message: str
    data: Optional[Dict[str, Any]] = None


class SimulateIn(_Base):
    status: str = Field(default="PAID", description="PAID / FAILED / EXPIRED")


class StatusSnapshotOut(_Base):
    reference_id: str
    provider_status: str
    paid_at: Optional[datetime] = None
    payment_method: Optional[str] = None
    payment_channel: Optional[str] = None
