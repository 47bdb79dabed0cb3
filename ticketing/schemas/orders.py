# ticketing/schemas/orders.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Optional

from pydantic import EmailStr, Field, field_validator

from ticketing.models.enums import OrderStatus
from ticketing.schemas.common import _Base
from ticketing.schemas.payments import PaymentOut


class OrderCreateIn(_Base):
    """
    下单：
    - quantity: 1..10 张
    - payment_method: 不填 = various（收银台自选）；也可指定 BCA / OVO / QRIS ...
    - buyer_email: 上游鉴权层透传的买家邮箱（可空）
    """

    event_id: Annotated[str, Field(min_length=1, max_length=36)]
    quantity: Annotated[int, Field(ge=1, le=10)]
    payment_method: Optional[str] = None
    buyer_email: Optional[EmailStr] = None

    @field_validator("payment_method", mode="before")
    @classmethod
    def _trim(cls, v):
        return v.strip() if isinstance(v, str) and v.strip() else None


class OrderOut(_Base):
    id: str
    order_no: str
    invoice_no: str
    buyer_id: str
    event_id: str
    quantity: int
    unit_price: Decimal
    total_amount: Decimal
    status: OrderStatus
    expires_at: datetime
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class OrderCreatedOut(_Base):
    order: OrderOut
    payment: PaymentOut


class OrderListOut(_Base):
    items: List[OrderOut]
    total: int
    page: int
    limit: int
    total_pages: int


class PaymentCreateIn(_Base):
    payment_method: Optional[str] = None
