# ticketing/models/enums.py
from __future__ import annotations

import enum
from typing import List, Type

from sqlalchemy import Enum as SAEnum


class EventStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    AWAITING_PAYMENT = "awaiting_payment"
    PAID = "paid"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    EXPIRED = "expired"
    FAILED = "failed"


class PaymentProvider(str, enum.Enum):
    MOCK = "mock"
    XENDIT = "xendit"


class PaymentType(str, enum.Enum):
    INVOICE = "invoice"
    DIRECT = "direct"
    REFUND = "refund"


class PaymentChannel(str, enum.Enum):
    VIRTUAL_ACCOUNT = "virtual_account"
    E_WALLET = "e_wallet"
    QRIS = "qris"
    CREDIT_CARD = "credit_card"
    RETAIL_OUTLET = "retail_outlet"


class PaymentChannelCode(str, enum.Enum):
    VARIOUS = "various"
    CREDIT_CARD = "CREDIT_CARD"
    BCA = "BCA"
    BNI = "BNI"
    BRI = "BRI"
    MANDIRI = "MANDIRI"
    PERMATA = "PERMATA"
    OVO = "OVO"
    DANA = "DANA"
    SHOPEEPAY = "SHOPEEPAY"
    LINKAJA = "LINKAJA"
    ALFAMART = "ALFAMART"
    INDOMARET = "INDOMARET"
    QRIS = "QRIS"


class TicketStatus(str, enum.Enum):
    ACTIVE = "active"
    USED = "used"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class NotificationChannel(str, enum.Enum):
    IN_APP = "in_app"
    EMAIL = "email"


class NotificationStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class NotificationCategory(str, enum.Enum):
    PAYMENT_PENDING = "payment_pending"
    PAYMENT_SUCCESS = "payment_success"
    PAYMENT_FAILED = "payment_failed"
    ORDER_CANCELLED = "order_cancelled"
    ORDER_EXPIRED = "order_expired"
    EVENT_REMINDER = "event_reminder"


# 终态：一旦写入不再离开
TERMINAL_ORDER_STATUSES = frozenset(
    {OrderStatus.PAID, OrderStatus.CANCELLED, OrderStatus.EXPIRED}
)
TERMINAL_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.PAID, PaymentStatus.EXPIRED, PaymentStatus.FAILED}
)


def _values(enum_cls: Type[enum.Enum]) -> List[str]:
    return [m.value for m in enum_cls]


def str_enum(enum_cls: Type[enum.Enum], name: str) -> SAEnum:
    """
    统一的枚举列：按 value 落库，VARCHAR + CHECK（不建 PG 原生 ENUM，SQLite 同样可用）。
    """
    return SAEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=32,
        values_callable=_values,
        validate_strings=True,
    )
