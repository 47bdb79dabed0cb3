# ticketing/domain/ports.py
"""
引擎对外协作方的接口（Protocol）与跨边界的值对象。

实现：
  - PaymentGateway      → services/payment_gateway_mock.py / payment_gateway_xendit.py
  - PaymentCreator      → services/payment_service.PaymentService
  - NotificationDispatcher → services/notification_dispatcher.DbNotificationDispatcher
  - ArtifactRenderer    → services/artifact_renderer.UrlArtifactRenderer
  - MailSender          → services/notification_dispatcher.LoggingMailSender
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.models.enums import NotificationCategory
from ticketing.services.errors import Result

if TYPE_CHECKING:
    from ticketing.models.event import Event
    from ticketing.models.notification import Notification
    from ticketing.models.order import Order
    from ticketing.models.payment import Payment
    from ticketing.models.ticket import Ticket


@dataclass(frozen=True)
class PaymentLineItem:
    name: str
    quantity: int
    price: Decimal
    category: Optional[str] = None


@dataclass(frozen=True)
class PaymentIntentRequest:
    reference_id: str
    order_no: str
    amount: Decimal
    description: str
    payer_email: Optional[str] = None
    payment_method: Optional[str] = None
    items: List[PaymentLineItem] = field(default_factory=list)


@dataclass(frozen=True)
class PaymentIntent:
    reference_id: str
    redirect_url: str
    provider_status: str
    provider: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StatusSnapshot:
    reference_id: str
    provider_status: str
    paid_at: Optional[datetime] = None
    payment_method: Optional[str] = None
    payment_channel: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


class PaymentGateway(Protocol):
    provider: str

    async def create_intent(self, request: PaymentIntentRequest) -> Result[PaymentIntent]: ...

    async def check_status(
        self, reference_id: str, metadata: Optional[Dict[str, Any]] = None
    ) -> Result[StatusSnapshot]: ...

    async def expire(
        self, reference_id: str, metadata: Optional[Dict[str, Any]] = None
    ) -> Result[StatusSnapshot]: ...

    def verify_callback_token(self, token: Optional[str]) -> bool: ...


class PaymentCreator(Protocol):
    """生命周期管理器只需要“为订单建支付单”这一项能力。"""

    async def create_for_order(
        self,
        session: AsyncSession,
        order: "Order",
        event: "Event",
        *,
        payment_method: Optional[str] = None,
    ) -> Result["Payment"]: ...


class NotificationDispatcher(Protocol):
    async def send(
        self,
        session: AsyncSession,
        category: NotificationCategory,
        user_id: str,
        payload: Dict[str, Any],
        *,
        dedup_key: Optional[str] = None,
    ) -> Optional["Notification"]: ...

    async def schedule(
        self,
        session: AsyncSession,
        category: NotificationCategory,
        user_id: str,
        payload: Dict[str, Any],
        *,
        at: datetime,
        dedup_key: Optional[str] = None,
    ) -> Optional["Notification"]: ...


class ArtifactRenderer(Protocol):
    async def render_qr(self, data: str) -> str: ...

    async def render_pdf(self, ticket: "Ticket") -> str: ...


class MailSender(Protocol):
    async def send_mail(self, notification: "Notification") -> None: ...
