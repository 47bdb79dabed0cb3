# ticketing/services/payment_service.py
from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.domain.ports import (
    PaymentGateway,
    PaymentIntentRequest,
    PaymentLineItem,
    StatusSnapshot,
)
from ticketing.models.enums import PaymentProvider, PaymentStatus, PaymentType
from ticketing.models.event import Event
from ticketing.models.order import Order
from ticketing.models.payment import Payment
from ticketing.services import payment_repo
from ticketing.services.errors import EngineError, Result
from ticketing.services.order_numbers import new_payment_reference
from ticketing.services.payment_gateway_mock import MockPaymentGateway
from ticketing.services.payment_mapping import channel_for_method

if TYPE_CHECKING:
    from ticketing.services.webhook_processor import WebhookOutcome, WebhookProcessor

log = logging.getLogger("ticketing.payments")


class PaymentService:
    """
    支付单服务：
      - create_for_order：生命周期管理器用的唯一能力（PaymentCreator）
      - 查询 / 渠道查单 / 作废发票 / mock 模拟

    支付状态本身只由 WebhookProcessor 写：expire_invoice / simulate
    都把结果包装成回调 payload 交给它处理。
    """

    def __init__(self, gateway: PaymentGateway, *, webhooks: Optional["WebhookProcessor"] = None) -> None:
        self._gateway = gateway
        self._webhooks = webhooks

    @property
    def gateway(self) -> PaymentGateway:
        return self._gateway

    def bind_webhooks(self, webhooks: "WebhookProcessor") -> None:
        self._webhooks = webhooks

    async def create_for_order(
        self,
        session: AsyncSession,
        order: Order,
        event: Event,
        *,
        payment_method: Optional[str] = None,
    ) -> Result[Payment]:
        """
        调渠道建支付意图并落 Payment（只 flush，不 commit）。
        一单一笔：已存在 → CONFLICT。
        """
        if await payment_repo.exists_for_order(session, order.id):
            return Result.failure(
                EngineError.conflict("payment_exists", "payment already exists for this order", order_id=order.id)
            )

        reference_id = new_payment_reference()
        request = PaymentIntentRequest(
            reference_id=reference_id,
            order_no=order.order_no,
            amount=order.total_amount,
            description=f"Ticket payment for {event.title}",
            payer_email=order.buyer_email,
            payment_method=payment_method,
            items=[
                PaymentLineItem(
                    name=event.title,
                    quantity=order.quantity,
                    price=order.unit_price,
                    category=event.category_name,
                )
            ],
        )

        intent_res = await self._gateway.create_intent(request)
        if not intent_res.ok:
            return Result.failure(intent_res.error)  # type: ignore[arg-type]
        intent = intent_res.unwrap()

        channel, channel_code = channel_for_method(payment_method)
        payment = Payment(
            id=str(uuid.uuid4()),
            order_id=order.id,
            provider=PaymentProvider(intent.provider),
            type=PaymentType.INVOICE,
            payment_method=payment_method or "various",
            channel=channel,
            channel_code=channel_code,
            reference_id=intent.reference_id,
            amount=order.total_amount,
            status=PaymentStatus.PENDING,
            redirect_url=intent.redirect_url,
            meta={
                "orderNumber": order.order_no,
                "eventTitle": event.title,
                "quantity": order.quantity,
                **intent.metadata,
            },
        )

        try:
            async with session.begin_nested():
                session.add(payment)
                await session.flush()
        except IntegrityError:
            # 并发重试建单：另一笔已落库。渠道侧多出的发票会自然过期
            log.warning("payment insert conflict order=%s ref=%s", order.id, reference_id)
            return Result.failure(
                EngineError.conflict("payment_exists", "payment already exists for this order", order_id=order.id)
            )

        log.info(
            "payment created order=%s ref=%s provider=%s amount=%s",
            order.order_no,
            reference_id,
            intent.provider,
            order.total_amount,
        )
        return Result.success(payment)

    async def find_by_reference(self, session: AsyncSession, reference_id: str) -> Result[Payment]:
        payment = await payment_repo.get_by_reference(session, reference_id)
        if payment is None:
            return Result.failure(
                EngineError.not_found("payment_not_found", "payment not found", reference_id=reference_id)
            )
        return Result.success(payment)

    async def find_by_order(self, session: AsyncSession, order_id: str) -> Result[Payment]:
        payment = await payment_repo.get_by_order(session, order_id)
        if payment is None:
            return Result.failure(
                EngineError.not_found("payment_not_found", "payment not found for this order", order_id=order_id)
            )
        return Result.success(payment)

    async def check_status(self, session: AsyncSession, reference_id: str) -> Result[StatusSnapshot]:
        """向渠道查单（只读，不改本地状态）。"""
        found = await self.find_by_reference(session, reference_id)
        if not found.ok:
            return Result.failure(found.error)  # type: ignore[arg-type]
        payment = found.unwrap()
        return await self._gateway.check_status(reference_id, payment.meta)

    async def expire_invoice(self, session: AsyncSession, reference_id: str) -> Result["WebhookOutcome"]:
        """渠道侧作废发票，然后按“EXPIRED 回调”走一遍 WebhookProcessor。"""
        found = await self.find_by_reference(session, reference_id)
        if not found.ok:
            return Result.failure(found.error)  # type: ignore[arg-type]
        payment = found.unwrap()

        snap = await self._gateway.expire(reference_id, payment.meta)
        if not snap.ok:
            return Result.failure(snap.error)  # type: ignore[arg-type]

        payload = {
            "external_id": reference_id,
            "status": snap.unwrap().provider_status or "EXPIRED",
        }
        return Result.success(await self._require_webhooks().handle(session, payload, None, trusted=True))

    async def simulate(self, session: AsyncSession, reference_id: str, status: str) -> Result["WebhookOutcome"]:
        """仅 mock 模式：模拟渠道回调（PAID / FAILED / EXPIRED）。"""
        if not isinstance(self._gateway, MockPaymentGateway):
            return Result.failure(
                EngineError.invalid_state("simulate_unavailable", "simulate is only available in mock mode")
            )
        found = await self.find_by_reference(session, reference_id)
        if not found.ok:
            return Result.failure(found.error)  # type: ignore[arg-type]

        try:
            payload = self._gateway.simulate(reference_id, status)
        except ValueError as e:
            return Result.failure(EngineError.invalid_state("invalid_simulate_status", str(e), status=status))

        return Result.success(await self._require_webhooks().handle(session, payload, None, trusted=True))

    def _require_webhooks(self) -> "WebhookProcessor":
        if self._webhooks is None:
            raise RuntimeError("PaymentService is not bound to a WebhookProcessor")
        return self._webhooks
