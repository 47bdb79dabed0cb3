# ticketing/api/routers/payments.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header, Path
from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.api.deps import get_buyer_id, get_engine, get_session
from ticketing.api.problem import raise_engine_error
from ticketing.schemas.payments import PaymentOut, SimulateIn, StatusSnapshotOut, WebhookAck
from ticketing.services import order_repo
from ticketing.services.engine import TicketingEngine
from ticketing.services.errors import EngineError
from ticketing.services.webhook_processor import WebhookOutcome

log = logging.getLogger("ticketing.api.payments")

router = APIRouter(prefix="/payments", tags=["payments"])


def _ack(outcome: WebhookOutcome) -> WebhookAck:
    return WebhookAck(success=outcome.ok, message=outcome.message, data=outcome.to_dict())


@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(
    payload: Dict[str, Any] = Body(...),
    x_callback_token: Optional[str] = Header(default=None, alias="x-callback-token"),
    session: AsyncSession = Depends(get_session),
    engine: TicketingEngine = Depends(get_engine),
) -> WebhookAck:
    """
    渠道回调入口：永远 200（避免渠道重投风暴），结果看 body.success。
    """
    outcome = await engine.webhooks.handle(session, payload, x_callback_token)
    if not outcome.ok:
        log.warning("webhook not applied ref=%s status=%s: %s", outcome.reference_id, outcome.status.value, outcome.message)
    return _ack(outcome)


async def _owned_payment(session: AsyncSession, engine: TicketingEngine, reference_id: str, buyer_id: str):
    res = await engine.payments.find_by_reference(session, reference_id)
    if not res.ok:
        raise_engine_error(res.error)
    payment = res.unwrap()
    order = await order_repo.get_order(session, payment.order_id)
    if order is None or order.buyer_id != buyer_id:
        raise_engine_error(
            EngineError.forbidden("not_order_owner", "you do not have access to this payment", reference_id=reference_id)
        )
    return payment


@router.post("/simulate/{reference_id}", response_model=WebhookAck)
async def simulate_payment(
    body: SimulateIn,
    reference_id: str = Path(...),
    buyer_id: str = Depends(get_buyer_id),
    session: AsyncSession = Depends(get_session),
    engine: TicketingEngine = Depends(get_engine),
) -> WebhookAck:
    """仅 mock 模式：模拟渠道回调（只能模拟自己的支付单）。"""
    await _owned_payment(session, engine, reference_id, buyer_id)
    res = await engine.payments.simulate(session, reference_id, body.status)
    if not res.ok:
        raise_engine_error(res.error)
    return _ack(res.unwrap())


@router.get("/reference/{reference_id}", response_model=PaymentOut)
async def get_payment_by_reference(
    reference_id: str = Path(...),
    buyer_id: str = Depends(get_buyer_id),
    session: AsyncSession = Depends(get_session),
    engine: TicketingEngine = Depends(get_engine),
) -> PaymentOut:
    payment = await _owned_payment(session, engine, reference_id, buyer_id)
    return PaymentOut.model_validate(payment)


@router.get("/{reference_id}/check", response_model=StatusSnapshotOut)
async def check_payment_status(
    reference_id: str = Path(...),
    buyer_id: str = Depends(get_buyer_id),
    session: AsyncSession = Depends(get_session),
    engine: TicketingEngine = Depends(get_engine),
) -> StatusSnapshotOut:
    """向渠道查单（只读）。"""
    await _owned_payment(session, engine, reference_id, buyer_id)
    res = await engine.payments.check_status(session, reference_id)
    if not res.ok:
        raise_engine_error(res.error)
    return StatusSnapshotOut.model_validate(res.unwrap())


@router.post("/{reference_id}/expire", response_model=WebhookAck)
async def expire_invoice(
    reference_id: str = Path(...),
    buyer_id: str = Depends(get_buyer_id),
    session: AsyncSession = Depends(get_session),
    engine: TicketingEngine = Depends(get_engine),
) -> WebhookAck:
    """渠道侧作废发票，订单随之过期。"""
    await _owned_payment(session, engine, reference_id, buyer_id)
    res = await engine.payments.expire_invoice(session, reference_id)
    if not res.ok:
        raise_engine_error(res.error)
    return _ack(res.unwrap())
