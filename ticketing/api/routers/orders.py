# ticketing/api/routers/orders.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.api.deps import get_buyer_id, get_engine, get_session
from ticketing.api.problem import raise_engine_error
from ticketing.models.enums import OrderStatus
from ticketing.schemas.orders import (
    OrderCreatedOut,
    OrderCreateIn,
    OrderListOut,
    OrderOut,
    PaymentCreateIn,
)
from ticketing.schemas.payments import PaymentOut
from ticketing.services.engine import TicketingEngine

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=OrderCreatedOut, status_code=status.HTTP_201_CREATED)
async def create_order(
    body: OrderCreateIn,
    buyer_id: str = Depends(get_buyer_id),
    session: AsyncSession = Depends(get_session),
    engine: TicketingEngine = Depends(get_engine),
) -> OrderCreatedOut:
    """
    下单：扣库存 + 建订单 + 建支付意图。
    支付渠道失败时订单与库存都已回滚（502）。
    """
    res = await engine.lifecycle.create_order(
        session,
        buyer_id=buyer_id,
        event_id=body.event_id,
        quantity=body.quantity,
        buyer_email=body.buyer_email,
        payment_method=body.payment_method,
    )
    if not res.ok:
        raise_engine_error(res.error)
    created = res.unwrap()
    return OrderCreatedOut(
        order=OrderOut.model_validate(created.order),
        payment=PaymentOut.model_validate(created.payment),
    )


@router.get("", response_model=OrderListOut)
async def list_orders(
    status_: Optional[OrderStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    buyer_id: str = Depends(get_buyer_id),
    session: AsyncSession = Depends(get_session),
    engine: TicketingEngine = Depends(get_engine),
) -> OrderListOut:
    data = await engine.lifecycle.list_orders(session, buyer_id, status=status_, page=page, limit=limit)
    return OrderListOut.model_validate(data)


@router.get("/{order_id}", response_model=OrderOut)
async def get_order(
    order_id: str = Path(...),
    buyer_id: str = Depends(get_buyer_id),
    session: AsyncSession = Depends(get_session),
    engine: TicketingEngine = Depends(get_engine),
) -> OrderOut:
    res = await engine.lifecycle.get_order(session, order_id, buyer_id)
    if not res.ok:
        raise_engine_error(res.error)
    return OrderOut.model_validate(res.unwrap())


@router.post("/{order_id}/cancel", response_model=OrderOut)
async def cancel_order(
    order_id: str = Path(...),
    buyer_id: str = Depends(get_buyer_id),
    session: AsyncSession = Depends(get_session),
    engine: TicketingEngine = Depends(get_engine),
) -> OrderOut:
    res = await engine.lifecycle.cancel(session, order_id, buyer_id)
    if not res.ok:
        raise_engine_error(res.error)
    return OrderOut.model_validate(res.unwrap())


@router.post("/{order_id}/payment", response_model=PaymentOut, status_code=status.HTTP_201_CREATED)
async def create_payment(
    body: PaymentCreateIn,
    order_id: str = Path(...),
    buyer_id: str = Depends(get_buyer_id),
    session: AsyncSession = Depends(get_session),
    engine: TicketingEngine = Depends(get_engine),
) -> PaymentOut:
    """为尚无支付单的订单补建支付。"""
    res = await engine.lifecycle.create_payment_for_order(
        session, order_id, buyer_id, payment_method=body.payment_method
    )
    if not res.ok:
        raise_engine_error(res.error)
    return PaymentOut.model_validate(res.unwrap())


@router.get("/{order_id}/payment", response_model=PaymentOut)
async def get_order_payment(
    order_id: str = Path(...),
    buyer_id: str = Depends(get_buyer_id),
    session: AsyncSession = Depends(get_session),
    engine: TicketingEngine = Depends(get_engine),
) -> PaymentOut:
    owned = await engine.lifecycle.get_order(session, order_id, buyer_id)
    if not owned.ok:
        raise_engine_error(owned.error)
    res = await engine.payments.find_by_order(session, order_id)
    if not res.ok:
        raise_engine_error(res.error)
    return PaymentOut.model_validate(res.unwrap())
