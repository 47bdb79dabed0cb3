# ticketing/api/routers/tickets.py
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.api.deps import get_buyer_id, get_engine, get_session
from ticketing.api.problem import raise_engine_error
from ticketing.schemas.tickets import TicketOut, TicketValidationOut
from ticketing.services.engine import TicketingEngine

router = APIRouter(tags=["tickets"])


@router.get("/orders/{order_id}/tickets", response_model=List[TicketOut])
async def list_order_tickets(
    order_id: str = Path(...),
    buyer_id: str = Depends(get_buyer_id),
    session: AsyncSession = Depends(get_session),
    engine: TicketingEngine = Depends(get_engine),
) -> List[TicketOut]:
    res = await engine.tickets.list_for_order(session, order_id, buyer_id)
    if not res.ok:
        raise_engine_error(res.error)
    return [TicketOut.model_validate(t) for t in res.unwrap()]


@router.get("/tickets/{ticket_id}/validate", response_model=TicketValidationOut)
async def validate_ticket(
    ticket_id: str = Path(...),
    session: AsyncSession = Depends(get_session),
    engine: TicketingEngine = Depends(get_engine),
) -> TicketValidationOut:
    return TicketValidationOut.model_validate(await engine.tickets.validate(session, ticket_id))


@router.post("/tickets/{ticket_id}/check-in", response_model=TicketOut)
async def check_in_ticket(
    ticket_id: str = Path(...),
    operator_id: str = Depends(get_buyer_id),
    session: AsyncSession = Depends(get_session),
    engine: TicketingEngine = Depends(get_engine),
) -> TicketOut:
    """检票（操作员身份同样来自 X-User-Id）。"""
    res = await engine.tickets.check_in(session, ticket_id, operator_id)
    if not res.ok:
        raise_engine_error(res.error)
    return TicketOut.model_validate(res.unwrap())
