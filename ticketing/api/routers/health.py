# ticketing/api/routers/health.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.api.deps import get_engine, get_session
from ticketing.services.engine import TicketingEngine

router = APIRouter(tags=["ops"])


@router.get("/health")
async def health(
    session: AsyncSession = Depends(get_session),
    engine: TicketingEngine = Depends(get_engine),
):
    await session.execute(text("SELECT 1"))
    return {"status": "ok", "payment_mode": engine.config.payment_mode}
