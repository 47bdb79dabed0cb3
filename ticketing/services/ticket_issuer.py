# ticketing/services/ticket_issuer.py
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.domain.ports import ArtifactRenderer
from ticketing.models.enums import OrderStatus, TicketStatus
from ticketing.models.ticket import Ticket
from ticketing.obs.metrics import tickets_issued_total
from ticketing.services import order_repo, ticket_repo
from ticketing.services.errors import EngineError, Result
from ticketing.services.inventory_ledger import InventoryLedger
from ticketing.services.order_numbers import new_ticket_number, seat_label
from ticketing.utils.time import utcnow

log = logging.getLogger("ticketing.tickets")


class _IssueAborted(Exception):
    """savepoint 内中止出票（携带领域错误，整批回滚）"""

    def __init__(self, error: EngineError) -> None:
        super().__init__(error.message)
        self.error = error


class TicketIssuer:
    """
    门票的唯一写入方。

    出票：
      - 只接受 PAID 订单；已有票直接返回（幂等）
      - 整批在 savepoint 内完成：座位游标推进 + 插入 + 渲染 QR/PDF，
        任一步失败整批撤销（不会留下半截票）
      - 并发重复出票撞 (order_id, seq) 唯一约束 → 回读已有那一批

    本类不 commit，事务边界由调用方决定。
    """

    def __init__(self, renderer: ArtifactRenderer, ledger: Optional[InventoryLedger] = None) -> None:
        self._renderer = renderer
        self._ledger = ledger or InventoryLedger()

    async def issue_for_order(
        self,
        session: AsyncSession,
        order_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> Result[List[Ticket]]:
        order = await order_repo.get_order(session, order_id)
        if order is None:
            return Result.failure(EngineError.not_found("order_not_found", "order not found", order_id=order_id))
        if order.status != OrderStatus.PAID:
            return Result.failure(
                EngineError.invalid_state(
                    "order_not_paid",
                    "tickets can only be issued for paid orders",
                    order_id=order_id,
                    status=order.status.value,
                )
            )

        existing = await ticket_repo.list_for_order(session, order_id)
        if existing:
            return Result.success(existing)

        ts = now or utcnow()
        tickets: List[Ticket] = []
        try:
            async with session.begin_nested():
                alloc = await self._ledger.allocate_seats(session, order.event_id, order.quantity)
                if not alloc.ok:
                    raise _IssueAborted(alloc.error)  # type: ignore[arg-type]
                start = alloc.unwrap()

                for i in range(order.quantity):
                    seq = i + 1
                    t = Ticket(
                        id=str(uuid.uuid4()),
                        order_id=order.id,
                        event_id=order.event_id,
                        buyer_id=order.buyer_id,
                        seq=seq,
                        ticket_number=new_ticket_number(order.order_no, seq, ts),
                        seat_number=seat_label(start + i),
                        status=TicketStatus.ACTIVE,
                        checked_in=False,
                    )
                    session.add(t)
                    tickets.append(t)
                await session.flush()

                for t in tickets:
                    try:
                        t.qr_url = await self._renderer.render_qr(t.ticket_number)
                        t.pdf_url = await self._renderer.render_pdf(t)
                    except Exception as e:
                        log.error("artifact render failed order=%s ticket=%s: %s", order.id, t.ticket_number, e)
                        raise _IssueAborted(
                            EngineError.upstream(
                                "artifact_render_failed",
                                f"artifact rendering failed: {e}",
                                order_id=order.id,
                                ticket_number=t.ticket_number,
                            )
                        ) from e
                await session.flush()
        except _IssueAborted as abort:
            return Result.failure(abort.error)
        except IntegrityError:
            # 另一条路径已为该订单出票
            winners = await ticket_repo.list_for_order(session, order_id)
            if not winners:
                raise
            log.info("concurrent issuance resolved to existing batch order=%s", order_id)
            return Result.success(winners)

        tickets_issued_total.inc(len(tickets))
        log.info(
            "issued %d tickets order=%s seats=%s..%s",
            len(tickets),
            order.order_no,
            tickets[0].seat_number,
            tickets[-1].seat_number,
        )
        return Result.success(tickets)

    async def cancel_for_order(
        self,
        session: AsyncSession,
        order_id: str,
        *,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """批量作废（已检票的 USED 票跳过并报告）。"""
        ts = now or utcnow()
        used = await ticket_repo.count_for_order(session, order_id, status=TicketStatus.USED)
        cancelled = await ticket_repo.cancel_active_for_order(session, order_id, now=ts, reason=reason)
        if cancelled or used:
            log.info("tickets cancelled order=%s cancelled=%d skipped_used=%d", order_id, cancelled, used)
        return {"cancelled": cancelled, "skipped_used": used}

    async def list_for_order(
        self,
        session: AsyncSession,
        order_id: str,
        requester_id: str,
        *,
        is_admin: bool = False,
    ) -> Result[List[Ticket]]:
        order = await order_repo.get_order(session, order_id)
        if order is None:
            return Result.failure(EngineError.not_found("order_not_found", "order not found", order_id=order_id))
        if not is_admin and order.buyer_id != requester_id:
            return Result.failure(
                EngineError.forbidden("not_order_owner", "you do not have access to this order", order_id=order_id)
            )
        return Result.success(await ticket_repo.list_for_order(session, order_id))

    async def validate(self, session: AsyncSession, ticket_id: str) -> Dict[str, Any]:
        """检票前校验：{valid, message, ticket}。"""
        ticket = await ticket_repo.get_ticket(session, ticket_id)
        if ticket is None:
            return {"valid": False, "message": "Ticket not found", "ticket": None}
        if ticket.status != TicketStatus.ACTIVE:
            return {
                "valid": False,
                "message": f"Ticket status is '{ticket.status.value}', only 'active' tickets can be checked in",
                "ticket": ticket,
            }
        if ticket.checked_in:
            return {"valid": False, "message": "Ticket already checked in", "ticket": ticket}
        return {"valid": True, "message": "Ticket is valid and ready for check-in", "ticket": ticket}

    async def check_in(
        self,
        session: AsyncSession,
        ticket_id: str,
        operator_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> Result[Ticket]:
        ts = now or utcnow()
        if not await ticket_repo.mark_used_if_active(session, ticket_id, now=ts, operator_id=operator_id):
            ticket = await ticket_repo.get_ticket(session, ticket_id)
            if ticket is None:
                return Result.failure(EngineError.not_found("ticket_not_found", "ticket not found", ticket_id=ticket_id))
            return Result.failure(
                EngineError.invalid_state(
                    "ticket_not_active",
                    f"ticket status is '{ticket.status.value}'",
                    ticket_id=ticket_id,
                    status=ticket.status.value,
                )
            )
        await session.commit()
        ticket = await ticket_repo.get_ticket(session, ticket_id)
        log.info("ticket checked in id=%s by=%s", ticket_id, operator_id)
        return Result.success(ticket)  # type: ignore[arg-type]
