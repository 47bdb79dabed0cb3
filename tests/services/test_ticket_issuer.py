import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.models.enums import OrderStatus, TicketStatus
from ticketing.services import order_repo, ticket_repo
from ticketing.services.errors import ErrorKind
from ticketing.services.inventory_ledger import InventoryLedger
from ticketing.services.order_lifecycle import TRANSITIONS
from ticketing.services.ticket_issuer import TicketIssuer
from tests.services._helpers import count_tickets, pay, place_order

pytestmark = pytest.mark.asyncio


class _CountingRenderer:
    def __init__(self, fail_on: int = 0) -> None:
        self.calls = 0
        self.fail_on = fail_on

    async def render_qr(self, data: str) -> str:
        self.calls += 1
        if self.fail_on and self.calls >= self.fail_on:
            raise RuntimeError("qr service timeout")
        return f"https://cdn.test/qr/{data}.png"

    async def render_pdf(self, ticket) -> str:
        return f"https://cdn.test/pdf/{ticket.ticket_number}.pdf"


async def _paid_order_without_tickets(session: AsyncSession, ticketing, make_event, quantity: int = 3):
    """建单后直接把订单推到 PAID，但不走出票副作用（用于单测 TicketIssuer 本身）"""
    ev = await make_event(quota=10)
    created = await place_order(session, ticketing, ev.id, quantity=quantity)
    await order_repo.update_status_if(
        session,
        created.order.id,
        allowed_from=TRANSITIONS[OrderStatus.PAID],
        new_status=OrderStatus.PAID,
    )
    await session.commit()
    return ev, created.order.id


async def test_issue_is_idempotent(session: AsyncSession, ticketing, make_event):
    """
    场景：同一订单连续出票两次
    期望：第二次返回同一批票，不多出、不重复推进座位游标
    """
    ev, order_id = await _paid_order_without_tickets(session, ticketing, make_event)
    issuer = TicketIssuer(_CountingRenderer(), InventoryLedger())

    first = await issuer.issue_for_order(session, order_id)
    await session.commit()
    second = await issuer.issue_for_order(session, order_id)
    await session.commit()

    assert first.ok and second.ok
    assert [t.id for t in first.value] == [t.id for t in second.value]
    assert [t.seq for t in first.value] == [1, 2, 3]
    assert await count_tickets(session, order_id) == 3
    assert await ticket_repo.count_for_event(session, ev.id) == 3


async def test_ticket_numbers_embed_order_no_and_sequence(session: AsyncSession, ticketing, make_event):
    _, order_id = await _paid_order_without_tickets(session, ticketing, make_event, quantity=2)
    issuer = TicketIssuer(_CountingRenderer())

    res = await issuer.issue_for_order(session, order_id)
    await session.commit()

    order_no = (await ticketing.lifecycle.get_order(session, order_id, "buyer-1")).value.order_no
    numbers = [t.ticket_number for t in res.value]
    assert numbers[0].startswith(f"TCK-{order_no}-001-")
    assert numbers[1].startswith(f"TCK-{order_no}-002-")
    assert res.value[0].qr_url == f"https://cdn.test/qr/{numbers[0]}.png"


async def test_render_failure_leaves_no_partial_batch(session: AsyncSession, ticketing, make_event):
    """
    场景：第 2 张票渲染失败
    期望：UPSTREAM artifact_render_failed；库里 0 张票；座位游标未推进（重试从 A1 开始）
    """
    _, order_id = await _paid_order_without_tickets(session, ticketing, make_event)
    broken = TicketIssuer(_CountingRenderer(fail_on=2))

    res = await broken.issue_for_order(session, order_id)
    await session.commit()

    assert not res.ok
    assert res.error.kind is ErrorKind.UPSTREAM
    assert res.error.code == "artifact_render_failed"
    assert await count_tickets(session, order_id) == 0

    retry = await TicketIssuer(_CountingRenderer()).issue_for_order(session, order_id)
    await session.commit()
    assert [t.seat_number for t in retry.value] == ["A1", "A2", "A3"]


async def test_issue_requires_paid_order(session: AsyncSession, ticketing, make_event):
    ev = await make_event(quota=10)
    created = await place_order(session, ticketing, ev.id, quantity=1)

    res = await TicketIssuer(_CountingRenderer()).issue_for_order(session, created.order.id)

    assert res.error.code == "order_not_paid"
    assert await count_tickets(session, created.order.id) == 0


async def test_seats_do_not_overlap_across_orders(session: AsyncSession, ticketing, make_event):
    ev = await make_event(quota=10)
    a = await place_order(session, ticketing, ev.id, buyer_id="u-a", quantity=3)
    b = await place_order(session, ticketing, ev.id, buyer_id="u-b", quantity=2)
    await pay(session, ticketing, a.payment.reference_id)
    await pay(session, ticketing, b.payment.reference_id)

    seats_a = [t.seat_number for t in await ticket_repo.list_for_order(session, a.order.id)]
    seats_b = [t.seat_number for t in await ticket_repo.list_for_order(session, b.order.id)]
    await session.commit()

    assert seats_a == ["A1", "A2", "A3"]
    assert seats_b == ["A4", "A5"]


async def test_validate_and_check_in(session: AsyncSession, ticketing, make_event):
    """
    场景：校验 → 检票 → 再校验 → 再检票
    期望：valid → USED（记录操作员）→ invalid → ticket_not_active
    """
    ev = await make_event(quota=10)
    created = await place_order(session, ticketing, ev.id, quantity=1)
    await pay(session, ticketing, created.payment.reference_id)
    ticket = (await ticket_repo.list_for_order(session, created.order.id))[0]
    await session.commit()

    v1 = await ticketing.tickets.validate(session, ticket.id)
    assert v1["valid"] is True

    done = await ticketing.tickets.check_in(session, ticket.id, "gate-7")
    assert done.ok
    assert done.value.status == TicketStatus.USED
    assert done.value.checked_in is True
    assert done.value.checked_in_by == "gate-7"
    assert done.value.checked_in_at is not None

    v2 = await ticketing.tickets.validate(session, ticket.id)
    assert v2["valid"] is False
    assert "used" in v2["message"]

    again = await ticketing.tickets.check_in(session, ticket.id, "gate-7")
    assert again.error.code == "ticket_not_active"

    missing = await ticketing.tickets.check_in(session, "no-such-ticket", "gate-7")
    assert missing.error.kind is ErrorKind.NOT_FOUND
    assert (await ticketing.tickets.validate(session, "no-such-ticket"))["valid"] is False


async def test_cancel_for_order_skips_used_tickets(session: AsyncSession, ticketing, make_event):
    """
    场景：3 张票里 1 张已检票，批量作废
    期望：2 张 CANCELLED，USED 那张保持，skipped_used=1
    """
    ev = await make_event(quota=10)
    created = await place_order(session, ticketing, ev.id, quantity=3)
    await pay(session, ticketing, created.payment.reference_id)
    tickets = await ticket_repo.list_for_order(session, created.order.id)
    await session.commit()
    await ticketing.tickets.check_in(session, tickets[0].id, "gate-1")

    out = await ticketing.tickets.cancel_for_order(session, created.order.id, reason="event cancelled")
    await session.commit()

    assert out == {"cancelled": 2, "skipped_used": 1}
    assert await count_tickets(session, created.order.id, TicketStatus.CANCELLED) == 2
    assert await count_tickets(session, created.order.id, TicketStatus.USED) == 1


async def test_list_for_order_checks_ownership(session: AsyncSession, ticketing, make_event):
    ev = await make_event(quota=10)
    created = await place_order(session, ticketing, ev.id, quantity=2)
    await pay(session, ticketing, created.payment.reference_id)

    mine = await ticketing.tickets.list_for_order(session, created.order.id, "buyer-1")
    theirs = await ticketing.tickets.list_for_order(session, created.order.id, "other")

    assert len(mine.value) == 2
    assert theirs.error.kind is ErrorKind.FORBIDDEN
