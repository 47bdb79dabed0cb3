# ticketing/services/order_lifecycle.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, FrozenSet, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.core.config import EngineConfig
from ticketing.domain.ports import NotificationDispatcher, PaymentCreator
from ticketing.models.enums import (
    TERMINAL_ORDER_STATUSES,
    EventStatus,
    NotificationCategory,
    OrderStatus,
    PaymentStatus,
)
from ticketing.models.order import Order
from ticketing.models.payment import Payment
from ticketing.obs.metrics import (
    order_create_failures_total,
    order_transitions_total,
    orders_created_total,
)
from ticketing.services import order_repo, payment_repo
from ticketing.services.errors import EngineError, Result
from ticketing.services.inventory_ledger import InventoryLedger
from ticketing.services.order_numbers import new_invoice_no, new_order_no
from ticketing.services.side_effects import best_effort
from ticketing.services.ticket_issuer import TicketIssuer
from ticketing.utils.time import as_utc, utcnow

log = logging.getLogger("ticketing.orders")

# 目标状态 → 允许的来源状态（PENDING 不是任何迁移的目标）
TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.AWAITING_PAYMENT: frozenset({OrderStatus.PENDING}),
    # 回调可能先于 AWAITING_PAYMENT 的写入被看到
    OrderStatus.PAID: frozenset({OrderStatus.PENDING, OrderStatus.AWAITING_PAYMENT}),
    OrderStatus.CANCELLED: frozenset({OrderStatus.PENDING, OrderStatus.AWAITING_PAYMENT}),
    OrderStatus.EXPIRED: frozenset({OrderStatus.PENDING, OrderStatus.AWAITING_PAYMENT}),
}

RELEASING_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.EXPIRED})


@dataclass
class OrderCreated:
    order: Order
    payment: Payment


@dataclass
class TransitionOutcome:
    order: Order
    changed: bool
    previous_status: Optional[OrderStatus] = None
    side_effect_errors: List[str] = field(default_factory=list)


class OrderLifecycleManager:
    """
    订单状态机的唯一写入方，也是库存变更的唯一发起方。

        PENDING → AWAITING_PAYMENT → PAID
        PENDING | AWAITING_PAYMENT → CANCELLED | EXPIRED

    - 状态写入一律 CAS（WHERE status IN allowed_from），并发下只有一个赢家
    - 进入 CANCELLED / EXPIRED：库存回补 + 已出票作废，与状态 CAS 同一事务
    - 进入 PAID：提交后出票 + 成功通知，失败只记录，不回滚状态
    """

    def __init__(
        self,
        config: EngineConfig,
        *,
        payments: PaymentCreator,
        tickets: TicketIssuer,
        notifier: NotificationDispatcher,
        ledger: Optional[InventoryLedger] = None,
    ) -> None:
        self._cfg = config
        self._payments = payments
        self._tickets = tickets
        self._notifier = notifier
        self._ledger = ledger or InventoryLedger()

    # ------------------------------------------------------------------
    # 建单
    # ------------------------------------------------------------------
    async def create_order(
        self,
        session: AsyncSession,
        *,
        buyer_id: str,
        event_id: str,
        quantity: int,
        buyer_email: Optional[str] = None,
        payment_method: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Result[OrderCreated]:
        """
        1) 校验活动可售 → 原子扣库存 + 插 PENDING 订单 → commit
        2) 事务外调支付渠道建意图
        3) 失败：补偿事务（回补库存 + 删订单），调用方拿到失败
           成功：PENDING → AWAITING_PAYMENT，发“待支付”通知（尽力而为）
        """
        ts = now or utcnow()

        if quantity < 1:
            return self._create_failed(
                EngineError.invalid_state("invalid_quantity", "quantity must be >= 1", quantity=quantity)
            )

        event = await order_repo.get_event(session, event_id)
        if event is None:
            return self._create_failed(EngineError.not_found("event_not_found", "event not found", event_id=event_id))
        if event.status != EventStatus.PUBLISHED:
            return self._create_failed(
                EngineError.invalid_state(
                    "event_not_bookable", "event is not open for booking", event_id=event_id, status=event.status.value
                )
            )
        if as_utc(event.starts_at) <= ts:
            return self._create_failed(
                EngineError.invalid_state("event_already_started", "event has already started", event_id=event_id)
            )

        unit_price = Decimal(event.price)
        total = unit_price * quantity

        # 1) 扣库存 + 建单（同一事务）
        reserved = await self._ledger.reserve(session, event_id, quantity)
        if not reserved.ok:
            await session.rollback()
            return self._create_failed(reserved.error)  # type: ignore[arg-type]

        order = Order(
            id=str(uuid.uuid4()),
            order_no=new_order_no(ts),
            invoice_no=new_invoice_no(ts),
            buyer_id=buyer_id,
            buyer_email=buyer_email,
            event_id=event_id,
            quantity=quantity,
            unit_price=unit_price,
            total_amount=total,
            status=OrderStatus.PENDING,
            expires_at=ts + timedelta(minutes=self._cfg.order_ttl_minutes),
        )
        order_repo.add_order(session, order)
        try:
            await session.flush()
            await session.commit()
        except Exception:
            await session.rollback()
            raise

        log.info(
            "order reserved no=%s event=%s qty=%s total=%s available=%s",
            order.order_no,
            event_id,
            quantity,
            total,
            reserved.value,
        )

        # rollback 会 expire 会话内对象，先取出补偿需要的字段
        ref = (order.id, order.order_no, order.event_id, order.quantity)

        # 2) 建支付（不持有任何库存锁）
        try:
            paid = await self._payments.create_for_order(session, order, event, payment_method=payment_method)
        except Exception as e:
            log.exception("payment creation raised order=%s: %s", ref[1], e)
            paid = Result.failure(
                EngineError.upstream("payment_creation_failed", str(e) or type(e).__name__, order_id=ref[0])
            )

        if not paid.ok:
            await session.rollback()
            await self._compensate_create(session, *ref)
            return self._create_failed(paid.error)  # type: ignore[arg-type]

        payment = paid.unwrap()

        # 3) 推进到 AWAITING_PAYMENT（与 Payment 插入同一次提交）；失败同样走补偿
        try:
            moved = await order_repo.update_status_if(
                session,
                ref[0],
                allowed_from=TRANSITIONS[OrderStatus.AWAITING_PAYMENT],
                new_status=OrderStatus.AWAITING_PAYMENT,
            )
            await session.commit()
        except Exception as e:
            log.exception("payment commit failed order=%s: %s", ref[1], e)
            await session.rollback()
            await self._compensate_create(session, *ref)
            return self._create_failed(
                EngineError.upstream("payment_creation_failed", str(e) or type(e).__name__, order_id=ref[0])
            )
        if moved:
            order_transitions_total.labels(OrderStatus.PENDING.value, OrderStatus.AWAITING_PAYMENT.value).inc()
        else:
            # 回调 / 扫描器抢先推进了状态，保持其结果
            log.info("order %s left PENDING before payment commit", order.order_no)

        order = await order_repo.get_order(session, order.id)  # type: ignore[assignment]
        orders_created_total.inc()

        await best_effort(
            session,
            "payment_pending_notification",
            lambda: self.notify_order(
                session,
                NotificationCategory.PAYMENT_PENDING,
                order,
                dedup_key=f"payment_pending:{order.id}",
                extra={
                    "reference_id": payment.reference_id,
                    "payment_url": payment.redirect_url,
                    "expires_at": as_utc(order.expires_at),
                },
            ),
            order_id=order.id,
        )
        return Result.success(OrderCreated(order=order, payment=payment))

    async def _compensate_create(
        self, session: AsyncSession, order_id: str, order_no: str, event_id: str, quantity: int
    ) -> None:
        """建单补偿：回补库存 + 物理删除订单（同一事务）。"""
        try:
            released = await self._ledger.release(session, event_id, quantity)
            if not released.ok:
                raise RuntimeError(released.error.message)  # type: ignore[union-attr]
            await order_repo.delete_order(session, order_id)
            await session.commit()
            log.info("order %s compensated: inventory released, order removed", order_no)
        except Exception:
            await session.rollback()
            # 订单仍是 PENDING，过期扫描会兜底回补库存
            log.exception("compensation failed for order %s; left to the expiry sweep", order_no)

    def _create_failed(self, error: EngineError) -> Result[OrderCreated]:
        order_create_failures_total.labels(error.code).inc()
        log.info("create_order rejected code=%s ctx=%s", error.code, error.context)
        return Result.failure(error)

    # ------------------------------------------------------------------
    # 状态迁移（唯一入口）
    # ------------------------------------------------------------------
    async def transition(
        self,
        session: AsyncSession,
        order_id: str,
        new_status: OrderStatus,
        *,
        context: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Result[TransitionOutcome]:
        ts = now or utcnow()
        ctx = dict(context or {})

        order = await order_repo.get_order(session, order_id)
        if order is None:
            return Result.failure(EngineError.not_found("order_not_found", "order not found", order_id=order_id))

        # 幂等：已在目标状态
        if order.status == new_status:
            return Result.success(TransitionOutcome(order=order, changed=False, previous_status=order.status))

        allowed = TRANSITIONS.get(new_status, frozenset())
        if order.status not in allowed:
            return Result.failure(self._illegal(order, new_status))

        previous = order.status
        event_id, quantity, order_no = order.event_id, order.quantity, order.order_no
        values: Dict[str, Any] = {}
        if new_status == OrderStatus.PAID:
            values["paid_at"] = ctx.get("paid_at") or ts
        elif new_status == OrderStatus.CANCELLED:
            values["cancelled_at"] = ts

        try:
            hit = await order_repo.update_status_if(
                session, order_id, allowed_from=allowed, new_status=new_status, values=values
            )
            if not hit:
                await session.rollback()
                current = await order_repo.get_order(session, order_id)
                if current is not None and current.status == new_status:
                    return Result.success(
                        TransitionOutcome(order=current, changed=False, previous_status=current.status)
                    )
                if current is None:
                    return Result.failure(
                        EngineError.not_found("order_not_found", "order not found", order_id=order_id)
                    )
                return Result.failure(self._illegal(current, new_status))

            if new_status in RELEASING_STATUSES:
                # 赢得 CAS 的这一次才回补：每单恰好一次
                released = await self._ledger.release(session, event_id, quantity)
                if not released.ok:
                    await session.rollback()
                    return Result.failure(released.error)  # type: ignore[arg-type]
                await self._tickets.cancel_for_order(
                    session, order_id, reason=f"order {new_status.value}", now=ts
                )

            await session.commit()
        except Exception:
            await session.rollback()
            raise

        order_transitions_total.labels(previous.value, new_status.value).inc()
        log.info("order %s: %s -> %s ctx=%s", order_no, previous.value, new_status.value, ctx or "-")

        errors: List[str] = []
        if new_status == OrderStatus.PAID:
            await self._on_paid(session, order_id, errors, now=ts)

        order = await order_repo.get_order(session, order_id)  # type: ignore[assignment]
        return Result.success(
            TransitionOutcome(order=order, changed=True, previous_status=previous, side_effect_errors=errors)
        )

    async def _on_paid(self, session: AsyncSession, order_id: str, errors: List[str], *, now: datetime) -> None:
        async def _issue():
            res = await self._tickets.issue_for_order(session, order_id, now=now)
            if not res.ok:
                raise RuntimeError(f"{res.error.code}: {res.error.message}")  # type: ignore[union-attr]
            return res.value

        await best_effort(session, "issue_tickets", _issue, errors=errors, order_id=order_id)

        order = await order_repo.get_order(session, order_id)
        if order is None:
            return
        await best_effort(
            session,
            "payment_success_notification",
            lambda: self.notify_order(
                session,
                NotificationCategory.PAYMENT_SUCCESS,
                order,
                dedup_key=f"payment_success:{order.id}",
                extra={"paid_at": as_utc(order.paid_at)},
            ),
            errors=errors,
            order_id=order_id,
        )

    def _illegal(self, order: Order, new_status: OrderStatus) -> EngineError:
        return EngineError.invalid_state(
            "illegal_transition",
            f"cannot move order from {order.status.value} to {new_status.value}",
            order_id=order.id,
            from_status=order.status.value,
            to_status=new_status.value,
        )

    # ------------------------------------------------------------------
    # 买家取消
    # ------------------------------------------------------------------
    async def cancel(
        self,
        session: AsyncSession,
        order_id: str,
        requester_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> Result[Order]:
        order = await order_repo.get_order(session, order_id)
        if order is None:
            return Result.failure(EngineError.not_found("order_not_found", "order not found", order_id=order_id))
        if order.buyer_id != requester_id:
            return Result.failure(
                EngineError.forbidden("not_order_owner", "only the buyer can cancel this order", order_id=order_id)
            )
        if order.status in TERMINAL_ORDER_STATUSES:
            return Result.failure(
                EngineError.invalid_state(
                    "order_terminal", f"order is already {order.status.value}", order_id=order_id
                )
            )
        payment = await payment_repo.get_by_order(session, order_id)
        if payment is not None and payment.status == PaymentStatus.PAID:
            return Result.failure(
                EngineError.invalid_state("payment_already_paid", "order has already been paid", order_id=order_id)
            )

        moved = await self.transition(session, order_id, OrderStatus.CANCELLED, context={"by": requester_id}, now=now)
        if not moved.ok:
            return Result.failure(moved.error)  # type: ignore[arg-type]
        out = moved.unwrap()

        if out.changed:
            await best_effort(
                session,
                "order_cancelled_notification",
                lambda: self.notify_order(
                    session,
                    NotificationCategory.ORDER_CANCELLED,
                    out.order,
                    dedup_key=f"order_cancelled:{order_id}",
                ),
                order_id=order_id,
            )
        return Result.success(out.order)

    # ------------------------------------------------------------------
    # 查询 / 补建支付
    # ------------------------------------------------------------------
    async def get_order(
        self,
        session: AsyncSession,
        order_id: str,
        requester_id: str,
        *,
        is_admin: bool = False,
    ) -> Result[Order]:
        order = await order_repo.get_order(session, order_id)
        if order is None:
            return Result.failure(EngineError.not_found("order_not_found", "order not found", order_id=order_id))
        if not is_admin and order.buyer_id != requester_id:
            return Result.failure(
                EngineError.forbidden("not_order_owner", "you do not have access to this order", order_id=order_id)
            )
        return Result.success(order)

    async def list_orders(
        self,
        session: AsyncSession,
        buyer_id: str,
        *,
        status: Optional[OrderStatus] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Dict[str, Any]:
        rows, total = await order_repo.list_orders(session, buyer_id=buyer_id, status=status, page=page, limit=limit)
        limit = min(max(int(limit), 1), 100)
        return {
            "items": rows,
            "total": total,
            "page": max(int(page), 1),
            "limit": limit,
            "total_pages": (total + limit - 1) // limit,
        }

    async def create_payment_for_order(
        self,
        session: AsyncSession,
        order_id: str,
        requester_id: str,
        *,
        payment_method: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Result[Payment]:
        """
        为尚无支付单的 PENDING 订单补建支付（例如上次渠道超时被补偿前的重试入口）。
        已过期的订单顺手推进到 EXPIRED 并拒绝。
        """
        ts = now or utcnow()
        got = await self.get_order(session, order_id, requester_id)
        if not got.ok:
            return Result.failure(got.error)  # type: ignore[arg-type]
        order = got.unwrap()

        if order.status not in (OrderStatus.PENDING, OrderStatus.AWAITING_PAYMENT):
            return Result.failure(
                EngineError.invalid_state(
                    "order_not_payable", f"cannot pay an order in status {order.status.value}", order_id=order_id
                )
            )
        if as_utc(order.expires_at) <= ts:
            await self.transition(session, order_id, OrderStatus.EXPIRED, context={"reason": "deadline"}, now=ts)
            return Result.failure(EngineError.invalid_state("order_expired", "order has expired", order_id=order_id))

        event = await order_repo.get_event(session, order.event_id)
        if event is None:
            return Result.failure(
                EngineError.not_found("event_not_found", "event not found", event_id=order.event_id)
            )

        created = await self._payments.create_for_order(session, order, event, payment_method=payment_method)
        if not created.ok:
            await session.rollback()
            return created

        moved = await order_repo.update_status_if(
            session,
            order_id,
            allowed_from=TRANSITIONS[OrderStatus.AWAITING_PAYMENT],
            new_status=OrderStatus.AWAITING_PAYMENT,
        )
        await session.commit()
        if moved:
            order_transitions_total.labels(OrderStatus.PENDING.value, OrderStatus.AWAITING_PAYMENT.value).inc()
        return created

    # ------------------------------------------------------------------
    # 通知（尽力而为，由 best_effort 包裹调用）
    # ------------------------------------------------------------------
    async def notify_order(
        self,
        session: AsyncSession,
        category: NotificationCategory,
        order: Order,
        *,
        dedup_key: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        payload: Dict[str, Any] = {
            "order_id": order.id,
            "order_no": order.order_no,
            "status": order.status.value,
        }
        if extra:
            payload.update(extra)
        return await self._notifier.send(session, category, order.buyer_id, payload, dedup_key=dedup_key)
