# ticketing/services/webhook_processor.py
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.core.config import EngineConfig
from ticketing.domain.ports import NotificationDispatcher, PaymentGateway
from ticketing.models.enums import (
    TERMINAL_ORDER_STATUSES,
    TERMINAL_PAYMENT_STATUSES,
    NotificationCategory,
    OrderStatus,
    PaymentStatus,
)
from ticketing.models.payment import Payment
from ticketing.obs.metrics import webhook_outcomes_total
from ticketing.services import order_repo, payment_repo
from ticketing.services.errors import EngineError
from ticketing.services.order_lifecycle import OrderLifecycleManager
from ticketing.services.payment_mapping import infer_channel, map_provider_status
from ticketing.services.side_effects import best_effort
from ticketing.utils.time import as_utc, parse_datetime, utcnow

log = logging.getLogger("ticketing.webhooks")

_CLOSED_UNPAID = TERMINAL_ORDER_STATUSES - {OrderStatus.PAID}

# 回调原始字段 → Payment.metadata 键
_META_FIELDS = {
    "id": "xenditInvoiceId",
    "user_id": "userId",
    "paid_amount": "paidAmount",
    "bank_code": "bankCode",
    "payment_channel": "paymentChannel",
    "payment_destination": "paymentDestination",
    "merchant_name": "merchantName",
    "adjusted_received_amount": "adjustedReceivedAmount",
    "fees_paid_amount": "feesPaidAmount",
    "is_high": "isHigh",
}


class WebhookStatus(str, enum.Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    STALE = "stale"
    IGNORED = "ignored"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass
class WebhookOutcome:
    ok: bool
    status: WebhookStatus
    message: str
    reference_id: Optional[str] = None
    previous_status: Optional[PaymentStatus] = None
    payment_status: Optional[PaymentStatus] = None
    order_status: Optional[OrderStatus] = None
    error: Optional[EngineError] = None
    side_effect_errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "reference_id": self.reference_id,
            "previous_status": self.previous_status.value if self.previous_status else None,
            "payment_status": self.payment_status.value if self.payment_status else None,
            "order_status": self.order_status.value if self.order_status else None,
            "error_code": self.error.code if self.error else None,
            "side_effect_errors": list(self.side_effect_errors),
        }


class WebhookProcessor:
    """
    支付回调处理（Payment.status 的唯一写入方）

      1) 校验回调 token（mock 恒通过）
      2) external_id → Payment；找不到 → ignored（外部 / 未知回调，不算错）
      3) 渠道状态 → 内部状态（固定映射，不认识 → pending）
      4) 与当前一致 → duplicate（上次订单迁移没走完则补做）；当前已是终态 → stale（终态不回退）
      5) CAS 写状态 + 渠道分类 + 回调元数据，commit 后驱动订单迁移
      6) PAID：出票 + 成功通知（由迁移负责），另排活动提醒
      7) FAILED / EXPIRED：订单过期（回补 + 作废票），失败通知

    任何内部异常都转成 ok=False 的结果，HTTP 层照样回 200。
    """

    def __init__(
        self,
        config: EngineConfig,
        *,
        gateway: PaymentGateway,
        lifecycle: OrderLifecycleManager,
        notifier: NotificationDispatcher,
    ) -> None:
        self._cfg = config
        self._gateway = gateway
        self._lifecycle = lifecycle
        self._notifier = notifier

    async def handle(
        self,
        session: AsyncSession,
        payload: Mapping[str, Any],
        token: Optional[str],
        *,
        trusted: bool = False,
        now: Optional[datetime] = None,
    ) -> WebhookOutcome:
        ref = str(payload.get("external_id") or payload.get("externalId") or "") or None
        try:
            outcome = await self._handle(session, payload, token, ref, trusted=trusted, now=now or utcnow())
        except Exception as e:
            await session.rollback()
            log.exception("webhook processing failed ref=%s: %s", ref, e)
            outcome = WebhookOutcome(
                ok=False,
                status=WebhookStatus.FAILED,
                message=f"internal error: {type(e).__name__}",
                reference_id=ref,
            )
        webhook_outcomes_total.labels(outcome.status.value).inc()
        return outcome

    async def _handle(
        self,
        session: AsyncSession,
        payload: Mapping[str, Any],
        token: Optional[str],
        ref: Optional[str],
        *,
        trusted: bool,
        now: datetime,
    ) -> WebhookOutcome:
        # 1) token
        if not trusted and not self._gateway.verify_callback_token(token):
            log.warning("webhook rejected: invalid callback token ref=%s", ref)
            return WebhookOutcome(
                ok=False,
                status=WebhookStatus.REJECTED,
                message="invalid callback token",
                reference_id=ref,
                error=EngineError.authentication("invalid_callback_token", "invalid callback token"),
            )

        # 2) 定位支付单
        if not ref:
            return WebhookOutcome(ok=True, status=WebhookStatus.IGNORED, message="missing external_id")
        payment = await payment_repo.get_by_reference(session, ref)
        if payment is None:
            log.warning("payment not found for webhook external_id=%s (ignored)", ref)
            return WebhookOutcome(ok=True, status=WebhookStatus.IGNORED, message="ignored", reference_id=ref)

        # 3) 状态映射
        raw_status = str(payload.get("status") or "")
        mapped = map_provider_status(raw_status)
        current = payment.status
        log.info("webhook received ref=%s status=%s mapped=%s current=%s", ref, raw_status, mapped.value, current.value)

        # 4) 幂等 / 单调
        if mapped == current:
            resumed = await self._resume_order(session, payment, ref, payload, now=now)
            if resumed is not None:
                return resumed
            return self._unchanged(WebhookStatus.DUPLICATE, "webhook already processed", ref, current)
        if current in TERMINAL_PAYMENT_STATUSES:
            log.warning("stale webhook ignored ref=%s current=%s incoming=%s", ref, current.value, mapped.value)
            return self._unchanged(WebhookStatus.STALE, "payment already final", ref, current)

        # 5) CAS 写支付状态
        channel, channel_code = infer_channel(payload)
        meta = dict(payment.meta or {})
        for src, dst in _META_FIELDS.items():
            if payload.get(src) is not None:
                meta[dst] = payload.get(src)
        meta["lastWebhookStatus"] = raw_status

        values: Dict[str, Any] = {"meta": meta}
        if channel is not None:
            values["channel"] = channel
            values["channel_code"] = channel_code
        paid_at: Optional[datetime] = None
        if mapped == PaymentStatus.PAID:
            paid_at = parse_datetime(payload.get("paid_at")) or now
            values["paid_at"] = paid_at

        hit = await payment_repo.update_status_if(
            session, payment.id, expected=current, new_status=mapped, values=values
        )
        if not hit:
            # 并发的同一回调已经写过
            await session.rollback()
            latest = await payment_repo.get_by_reference(session, ref)
            latest_status = latest.status if latest is not None else current
            kind = WebhookStatus.DUPLICATE if latest_status == mapped else WebhookStatus.STALE
            return self._unchanged(kind, "payment changed concurrently", ref, latest_status)
        await session.commit()
        log.info("payment status updated ref=%s: %s -> %s", ref, current.value, mapped.value)

        outcome = WebhookOutcome(
            ok=True,
            status=WebhookStatus.APPLIED,
            message="payment status updated",
            reference_id=ref,
            previous_status=current,
            payment_status=mapped,
        )

        # 6) / 7) 驱动订单
        if mapped == PaymentStatus.PAID:
            await self._apply_paid(session, payment.order_id, outcome, paid_at=paid_at, payload=payload, now=now)
        elif mapped in (PaymentStatus.FAILED, PaymentStatus.EXPIRED):
            await self._apply_failed(session, payment.order_id, payment.id, outcome, mapped, now=now)

        return outcome

    async def _resume_order(
        self,
        session: AsyncSession,
        payment: Payment,
        ref: str,
        payload: Mapping[str, Any],
        *,
        now: datetime,
    ) -> Optional[WebhookOutcome]:
        """
        重投的终态回调：支付单已写好，但上次订单迁移没走完（异常 / 崩溃）。
        订单仍未终结时重新驱动一次；transition 幂等，通知有 dedup_key。
        """
        status = payment.status
        if status not in TERMINAL_PAYMENT_STATUSES:
            return None
        payment_id, order_id, paid_at = payment.id, payment.order_id, as_utc(payment.paid_at)
        order = await order_repo.get_order(session, order_id)
        if order is None or order.status in TERMINAL_ORDER_STATUSES:
            return None

        log.warning(
            "resuming order transition ref=%s order=%s payment=%s order_status=%s",
            ref,
            order.order_no,
            status.value,
            order.status.value,
        )
        outcome = WebhookOutcome(
            ok=True,
            status=WebhookStatus.APPLIED,
            message="order transition resumed",
            reference_id=ref,
            previous_status=status,
            payment_status=status,
        )
        if status == PaymentStatus.PAID:
            await self._apply_paid(session, order_id, outcome, paid_at=paid_at or now, payload=payload, now=now)
        else:
            await self._apply_failed(session, order_id, payment_id, outcome, status, now=now)
        return outcome

    async def _apply_paid(
        self,
        session: AsyncSession,
        order_id: str,
        outcome: WebhookOutcome,
        *,
        paid_at: Optional[datetime],
        payload: Mapping[str, Any],
        now: datetime,
    ) -> None:
        moved = await self._lifecycle.transition(
            session,
            order_id,
            OrderStatus.PAID,
            context={
                "paid_at": paid_at,
                "payment_method": payload.get("payment_method"),
                "payment_channel": payload.get("payment_channel"),
                "bank_code": payload.get("bank_code"),
            },
            now=now,
        )
        if not moved.ok:
            # 典型场景：扫描器已先把订单置为 EXPIRED，钱收到了但订单不能再 PAID（需人工退款）
            err = moved.error
            log.error(
                "paid webhook could not move order=%s: %s (%s)",
                order_id,
                err.code if err else "-",
                err.message if err else "-",
            )
            outcome.ok = False
            outcome.error = err
            outcome.message = "payment recorded but order transition failed"
            current = await order_repo.get_order(session, order_id)
            outcome.order_status = current.status if current is not None else None
            return

        t = moved.unwrap()
        outcome.order_status = t.order.status
        outcome.side_effect_errors.extend(t.side_effect_errors)
        await self._schedule_reminder(session, t.order.id, t.order.event_id, outcome, now=now)

    async def _schedule_reminder(
        self,
        session: AsyncSession,
        order_id: str,
        event_id: str,
        outcome: WebhookOutcome,
        *,
        now: datetime,
    ) -> None:
        event = await order_repo.get_event(session, event_id)
        order = await order_repo.get_order(session, order_id)
        if event is None or order is None:
            return
        starts_at = as_utc(event.starts_at)
        remind_at = starts_at - timedelta(hours=self._cfg.reminder_hours_before)  # type: ignore[operator]
        if remind_at <= now:
            log.debug("reminder skipped order=%s: reminder time already passed", order.order_no)
            return

        await best_effort(
            session,
            "event_reminder",
            lambda: self._notifier.schedule(
                session,
                NotificationCategory.EVENT_REMINDER,
                order.buyer_id,
                {
                    "order_id": order.id,
                    "order_no": order.order_no,
                    "event_title": event.title,
                    "event_starts_at": starts_at,
                    "email": order.buyer_email,
                },
                at=remind_at,
                dedup_key=f"event_reminder:{order.id}",
            ),
            errors=outcome.side_effect_errors,
            order_id=order_id,
        )

    async def _apply_failed(
        self,
        session: AsyncSession,
        order_id: str,
        payment_id: str,
        outcome: WebhookOutcome,
        mapped: PaymentStatus,
        *,
        now: datetime,
    ) -> None:
        moved = await self._lifecycle.transition(
            session, order_id, OrderStatus.EXPIRED, context={"payment_status": mapped.value}, now=now
        )
        if not moved.ok:
            err = moved.error
            current = await order_repo.get_order(session, order_id)
            outcome.order_status = current.status if current is not None else None
            if current is not None and current.status in _CLOSED_UNPAID:
                # 买家已取消：库存早已回补，无事可做
                log.info("failed webhook for closed order=%s status=%s, nothing to do", order_id, current.status.value)
                outcome.message = "payment recorded; order already closed"
                return
            log.warning("failed webhook could not expire order=%s: %s", order_id, err.code if err else "-")
            outcome.ok = False
            outcome.error = err
            outcome.message = "payment recorded but order transition failed"
            return

        order = moved.unwrap().order
        outcome.order_status = order.status
        await best_effort(
            session,
            "payment_failed_notification",
            lambda: self._lifecycle.notify_order(
                session,
                NotificationCategory.PAYMENT_FAILED,
                order,
                dedup_key=f"payment_failed:{payment_id}",
                extra={"payment_status": mapped.value},
            ),
            errors=outcome.side_effect_errors,
            order_id=order_id,
        )

    def _unchanged(
        self, kind: WebhookStatus, message: str, ref: str, current: PaymentStatus
    ) -> WebhookOutcome:
        return WebhookOutcome(
            ok=True,
            status=kind,
            message=message,
            reference_id=ref,
            previous_status=current,
            payment_status=current,
        )
