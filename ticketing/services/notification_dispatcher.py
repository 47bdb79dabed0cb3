# ticketing/services/notification_dispatcher.py
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.domain.ports import MailSender
from ticketing.models.enums import (
    NotificationCategory,
    NotificationChannel,
    NotificationStatus,
)
from ticketing.models.notification import Notification
from ticketing.obs.metrics import notifications_dispatched_total
from ticketing.utils.time import utcnow

log = logging.getLogger("ticketing.notifications")

# (subject, message 模板)；模板字段缺失时退回原样 subject
_TEMPLATES: Dict[NotificationCategory, Tuple[str, str]] = {
    NotificationCategory.PAYMENT_PENDING: (
        "Awaiting payment",
        "Please complete the payment for order {order_no}.",
    ),
    NotificationCategory.PAYMENT_SUCCESS: (
        "Payment successful",
        "Payment for order {order_no} was successful.",
    ),
    NotificationCategory.PAYMENT_FAILED: (
        "Payment failed or expired",
        "Order {order_no} failed or expired.",
    ),
    NotificationCategory.ORDER_CANCELLED: (
        "Order cancelled",
        "Order {order_no} has been cancelled.",
    ),
    NotificationCategory.ORDER_EXPIRED: (
        "Order expired",
        "Order {order_no} expired before payment was completed.",
    ),
    NotificationCategory.EVENT_REMINDER: (
        "Event reminder",
        "{event_title} starts soon.",
    ),
}


def render_message(category: NotificationCategory, payload: Dict[str, Any]) -> Tuple[str, str]:
    subject, tmpl = _TEMPLATES[category]
    try:
        return subject, tmpl.format(**payload)
    except (KeyError, IndexError):
        return subject, subject


class LoggingMailSender:
    """默认邮件发送器：只记日志（真实 SMTP / 模板渲染是外部协作方）。"""

    async def send_mail(self, notification: Notification) -> None:
        log.info(
            "MAIL to user=%s category=%s subject=%r",
            notification.user_id,
            notification.category.value,
            notification.subject,
        )


class DbNotificationDispatcher:
    """
    通知落库：
      - send()     : 站内信，立即可见（status=sent）
      - schedule() : 待发邮件（status=pending + scheduled_at），由 dispatch_due_notifications 投递

    dedup_key 非空时幂等：同 key 第二次调用返回已有记录，不再插入。
    事务边界由调用方负责（本类只 flush，不 commit）。
    """

    async def send(
        self,
        session: AsyncSession,
        category: NotificationCategory,
        user_id: str,
        payload: Dict[str, Any],
        *,
        dedup_key: Optional[str] = None,
    ) -> Optional[Notification]:
        return await self._record(
            session,
            category=category,
            user_id=user_id,
            payload=payload,
            channel=NotificationChannel.IN_APP,
            status=NotificationStatus.SENT,
            scheduled_at=None,
            dedup_key=dedup_key,
        )

    async def schedule(
        self,
        session: AsyncSession,
        category: NotificationCategory,
        user_id: str,
        payload: Dict[str, Any],
        *,
        at: datetime,
        dedup_key: Optional[str] = None,
    ) -> Optional[Notification]:
        return await self._record(
            session,
            category=category,
            user_id=user_id,
            payload=payload,
            channel=NotificationChannel.EMAIL,
            status=NotificationStatus.PENDING,
            scheduled_at=at,
            dedup_key=dedup_key,
        )

    async def _record(
        self,
        session: AsyncSession,
        *,
        category: NotificationCategory,
        user_id: str,
        payload: Dict[str, Any],
        channel: NotificationChannel,
        status: NotificationStatus,
        scheduled_at: Optional[datetime],
        dedup_key: Optional[str],
    ) -> Optional[Notification]:
        if dedup_key:
            existing = await _find_by_dedup(session, dedup_key)
            if existing is not None:
                log.debug("notification dedup hit key=%s", dedup_key)
                return existing

        subject, message = render_message(category, payload)
        now = utcnow()
        row = Notification(
            id=str(uuid.uuid4()),
            user_id=user_id,
            category=category,
            channel=channel,
            subject=subject,
            message=message,
            payload=_jsonable(payload),
            status=status,
            scheduled_at=scheduled_at,
            sent_at=now if status == NotificationStatus.SENT else None,
            dedup_key=dedup_key,
        )

        # 并发下同 key 可能同时插入：savepoint 内插入，撞唯一约束就回读
        try:
            async with session.begin_nested():
                session.add(row)
                await session.flush()
        except IntegrityError:
            if not dedup_key:
                raise
            return await _find_by_dedup(session, dedup_key)

        log.info("notification recorded category=%s user=%s channel=%s", category.value, user_id, channel.value)
        return row


async def _find_by_dedup(session: AsyncSession, dedup_key: str) -> Optional[Notification]:
    stmt = select(Notification).where(Notification.dedup_key == dedup_key)
    return (await session.execute(stmt)).scalars().first()


def _jsonable(payload: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for k, v in payload.items():
        if isinstance(v, datetime):
            out[k] = v.isoformat()
        elif v is None or isinstance(v, (str, int, float, bool, list, dict)):
            out[k] = v
        else:
            out[k] = str(v)
    return out


async def dispatch_due_notifications(
    session: AsyncSession,
    sender: Optional[MailSender] = None,
    *,
    now: Optional[datetime] = None,
    limit: int = 100,
) -> Dict[str, int]:
    """
    投递到期的待发邮件（scheduled_at <= now 或未设时间），逐条标记 sent / failed。
    单条失败不影响其它；最后统一 commit。
    """
    if now is None:
        now = utcnow()
    sender = sender or LoggingMailSender()

    stmt = (
        select(Notification)
        .where(
            Notification.channel == NotificationChannel.EMAIL,
            Notification.status == NotificationStatus.PENDING,
            (Notification.scheduled_at.is_(None)) | (Notification.scheduled_at <= now),
        )
        .order_by(Notification.scheduled_at.asc())
        .limit(limit)
    )
    rows = list((await session.execute(stmt)).scalars().all())

    sent = failed = 0
    for n in rows:
        try:
            await sender.send_mail(n)
        except Exception as e:
            log.error("mail delivery failed id=%s category=%s: %s", n.id, n.category.value, e)
            n.status = NotificationStatus.FAILED
            failed += 1
            continue
        n.status = NotificationStatus.SENT
        n.sent_at = now
        sent += 1

    await session.commit()
    if sent:
        notifications_dispatched_total.labels("sent").inc(sent)
    if failed:
        notifications_dispatched_total.labels("failed").inc(failed)
    return {"sent": sent, "failed": failed}
