# ticketing/services/engine.py
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

import httpx

from ticketing.core.config import EngineConfig, get_settings
from ticketing.domain.ports import ArtifactRenderer, NotificationDispatcher, PaymentGateway
from ticketing.services.artifact_renderer import UrlArtifactRenderer
from ticketing.services.inventory_ledger import InventoryLedger
from ticketing.services.notification_dispatcher import DbNotificationDispatcher
from ticketing.services.order_lifecycle import OrderLifecycleManager
from ticketing.services.payment_gateway import build_payment_gateway
from ticketing.services.payment_service import PaymentService
from ticketing.services.ticket_issuer import TicketIssuer
from ticketing.services.webhook_processor import WebhookProcessor


@dataclass
class TicketingEngine:
    config: EngineConfig
    ledger: InventoryLedger
    gateway: PaymentGateway
    payments: PaymentService
    tickets: TicketIssuer
    notifier: NotificationDispatcher
    lifecycle: OrderLifecycleManager
    webhooks: WebhookProcessor


def build_engine(
    config: EngineConfig,
    *,
    gateway: Optional[PaymentGateway] = None,
    renderer: Optional[ArtifactRenderer] = None,
    notifier: Optional[NotificationDispatcher] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> TicketingEngine:
    """组装各组件（构造注入）；测试可替换渠道 / 渲染器 / 通知实现。"""
    ledger = InventoryLedger()
    gw = gateway or build_payment_gateway(config, transport=transport)
    payments = PaymentService(gw)
    tickets = TicketIssuer(renderer or UrlArtifactRenderer(config.public_url), ledger)
    notif = notifier or DbNotificationDispatcher()
    lifecycle = OrderLifecycleManager(
        config, payments=payments, tickets=tickets, notifier=notif, ledger=ledger
    )
    webhooks = WebhookProcessor(config, gateway=gw, lifecycle=lifecycle, notifier=notif)
    payments.bind_webhooks(webhooks)
    return TicketingEngine(
        config=config,
        ledger=ledger,
        gateway=gw,
        payments=payments,
        tickets=tickets,
        notifier=notif,
        lifecycle=lifecycle,
        webhooks=webhooks,
    )


@lru_cache
def get_ticketing_engine() -> TicketingEngine:
    """进程内单例（mock 渠道的内存状态需要跨请求共享）。"""
    return build_engine(EngineConfig.from_settings(get_settings()))
