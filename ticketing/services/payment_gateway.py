# ticketing/services/payment_gateway.py
from __future__ import annotations

import logging
from typing import Optional

import httpx

from ticketing.core.config import EngineConfig
from ticketing.domain.ports import PaymentGateway
from ticketing.services.payment_gateway_mock import MockPaymentGateway
from ticketing.services.payment_gateway_xendit import XenditPaymentGateway

log = logging.getLogger("ticketing.payments")


def build_payment_gateway(
    config: EngineConfig,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> PaymentGateway:
    """
    部署期一次性选定渠道实现（PAYMENT_MODE=mock|xendit），请求路径上不再分支。
    transport 只给测试注入 httpx.MockTransport 用。
    """
    if config.is_mock:
        log.info("payment gateway: mock (app_url=%s)", config.app_url)
        return MockPaymentGateway(config.app_url)
    log.info("payment gateway: xendit (api=%s)", config.xendit_api_base)
    return XenditPaymentGateway(config, transport=transport)
