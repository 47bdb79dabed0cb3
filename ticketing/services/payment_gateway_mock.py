# ticketing/services/payment_gateway_mock.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from ticketing.domain.ports import PaymentIntent, PaymentIntentRequest, StatusSnapshot
from ticketing.models.enums import PaymentChannelCode, PaymentProvider
from ticketing.services.errors import EngineError, Result
from ticketing.utils.time import utcnow

log = logging.getLogger("ticketing.payments.mock")

SIMULATE_STATUSES = ("PAID", "FAILED", "EXPIRED")


class MockPaymentGateway:
    """
    本地假渠道（无外部依赖）：
      - create_intent 生成 {app_url}/mock-payment/{ref}?method=...
      - 状态只会被 simulate() 改变；simulate 返回渠道形状的回调 payload，
        由调用方交给 WebhookProcessor（状态仍只由 WebhookProcessor 落库）
      - 回调 token 一律放行
    """

    provider = PaymentProvider.MOCK.value

    def __init__(self, app_url: str) -> None:
        self._app_url = app_url.rstrip("/")
        self._statuses: Dict[str, str] = {}

    async def create_intent(self, request: PaymentIntentRequest) -> Result[PaymentIntent]:
        method = request.payment_method or PaymentChannelCode.VARIOUS.value
        url = f"{self._app_url}/mock-payment/{request.reference_id}?{urlencode({'method': method})}"
        self._statuses[request.reference_id] = "PENDING"
        log.info("mock intent created ref=%s amount=%s", request.reference_id, request.amount)
        return Result.success(
            PaymentIntent(
                reference_id=request.reference_id,
                redirect_url=url,
                provider_status="PENDING",
                provider=self.provider,
                metadata={
                    "orderNumber": request.order_no,
                    "mockPayment": True,
                    "instructions": "This is a mock payment. Use /payments/simulate to complete it.",
                },
            )
        )

    async def check_status(
        self, reference_id: str, metadata: Optional[Dict[str, Any]] = None
    ) -> Result[StatusSnapshot]:
        status = self._statuses.get(reference_id)
        if status is None:
            return Result.failure(
                EngineError.not_found("intent_not_found", "unknown mock reference", reference_id=reference_id)
            )
        return Result.success(StatusSnapshot(reference_id=reference_id, provider_status=status))

    async def expire(
        self, reference_id: str, metadata: Optional[Dict[str, Any]] = None
    ) -> Result[StatusSnapshot]:
        # 进程重启后内存状态丢失：未知引用也按“可过期”处理
        self._statuses[reference_id] = "EXPIRED"
        return Result.success(StatusSnapshot(reference_id=reference_id, provider_status="EXPIRED"))

    def verify_callback_token(self, token: Optional[str]) -> bool:
        return True

    def simulate(self, reference_id: str, status: str) -> Dict[str, Any]:
        """改内存状态，并返回一份与真实渠道回调同形状的 payload。"""
        st = (status or "").strip().upper()
        if st not in SIMULATE_STATUSES:
            raise ValueError(f"status must be one of {SIMULATE_STATUSES}, got {status!r}")
        self._statuses[reference_id] = st
        payload: Dict[str, Any] = {
            "external_id": reference_id,
            "status": st,
            "payment_method": "simulation",
        }
        if st == "PAID":
            payload["paid_at"] = utcnow().isoformat()
        return payload
