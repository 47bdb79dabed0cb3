# ticketing/services/payment_gateway_xendit.py
from __future__ import annotations

import logging
import secrets
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from ticketing.core.config import EngineConfig
from ticketing.domain.ports import PaymentIntent, PaymentIntentRequest, StatusSnapshot
from ticketing.models.enums import PaymentProvider
from ticketing.services.errors import EngineError, Result
from ticketing.utils.time import parse_datetime

log = logging.getLogger("ticketing.payments.xendit")


def _num(v: Decimal) -> Any:
    # Xendit 金额是 JSON number；整数金额不带小数点
    return int(v) if v == v.to_integral_value() else float(v)


class XenditPaymentGateway:
    """
    Xendit Invoice API（httpx.AsyncClient，Basic auth：secret key + 空密码）

      POST /v2/invoices                 建发票（金额 = 订单总额 + 手续费）
      GET  /v2/invoices/{id}            查状态
      POST /invoices/{id}/expire!       作废发票

    发票 id 存在 Payment.metadata["xenditInvoiceId"]，后续查询 / 作废都靠它。
    """

    provider = PaymentProvider.XENDIT.value

    def __init__(
        self,
        config: EngineConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._cfg = config
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._cfg.xendit_api_base,
            auth=(self._cfg.xendit_secret_key, ""),
            timeout=self._cfg.http_timeout_seconds,
            transport=self._transport,
        )

    def build_invoice_payload(self, request: PaymentIntentRequest) -> Dict[str, Any]:
        fee = self._cfg.admin_fee
        return {
            "external_id": request.reference_id,
            "amount": _num(request.amount + fee),
            "payer_email": request.payer_email,
            "description": request.description,
            "invoice_duration": self._cfg.invoice_duration_seconds,
            "success_redirect_url": self._cfg.success_redirect_url,
            "failure_redirect_url": self._cfg.failure_redirect_url,
            "currency": self._cfg.currency,
            "items": [
                {
                    "name": it.name,
                    "quantity": it.quantity,
                    "price": _num(it.price),
                    "category": it.category or "Event",
                }
                for it in request.items
            ],
            "fees": [{"type": "Admin Fee", "value": _num(fee)}],
        }

    async def create_intent(self, request: PaymentIntentRequest) -> Result[PaymentIntent]:
        body = self.build_invoice_payload(request)
        if not request.payer_email:
            body.pop("payer_email")

        try:
            async with self._client() as client:
                resp = await client.post("/v2/invoices", json=body)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as e:
            log.error(
                "xendit create invoice failed ref=%s status=%s body=%s",
                request.reference_id,
                e.response.status_code,
                e.response.text[:500],
            )
            return Result.failure(
                EngineError.upstream(
                    "payment_provider_error",
                    f"invoice creation rejected ({e.response.status_code})",
                    reference_id=request.reference_id,
                )
            )
        except httpx.HTTPError as e:
            log.error("xendit create invoice transport error ref=%s: %s", request.reference_id, e)
            return Result.failure(
                EngineError.upstream(
                    "payment_provider_unreachable", str(e) or type(e).__name__, reference_id=request.reference_id
                )
            )

        invoice_id = data.get("id")
        invoice_url = data.get("invoice_url")
        if not invoice_id or not invoice_url:
            return Result.failure(
                EngineError.upstream(
                    "payment_provider_error", "invoice response missing id/invoice_url", reference_id=request.reference_id
                )
            )

        fee = self._cfg.admin_fee
        return Result.success(
            PaymentIntent(
                reference_id=request.reference_id,
                redirect_url=str(invoice_url),
                provider_status=str(data.get("status") or "PENDING"),
                provider=self.provider,
                metadata={
                    "xenditInvoiceId": invoice_id,
                    "orderNumber": request.order_no,
                    "adminFee": str(fee),
                    "totalWithFee": str(request.amount + fee),
                    "xenditExpiryDate": data.get("expiry_date"),
                },
            )
        )

    async def check_status(
        self, reference_id: str, metadata: Optional[Dict[str, Any]] = None
    ) -> Result[StatusSnapshot]:
        invoice_id = (metadata or {}).get("xenditInvoiceId")
        if not invoice_id:
            return Result.failure(
                EngineError.invalid_state("invoice_id_missing", "xendit invoice id not found", reference_id=reference_id)
            )
        return await self._invoice_call("GET", f"/v2/invoices/{invoice_id}", reference_id)

    async def expire(
        self, reference_id: str, metadata: Optional[Dict[str, Any]] = None
    ) -> Result[StatusSnapshot]:
        invoice_id = (metadata or {}).get("xenditInvoiceId")
        if not invoice_id:
            return Result.failure(
                EngineError.invalid_state("invoice_id_missing", "xendit invoice id not found", reference_id=reference_id)
            )
        return await self._invoice_call("POST", f"/invoices/{invoice_id}/expire!", reference_id)

    async def _invoice_call(self, method: str, path: str, reference_id: str) -> Result[StatusSnapshot]:
        try:
            async with self._client() as client:
                resp = await client.request(method, path)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPError as e:
            log.error("xendit %s %s failed ref=%s: %s", method, path, reference_id, e)
            return Result.failure(
                EngineError.upstream("payment_provider_error", str(e) or type(e).__name__, reference_id=reference_id)
            )

        return Result.success(
            StatusSnapshot(
                reference_id=reference_id,
                provider_status=str(data.get("status") or ""),
                paid_at=parse_datetime(data.get("paid_at")),
                payment_method=data.get("payment_method"),
                payment_channel=data.get("payment_channel"),
                raw=data,
            )
        )

    def verify_callback_token(self, token: Optional[str]) -> bool:
        expected = self._cfg.xendit_webhook_token
        if not expected or not token:
            return False
        return secrets.compare_digest(token.encode("utf-8"), expected.encode("utf-8"))
