# ticketing/services/payment_mapping.py
"""
渠道词汇 → 内部枚举 的固定映射表。

- map_provider_status : 渠道状态串 → PaymentStatus（不认识的一律 PENDING）
- channel_for_method  : 下单时选择的支付方式 → (channel, channel_code)
- infer_channel       : 回调字段（bank_code / payment_channel / payment_method）→ (channel, channel_code)
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Tuple

from ticketing.models.enums import PaymentChannel, PaymentChannelCode, PaymentStatus

PROVIDER_STATUS_MAP: Dict[str, PaymentStatus] = {
    "PAID": PaymentStatus.PAID,
    "SETTLED": PaymentStatus.PAID,
    "EXPIRED": PaymentStatus.EXPIRED,
    "FAILED": PaymentStatus.FAILED,
}

VA_BANKS = frozenset({"BCA", "BNI", "BRI", "MANDIRI", "PERMATA"})
E_WALLETS = frozenset({"OVO", "DANA", "SHOPEEPAY", "LINKAJA"})
RETAIL_OUTLETS = frozenset({"ALFAMART", "INDOMARET"})

ChannelPair = Tuple[Optional[PaymentChannel], Optional[PaymentChannelCode]]


def map_provider_status(raw: Optional[str]) -> PaymentStatus:
    return PROVIDER_STATUS_MAP.get((raw or "").strip().upper(), PaymentStatus.PENDING)


def _code(value: Optional[str]) -> Optional[PaymentChannelCode]:
    v = (value or "").strip().upper()
    if not v:
        return None
    try:
        return PaymentChannelCode(v)
    except ValueError:
        return None


def _classify(code: PaymentChannelCode) -> Optional[PaymentChannel]:
    v = code.value
    if v in VA_BANKS:
        return PaymentChannel.VIRTUAL_ACCOUNT
    if v in E_WALLETS:
        return PaymentChannel.E_WALLET
    if v in RETAIL_OUTLETS:
        return PaymentChannel.RETAIL_OUTLET
    if code is PaymentChannelCode.QRIS:
        return PaymentChannel.QRIS
    if code is PaymentChannelCode.CREDIT_CARD:
        return PaymentChannel.CREDIT_CARD
    return None


def channel_for_method(method: Optional[str]) -> ChannelPair:
    """下单时的 payment_method；'various'（让用户在收银台选）不分类。"""
    if not method or method.strip().lower() == PaymentChannelCode.VARIOUS.value:
        return None, None
    code = _code(method)
    if code is None:
        return None, None
    channel = _classify(code)
    return (channel, code) if channel is not None else (None, None)


def infer_channel(payload: Mapping[str, Any]) -> ChannelPair:
    """
    回调推断，优先级：
      1) bank_code → 虚拟账户
      2) payment_channel / payment_method == QRIS
      3) payment_method 或 payment_channel 命中已知渠道码
    """
    bank = _code(payload.get("bank_code"))
    if bank is not None and bank.value in VA_BANKS:
        return PaymentChannel.VIRTUAL_ACCOUNT, bank

    pc = str(payload.get("payment_channel") or "").upper()
    pm = str(payload.get("payment_method") or "").upper()
    if pc == "QRIS" or pm == "QRIS":
        return PaymentChannel.QRIS, PaymentChannelCode.QRIS

    for raw in (pm, pc):
        code = _code(raw)
        if code is None:
            continue
        channel = _classify(code)
        if channel is not None:
            return channel, code
    return None, None
