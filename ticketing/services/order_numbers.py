# ticketing/services/order_numbers.py
from __future__ import annotations

import secrets
import string
from datetime import datetime
from typing import Optional

from ticketing.utils.time import utcnow

_ALPHABET = string.ascii_uppercase + string.digits


def _rand(n: int) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(n))


def _day(now: Optional[datetime]) -> str:
    return (now or utcnow()).strftime("%Y%m%d")


def new_order_no(now: Optional[datetime] = None) -> str:
    """ORD-YYYYMMDD-XXXXXX"""
    return f"ORD-{_day(now)}-{_rand(6)}"


def new_invoice_no(now: Optional[datetime] = None) -> str:
    """INV-YYYYMMDD-XXXXXX"""
    return f"INV-{_day(now)}-{_rand(6)}"


def new_payment_reference(now: Optional[datetime] = None) -> str:
    """PAY-YYYYMMDD-XXXXXXXXXX（与渠道对账的 external_id）"""
    return f"PAY-{_day(now)}-{_rand(10)}"


def new_ticket_number(order_no: str, seq: int, now: Optional[datetime] = None) -> str:
    """TCK-{order_no}-{seq:03d}-{epoch_ms}"""
    ts = now or utcnow()
    return f"TCK-{order_no}-{seq:03d}-{int(ts.timestamp() * 1000)}"


def seat_label(offset: int) -> str:
    """
    座位号：每排 26 座，排号 A..Z, AA, AB, ...（类似表格列名）。
    offset 从 0 开始：0 → A1，25 → A26，26 → B1，676 → AA1。
    """
    if offset < 0:
        raise ValueError("seat offset must be >= 0")
    row_idx, seat = divmod(offset, 26)
    row = ""
    n = row_idx + 1
    while n > 0:
        n, rem = divmod(n - 1, 26)
        row = chr(ord("A") + rem) + row
    return f"{row}{seat + 1}"
