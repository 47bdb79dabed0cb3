# ticketing/schemas/tickets.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from ticketing.models.enums import TicketStatus
from ticketing.schemas.common import _Base


class TicketOut(_Base):
    id: str
    order_id: str
    event_id: str
    ticket_number: str
    seat_number: str
    status: TicketStatus
    checked_in: bool
    checked_in_at: Optional[datetime] = None
    checked_in_by: Optional[str] = None
    qr_url: Optional[str] = None
    pdf_url: Optional[str] = None


class TicketValidationOut(_Base):
    valid: bool
    message: str
    ticket: Optional[TicketOut] = None
