from ticketing.models.event import Event
from ticketing.models.notification import Notification
from ticketing.models.order import Order
from ticketing.models.payment import Payment
from ticketing.models.ticket import Ticket

__all__ = ["Event", "Notification", "Order", "Payment", "Ticket"]
