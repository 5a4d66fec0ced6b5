"""
Mock integrations with third-party services: order e-mails, printable
receipts and a chat share link.

None of these talk to a real provider.  The e-mail service hands messages
to a pluggable ``transport`` (by default it only logs them and keeps a copy
in ``sent``), the receipt service writes a plain-text receipt file, and the
chat service builds a ``wa.me`` deep link.  They are called from the
outbound queue in :mod:`outbox`, never from the order mutation path.
"""

from __future__ import annotations

import logging
import os
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Optional
from urllib.parse import quote

from models import Order, User

logger = logging.getLogger(__name__)

CHAT_SHARE_URL = "https://wa.me/?text="

# Sent messages and links kept for inspection
SENT_HISTORY = 200


class ExternalServiceError(RuntimeError):
    """A third-party call failed."""


def _money(amount: float, symbol: str) -> str:
    return f"{symbol}{amount:,.2f}"


@dataclass
class EmailMessage:
    template: str
    to: Optional[str]
    params: Dict[str, Any]


class EmailService:
    """Simulate a transactional e-mail provider.

    ``transport`` receives each :class:`EmailMessage`; raising from it marks
    the send as failed.
    """

    ORDER_PLACED = "order_placed"
    ORDER_DELIVERED = "order_delivered"

    def __init__(
        self,
        company_name: str = "FarmFresh Agro",
        transport: Optional[Callable[[EmailMessage], None]] = None,
    ) -> None:
        self.company_name = company_name
        self.transport = transport
        self.sent: Deque[EmailMessage] = deque(maxlen=SENT_HISTORY)

    def _params(self, order: Order) -> Dict[str, Any]:
        return {
            "order_id": order.id,
            "customer_name": order.user_name,
            "product_name": ", ".join(i.name for i in order.items),
            "order_date": order.order_date,
            "amount": order.amount,
            "company_name": self.company_name,
        }

    def _send(self, template: str, order: Order, to: Optional[str]) -> bool:
        message = EmailMessage(template=template, to=to, params=self._params(order))
        if self.transport is not None:
            try:
                self.transport(message)
            except Exception as e:
                raise ExternalServiceError(f"{template} e-mail for order {order.id} failed: {e}") from e
        self.sent.append(message)
        logger.info(
            "E-mail sent",
            extra={"request_id": str(order.id), "extra": {"template": template, "to": to}},
        )
        return True

    def send_order_email(self, order: Order, to: Optional[str] = None) -> bool:
        return self._send(self.ORDER_PLACED, order, to)

    def send_delivery_email(self, order: Order, to: Optional[str] = None) -> bool:
        return self._send(self.ORDER_DELIVERED, order, to)


class ReceiptService:
    """Write a printable receipt for a delivered order.

    Stands in for the PDF generator of a real deployment: the receipt is
    plain text, one file per order, under ``receipt_dir``.
    """

    def __init__(self, receipt_dir: str = "receipts", company_name: str = "FarmFresh Agro",
                 currency_symbol: str = "₹") -> None:
        self.receipt_dir = receipt_dir
        self.company_name = company_name
        self.currency_symbol = currency_symbol

    def render(self, order: Order) -> str:
        products = ", ".join(f"{i.name} x{i.quantity or 1}" for i in order.items)
        lines = [
            "Order Receipt",
            f"Order ID: {order.id}",
            f"Customer: {order.user_name}",
            f"Product(s): {products}",
            f"Amount: {_money(order.amount, self.currency_symbol)}",
            "Status: Delivered",
            f"Order Date: {order.order_date}",
            "",
            f"Thank you for shopping with {self.company_name}",
        ]
        return "\n".join(lines) + "\n"

    def generate_receipt(self, order: Order) -> str:
        """Write the receipt and return its path."""
        try:
            os.makedirs(self.receipt_dir, exist_ok=True)
            path = os.path.join(self.receipt_dir, f"Receipt_{order.id}.txt")
            with open(path, "w", encoding="utf-8") as f:
                f.write(self.render(order))
        except OSError as e:
            raise ExternalServiceError(f"receipt for order {order.id} not written: {e}") from e
        logger.info("Receipt generated", extra={"request_id": str(order.id), "extra": {"path": path}})
        return path


@dataclass
class ChatShareService:
    """Build the chat deep link customers use to share an order."""

    brand: str = "Farm to Door"
    currency_symbol: str = "₹"
    links: Deque[str] = field(default_factory=lambda: deque(maxlen=SENT_HISTORY))

    def compose_message(self, order: Order, user: Optional[User]) -> str:
        s = self.currency_symbol
        items = "\n".join(
            f"• {i.name} (x{i.quantity}) - {_money(i.line_total, s)}" for i in order.items
        )
        summary = order.order_summary
        return (
            f"*{self.brand} - Order Confirmation*\n\n"
            f"*Order #{order.id}*\n"
            f"Customer: {user.name if user else 'Guest'}\n"
            f"Phone: {(user.phone if user else None) or 'Not provided'}\n\n"
            f"*Items Ordered:*\n{items}\n\n"
            f"*Order Summary:*\n"
            f"Subtotal: {_money(summary.subtotal, s)}\n"
            f"Tax: {_money(summary.tax, s)}\n"
            f"Delivery Fee: {_money(summary.delivery_fee, s)}\n"
            f"*Total: {_money(summary.total, s)}*\n\n"
            f"*Delivery Address:*\n{order.delivery_address}\n\n"
            f"*Expected Delivery:* {order.delivery_date}\n\n"
            f"Thank you for choosing {self.brand}!"
        )

    def share_link(self, order: Order, user: Optional[User]) -> str:
        link = CHAT_SHARE_URL + quote(self.compose_message(order, user), safe="")
        self.links.append(link)
        return link
