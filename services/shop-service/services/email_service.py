"""Order confirmation email."""
import asyncio
import html
import logging
import smtplib
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from email.message import EmailMessage
from typing import Any, Dict, List

from config import (
    HTTP_TIMEOUT_SECONDS,
    SMTP_FROM_NAME,
    SMTP_HOST,
    SMTP_PASS,
    SMTP_PORT,
    SMTP_SECURE,
    SMTP_USER,
)

logger = logging.getLogger(__name__)

PAYMENT_METHOD_LABELS = {
    "cod": "Cash on delivery",
    "bank_transfer": "Bank transfer",
    "sepay": "Sepay QR",
}


@dataclass
class ConfirmationLine:
    name: str
    quantity: int
    price: Decimal
    subtotal: Decimal


@dataclass
class OrderConfirmation:
    """Everything the confirmation email needs, detached from the DB session."""
    order_id: str
    customer_name: str
    customer_email: str
    order_date: datetime
    total_amount: Decimal
    payment_method: str
    shipping_address: Dict[str, Any]
    items: List[ConfirmationLine] = field(default_factory=list)


def format_vnd(amount) -> str:
    return f"{Decimal(amount):,.0f}".replace(",", ".") + " ₫"


def render_order_email(data: OrderConfirmation) -> str:
    """Render the confirmation as a simple HTML document."""
    rows = "".join(
        "<tr>"
        f"<td style=\"padding:12px;border-bottom:1px solid #eee\">{html.escape(line.name)}</td>"
        f"<td style=\"padding:12px;border-bottom:1px solid #eee;text-align:center\">{line.quantity}</td>"
        f"<td style=\"padding:12px;border-bottom:1px solid #eee;text-align:right\">{format_vnd(line.price)}</td>"
        f"<td style=\"padding:12px;border-bottom:1px solid #eee;text-align:right;font-weight:600\">"
        f"{format_vnd(line.subtotal)}</td>"
        "</tr>"
        for line in data.items
    )
    address = data.shipping_address or {}
    address_text = ", ".join(
        html.escape(str(address[key]))
        for key in ("addressLine", "ward", "district", "city")
        if address.get(key)
    )
    method = PAYMENT_METHOD_LABELS.get(data.payment_method, data.payment_method)

    return f"""<!DOCTYPE html>
<html>
<head><meta charset="UTF-8"><title>Order confirmation</title></head>
<body style="margin:0;padding:20px;font-family:Arial,sans-serif;background-color:#f5f5f5">
  <table width="600" align="center" cellpadding="0" cellspacing="0" style="background:#fff;border-radius:8px">
    <tr><td style="padding:30px">
      <h1 style="margin:0 0 10px 0">Your order has been placed</h1>
      <p>Hello <strong>{html.escape(data.customer_name)}</strong>,</p>
      <p>We received order <strong>#{data.order_id[:8]}</strong> on {data.order_date:%d/%m/%Y %H:%M}.</p>
      <table width="100%" cellpadding="0" cellspacing="0">
        <tr>
          <th style="text-align:left;padding:12px">Product</th>
          <th style="padding:12px">Qty</th>
          <th style="text-align:right;padding:12px">Price</th>
          <th style="text-align:right;padding:12px">Subtotal</th>
        </tr>
        {rows}
        <tr>
          <td colspan="3" style="padding:12px;text-align:right;font-weight:600">Total</td>
          <td style="padding:12px;text-align:right;font-weight:600">{format_vnd(data.total_amount)}</td>
        </tr>
      </table>
      <p><strong>Ship to:</strong> {html.escape(str(address.get("fullName", "")))}
        ({html.escape(str(address.get("phone", "")))})<br>{address_text}</p>
      <p><strong>Payment:</strong> {html.escape(method)}</p>
    </td></tr>
  </table>
</body>
</html>"""


class EmailService:
    """Sends transactional email over SMTP."""

    def __init__(
        self,
        host: str = SMTP_HOST,
        port: int = SMTP_PORT,
        user: str = SMTP_USER,
        password: str = SMTP_PASS,
        use_ssl: bool = SMTP_SECURE,
        from_name: str = SMTP_FROM_NAME,
        timeout: float = HTTP_TIMEOUT_SECONDS
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_ssl = use_ssl
        self.from_name = from_name
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.user and self.password)

    def _send(self, message: EmailMessage) -> None:
        smtp_class = smtplib.SMTP_SSL if self.use_ssl else smtplib.SMTP
        with smtp_class(self.host, self.port, timeout=self.timeout) as smtp:
            if not self.use_ssl:
                smtp.starttls()
            smtp.login(self.user, self.password)
            smtp.send_message(message)

    async def send_order_confirmation(self, data: OrderConfirmation) -> bool:
        """
        Send the order confirmation email.

        Returns:
            True if the message was handed to the SMTP server, False when
            email is not configured

        Raises:
            smtplib.SMTPException, OSError: On delivery failure
        """
        if not self.configured:
            logger.warning("Email service not configured, skipping order confirmation", extra={
                "order_id": data.order_id
            })
            return False

        message = EmailMessage()
        message["Subject"] = f"Order confirmation #{data.order_id[:8]}"
        message["From"] = f"\"{self.from_name}\" <{self.user}>"
        message["To"] = data.customer_email
        message.set_content(f"Your order #{data.order_id[:8]} has been placed. Total: {format_vnd(data.total_amount)}")
        message.add_alternative(render_order_email(data), subtype="html")

        await asyncio.to_thread(self._send, message)

        logger.info("Order confirmation email sent", extra={
            "order_id": data.order_id,
            "customer_email": data.customer_email
        })
        return True
