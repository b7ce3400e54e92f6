import asyncio
from datetime import datetime
from decimal import Decimal

from conftest import SHIPPING_ADDRESS
from services.email_service import (
    ConfirmationLine,
    EmailService,
    OrderConfirmation,
    format_vnd,
    render_order_email,
)


def confirmation():
    return OrderConfirmation(
        order_id="0f3c9a12-aaaa-bbbb-cccc-000000000000",
        customer_name="Nguyen <Van> A",
        customer_email="buyer@example.com",
        order_date=datetime(2024, 5, 1, 9, 30),
        total_amount=Decimal("385000"),
        payment_method="bank_transfer",
        shipping_address=SHIPPING_ADDRESS,
        items=[ConfirmationLine(name="Sledgehammer 2kg", quantity=2, price=Decimal("150000"),
                                subtotal=Decimal("300000"))],
    )


def test_format_vnd():
    assert format_vnd(Decimal("1250000")) == "1.250.000 ₫"
    assert format_vnd(45000) == "45.000 ₫"


def test_render_order_email():
    body = render_order_email(confirmation())

    assert "#0f3c9a12" in body
    assert "Nguyen &lt;Van&gt; A" in body
    assert "300.000 ₫" in body
    assert "385.000 ₫" in body
    assert "12 Le Loi, Ben Nghe, District 1, Ho Chi Minh City" in body
    assert "Bank transfer" in body
    assert "01/05/2024 09:30" in body


def test_unconfigured_service_skips_sending():
    service = EmailService(user="", password="")

    assert not service.configured
    assert asyncio.run(service.send_order_confirmation(confirmation())) is False
