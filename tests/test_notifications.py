"""Tests for email senders, templates and the order notifier."""
import smtplib
from datetime import datetime

import pytest

from storefront.notifications import email as email_module
from storefront.notifications import templates
from storefront.notifications.email import (
    ConsoleEmailSender, EmailDeliveryError, InMemoryEmailSender, SMTPEmailSender, get_email_sender,
)
from storefront.notifications.notifier import OrderNotifier
from storefront.shared.config import Settings

from conftest import ADDRESS

ORDER = {
    "order_number": "ORD-LX2K9-AB12C",
    "order_status": "pending",
    "items": [
        {"product_id": "p1", "name": "Desk <Lamp>", "price": 30.0, "quantity": 2, "image": None},
        {"product_id": "p2", "name": "Bulb", "price": 2.5, "quantity": 4, "image": None},
    ],
    "shipping_address": ADDRESS,
    "subtotal": 70.0,
    "shipping_cost": 10.0,
    "tax": 5.6,
    "total": 85.6,
    "notes": None,
}
USER = {"name": "Jane", "email": "jane@example.com", "phone": None}


class FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout=None):
        self.host, self.port = host, port
        self.calls = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.calls.append("starttls")

    def login(self, username, password):
        self.calls.append(("login", username))

    def send_message(self, message):
        self.calls.append(("send", message["To"], message["Subject"]))


class TestTemplates:
    def test_confirmation(self):
        rendered = templates.order_confirmation(ORDER, USER)
        assert rendered.subject == "Order Confirmation - ORD-LX2K9-AB12C - Storefront"
        assert "Desk <Lamp> x 2: USD 60.00" in rendered.body
        assert "Total: USD 85.60" in rendered.body
        assert "Springfield, IL 62701" in rendered.body
        assert "Desk &lt;Lamp&gt;" in rendered.html_body

    def test_admin_notification(self):
        rendered = templates.admin_new_order(ORDER, USER)
        assert rendered.subject == "New Order Received - ORD-LX2K9-AB12C"
        assert "Jane <jane@example.com>" in rendered.body
        assert "Phone: Not provided" in rendered.body

    def test_status_update_includes_tracking(self):
        shipped = dict(ORDER, order_status="shipped", tracking_number="1Z999",
                       estimated_delivery=datetime(2026, 3, 4))
        rendered = templates.order_status_update(shipped, USER)
        assert rendered.subject == "Order ORD-LX2K9-AB12C - Shipped"
        assert "Tracking Number: 1Z999" in rendered.body
        assert "Estimated Delivery: 2026-03-04" in rendered.body


class TestSenders:
    def test_smtp_sender(self, monkeypatch):
        FakeSMTP.instances.clear()
        monkeypatch.setattr(email_module.smtplib, "SMTP", FakeSMTP)
        config = Settings(SMTP_HOST="mail.test", SMTP_PORT=2525, SMTP_USERNAME="bot", SMTP_PASSWORD="pw")

        message_id = SMTPEmailSender(config).send("jane@example.com", "Hi", "Body", "<p>Body</p>")
        smtp = FakeSMTP.instances[0]
        assert (smtp.host, smtp.port) == ("mail.test", 2525)
        assert smtp.calls == ["starttls", ("login", "bot"), ("send", "jane@example.com", "Hi")]
        assert message_id.endswith("@storefront>")

    def test_smtp_failure_is_wrapped(self, monkeypatch):
        class BrokenSMTP(FakeSMTP):
            def send_message(self, message):
                raise smtplib.SMTPRecipientsRefused({})

        monkeypatch.setattr(email_module.smtplib, "SMTP", BrokenSMTP)
        with pytest.raises(EmailDeliveryError):
            SMTPEmailSender(Settings(SMTP_USE_TLS=False)).send("jane@example.com", "Hi", "Body")

    @pytest.mark.parametrize("backend,cls", [
        ("smtp", SMTPEmailSender), ("console", ConsoleEmailSender), ("MEMORY", InMemoryEmailSender),
    ])
    def test_backend_selection(self, backend, cls):
        assert isinstance(get_email_sender(Settings(EMAIL_BACKEND=backend)), cls)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            get_email_sender(Settings(EMAIL_BACKEND="pigeon"))


class TestNotifier:
    def test_order_placed_sends_two_emails(self):
        sender = InMemoryEmailSender()
        assert OrderNotifier(sender, admin_email="ops@example.com").order_placed(ORDER, USER) == 2
        assert [m["to"] for m in sender.sent] == ["jane@example.com", "ops@example.com"]

    def test_failures_are_swallowed(self):
        sender = InMemoryEmailSender()
        sender.fail_with = EmailDeliveryError("down")
        notifier = OrderNotifier(sender)
        assert notifier.order_placed(ORDER, USER) == 0
        assert notifier.status_changed(ORDER, USER) is False

    def test_unexpected_errors_are_swallowed(self):
        sender = InMemoryEmailSender()
        sender.fail_with = RuntimeError("boom")
        assert OrderNotifier(sender).status_changed(ORDER, USER) is False

    def test_status_change_without_email_address(self):
        sender = InMemoryEmailSender()
        assert OrderNotifier(sender).status_changed(ORDER, {"name": "Ghost"}) is False
        assert sender.sent == []
