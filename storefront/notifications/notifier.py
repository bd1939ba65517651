import logging

from storefront.notifications import templates
from storefront.notifications.email import EmailSender
from storefront.shared.config import settings

logger = logging.getLogger("storefront.notifications")


class OrderNotifier:
    """Best-effort order emails. Every public method swallows and logs failures."""

    def __init__(self, sender: EmailSender, admin_email: str = settings.ADMIN_EMAIL):
        self.sender = sender
        self.admin_email = admin_email

    def _deliver(self, to: str, rendered: templates.RenderedEmail, order: dict) -> bool:
        try:
            self.sender.send(to, rendered.subject, rendered.body, rendered.html_body)
        except Exception:
            logger.exception("Email sending failed", extra={
                "recipient": to, "order_number": order.get("order_number"),
            })
            return False
        return True

    def order_placed(self, order: dict, user: dict) -> int:
        """Confirmation to the buyer and a heads-up to operations."""
        sent = 0
        if user.get("email"):
            sent += self._deliver(user["email"], templates.order_confirmation(order, user), order)
        if self.admin_email:
            sent += self._deliver(self.admin_email, templates.admin_new_order(order, user), order)
        return sent

    def status_changed(self, order: dict, user: dict) -> bool:
        if not user or not user.get("email"):
            return False
        return self._deliver(user["email"], templates.order_status_update(order, user), order)
