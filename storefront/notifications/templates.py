from dataclasses import dataclass
from html import escape
from typing import Optional

from storefront.shared.config import settings
from storefront.shared.utils import to_money


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    body: str
    html_body: Optional[str] = None


def _money(value) -> str:
    return f"{settings.CURRENCY} {to_money(value):.2f}"


def _item_lines(order: dict):
    for item in order["items"]:
        yield item["name"], item["quantity"], _money(to_money(item["price"]) * item["quantity"])


def _address_lines(order: dict):
    address = order.get("shipping_address") or {}
    return [
        address.get("street", ""),
        f"{address.get('city', '')}, {address.get('state', '')} {address.get('zip_code', '')}",
        address.get("country", ""),
    ]


def _html_items(order: dict) -> str:
    return "".join(
        f"<tr><td>{escape(name)} x {qty}</td><td>{amount}</td></tr>"
        for name, qty, amount in _item_lines(order)
    )


def order_confirmation(order: dict, user: dict) -> RenderedEmail:
    text_items = "\n".join(f"  {name} x {qty}: {amount}" for name, qty, amount in _item_lines(order))
    address = "\n".join(f"  {line}" for line in _address_lines(order))
    body = (
        f"Thank you for your purchase, {user.get('name', '')}!\n\n"
        f"Order Number: {order['order_number']}\n"
        f"Payment Method: Cash on Delivery\n"
        f"Status: {order['order_status']}\n\n"
        f"Items:\n{text_items}\n\n"
        f"Subtotal: {_money(order['subtotal'])}\n"
        f"Shipping: {_money(order['shipping_cost'])}\n"
        f"Tax: {_money(order['tax'])}\n"
        f"Total: {_money(order['total'])}\n\n"
        f"Shipping Address:\n{address}\n\n"
        "We'll send you another email when your order ships!\n"
    )
    html_body = (
        f"<h1>Order Confirmed!</h1>"
        f"<p>Thank you for your purchase, {escape(user.get('name', ''))}!</p>"
        f"<p><strong>Order Number:</strong> {order['order_number']}</p>"
        f"<table>{_html_items(order)}</table>"
        f"<p><strong>Total: {_money(order['total'])}</strong></p>"
        f"<p>{'<br>'.join(escape(line) for line in _address_lines(order))}</p>"
    )
    return RenderedEmail(
        subject=f"Order Confirmation - {order['order_number']} - {settings.STORE_NAME}",
        body=body,
        html_body=html_body,
    )


def admin_new_order(order: dict, user: dict) -> RenderedEmail:
    text_items = "\n".join(f"  {name} x {qty}: {amount}" for name, qty, amount in _item_lines(order))
    body = (
        f"New order {order['order_number']} received.\n\n"
        f"Customer: {user.get('name', '')} <{user.get('email', '')}>\n"
        f"Phone: {user.get('phone') or 'Not provided'}\n\n"
        f"Items:\n{text_items}\n\n"
        f"Total: {_money(order['total'])}\n"
        f"Notes: {order.get('notes') or '-'}\n"
    )
    return RenderedEmail(
        subject=f"New Order Received - {order['order_number']}",
        body=body,
        html_body=f"<h1>New Order Received!</h1><p>Order #{order['order_number']}</p><table>{_html_items(order)}</table>",
    )


STATUS_MESSAGES = {
    "confirmed": "Your order has been confirmed and will be prepared shortly.",
    "processing": "Your order is being prepared.",
    "shipped": "Your order is on its way!",
    "delivered": "Your order has been delivered. Enjoy!",
    "cancelled": "Your order has been cancelled.",
}


def order_status_update(order: dict, user: dict) -> RenderedEmail:
    status = order["order_status"]
    lines = [
        f"Hi {user.get('name', '')},",
        "",
        STATUS_MESSAGES.get(status, f"Your order status is now {status}."),
        "",
        f"Order Number: {order['order_number']}",
        f"Status: {status.capitalize()}",
    ]
    if order.get("tracking_number"):
        lines.append(f"Tracking Number: {order['tracking_number']}")
    if order.get("estimated_delivery"):
        lines.append(f"Estimated Delivery: {order['estimated_delivery']:%Y-%m-%d}")
    if status == "cancelled" and order.get("cancellation_reason"):
        lines.append(f"Reason: {order['cancellation_reason']}")
    return RenderedEmail(
        subject=f"Order {order['order_number']} - {status.capitalize()}",
        body="\n".join(lines) + "\n",
    )
