"""
Outbound email.

Every send here is best-effort: callers use the `send_*` helpers, which never
raise. A failed or unconfigured send is logged and the triggering request
carries on as if it had succeeded.
"""
import html
import logging
from typing import Optional

import resend

from settings import FROM_EMAIL, FROM_NAME, RESEND_API_KEY

logger = logging.getLogger(__name__)

if RESEND_API_KEY:
    resend.api_key = RESEND_API_KEY


class EmailError(RuntimeError):
    pass


def send_email(to: str, subject: str, html: str):
    if not getattr(resend, "api_key", None):
        raise EmailError("Resend API key is not configured")
    payload = {
        "from": f"{FROM_NAME} <{FROM_EMAIL}>",
        "to": [to],
        "subject": subject,
        "html": html,
    }
    response = resend.Emails.send(payload)
    if not isinstance(response, dict) or not response.get("id"):
        raise EmailError(f"Unexpected response from Resend: {response!r}")
    return response["id"]


def deliver(to: Optional[str], subject: str, html: str) -> bool:
    """Send and swallow failures. Returns whether the email went out."""
    if not to:
        logger.warning("Skipping email %r: no recipient", subject)
        return False
    try:
        send_email(to, subject, html)
    except Exception:
        logger.exception("Failed to send email %r to %s", subject, to)
        return False
    logger.info("Sent email %r to %s", subject, to)
    return True


def send_welcome(email: str, name: str) -> bool:
    name = html.escape(name or "")
    body = f"<h2>Welcome, {name}!</h2><p>Your account has been created.</p>"
    return deliver(email, "Welcome to our store", body)


def send_order_confirmation(email: str, name: str, order_number: str, total: float) -> bool:
    name = html.escape(name or "")
    body = (
        f"<h2>Order Confirmation</h2><p>Dear {name},</p>"
        f"<p>Thank you for your order! Order <strong>{html.escape(order_number)}</strong> "
        f"totalling <strong>${total:.2f}</strong> has been received.</p>"
    )
    return deliver(email, f"Order Confirmation - {order_number}", body)


STATUS_MESSAGES = {
    "processing": "Your order is being processed and will be shipped soon.",
    "shipped": "Your order has been shipped.",
    "delivered": "Your order has been delivered.",
    "cancelled": "Your order has been cancelled.",
}


def send_order_status_update(email: str, name: str, order_number: str, status: str,
                             tracking_number: Optional[str] = None) -> bool:
    name = html.escape(name or "")
    message = STATUS_MESSAGES.get(status, f"Your order status is now {status}.")
    if status == "shipped" and tracking_number:
        message = f"Your order has been shipped. Tracking number: {tracking_number}"
    body = (
        f"<h2>Order Update</h2><p>Dear {name},</p><p>{html.escape(message)}</p>"
        f"<p>Order: {html.escape(order_number)}</p>"
    )
    return deliver(email, f"Order Update - {order_number}", body)
