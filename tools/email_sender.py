"""
Outbound email through the Resend HTTP API.

Without an API key nothing is sent: the message is logged and a
placeholder id is returned so development setups work offline.
"""

import html
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from config.provider_config import EMAIL_CONFIG
from utils.error_handling import format_error_message, retry
from utils.logging_config import log_provider_call, log_provider_response
from utils.metrics import AppMetricsCollector

logger = logging.getLogger("invoicegen.tools.email")

DEV_EMAIL_ID = "dev-email-id"

_STYLE = """
    body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
    .container { max-width: 600px; margin: 0 auto; padding: 20px; }
    .header { background: #4F46E5; color: white; padding: 20px; border-radius: 8px 8px 0 0; }
    .content { background: #f9fafb; padding: 20px; border: 1px solid #e5e7eb; }
    .footer { background: #f3f4f6; padding: 15px; text-align: center; font-size: 12px; color: #6b7280; }
    .button { display: inline-block; padding: 12px 24px; background: #4F46E5; color: white;
              text-decoration: none; border-radius: 6px; margin: 20px 0; }
    .details { background: white; padding: 15px; border-radius: 6px; margin: 15px 0; }
"""


@dataclass
class EmailResult:
    success: bool
    email_id: Optional[str] = None
    error: Optional[str] = None


def _page(title: str, body: str) -> str:
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<style>{_STYLE}</style></head><body><div class=\"container\">"
        f"<div class=\"header\"><h1>{html.escape(title)}</h1></div>"
        f"<div class=\"content\">{body}</div>"
        "<div class=\"footer\"><p>This is an automated email from InvoiceGen.</p>"
        "<p>If you have any questions, please contact the sender.</p></div>"
        "</div></body></html>"
    )


def _paragraphs(message: Optional[str]) -> str:
    if not message:
        return ""
    return f"<p>{html.escape(message).replace(chr(10), '<br>')}</p>"


def _pay_button(payment_link: Optional[str]) -> str:
    if not payment_link:
        return ""
    return (
        "<p>You can pay this invoice online:</p>"
        f"<a href=\"{html.escape(payment_link, quote=True)}\" class=\"button\">Pay Invoice</a>"
    )


def render_invoice_email(invoice: Dict[str, Any], message: Optional[str] = None) -> str:
    """HTML body for an invoice: summary, optional message and pay button."""
    number = invoice.get("invoice_number") or "N/A"
    body = (
        _paragraphs(message)
        + "<div class=\"details\">"
        + f"<p><strong>Invoice Number:</strong> {html.escape(str(number))}</p>"
        + f"<p><strong>Date:</strong> {invoice.get('invoice_date') or ''}</p>"
        + f"<p><strong>Due Date:</strong> {invoice.get('due_date') or ''}</p>"
        + f"<p><strong>Total Amount:</strong> {invoice.get('currency') or 'USD'} "
        + f"{float(invoice.get('total') or 0):.2f}</p>"
        + "</div>"
        + _pay_button(invoice.get("payment_link"))
    )
    return _page(f"Invoice {number}", body)


def render_verification_email(name: str, verification_url: str) -> str:
    body = (
        f"<p>Hi {html.escape(name or 'there')},</p>"
        "<p>Thanks for signing up. Please confirm your email address to activate your account.</p>"
        f"<a href=\"{html.escape(verification_url, quote=True)}\" class=\"button\">Verify Email</a>"
        "<p>This link expires in 24 hours. If you did not create an account, you can ignore this email.</p>"
    )
    return _page("Verify your email", body)


def render_reminder_email(invoice: Dict[str, Any], message: str) -> str:
    number = invoice.get("invoice_number") or "N/A"
    body = (
        _paragraphs(message)
        + "<div class=\"details\">"
        + f"<p><strong>Invoice Number:</strong> {html.escape(str(number))}</p>"
        + f"<p><strong>Due Date:</strong> {invoice.get('due_date') or ''}</p>"
        + "</div>"
        + _pay_button(invoice.get("payment_link"))
    )
    return _page(f"Payment reminder: Invoice {number}", body)


def _is_retryable_email_error(error: Exception) -> bool:
    if isinstance(error, (requests.Timeout, requests.ConnectionError)):
        return True
    response = getattr(error, "response", None)
    return response is not None and (response.status_code == 429 or response.status_code >= 500)


class EmailSender:
    """
    Sends HTML email with Resend.

    Args:
        api_key: Resend API key; None switches to log-only mode
        config: The ``email`` configuration section
        session: Optional requests session
    """

    def __init__(
        self,
        api_key: Optional[str],
        config: Optional[Dict[str, Any]] = None,
        session: Optional[requests.Session] = None
    ):
        self.api_key = api_key
        self.config = config or EMAIL_CONFIG
        self.session = session or requests.Session()
        self.metrics = AppMetricsCollector.get_instance()

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'EmailSender':
        section = config.get("email", {})
        return cls(section.get("resend_api_key"), section)

    def send(self, to: str, subject: str, html_body: str) -> EmailResult:
        """Send one message. Failures are reported in the result, not raised."""
        if not self.api_key:
            logger.info(f"Email would be sent: to={to} subject={subject!r}")
            self.metrics.track_email(success=True)
            return EmailResult(success=True, email_id=DEV_EMAIL_ID)

        payload = {
            "from": self.config.get("from_address", EMAIL_CONFIG["from_address"]),
            "to": [to],
            "subject": subject,
            "html": html_body,
        }
        log_provider_call(logger, "resend", "send", {"to": to, "subject": subject})

        @retry(max_attempts=3, delay=1.0, exceptions=requests.RequestException,
               retry_if=_is_retryable_email_error)
        def post() -> requests.Response:
            response = self.session.post(
                self.config.get("resend_url", EMAIL_CONFIG["resend_url"]),
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.config.get("timeout_seconds", 10),
            )
            log_provider_response(logger, "resend", "send", response.status_code)
            response.raise_for_status()
            return response

        try:
            response = post()
            email_id = response.json().get("id")
        except (requests.RequestException, ValueError) as e:
            message = format_error_message(e, "Email")
            logger.error(f"Error sending email to {to}: {message}")
            self.metrics.track_email(success=False)
            return EmailResult(success=False, error=message)

        self.metrics.track_email(success=True)
        return EmailResult(success=True, email_id=email_id)

    def send_invoice(self, invoice: Dict[str, Any], to: str, message: Optional[str] = None) -> EmailResult:
        subject = f"Invoice {invoice.get('invoice_number') or 'N/A'}"
        return self.send(to, subject, render_invoice_email(invoice, message))

    def send_verification(self, to: str, name: str, verification_url: str) -> EmailResult:
        return self.send(to, "Verify your email address", render_verification_email(name, verification_url))

    def send_reminder(self, invoice: Dict[str, Any], to: str, message: str) -> EmailResult:
        subject = f"Payment Reminder: Invoice {invoice.get('invoice_number') or 'N/A'}"
        return self.send(to, subject, render_reminder_email(invoice, message))
