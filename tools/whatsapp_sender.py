"""
Outbound WhatsApp messages through Twilio or the Meta Cloud API.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from config.provider_config import WHATSAPP_CONFIG
from utils.logging_config import log_provider_call, log_provider_response
from utils.metrics import AppMetricsCollector
from utils.security import CredentialCipher

logger = logging.getLogger("invoicegen.tools.whatsapp")


@dataclass
class SendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


def to_twilio_address(phone: str) -> str:
    """``whatsapp:+E164`` form used by Twilio for both ends of a message."""
    normalized = phone.strip()
    if normalized.lower().startswith("whatsapp:"):
        normalized = normalized[len("whatsapp:"):].strip()
    if not normalized.startswith("+"):
        normalized = "+" + normalized
    return f"whatsapp:{normalized}"


def _error_message(response: requests.Response) -> Optional[str]:
    try:
        data = response.json()
    except ValueError:
        return None
    error = data.get("error")
    if isinstance(error, dict):
        return error.get("message")
    return data.get("message")


class WhatsAppSender:
    """
    Sends messages with whichever provider the admin settings enable.

    Args:
        cipher: Decrypts the stored provider secrets
        config: The ``whatsapp`` configuration section
        session: Optional requests session
    """

    def __init__(
        self,
        cipher: CredentialCipher,
        config: Optional[Dict[str, Any]] = None,
        session: Optional[requests.Session] = None
    ):
        self.cipher = cipher
        self.config = config or WHATSAPP_CONFIG
        self.session = session or requests.Session()
        self.timeout = self.config.get("timeout_seconds", 10)
        self.metrics = AppMetricsCollector.get_instance()

    def send_message(self, settings: Any, to: str, message: str, media_url: Optional[str] = None) -> SendResult:
        """
        Send a text (and optionally a document link).

        Failures are returned in the result and logged; they never raise.
        """
        if settings is None or not settings.is_enabled:
            return SendResult(False, error="WhatsApp is not enabled")

        try:
            if settings.provider == "twilio":
                result = self._send_via_twilio(settings, to, message, media_url)
            elif settings.provider == "meta":
                result = self._send_via_meta(settings, to, message, media_url)
            else:
                result = SendResult(False, error=f"Unsupported provider: {settings.provider}")
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Error sending WhatsApp message via {settings.provider}: {e}")
            result = SendResult(False, error=str(e) or "Failed to send message")

        if result.success:
            self.metrics.track_whatsapp_message("outbound")
        return result

    def _send_via_twilio(self, settings: Any, to: str, message: str, media_url: Optional[str]) -> SendResult:
        if not settings.twilio_account_sid or not settings.twilio_auth_token:
            return SendResult(False, error="Twilio credentials not configured")

        account_sid = settings.twilio_account_sid
        auth_token = self.cipher.decrypt(settings.twilio_auth_token)
        sender = settings.twilio_phone_number or self.config.get("twilio_default_number")

        form = {
            "From": to_twilio_address(sender),
            "To": to_twilio_address(to),
            "Body": message,
        }
        if media_url:
            form["MediaUrl"] = media_url

        log_provider_call(logger, "twilio", "send_message", {"To": form["To"]})
        response = self.session.post(
            f"{self.config['twilio_base_url']}/Accounts/{account_sid}/Messages.json",
            data=form,
            auth=(account_sid, auth_token),
            timeout=self.timeout,
        )
        log_provider_response(logger, "twilio", "send_message", response.status_code)

        if not response.ok:
            return SendResult(False, error=_error_message(response) or "Failed to send message")
        return SendResult(True, message_id=response.json().get("sid"))

    def _send_via_meta(self, settings: Any, to: str, message: str, media_url: Optional[str]) -> SendResult:
        if not settings.meta_phone_number_id or not settings.meta_access_token:
            return SendResult(False, error="Meta credentials not configured")

        access_token = self.cipher.decrypt(settings.meta_access_token)
        body: Dict[str, Any] = {
            "messaging_product": "whatsapp",
            "to": to.lstrip("+"),
            "type": "text",
            "text": {"body": message},
        }
        if media_url:
            body["type"] = "document"
            body["document"] = {"link": media_url, "filename": "invoice.pdf"}

        log_provider_call(logger, "meta", "send_message", {"to": body["to"], "type": body["type"]})
        response = self.session.post(
            f"{self.config['meta_base_url']}/{settings.meta_phone_number_id}/messages",
            json=body,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=self.timeout,
        )
        log_provider_response(logger, "meta", "send_message", response.status_code)

        if not response.ok:
            return SendResult(False, error=_error_message(response) or "Failed to send message")
        messages = response.json().get("messages") or [{}]
        return SendResult(True, message_id=messages[0].get("id"))
