"""
WhatsApp integration: inbound webhook handling, invoice creation from chat
messages, user phone connections and the admin provider settings.
"""

import re
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select

from models.entities import WhatsAppSettingsUpdate
from services.base_service import BaseService
from services.numbering_service import NumberingService
from storage.database import utcnow
from storage.tables import CompanyDefaults, Invoice, WhatsAppCredential, WhatsAppSettings
from utils.calculations import calculate_invoice_totals
from utils.error_handling import AuthorizationError, ValidationError
from utils.whatsapp_parser import (
    USAGE_MESSAGE, is_invoice_command, parse_invoice_command, validate_parsed_invoice
)

MASK = "***encrypted***"
SECRET_FIELDS = ("twilio_auth_token", "meta_access_token", "webhook_verify_token")
E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")

NOT_CONNECTED_MESSAGE = (
    "This number is not connected to an InvoiceGen account. "
    "Connect it under Settings > WhatsApp in the web dashboard."
)
NO_DEFAULTS_MESSAGE = "❌ Please set up your company information first in the web dashboard."
CREATION_ERROR_MESSAGE = (
    "❌ Sorry, there was an error creating your invoice. Please try again or use the web dashboard."
)

# Webhook response: HTTP status and JSON body
WebhookResult = Tuple[int, Dict[str, Any]]


def normalize_phone(phone: Optional[str], local_country_code: str = "+44") -> str:
    """
    Bring a phone number to ``+<digits>`` form.

    Strips a ``whatsapp:`` prefix and formatting characters; a leading 0
    is replaced by the local country code.
    """
    if not phone:
        return ""
    normalized = re.sub(r"^whatsapp:", "", phone.strip(), flags=re.IGNORECASE).strip()
    normalized = re.sub(r"[\s\-()]", "", normalized)
    if not normalized.startswith("+"):
        if normalized.startswith("0"):
            normalized = local_country_code + normalized[1:]
        else:
            normalized = "+" + normalized
    return normalized


def phone_variations(normalized: str, raw: str) -> List[str]:
    bare = normalized[1:] if normalized.startswith("+") else normalized
    candidates = [normalized, f"+{bare}", bare, re.sub(r"^whatsapp:", "", raw or "").strip()]
    seen = []
    for candidate in candidates:
        if candidate and candidate not in seen:
            seen.append(candidate)
    return seen


class WhatsAppService(BaseService):
    name = "whatsapp"

    @property
    def whatsapp_config(self) -> Dict[str, Any]:
        return self.config.get("whatsapp", {})

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    def active_settings(self) -> Optional[WhatsAppSettings]:
        """The enabled provider settings, if any."""
        return self.session.scalars(
            select(WhatsAppSettings)
            .where(WhatsAppSettings.is_enabled.is_(True))
            .order_by(WhatsAppSettings.updated_at.desc())
        ).first()

    def _settings_row(self) -> WhatsAppSettings:
        settings = self.session.scalars(select(WhatsAppSettings).order_by(WhatsAppSettings.created_at)).first()
        if settings is None:
            settings = WhatsAppSettings(
                provider="twilio",
                is_enabled=False,
                allow_user_connections=True,
                messages_per_minute=60,
                messages_per_day=1000,
            )
            self.session.add(settings)
            self.session.flush()
        return settings

    @staticmethod
    def masked(settings: WhatsAppSettings) -> Dict[str, Any]:
        data = settings.to_dict()
        for field in SECRET_FIELDS:
            data[field] = MASK if data.get(field) else None
        return data

    def get_settings(self) -> Dict[str, Any]:
        """Admin view of the provider settings; defaults are created on first read."""
        return self.masked(self._settings_row())

    def update_settings(self, changes: WhatsAppSettingsUpdate) -> Dict[str, Any]:
        """Apply admin changes. Secrets are encrypted; the mask placeholder never overwrites them."""
        settings = self._settings_row()
        supplied = changes.model_fields_set

        if changes.provider is not None:
            settings.provider = changes.provider.value
        for field in ("is_enabled", "allow_user_connections"):
            if field in supplied and getattr(changes, field) is not None:
                setattr(settings, field, getattr(changes, field))
        for field in ("messages_per_minute", "messages_per_day"):
            value = getattr(changes, field)
            if value is not None:
                if value <= 0:
                    raise ValidationError(f"{field} must be greater than 0")
                setattr(settings, field, value)
        for field in ("twilio_account_sid", "twilio_phone_number", "meta_phone_number_id",
                      "meta_business_account_id"):
            value = getattr(changes, field)
            if value:
                setattr(settings, field, value)
        for field in SECRET_FIELDS:
            value = getattr(changes, field)
            if value and value != MASK:
                setattr(settings, field, self.context.cipher.encrypt(value))

        self.session.flush()
        self.logger.info(f"WhatsApp settings updated (provider {settings.provider}, enabled {settings.is_enabled})")
        return self.masked(settings)

    # -------------------------------------------------------------------------
    # User connections
    # -------------------------------------------------------------------------

    def _credential_for(self, user_id: str) -> Optional[WhatsAppCredential]:
        return self.session.scalars(
            select(WhatsAppCredential).where(WhatsAppCredential.user_id == user_id)
        ).first()

    @staticmethod
    def _credential_view(credential: WhatsAppCredential, provider: Optional[str] = None) -> Dict[str, Any]:
        data = credential.to_dict(exclude=("user_id",))
        data["provider"] = provider
        return data

    def get_connection(self, user_id: str) -> Optional[Dict[str, Any]]:
        credential = self._credential_for(user_id)
        if credential is None:
            return None
        settings = self.active_settings()
        return self._credential_view(credential, settings.provider if settings else None)

    def connect(self, user_id: str, phone_number: Optional[str]) -> Dict[str, Any]:
        """
        Link a phone number to the user. The number is verified by the first
        message received from it.

        Raises:
            AuthorizationError: WhatsApp disabled or user connections not allowed
            ValidationError: Malformed number or one already linked elsewhere
        """
        settings = self.active_settings()
        if settings is None:
            raise AuthorizationError("WhatsApp integration is not enabled. Please contact admin.")
        if not settings.allow_user_connections:
            raise AuthorizationError("User WhatsApp connections are not allowed. Please contact admin.")

        if not phone_number or not E164_PATTERN.match(phone_number):
            raise ValidationError("Invalid phone number format. Please use international format: +1234567890")

        existing = self.session.scalars(
            select(WhatsAppCredential).where(WhatsAppCredential.phone_number == phone_number)
        ).first()
        if existing is not None and existing.user_id != user_id:
            raise ValidationError("This phone number is already connected to another account")

        credential = self._credential_for(user_id)
        if credential is None:
            credential = WhatsAppCredential(user_id=user_id, phone_number=phone_number)
            self.session.add(credential)
        credential.phone_number = phone_number
        credential.is_active = True
        credential.is_verified = False
        self.session.flush()

        self.logger.info(f"WhatsApp connected for user {user_id}")
        return self._credential_view(credential, settings.provider)

    def disconnect(self, user_id: str) -> None:
        credential = self._credential_for(user_id)
        if credential is not None:
            self.session.delete(credential)
            self.session.flush()

    # -------------------------------------------------------------------------
    # Inbound webhook
    # -------------------------------------------------------------------------

    def verify_webhook(self, mode: Optional[str], token: Optional[str], challenge: Optional[str]) -> Optional[int]:
        """Meta subscription handshake: the challenge as an integer, or None when refused."""
        expected = self.whatsapp_config.get("verify_token")
        if mode == "subscribe" and expected and token == expected:
            try:
                return int(challenge or 0)
            except ValueError:
                return 0
        return None

    def _send(self, to: str, text: str) -> None:
        result = self.context.whatsapp.send_message(self.active_settings(), to, text)
        if not result.success:
            self.logger.warning(f"WhatsApp reply to {to} failed: {result.error}")

    def _find_credential(self, normalized: str, raw: str) -> Optional[WhatsAppCredential]:
        return self.session.scalars(
            select(WhatsAppCredential).where(
                WhatsAppCredential.phone_number.in_(phone_variations(normalized, raw)),
                WhatsAppCredential.is_active.is_(True),
            )
        ).first()

    def handle_webhook(self, payload: Dict[str, Any]) -> WebhookResult:
        """Dispatch a Twilio form or a Meta JSON payload."""
        if payload.get("From") and payload.get("Body"):
            raw = payload["From"]
            return self.handle_message(raw, normalize_phone(raw, self._country_code()), payload["Body"])

        entries = payload.get("entry") or []
        if entries and isinstance(entries[0], dict) and entries[0].get("changes"):
            value = (entries[0]["changes"][0] or {}).get("value") or {}
            messages = value.get("messages") or []
            if not messages:
                return 200, {"message": "No messages"}
            message = messages[0]
            raw = str(message.get("from") or "")
            text = (message.get("text") or {}).get("body") or ""
            return self.handle_message(raw, normalize_phone(f"+{raw}", self._country_code()), text)

        return 400, {"error": "Unknown webhook format"}

    def _country_code(self) -> str:
        return self.whatsapp_config.get("local_country_code", "+44")

    def handle_message(self, raw_from: str, sender: str, text: str) -> WebhookResult:
        self.metrics.track_whatsapp_message("inbound")
        credential = self._find_credential(sender, raw_from)
        if credential is None:
            self.logger.info(f"WhatsApp message from unconnected number {sender}")
            self._send(sender, NOT_CONNECTED_MESSAGE)
            return 200, {"message": "Not connected"}

        credential.is_verified = True
        credential.last_message_at = utcnow()
        self.session.flush()

        if is_invoice_command(text):
            return self.create_invoice_from_message(credential.user_id, text, sender)

        self._send(sender, USAGE_MESSAGE)
        return 200, {"message": "Help sent"}

    def create_invoice_from_message(self, user_id: str, text: str, sender: str,
                                    today: Optional[date] = None) -> WebhookResult:
        today = today or date.today()
        parsed = parse_invoice_command(text, today)
        errors = validate_parsed_invoice(parsed)
        if errors:
            self._send(
                sender,
                "❌ Invoice creation failed:\n\n" + "\n".join(errors) + "\n\nPlease provide all required information.",
            )
            return 200, {"message": "Validation failed"}

        defaults = self.session.scalars(select(CompanyDefaults).where(CompanyDefaults.user_id == user_id)).first()
        if defaults is None:
            self._send(sender, NO_DEFAULTS_MESSAGE)
            return 200, {"message": "No company defaults"}

        try:
            # Savepoint: a failed invoice leaves the caller's earlier changes in place
            with self.session.begin_nested():
                invoice = self._build_invoice(user_id, parsed, defaults, today)
        except Exception as e:
            self.logger.error(f"Error creating invoice from WhatsApp for user {user_id}: {e}", exc_info=True)
            self._send(sender, CREATION_ERROR_MESSAGE)
            return 500, {"error": str(e) or "Failed to create invoice"}

        base = self.context.app_url
        self._send(
            sender,
            "✅ Invoice Created!\n\n"
            f"Invoice #: {invoice.invoice_number}\n"
            f"Client: {parsed.client_name or 'Client'}\n"
            f"Total: {invoice.currency} {invoice.total:.2f}\n"
            f"Due: {invoice.due_date.isoformat()}\n\n"
            f"View: {base}/?invoiceId={invoice.id}\n\n"
            "Sending PDF...",
        )
        self._send(sender, f"📄 Invoice PDF:\n{base}/api/invoices/{invoice.id}/pdf")
        return 200, {"message": "Invoice created", "invoice_id": invoice.id}

    def _build_invoice(self, user_id: str, parsed, defaults: CompanyDefaults, today: date) -> Invoice:
        items = [item.to_dict() for item in parsed.items]
        totals = calculate_invoice_totals(items, parsed.tax_rate or 0, parsed.discount_rate or 0, 0)
        due_days = int(self.whatsapp_config.get("default_due_days", 30))

        invoice = Invoice(
            user_id=user_id,
            invoice_number=NumberingService(self.session, self.context).whatsapp_invoice_number(user_id, today),
            invoice_date=today,
            due_date=parsed.due_date or today + timedelta(days=due_days),
            company_info=defaults.company_info or {},
            client_info={
                "name": parsed.client_name or "Client",
                "email": parsed.client_email,
                "phone": parsed.client_phone,
            },
            line_items=items,
            tax_rate=parsed.tax_rate or 0,
            discount_rate=parsed.discount_rate or 0,
            currency=parsed.currency or defaults.currency or "USD",
            theme=defaults.theme or "slate",
            notes=parsed.notes,
            payment_status="pending",
            created_by="owner",
            **totals,
        )
        self.session.add(invoice)
        self.session.flush()
        self.logger.info(f"Invoice {invoice.id} created via WhatsApp for user {user_id}")
        return invoice
