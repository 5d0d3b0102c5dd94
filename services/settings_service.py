"""
Per-user settings: company defaults, payment credentials and the public invoice link.
"""

import re
import time
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from models.entities import CompanyDefaultsRequest, PaymentCredentialRequest
from services.base_service import BaseService
from storage.tables import CompanyDefaults, PaymentCredential, User
from tools.payment_gateways import SUPPORTED_PROVIDERS
from utils.error_handling import ValidationError

SLUG_PATTERN = re.compile(r"^[a-z0-9-]+$")
SLUG_MAX_LENGTH = 50
SLUG_MIN_LENGTH = 3

INVALID_PROVIDER = "Invalid payment provider. Must be paypal, paystack, or stripe"

REQUIRED_CREDENTIALS = {
    "paystack": (("public_key", "secret_key"), "Paystack requires both public key and secret key"),
    "stripe": (("public_key", "secret_key"), "Stripe requires both public key and secret key"),
    "paypal": (("client_id", "client_secret"), "PayPal requires both client ID and client secret"),
}


def slugify(text: str) -> str:
    """Lower-case, runs of non-alphanumerics collapsed to '-', trimmed to 50 characters."""
    slug = re.sub(r"[^a-z0-9]+", "-", (text or "").lower()).strip("-")
    return slug[:SLUG_MAX_LENGTH]


def base_public_slug(name: Optional[str], email: Optional[str]) -> str:
    slug = slugify(name or "")
    if slug:
        return slug
    prefix = slugify((email or "").split("@")[0])
    return prefix or f"user-{int(time.time() * 1000)}"


class SettingsService(BaseService):
    name = "settings"

    # -------------------------------------------------------------------------
    # Company defaults
    # -------------------------------------------------------------------------

    def get_company_defaults(self, user_id: str) -> Optional[CompanyDefaults]:
        return self.session.scalars(select(CompanyDefaults).where(CompanyDefaults.user_id == user_id)).first()

    def save_company_defaults(self, user_id: str, request: CompanyDefaultsRequest) -> Dict[str, Any]:
        if request.company_info is None:
            raise ValidationError("Company information is required")

        defaults = self.get_company_defaults(user_id)
        if defaults is None:
            defaults = CompanyDefaults(user_id=user_id)
            self.session.add(defaults)

        defaults.company_info = request.company_info.model_dump(exclude_none=True)
        defaults.currency = request.currency.value
        defaults.theme = request.theme or "slate"
        defaults.tax_rate = request.tax_rate or 0
        defaults.notes = request.notes or None
        defaults.bank_details = request.bank_details or None
        defaults.terms = request.terms or None
        self.session.flush()
        return defaults.to_dict()

    def delete_company_defaults(self, user_id: str) -> int:
        defaults = self.get_company_defaults(user_id)
        if defaults is None:
            return 0
        self.session.delete(defaults)
        self.session.flush()
        return 1

    def set_default_payment_provider(self, user_id: str, provider: Optional[str]) -> Dict[str, Any]:
        """Choose the provider used for automatic payment links; None clears it."""
        if provider and provider not in SUPPORTED_PROVIDERS:
            raise ValidationError(INVALID_PROVIDER)

        if provider:
            credential = self._credential(user_id, provider)
            if credential is None or not credential.is_active:
                raise ValidationError(f"Payment credentials for {provider} not configured or inactive")

        defaults = self.get_company_defaults(user_id)
        if defaults is None:
            defaults = CompanyDefaults(user_id=user_id, company_info={})
            self.session.add(defaults)
        defaults.default_payment_provider = provider or None
        self.session.flush()
        return defaults.to_dict()

    # -------------------------------------------------------------------------
    # Payment credentials
    # -------------------------------------------------------------------------

    def _credential(self, user_id: str, provider: str) -> Optional[PaymentCredential]:
        return self.session.scalars(
            select(PaymentCredential).where(
                PaymentCredential.user_id == user_id, PaymentCredential.provider == provider
            )
        ).first()

    def list_credentials(self, user_id: str) -> List[Dict[str, Any]]:
        """Active credentials with the public key decrypted; secrets are never returned."""
        credentials = self.session.scalars(
            select(PaymentCredential)
            .where(PaymentCredential.user_id == user_id, PaymentCredential.is_active.is_(True))
            .order_by(PaymentCredential.created_at)
        )
        result = []
        for credential in credentials:
            public_key = self.context.cipher.decrypt_credential({"public_key": credential.public_key})["public_key"]
            result.append({
                "id": credential.id,
                "provider": credential.provider,
                "public_key": public_key,
                "is_test_mode": credential.is_test_mode,
                "created_at": credential.created_at.isoformat() if credential.created_at else None,
            })
        return result

    def save_credential(self, user_id: str, request: PaymentCredentialRequest) -> Dict[str, Any]:
        if not request.provider:
            raise ValidationError("Payment provider is required")
        if request.provider not in SUPPORTED_PROVIDERS:
            raise ValidationError(INVALID_PROVIDER)

        fields, message = REQUIRED_CREDENTIALS[request.provider]
        if not all(getattr(request, field) for field in fields):
            raise ValidationError(message)

        encrypted = self.context.cipher.encrypt_credential(request.model_dump())
        credential = self._credential(user_id, request.provider)
        if credential is None:
            credential = PaymentCredential(user_id=user_id, provider=request.provider)
            self.session.add(credential)

        # Blank fields keep the stored value on update
        for name, value in encrypted.items():
            if value:
                setattr(credential, name, value)
        credential.is_test_mode = bool(request.is_test_mode)
        credential.is_active = True
        self.session.flush()

        self.logger.info(f"Saved {request.provider} credentials for user {user_id}")
        return {"id": credential.id, "provider": credential.provider, "is_test_mode": credential.is_test_mode}

    def delete_credential(self, user_id: str, provider: Optional[str]) -> None:
        if not provider:
            raise ValidationError("Provider is required")
        if provider not in SUPPORTED_PROVIDERS:
            raise ValidationError("Invalid payment provider")

        credential = self._credential(user_id, provider)
        if credential is not None:
            self.session.delete(credential)

        defaults = self.get_company_defaults(user_id)
        if defaults is not None and defaults.default_payment_provider == provider:
            defaults.default_payment_provider = None
        self.session.flush()

    def available_providers(self, user_id: str) -> Dict[str, Any]:
        credentials = self.session.scalars(
            select(PaymentCredential)
            .where(PaymentCredential.user_id == user_id, PaymentCredential.is_active.is_(True))
            .order_by(PaymentCredential.created_at)
        )
        defaults = self.get_company_defaults(user_id)
        return {
            "providers": [
                {
                    "provider": credential.provider,
                    "is_test_mode": credential.is_test_mode,
                    "created_at": credential.created_at.isoformat() if credential.created_at else None,
                }
                for credential in credentials
            ],
            "default_provider": defaults.default_payment_provider if defaults else None,
        }

    # -------------------------------------------------------------------------
    # Public invoice link
    # -------------------------------------------------------------------------

    def _slug_available(self, slug: str) -> bool:
        return self.session.scalars(select(User.id).where(User.public_slug == slug)).first() is None

    def unique_public_slug(self, name: Optional[str], email: Optional[str]) -> str:
        base = base_public_slug(name, email)
        slug = base
        counter = 1
        while not self._slug_available(slug):
            slug = f"{base}-{counter}"
            counter += 1
        return slug

    def public_link(self, slug: Optional[str]) -> Optional[str]:
        return f"{self.context.app_url}/i/{slug}" if slug else None

    def get_public_slug(self, user_id: str) -> Dict[str, Any]:
        user = self._get(User, user_id, "User")
        return {"public_slug": user.public_slug, "public_link": self.public_link(user.public_slug)}

    def set_public_slug(self, user_id: str, custom_slug: Optional[str] = None) -> Dict[str, Any]:
        """Set a custom slug, or generate one from the user's name when none is given."""
        user = self._get(User, user_id, "User")

        if custom_slug:
            if not SLUG_PATTERN.match(custom_slug):
                raise ValidationError("Slug can only contain lowercase letters, numbers, and hyphens")
            if not SLUG_MIN_LENGTH <= len(custom_slug) <= SLUG_MAX_LENGTH:
                raise ValidationError("Slug must be between 3 and 50 characters")
            if user.public_slug != custom_slug and not self._slug_available(custom_slug):
                raise ValidationError("This slug is already taken. Please choose another.")
            slug = custom_slug
        else:
            slug = self.unique_public_slug(user.name, user.email)

        user.public_slug = slug
        self.session.flush()
        return {
            "public_slug": slug,
            "public_link": self.public_link(slug),
            "message": "Public invoice link created successfully",
        }
