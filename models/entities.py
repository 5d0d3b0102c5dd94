"""
Request schemas for accounts, clients and settings.
"""

from enum import Enum
from typing import List, Optional

from pydantic import field_validator

from models.base import InvoiceGenModel
from models.documents import CompanyInfo, Currency


class PaymentProvider(str, Enum):
    """Gateways that can collect invoice payments."""
    PAYPAL = "paypal"
    PAYSTACK = "paystack"
    STRIPE = "stripe"


class WhatsAppProvider(str, Enum):
    TWILIO = "twilio"
    META = "meta"


class PricingRegion(str, Enum):
    NIGERIA = "nigeria"
    REST_OF_WORLD = "rest-of-world"
    DEFAULT = "default"


# Authentication

class RegisterRequest(InvoiceGenModel):
    email: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None


class LoginRequest(InvoiceGenModel):
    email: Optional[str] = None
    password: Optional[str] = None


class RefreshRequest(InvoiceGenModel):
    refresh_token: Optional[str] = None


class VerifyEmailRequest(InvoiceGenModel):
    token: Optional[str] = None


class ResendVerificationRequest(InvoiceGenModel):
    email: Optional[str] = None


class MakeAdminRequest(InvoiceGenModel):
    email: Optional[str] = None


# Clients

class ClientCreate(InvoiceGenModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[str] = None
    tax_id: Optional[str] = None
    notes: Optional[str] = None
    tags: List[str] = []

    @field_validator("tags", mode="before")
    @classmethod
    def tags_list(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [tag.strip() for tag in v.split(",") if tag.strip()]
        return v


class ClientUpdate(ClientCreate):
    """Patch body; only fields present in the request are applied."""
    tags: Optional[List[str]] = None


# Settings

class CompanyDefaultsRequest(InvoiceGenModel):
    company_info: Optional[CompanyInfo] = None
    currency: Currency = Currency.USD
    theme: str = "slate"
    tax_rate: float = 0
    notes: Optional[str] = None
    bank_details: Optional[str] = None
    terms: Optional[str] = None


class DefaultProviderRequest(InvoiceGenModel):
    provider: Optional[str] = None


class PaymentCredentialRequest(InvoiceGenModel):
    provider: Optional[str] = None
    public_key: Optional[str] = None
    secret_key: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    is_test_mode: bool = False


class PublicSlugRequest(InvoiceGenModel):
    slug: Optional[str] = None


# WhatsApp

class WhatsAppConnectRequest(InvoiceGenModel):
    phone_number: Optional[str] = None


class WhatsAppSettingsUpdate(InvoiceGenModel):
    provider: Optional[WhatsAppProvider] = None
    is_enabled: Optional[bool] = None
    allow_user_connections: Optional[bool] = None
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_phone_number: Optional[str] = None
    meta_access_token: Optional[str] = None
    meta_phone_number_id: Optional[str] = None
    meta_business_account_id: Optional[str] = None
    webhook_verify_token: Optional[str] = None
    messages_per_minute: Optional[int] = None
    messages_per_day: Optional[int] = None


# Pricing

class PricingUpdate(InvoiceGenModel):
    region: Optional[str] = None
    price: Optional[float] = None
    currency: Optional[str] = None
    is_active: Optional[bool] = None


# Subscriptions

class SubscriptionCheckoutRequest(InvoiceGenModel):
    user_id: Optional[str] = None
    plan: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    user_email: Optional[str] = None


class PayPalVerifyRequest(InvoiceGenModel):
    token: Optional[str] = None
