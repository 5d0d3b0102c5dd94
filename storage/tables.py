"""
ORM models for every persisted record.

Identifiers are random hex strings so they can appear in public URLs.
Money is stored as floats rounded to cents by the services.
"""

import uuid
from datetime import date, datetime
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import (
    JSON, Boolean, Column, Date, DateTime, Float, ForeignKey, Integer, String,
    Text, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship

from storage.database import utcnow

Base = declarative_base()


def new_id() -> str:
    return uuid.uuid4().hex


def _serialize(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


class SerializableMixin:
    """Adds to_dict() over the mapped columns."""

    __hidden__: Iterable[str] = ()

    def to_dict(self, exclude: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        skip = set(self.__hidden__) | set(exclude or ())
        return {
            column.name: _serialize(getattr(self, column.key))
            for column in self.__table__.columns
            if column.name not in skip
        }


class TimestampMixin:
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


# -----------------------------------------------------------------------------
# Accounts
# -----------------------------------------------------------------------------

class User(SerializableMixin, TimestampMixin, Base):
    __tablename__ = "users"
    __hidden__ = (
        "password_hash", "email_verification_token", "email_verification_expiry",
        "failed_login_attempts", "locked_until",
    )

    id = Column(String(32), primary_key=True, default=new_id)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    password_hash = Column(String(255), nullable=False)
    is_admin = Column(Boolean, nullable=False, default=False)

    email_verified = Column(Boolean, nullable=False, default=False)
    email_verification_token = Column(String(128), unique=True)
    email_verification_expiry = Column(DateTime)

    failed_login_attempts = Column(Integer, nullable=False, default=0)
    locked_until = Column(DateTime)

    public_slug = Column(String(50), unique=True)

    subscription_plan = Column(String(32), nullable=False, default="free")
    subscription_status = Column(String(32), nullable=False, default="inactive")
    subscription_start_date = Column(DateTime)
    subscription_end_date = Column(DateTime)
    subscription_payment_method = Column(String(32))

    invoices = relationship("Invoice", back_populates="user", cascade="all, delete-orphan")
    clients = relationship("Client", back_populates="user", cascade="all, delete-orphan")

    def to_public(self) -> Dict[str, Any]:
        """The user fields returned by the auth endpoints."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "is_admin": self.is_admin,
            "email_verified": self.email_verified,
        }


class RefreshToken(SerializableMixin, Base):
    __tablename__ = "refresh_tokens"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token = Column(String(512), unique=True, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    revoked_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=utcnow)


# -----------------------------------------------------------------------------
# Clients and invoices
# -----------------------------------------------------------------------------

class Client(SerializableMixin, TimestampMixin, Base):
    __tablename__ = "clients"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255))
    phone = Column(String(64))
    address = Column(Text)
    city = Column(String(128))
    state = Column(String(128))
    zip = Column(String(32))
    country = Column(String(128))
    tax_id = Column(String(64))
    notes = Column(Text)
    tags = Column(JSON, nullable=False, default=list)

    user = relationship("User", back_populates="clients")
    invoices = relationship("Invoice", back_populates="client")


class Invoice(SerializableMixin, TimestampMixin, Base):
    __tablename__ = "invoices"
    __table_args__ = (UniqueConstraint("user_id", "invoice_number", name="uq_invoice_user_number"),)
    __hidden__ = ("editable_token",)

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    client_id = Column(String(32), ForeignKey("clients.id", ondelete="SET NULL"), index=True)

    invoice_number = Column(String(64), nullable=False)
    invoice_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    purchase_order = Column(String(64))

    company_info = Column(JSON, nullable=False, default=dict)
    client_info = Column(JSON, nullable=False, default=dict)
    ship_to_info = Column(JSON)
    line_items = Column(JSON, nullable=False, default=list)

    subtotal = Column(Float, nullable=False, default=0)
    tax_rate = Column(Float, nullable=False, default=0)
    tax_amount = Column(Float, nullable=False, default=0)
    discount_rate = Column(Float, nullable=False, default=0)
    discount_amount = Column(Float, nullable=False, default=0)
    shipping = Column(Float, nullable=False, default=0)
    total = Column(Float, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")
    theme = Column(String(32), nullable=False, default="slate")

    notes = Column(Text)
    bank_details = Column(Text)
    terms = Column(Text)

    payment_status = Column(String(16), nullable=False, default="pending", index=True)
    payment_date = Column(DateTime)
    payment_link = Column(Text)
    payment_provider = Column(String(16))
    paid_amount = Column(Float, nullable=False, default=0)

    approval_status = Column(String(16), nullable=False, default="draft")
    approved_by = Column(String(32))
    approved_at = Column(DateTime)
    rejection_reason = Column(Text)
    sent_at = Column(DateTime)

    editable_token = Column(String(64), unique=True)
    editable_token_expiry = Column(DateTime)

    created_by = Column(String(16), nullable=False, default="owner")
    customer_email = Column(String(255))

    user = relationship("User", back_populates="invoices")
    client = relationship("Client", back_populates="invoices")
    payments = relationship(
        "Payment", back_populates="invoice", cascade="all, delete-orphan",
        order_by="Payment.created_at.desc()"
    )
    credit_notes = relationship("CreditNote", back_populates="invoice")

    @property
    def outstanding(self) -> float:
        return max((self.total or 0) - (self.paid_amount or 0), 0)

    def to_dict(self, exclude: Optional[Iterable[str]] = None,
                include_payments: bool = False) -> Dict[str, Any]:
        data = super().to_dict(exclude=exclude)
        if include_payments:
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data


class Payment(SerializableMixin, TimestampMixin, Base):
    __tablename__ = "payments"

    id = Column(String(32), primary_key=True, default=new_id)
    invoice_id = Column(String(32), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    provider = Column(String(16), nullable=False, default="manual")
    transaction_id = Column(String(255), index=True)
    status = Column(String(16), nullable=False, default="pending")
    payment_method = Column(String(64))
    notes = Column(Text)
    # "metadata" is reserved by the declarative base
    payment_metadata = Column("metadata", JSON)

    invoice = relationship("Invoice", back_populates="payments")


class CreditNote(SerializableMixin, TimestampMixin, Base):
    __tablename__ = "credit_notes"
    __table_args__ = (UniqueConstraint("user_id", "credit_note_number", name="uq_credit_note_user_number"),)

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    invoice_id = Column(String(32), ForeignKey("invoices.id", ondelete="SET NULL"), index=True)

    credit_note_number = Column(String(64), nullable=False)
    credit_note_date = Column(Date, nullable=False)
    company_info = Column(JSON, nullable=False, default=dict)
    client_info = Column(JSON, nullable=False, default=dict)
    line_items = Column(JSON, nullable=False, default=list)

    subtotal = Column(Float, nullable=False, default=0)
    tax_rate = Column(Float, nullable=False, default=0)
    tax_amount = Column(Float, nullable=False, default=0)
    total = Column(Float, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")

    reason = Column(Text)
    notes = Column(Text)
    status = Column(String(16), nullable=False, default="draft")
    applied_date = Column(DateTime)

    invoice = relationship("Invoice", back_populates="credit_notes")


# -----------------------------------------------------------------------------
# Settings
# -----------------------------------------------------------------------------

class PaymentCredential(SerializableMixin, TimestampMixin, Base):
    __tablename__ = "payment_credentials"
    __table_args__ = (UniqueConstraint("user_id", "provider", name="uq_credential_user_provider"),)
    __hidden__ = ("secret_key", "client_secret")

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    provider = Column(String(16), nullable=False)
    # Encrypted at rest
    public_key = Column(Text)
    secret_key = Column(Text)
    client_id = Column(Text)
    client_secret = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    is_test_mode = Column(Boolean, nullable=False, default=False)


class CompanyDefaults(SerializableMixin, TimestampMixin, Base):
    __tablename__ = "company_defaults"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    company_info = Column(JSON, nullable=False, default=dict)
    currency = Column(String(3), nullable=False, default="USD")
    theme = Column(String(32), nullable=False, default="slate")
    tax_rate = Column(Float, nullable=False, default=0)
    notes = Column(Text)
    bank_details = Column(Text)
    terms = Column(Text)
    default_payment_provider = Column(String(16))


class InvoiceNumberSequence(SerializableMixin, TimestampMixin, Base):
    __tablename__ = "invoice_number_sequences"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    prefix = Column(String(32), nullable=False, default="INV")
    format = Column(String(64), nullable=False, default="PREFIX-YYYY-NNNN")
    current_number = Column(Integer, nullable=False, default=1)
    reset_period = Column(String(16))
    year = Column(Integer)
    month = Column(Integer)


class EmailLog(SerializableMixin, Base):
    __tablename__ = "email_logs"

    id = Column(String(32), primary_key=True, default=new_id)
    invoice_id = Column(String(32), ForeignKey("invoices.id", ondelete="CASCADE"), index=True)
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    recipient_email = Column(String(255), nullable=False)
    subject = Column(String(255), nullable=False)
    status = Column(String(16), nullable=False)
    error_message = Column(Text)
    provider_id = Column(String(255))
    sent_at = Column(DateTime, nullable=False, default=utcnow)


class WhatsAppCredential(SerializableMixin, TimestampMixin, Base):
    __tablename__ = "whatsapp_credentials"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    phone_number = Column(String(32), nullable=False, unique=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    last_message_at = Column(DateTime)

    user = relationship("User")


class WhatsAppSettings(SerializableMixin, TimestampMixin, Base):
    __tablename__ = "whatsapp_settings"

    id = Column(String(32), primary_key=True, default=new_id)
    provider = Column(String(16), nullable=False, default="twilio")
    is_enabled = Column(Boolean, nullable=False, default=False)
    allow_user_connections = Column(Boolean, nullable=False, default=True)

    twilio_account_sid = Column(Text)
    twilio_auth_token = Column(Text)
    twilio_phone_number = Column(String(32))

    meta_access_token = Column(Text)
    meta_phone_number_id = Column(String(64))
    meta_business_account_id = Column(String(64))
    webhook_verify_token = Column(Text)

    messages_per_minute = Column(Integer, nullable=False, default=10)
    messages_per_day = Column(Integer, nullable=False, default=100)


class PricingSettings(SerializableMixin, TimestampMixin, Base):
    __tablename__ = "pricing_settings"

    id = Column(String(32), primary_key=True, default=new_id)
    region = Column(String(32), nullable=False, unique=True)
    price = Column(Float, nullable=False)
    currency = Column(String(3), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
