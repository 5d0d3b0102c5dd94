"""
Request schemas for invoices, payments and credit notes.
"""

from datetime import date
from enum import Enum
from typing import List, Optional

from pydantic import ConfigDict, Field, field_validator

from models.base import InvoiceGenModel


class Currency(str, Enum):
    """Currencies an invoice can be issued in."""
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    JPY = "JPY"
    CAD = "CAD"
    AUD = "AUD"
    NGN = "NGN"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class ApprovalStatus(str, Enum):
    """Approval workflow states of an invoice."""
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SENT = "sent"


class CreatedBy(str, Enum):
    OWNER = "owner"
    CUSTOMER = "customer"


class CreditNoteStatus(str, Enum):
    DRAFT = "draft"
    ISSUED = "issued"
    APPLIED = "applied"
    VOID = "void"


class PaymentRecordStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class LineItem(InvoiceGenModel):
    """Line item of an invoice or credit note."""
    description: str = ""
    quantity: float = 0
    rate: float = 0
    amount: Optional[float] = None

    @field_validator("quantity", "rate", mode="before")
    @classmethod
    def blank_as_zero(cls, v):
        return 0 if v in (None, "") else v


class PartyInfo(InvoiceGenModel):
    """Contact block of the issuing company or the billed client."""
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[str] = None


class CompanyInfo(PartyInfo):
    logo: Optional[str] = None
    website: Optional[str] = None
    tax_id: Optional[str] = None


class ClientInfo(PartyInfo):
    pass


class ShipToInfo(PartyInfo):
    pass


class InvoiceCreate(InvoiceGenModel):
    """Body of an invoice creation request. Amounts are recomputed from the items."""
    invoice_number: Optional[str] = None
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    purchase_order: Optional[str] = None
    client_id: Optional[str] = None

    company_info: Optional[CompanyInfo] = None
    client_info: Optional[ClientInfo] = None
    ship_to_info: Optional[ShipToInfo] = None
    line_items: List[LineItem] = []

    tax_rate: float = 0
    discount_rate: float = 0
    shipping: float = 0
    currency: Currency = Currency.USD
    theme: str = "slate"

    notes: Optional[str] = None
    bank_details: Optional[str] = None
    terms: Optional[str] = None

    @field_validator("invoice_number")
    @classmethod
    def strip_number(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("tax_rate", "discount_rate", "shipping", mode="before")
    @classmethod
    def none_as_zero(cls, v):
        return 0 if v in (None, "") else v


class InvoiceEdit(InvoiceGenModel):
    """Partial invoice update through an edit link. Unset fields keep their value."""
    due_date: Optional[date] = None
    purchase_order: Optional[str] = None
    client_info: Optional[ClientInfo] = None
    ship_to_info: Optional[ShipToInfo] = None
    line_items: Optional[List[LineItem]] = None
    tax_rate: Optional[float] = None
    discount_rate: Optional[float] = None
    shipping: Optional[float] = None
    notes: Optional[str] = None
    terms: Optional[str] = None


class PublicInvoiceCreate(InvoiceCreate):
    customer_email: Optional[str] = None


class PublicInvoiceUpdate(InvoiceEdit):
    invoice_id: Optional[str] = None


class RejectRequest(InvoiceGenModel):
    reason: Optional[str] = None


class SendEmailRequest(InvoiceGenModel):
    invoice_id: Optional[str] = None
    recipient_email: Optional[str] = None
    message: Optional[str] = None


class PaymentCreate(InvoiceGenModel):
    """A manually recorded payment."""
    amount: float = Field(default=0)
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    transaction_id: Optional[str] = None


class PaymentLinkRequest(InvoiceGenModel):
    provider: Optional[str] = None


class PaymentVerifyRequest(InvoiceGenModel):
    provider: Optional[str] = None
    reference: Optional[str] = None
    invoice_id: Optional[str] = None


class CreditNoteCreate(InvoiceGenModel):
    credit_note_number: Optional[str] = None
    credit_note_date: Optional[date] = None
    invoice_id: Optional[str] = None
    company_info: Optional[CompanyInfo] = None
    client_info: Optional[ClientInfo] = None
    line_items: List[LineItem] = []
    tax_rate: float = 0
    currency: Currency = Currency.USD
    reason: Optional[str] = None
    notes: Optional[str] = None


class CreditNoteUpdate(InvoiceGenModel):
    credit_note_date: Optional[date] = None
    company_info: Optional[CompanyInfo] = None
    client_info: Optional[ClientInfo] = None
    line_items: Optional[List[LineItem]] = None
    tax_rate: Optional[float] = None
    currency: Optional[Currency] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[CreditNoteStatus] = None


class ApplyCreditNoteRequest(InvoiceGenModel):
    invoice_id: Optional[str] = None


class ReminderRequest(InvoiceGenModel):
    invoice_ids: List[str] = []
    message: Optional[str] = None


class SequenceConfigRequest(InvoiceGenModel):
    prefix: Optional[str] = None
    format: Optional[str] = None
    reset_period: Optional[str] = None
