"""
Request schemas for the InvoiceGen API.
"""

from models.base import InvoiceGenModel
from models.documents import (
    ApplyCreditNoteRequest,
    ApprovalStatus,
    ClientInfo,
    CompanyInfo,
    CreatedBy,
    CreditNoteCreate,
    CreditNoteStatus,
    CreditNoteUpdate,
    Currency,
    InvoiceCreate,
    InvoiceEdit,
    LineItem,
    PaymentCreate,
    PaymentLinkRequest,
    PaymentRecordStatus,
    PaymentStatus,
    PaymentVerifyRequest,
    PublicInvoiceCreate,
    PublicInvoiceUpdate,
    RejectRequest,
    ReminderRequest,
    SendEmailRequest,
    SequenceConfigRequest,
    ShipToInfo,
)
from models.entities import (
    ClientCreate,
    ClientUpdate,
    CompanyDefaultsRequest,
    DefaultProviderRequest,
    LoginRequest,
    MakeAdminRequest,
    PaymentCredentialRequest,
    PaymentProvider,
    PricingRegion,
    PricingUpdate,
    PublicSlugRequest,
    RefreshRequest,
    RegisterRequest,
    VerifyEmailRequest,
    WhatsAppConnectRequest,
    WhatsAppProvider,
    WhatsAppSettingsUpdate,
)
