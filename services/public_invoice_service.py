"""
Customer-created invoices through a user's public link.
"""

from typing import Any, Dict

from sqlalchemy import select

from models.documents import CreatedBy, PublicInvoiceCreate, PublicInvoiceUpdate
from services.base_service import BaseService
from services.invoice_service import InvoiceService, apply_invoice_edit
from storage.tables import CompanyDefaults, Invoice, User
from utils.error_handling import NotFoundError, ValidationError


class PublicInvoiceService(BaseService):
    name = "public_invoices"

    def __init__(self, session, context):
        super().__init__(session, context)
        self.invoices = InvoiceService(session, context)

    def _owner(self, slug: str) -> User:
        user = self.session.scalars(select(User).where(User.public_slug == slug)).first() if slug else None
        if user is None:
            raise NotFoundError("Invoice link not found", resource="public_link")
        return user

    def get_link_info(self, slug: str) -> Dict[str, Any]:
        """What a customer needs to fill in an invoice for the owner of ``slug``."""
        user = self._owner(slug)
        defaults = self.session.scalars(select(CompanyDefaults).where(CompanyDefaults.user_id == user.id)).first()
        return {
            "company_name": user.name,
            "company_info": defaults.company_info if defaults else None,
            "default_currency": defaults.currency if defaults else "USD",
            "default_theme": defaults.theme if defaults else "slate",
            "default_tax_rate": defaults.tax_rate if defaults else 0,
            "slug": user.public_slug,
        }

    def create_invoice(self, slug: str, request: PublicInvoiceCreate) -> Dict[str, Any]:
        user = self._owner(slug)
        if request.invoice_number and self.invoices.number_taken(user.id, request.invoice_number):
            raise ValidationError("Invoice number already exists. Please use a different invoice number.")

        invoice = self.invoices.build_invoice(
            user.id,
            request,
            created_by=CreatedBy.CUSTOMER.value,
            customer_email=request.customer_email or None,
        )
        self.invoices.payments.auto_generate_payment_link(invoice.id, user.id, invoice.total)
        self.logger.info(f"Public invoice {invoice.id} created for user {user.id} ({invoice.invoice_number})")
        return invoice.to_dict()

    def update_invoice(self, slug: str, request: PublicInvoiceUpdate) -> Dict[str, Any]:
        """Let a customer edit an invoice they created; the payment link follows a changed total."""
        if not request.invoice_id:
            raise ValidationError("Invoice ID is required")

        user = self._owner(slug)
        invoice = self.session.scalars(
            select(Invoice).where(
                Invoice.id == request.invoice_id,
                Invoice.user_id == user.id,
                Invoice.created_by == CreatedBy.CUSTOMER.value,
            )
        ).first()
        if invoice is None:
            raise NotFoundError("Invoice not found or cannot be edited", resource="invoice")

        previous_total = invoice.total
        apply_invoice_edit(invoice, request)
        self.session.flush()

        if invoice.total > 0 and invoice.total != previous_total:
            self.invoices.payments.auto_generate_payment_link(invoice.id, user.id, invoice.total)

        return invoice.to_dict()
