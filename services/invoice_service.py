"""
Invoice lifecycle: creation, approval, customer edit links, overdue sweep and email delivery.
"""

from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update

from models.documents import ApprovalStatus, InvoiceCreate, InvoiceEdit, SendEmailRequest
from services.auth_service import is_valid_email
from services.base_service import BaseService
from services.payment_service import PaymentService
from storage.database import utcnow
from storage.tables import Client, EmailLog, Invoice, User
from tools.email_sender import DEV_EMAIL_ID
from utils.calculations import calculate_invoice_totals, calculate_line_amount, round2, to_number
from utils.error_handling import (
    AuthorizationError, ConflictError, ExternalServiceError, NotFoundError, ValidationError
)
from utils.metrics import count_invocations
from utils.security import generate_token

DEFAULT_LIST_LIMIT = 50
EDIT_TOKEN_DAYS = 30

# Fields returned to a customer opening an edit link
EDITABLE_VIEW_FIELDS = (
    "id", "invoice_number", "invoice_date", "due_date", "purchase_order",
    "company_info", "client_info", "ship_to_info", "line_items",
    "subtotal", "tax_rate", "tax_amount", "discount_rate", "discount_amount",
    "shipping", "total", "currency", "theme", "notes", "bank_details", "terms",
)


def normalize_line_items(items: List[Any]) -> List[Dict[str, Any]]:
    """Plain dicts with the amount recomputed from quantity and rate."""
    normalized = []
    for item in items:
        data = item.model_dump() if hasattr(item, "model_dump") else dict(item)
        data["quantity"] = to_number(data.get("quantity"))
        data["rate"] = to_number(data.get("rate"))
        data["amount"] = calculate_line_amount(data["quantity"], data["rate"])
        normalized.append(data)
    return normalized


def validate_invoice_request(request: InvoiceCreate) -> Dict[str, float]:
    """
    Check the required fields of a new invoice and compute its amounts.

    Raises:
        ValidationError: Missing fields, no line items or negative amounts
    """
    if not request.invoice_number or not request.invoice_date or not request.due_date:
        raise ValidationError("Invoice number, date, and due date are required")
    if request.company_info is None or request.client_info is None:
        raise ValidationError("Company and client information are required")
    if not request.line_items:
        raise ValidationError("At least one line item is required")

    if request.tax_rate < 0 or request.discount_rate < 0 or request.shipping < 0:
        raise ValidationError("Amounts cannot be negative")
    if any(to_number(item.quantity) < 0 or to_number(item.rate) < 0 for item in request.line_items):
        raise ValidationError("Amounts cannot be negative")

    totals = calculate_invoice_totals(
        request.line_items, request.tax_rate, request.discount_rate, request.shipping
    )
    if totals["total"] < 0:
        raise ValidationError("Total must be a positive number")
    return totals


class InvoiceService(BaseService):
    """Invoices owned by a user."""

    name = "invoices"

    def __init__(self, session, context):
        super().__init__(session, context)
        self.payments = PaymentService(session, context)

    def list_invoices(self, user_id: str, status: Optional[str] = None,
                      limit: int = DEFAULT_LIST_LIMIT) -> List[Dict[str, Any]]:
        query = select(Invoice).where(Invoice.user_id == user_id)
        if status:
            query = query.where(Invoice.payment_status == status)
        query = query.order_by(Invoice.created_at.desc()).limit(max(limit, 1))
        return [invoice.to_dict(include_payments=True) for invoice in self.session.scalars(query)]

    def number_taken(self, user_id: str, invoice_number: str, exclude_id: Optional[str] = None) -> bool:
        query = select(Invoice.id).where(Invoice.user_id == user_id, Invoice.invoice_number == invoice_number)
        if exclude_id:
            query = query.where(Invoice.id != exclude_id)
        return self.session.scalars(query).first() is not None

    def build_invoice(self, user_id: str, request: InvoiceCreate, **extra: Any) -> Invoice:
        """Validate a creation request and add the new invoice to the session."""
        totals = validate_invoice_request(request)

        if request.client_id:
            client = self.session.get(Client, request.client_id)
            if client is None or client.user_id != user_id:
                raise NotFoundError("Client not found", resource="client")

        invoice = Invoice(
            user_id=user_id,
            client_id=request.client_id,
            invoice_number=request.invoice_number,
            invoice_date=request.invoice_date,
            due_date=request.due_date,
            purchase_order=request.purchase_order or None,
            company_info=request.company_info.model_dump(exclude_none=True),
            client_info=request.client_info.model_dump(exclude_none=True),
            ship_to_info=request.ship_to_info.model_dump(exclude_none=True) if request.ship_to_info else None,
            line_items=normalize_line_items(request.line_items),
            tax_rate=request.tax_rate,
            discount_rate=request.discount_rate,
            currency=request.currency.value,
            theme=request.theme or "slate",
            notes=request.notes or None,
            bank_details=request.bank_details or None,
            terms=request.terms or None,
            payment_status="pending",
            paid_amount=0,
            **totals,
            **extra,
        )
        self.session.add(invoice)
        self.session.flush()
        return invoice

    def create_invoice(self, user_id: str, request: InvoiceCreate) -> Dict[str, Any]:
        """
        Create an invoice and try to attach a payment link.

        Raises:
            ValidationError: Invalid request
            ConflictError: The user already has an invoice with this number
        """
        if request.invoice_number and self.number_taken(user_id, request.invoice_number):
            raise ConflictError("Invoice number already exists")

        invoice = self.build_invoice(user_id, request)
        link = self.payments.auto_generate_payment_link(invoice.id, user_id, invoice.total)

        self.logger.info(f"Created invoice {invoice.invoice_number} ({invoice.id}) for user {user_id}")
        return {
            "invoice": invoice.to_dict(),
            "payment_link": link["payment_link"] if link else None,
        }

    def get_invoice(self, invoice_id: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Fetch an invoice for display. Anyone holding the id may read it;
        a signed-in caller must own it.
        """
        invoice = self._get(Invoice, invoice_id, "Invoice")
        if user_id is not None and invoice.user_id != user_id:
            raise AuthorizationError("Unauthorized")

        data = invoice.to_dict(include_payments=True)
        data["user"] = {"name": invoice.user.name, "email": invoice.user.email}
        return data

    def delete_invoice(self, invoice_id: str, user_id: str) -> None:
        invoice = self.session.get(Invoice, invoice_id) if invoice_id else None
        if invoice is None or invoice.user_id != user_id:
            raise NotFoundError("Invoice not found", resource="invoice")
        self.session.delete(invoice)
        self.session.flush()
        self.logger.info(f"Deleted invoice {invoice_id}")

    # -------------------------------------------------------------------------
    # Approval workflow
    # -------------------------------------------------------------------------

    def _owner_or_admin(self, invoice: Invoice, user_id: str) -> None:
        if invoice.user_id == user_id:
            return
        user = self.session.get(User, user_id)
        if user is None or not user.is_admin:
            raise AuthorizationError("Unauthorized")

    def request_approval(self, invoice_id: str, user_id: str) -> Dict[str, Any]:
        invoice = self._get(Invoice, invoice_id, "Invoice")
        if invoice.user_id != user_id:
            raise AuthorizationError("Unauthorized")
        if invoice.approval_status == ApprovalStatus.PENDING.value:
            raise ValidationError("Invoice approval is already pending")
        if invoice.approval_status == ApprovalStatus.APPROVED.value:
            raise ValidationError("Invoice is already approved")

        invoice.approval_status = ApprovalStatus.PENDING.value
        invoice.approved_by = None
        invoice.approved_at = None
        invoice.rejection_reason = None
        return {"invoice": invoice.to_dict(), "message": "Approval requested successfully"}

    def approve(self, invoice_id: str, user_id: str) -> Dict[str, Any]:
        invoice = self._get(Invoice, invoice_id, "Invoice")
        self._owner_or_admin(invoice, user_id)
        if invoice.approval_status == ApprovalStatus.APPROVED.value:
            raise ValidationError("Invoice is already approved")

        invoice.approval_status = ApprovalStatus.APPROVED.value
        invoice.approved_by = user_id
        invoice.approved_at = utcnow()
        invoice.rejection_reason = None
        self.logger.info(f"Invoice {invoice.id} approved by {user_id}")
        return {"invoice": invoice.to_dict(), "message": "Invoice approved successfully"}

    def reject(self, invoice_id: str, user_id: str, reason: Optional[str]) -> Dict[str, Any]:
        if not reason or not reason.strip():
            raise ValidationError("Rejection reason is required")

        invoice = self._get(Invoice, invoice_id, "Invoice")
        self._owner_or_admin(invoice, user_id)

        invoice.approval_status = ApprovalStatus.REJECTED.value
        invoice.approved_by = user_id
        invoice.approved_at = utcnow()
        invoice.rejection_reason = reason.strip()
        return {"invoice": invoice.to_dict(), "message": "Invoice rejected successfully"}

    def mark_sent(self, invoice_id: str, user_id: str) -> Dict[str, Any]:
        invoice = self._get(Invoice, invoice_id, "Invoice")
        if invoice.user_id != user_id:
            raise AuthorizationError("Unauthorized")
        if invoice.approval_status != ApprovalStatus.APPROVED.value:
            raise ValidationError("Invoice must be approved before it can be sent")

        invoice.approval_status = ApprovalStatus.SENT.value
        invoice.sent_at = utcnow()
        return {"invoice": invoice.to_dict(), "message": "Invoice marked as sent successfully"}

    # -------------------------------------------------------------------------
    # Customer edit links
    # -------------------------------------------------------------------------

    def generate_edit_token(self, invoice_id: str, user_id: str) -> Dict[str, Any]:
        invoice = self._get(Invoice, invoice_id, "Invoice")
        if invoice.user_id != user_id:
            raise AuthorizationError("Unauthorized")

        invoice.editable_token = generate_token()
        invoice.editable_token_expiry = utcnow() + timedelta(days=EDIT_TOKEN_DAYS)
        self.session.flush()
        return {
            "token": invoice.editable_token,
            "edit_url": f"{self.context.app_url}/invoice/edit/{invoice.editable_token}",
            "expires_at": invoice.editable_token_expiry.isoformat() + "Z",
        }

    def _by_edit_token(self, token: str) -> Invoice:
        invoice = None
        if token:
            invoice = self.session.scalars(
                select(Invoice).where(Invoice.editable_token == token, Invoice.editable_token_expiry > utcnow())
            ).first()
        if invoice is None:
            raise NotFoundError("Invalid or expired edit token", resource="invoice")
        return invoice

    def get_by_edit_token(self, token: str) -> Dict[str, Any]:
        invoice = self._by_edit_token(token)
        data = invoice.to_dict()
        return {
            "invoice": {field: data.get(field) for field in EDITABLE_VIEW_FIELDS},
            "owner": {"name": invoice.user.name, "email": invoice.user.email},
        }

    def update_by_edit_token(self, token: str, changes: InvoiceEdit) -> Dict[str, Any]:
        """
        Apply a customer's edits. Totals are rebuilt from the item amounts
        with body values taking precedence over the stored rates and shipping.
        """
        invoice = self._by_edit_token(token)
        apply_invoice_edit(invoice, changes)
        self.session.flush()
        self.logger.info(f"Invoice {invoice.id} updated through edit link")
        return {"invoice": invoice.to_dict(), "message": "Invoice updated successfully"}

    # -------------------------------------------------------------------------
    # Maintenance and delivery
    # -------------------------------------------------------------------------

    @count_invocations(name="overdue_sweep_runs")
    def update_overdue(self, today: Optional[date] = None) -> int:
        """Mark pending invoices past their due date as overdue; returns how many changed."""
        today = today or date.today()
        result = self.session.execute(
            update(Invoice)
            .where(Invoice.payment_status == "pending", Invoice.due_date < today)
            .values(payment_status="overdue", updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        count = result.rowcount or 0
        self.logger.info(f"Marked {count} invoice(s) overdue")
        return count

    def send_email(self, user_id: str, request: SendEmailRequest) -> Dict[str, Any]:
        """
        Email an invoice and log the attempt.

        Raises:
            ValidationError: Missing id or recipient, malformed address
            NotFoundError: Invoice not owned by the user
            ExternalServiceError: The email provider refused the message
        """
        if not request.invoice_id or not request.recipient_email:
            raise ValidationError("Invoice ID and recipient email are required")
        if not is_valid_email(request.recipient_email):
            raise ValidationError("Invalid email format")

        invoice = self.session.get(Invoice, request.invoice_id)
        if invoice is None or invoice.user_id != user_id:
            raise NotFoundError("Invoice not found", resource="invoice")

        result = self.context.email.send_invoice(invoice.to_dict(), request.recipient_email, request.message)
        self.session.add(EmailLog(
            invoice_id=invoice.id,
            user_id=user_id,
            recipient_email=request.recipient_email,
            subject=f"Invoice {invoice.invoice_number} from {invoice.user.name}",
            status="sent" if result.success else "failed",
            error_message=result.error,
            provider_id=result.email_id if result.email_id != DEV_EMAIL_ID else None,
        ))
        invoice.sent_at = utcnow()

        if not result.success:
            # The log entry survives the failed request
            self.session.commit()
            raise ExternalServiceError(result.error or "Failed to send email", service_name="resend")

        return {"message": "Invoice sent successfully", "email_id": result.email_id}


def apply_invoice_edit(invoice: Invoice, changes: InvoiceEdit) -> None:
    """Copy the supplied fields onto an invoice and rebuild its totals."""
    supplied = changes.model_fields_set

    if changes.client_info is not None:
        invoice.client_info = changes.client_info.model_dump(exclude_none=True)
    if "ship_to_info" in supplied:
        invoice.ship_to_info = changes.ship_to_info.model_dump(exclude_none=True) if changes.ship_to_info else None
    if changes.line_items:
        invoice.line_items = normalize_line_items(changes.line_items)
    for field in ("due_date", "purchase_order", "notes", "terms"):
        if field in supplied and (field != "due_date" or changes.due_date is not None):
            setattr(invoice, field, getattr(changes, field))

    subtotal = round2(sum(to_number(item.get("amount")) for item in invoice.line_items or []))
    tax_rate = changes.tax_rate if changes.tax_rate is not None else (invoice.tax_rate or 0)
    discount_rate = changes.discount_rate if changes.discount_rate is not None else (invoice.discount_rate or 0)
    shipping = changes.shipping if changes.shipping is not None else (invoice.shipping or 0)
    if tax_rate < 0 or discount_rate < 0 or shipping < 0:
        raise ValidationError("Amounts cannot be negative")

    tax_amount = round2(subtotal * tax_rate / 100)
    discount_amount = round2(subtotal * discount_rate / 100)

    invoice.subtotal = subtotal
    invoice.tax_rate = tax_rate
    invoice.tax_amount = tax_amount
    invoice.discount_rate = discount_rate
    invoice.discount_amount = discount_amount
    invoice.shipping = shipping
    invoice.total = round2(subtotal - discount_amount + tax_amount + shipping)
