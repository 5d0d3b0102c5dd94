"""
Credit notes and their application against invoices.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import select

from models.documents import CreditNoteCreate, CreditNoteStatus, CreditNoteUpdate
from services.base_service import BaseService
from services.invoice_service import normalize_line_items
from services.payment_service import settle_invoice
from storage.database import utcnow
from storage.tables import CreditNote, Invoice
from utils.calculations import calculate_subtotal, calculate_tax, round2, to_number
from utils.error_handling import AuthorizationError, NotFoundError, ValidationError


def _with_invoice(note: CreditNote) -> Dict[str, Any]:
    data = note.to_dict()
    if note.invoice is not None:
        data["invoice"] = {
            "id": note.invoice.id,
            "invoice_number": note.invoice.invoice_number,
            "total": note.invoice.total,
        }
    return data


class CreditNoteService(BaseService):
    name = "credit_notes"

    def list_credit_notes(self, user_id: str, invoice_id: Optional[str] = None,
                          status: Optional[str] = None) -> List[Dict[str, Any]]:
        query = select(CreditNote).where(CreditNote.user_id == user_id)
        if invoice_id:
            query = query.where(CreditNote.invoice_id == invoice_id)
        if status:
            query = query.where(CreditNote.status == status)
        query = query.order_by(CreditNote.created_at.desc())
        return [_with_invoice(note) for note in self.session.scalars(query)]

    def create_credit_note(self, user_id: str, request: CreditNoteCreate) -> Dict[str, Any]:
        """
        Create a draft credit note.

        Raises:
            ValidationError: Missing fields, negative total or a duplicate number
            NotFoundError: The linked invoice is not the user's
        """
        number = (request.credit_note_number or "").strip()
        if not number or not request.credit_note_date:
            raise ValidationError("Credit note number and date are required")
        if request.company_info is None or request.client_info is None:
            raise ValidationError("Company and client information are required")
        if not request.line_items:
            raise ValidationError("At least one line item is required")

        subtotal = calculate_subtotal(request.line_items)
        tax_amount = calculate_tax(subtotal, request.tax_rate)
        total = round2(subtotal + tax_amount)
        if total < 0 or request.tax_rate < 0:
            raise ValidationError("Total must be a positive number")

        duplicate = self.session.scalars(
            select(CreditNote.id).where(CreditNote.user_id == user_id, CreditNote.credit_note_number == number)
        ).first()
        if duplicate is not None:
            raise ValidationError("Credit note number already exists")

        if request.invoice_id:
            invoice = self.session.get(Invoice, request.invoice_id)
            if invoice is None or invoice.user_id != user_id:
                raise NotFoundError("Invoice not found or unauthorized", resource="invoice")

        note = CreditNote(
            user_id=user_id,
            invoice_id=request.invoice_id or None,
            credit_note_number=number,
            credit_note_date=request.credit_note_date,
            company_info=request.company_info.model_dump(exclude_none=True),
            client_info=request.client_info.model_dump(exclude_none=True),
            line_items=normalize_line_items(request.line_items),
            subtotal=subtotal,
            tax_rate=request.tax_rate,
            tax_amount=tax_amount,
            total=total,
            currency=request.currency.value,
            reason=request.reason or None,
            notes=request.notes or None,
            status=CreditNoteStatus.DRAFT.value,
        )
        self.session.add(note)
        self.session.flush()
        self.logger.info(f"Created credit note {number} for user {user_id}")
        return note.to_dict()

    def get_credit_note(self, note_id: str, user_id: str) -> Dict[str, Any]:
        note = self._get_owned(CreditNote, note_id, user_id, "Credit note")
        return _with_invoice(note)

    def _draft(self, note_id: str, user_id: str, action: str) -> CreditNote:
        note = self._get_owned(CreditNote, note_id, user_id, "Credit note")
        if note.status != CreditNoteStatus.DRAFT.value:
            raise ValidationError(f"Can only {action} draft credit notes")
        return note

    def update_credit_note(self, note_id: str, user_id: str, changes: CreditNoteUpdate) -> Dict[str, Any]:
        note = self._draft(note_id, user_id, "update")
        supplied = changes.model_fields_set

        if changes.credit_note_date is not None:
            note.credit_note_date = changes.credit_note_date
        if changes.company_info is not None:
            note.company_info = changes.company_info.model_dump(exclude_none=True)
        if changes.client_info is not None:
            note.client_info = changes.client_info.model_dump(exclude_none=True)
        if changes.currency is not None:
            note.currency = changes.currency.value
        if changes.status is not None:
            note.status = changes.status.value
        for field in ("reason", "notes"):
            if field in supplied:
                setattr(note, field, getattr(changes, field) or None)

        if changes.line_items is not None or changes.tax_rate is not None:
            if changes.line_items is not None:
                if not changes.line_items:
                    raise ValidationError("At least one line item is required")
                note.line_items = normalize_line_items(changes.line_items)
            if changes.tax_rate is not None:
                if changes.tax_rate < 0:
                    raise ValidationError("Total must be a positive number")
                note.tax_rate = changes.tax_rate
            note.subtotal = calculate_subtotal(note.line_items)
            note.tax_amount = calculate_tax(note.subtotal, note.tax_rate)
            note.total = round2(note.subtotal + note.tax_amount)

        self.session.flush()
        return note.to_dict()

    def delete_credit_note(self, note_id: str, user_id: str) -> None:
        note = self._draft(note_id, user_id, "delete")
        self.session.delete(note)
        self.session.flush()

    def apply_credit_note(self, note_id: str, user_id: str, invoice_id: Optional[str]) -> Dict[str, Any]:
        """Apply a credit note as a payment towards an invoice."""
        if not invoice_id:
            raise ValidationError("Invoice ID is required")

        note = self._get_owned(CreditNote, note_id, user_id, "Credit note")
        if note.status == CreditNoteStatus.APPLIED.value:
            raise ValidationError("Credit note has already been applied")

        invoice = self._get(Invoice, invoice_id, "Invoice")
        if invoice.user_id != user_id:
            raise AuthorizationError("Unauthorized")

        note.status = CreditNoteStatus.APPLIED.value
        note.invoice_id = invoice.id
        note.applied_date = utcnow()
        settle_invoice(invoice, to_number(invoice.paid_amount) + to_number(note.total))
        self.session.flush()

        self.logger.info(f"Applied credit note {note.id} to invoice {invoice.id}")
        return {"credit_note": note.to_dict(), "invoice": invoice.to_dict()}
