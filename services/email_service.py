"""
Payment reminders for overdue invoices.
"""

from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from services.base_service import BaseService
from storage.database import utcnow
from storage.tables import EmailLog, Invoice
from tools.email_sender import DEV_EMAIL_ID
from utils.calculations import round2
from utils.error_handling import ValidationError

MAX_REMINDERS = 50


def default_reminder_message(invoice: Invoice, days_overdue: int) -> str:
    outstanding = round2((invoice.total or 0) - (invoice.paid_amount or 0))
    due = f"{days_overdue} days overdue" if days_overdue > 0 else "due"
    return (
        f"This is a friendly reminder that invoice {invoice.invoice_number} is {due}. "
        f"Outstanding amount: {invoice.currency} {outstanding:.2f}. "
        "Please make payment at your earliest convenience."
    )


class EmailService(BaseService):
    name = "email"

    def list_reminders(self, user_id: str, today: Optional[date] = None) -> List[Dict[str, Any]]:
        """Unpaid invoices past their due date, oldest due first."""
        today = today or date.today()
        invoices = self.session.scalars(
            select(Invoice)
            .where(
                Invoice.user_id == user_id,
                Invoice.payment_status.in_(("pending", "overdue")),
                Invoice.due_date < today,
            )
            .order_by(Invoice.due_date)
            .limit(MAX_REMINDERS)
        )
        return [
            {
                "invoice_id": invoice.id,
                "invoice_number": invoice.invoice_number,
                "client_email": (invoice.client_info or {}).get("email"),
                "client_name": (invoice.client_info or {}).get("name"),
                "due_date": invoice.due_date.isoformat(),
                "outstanding": round2((invoice.total or 0) - (invoice.paid_amount or 0)),
                "currency": invoice.currency,
                "days_overdue": (today - invoice.due_date).days,
            }
            for invoice in invoices
        ]

    def send_reminders(self, user_id: str, invoice_ids: List[str], message: Optional[str] = None,
                       today: Optional[date] = None) -> Dict[str, Any]:
        """
        Email a reminder for each invoice. Failures are reported per invoice
        and never abort the batch.
        """
        if not invoice_ids:
            raise ValidationError("Invoice IDs are required")

        today = today or date.today()
        results = []
        for invoice_id in invoice_ids:
            invoice = self.session.get(Invoice, invoice_id)
            if invoice is None or invoice.user_id != user_id:
                results.append({"invoice_id": invoice_id, "success": False, "error": "Invoice not found"})
                continue

            client_email = (invoice.client_info or {}).get("email")
            if not client_email:
                results.append({"invoice_id": invoice_id, "success": False, "error": "No client email"})
                continue

            text = message or default_reminder_message(invoice, (today - invoice.due_date).days)
            result = self.context.email.send_reminder(invoice.to_dict(), client_email, text)
            self.session.add(EmailLog(
                invoice_id=invoice.id,
                user_id=user_id,
                recipient_email=client_email,
                subject=f"Payment Reminder: Invoice {invoice.invoice_number}",
                status="sent" if result.success else "failed",
                error_message=result.error,
                provider_id=result.email_id if result.email_id != DEV_EMAIL_ID else None,
            ))

            if result.success:
                invoice.sent_at = utcnow()
                results.append({"invoice_id": invoice_id, "success": True, "email_id": result.email_id})
            else:
                results.append({"invoice_id": invoice_id, "success": False, "error": result.error})

        self.session.flush()
        succeeded = sum(1 for r in results if r["success"])
        self.logger.info(f"Sent {succeeded} of {len(results)} payment reminders for user {user_id}")
        return {
            "results": results,
            "summary": {"total": len(results), "success": succeeded, "failed": len(results) - succeeded},
        }
