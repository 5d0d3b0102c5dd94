"""
Payment reminders for overdue invoices.
"""

from fastapi import APIRouter, Depends

from models.documents import ReminderRequest
from server.dependencies import CurrentUser, get_current_user, rate_limit, service
from services.email_service import EmailService

router = APIRouter(prefix="/api/payment-reminders", tags=["reminders"])

email_service = service(EmailService)


@router.get("")
def list_reminders(user: CurrentUser = Depends(get_current_user), emails: EmailService = Depends(email_service)):
    return emails.list_reminders(user["user_id"])


@router.post("", dependencies=[Depends(rate_limit("email"))])
def send_reminders(
    body: ReminderRequest,
    user: CurrentUser = Depends(get_current_user),
    emails: EmailService = Depends(email_service)
):
    return emails.send_reminders(user["user_id"], body.invoice_ids, message=body.message)
