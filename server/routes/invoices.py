"""
Invoice endpoints: CRUD, the approval workflow, edit links and delivery.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query

from models.documents import InvoiceCreate, InvoiceEdit, RejectRequest, SendEmailRequest
from server.dependencies import (
    CurrentUser, get_context, get_current_user, get_current_user_optional, rate_limit, service
)
from services.base_service import ServiceContext
from services.invoice_service import DEFAULT_LIST_LIMIT, InvoiceService
from utils.error_handling import AuthenticationError
from utils.security import extract_bearer_token

router = APIRouter(prefix="/api/invoices", tags=["invoices"])

invoice_service = service(InvoiceService)


@router.get("", dependencies=[Depends(rate_limit("general"))])
def list_invoices(
    status: Optional[str] = Query(None),
    limit: int = Query(DEFAULT_LIST_LIMIT),
    user: CurrentUser = Depends(get_current_user),
    invoices: InvoiceService = Depends(invoice_service)
):
    return invoices.list_invoices(user["user_id"], status=status, limit=limit)


@router.post("", status_code=201, dependencies=[Depends(rate_limit("general"))])
def create_invoice(
    body: InvoiceCreate,
    user: CurrentUser = Depends(get_current_user),
    invoices: InvoiceService = Depends(invoice_service)
):
    return invoices.create_invoice(user["user_id"], body)


@router.post("/update-overdue")
def update_overdue(
    authorization: Optional[str] = Header(None),
    context: ServiceContext = Depends(get_context),
    invoices: InvoiceService = Depends(invoice_service)
):
    """Scheduled job: flag pending invoices past due. Guarded by the cron secret when one is set."""
    cron_secret = context.security.get("cron_secret")
    if cron_secret and extract_bearer_token(authorization) != cron_secret:
        raise AuthenticationError("Unauthorized")
    count = invoices.update_overdue()
    return {"message": f"Updated {count} overdue invoice(s)", "count": count}


@router.post("/send-email", dependencies=[Depends(rate_limit("email"))])
def send_email(
    body: SendEmailRequest,
    user: CurrentUser = Depends(get_current_user),
    invoices: InvoiceService = Depends(invoice_service)
):
    return invoices.send_email(user["user_id"], body)


@router.get("/edit/{token}")
def get_by_edit_token(token: str, invoices: InvoiceService = Depends(invoice_service)):
    return invoices.get_by_edit_token(token)


@router.put("/edit/{token}")
def update_by_edit_token(token: str, body: InvoiceEdit, invoices: InvoiceService = Depends(invoice_service)):
    return invoices.update_by_edit_token(token, body)


@router.get("/{invoice_id}")
def get_invoice(
    invoice_id: str,
    user: Optional[CurrentUser] = Depends(get_current_user_optional),
    invoices: InvoiceService = Depends(invoice_service)
):
    return invoices.get_invoice(invoice_id, user["user_id"] if user else None)


@router.delete("/{invoice_id}")
def delete_invoice(
    invoice_id: str,
    user: CurrentUser = Depends(get_current_user),
    invoices: InvoiceService = Depends(invoice_service)
):
    invoices.delete_invoice(invoice_id, user["user_id"])
    return {"message": "Invoice deleted"}


# Approval workflow

@router.post("/{invoice_id}/request-approval")
def request_approval(
    invoice_id: str,
    user: CurrentUser = Depends(get_current_user),
    invoices: InvoiceService = Depends(invoice_service)
):
    return invoices.request_approval(invoice_id, user["user_id"])


@router.post("/{invoice_id}/approve")
def approve(
    invoice_id: str,
    user: CurrentUser = Depends(get_current_user),
    invoices: InvoiceService = Depends(invoice_service)
):
    return invoices.approve(invoice_id, user["user_id"])


@router.post("/{invoice_id}/reject")
def reject(
    invoice_id: str,
    body: RejectRequest,
    user: CurrentUser = Depends(get_current_user),
    invoices: InvoiceService = Depends(invoice_service)
):
    return invoices.reject(invoice_id, user["user_id"], body.reason)


@router.post("/{invoice_id}/send")
def mark_sent(
    invoice_id: str,
    user: CurrentUser = Depends(get_current_user),
    invoices: InvoiceService = Depends(invoice_service)
):
    return invoices.mark_sent(invoice_id, user["user_id"])


@router.post("/{invoice_id}/generate-edit-token")
def generate_edit_token(
    invoice_id: str,
    user: CurrentUser = Depends(get_current_user),
    invoices: InvoiceService = Depends(invoice_service)
):
    return invoices.generate_edit_token(invoice_id, user["user_id"])
