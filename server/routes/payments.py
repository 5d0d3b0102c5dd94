"""
Payment endpoints: manual payments, payment links and gateway verification.
"""

from fastapi import APIRouter, Depends

from models.documents import PaymentCreate, PaymentLinkRequest, PaymentVerifyRequest
from server.dependencies import CurrentUser, get_current_user, rate_limit, service
from services.payment_service import PaymentService

router = APIRouter(prefix="/api", tags=["payments"])

payment_service = service(PaymentService)


@router.get("/invoices/{invoice_id}/payments")
def payment_history(
    invoice_id: str,
    user: CurrentUser = Depends(get_current_user),
    payments: PaymentService = Depends(payment_service)
):
    return payments.payment_history(invoice_id, user["user_id"])


@router.post("/invoices/{invoice_id}/payments", status_code=201)
def record_payment(
    invoice_id: str,
    body: PaymentCreate,
    user: CurrentUser = Depends(get_current_user),
    payments: PaymentService = Depends(payment_service)
):
    return payments.record_payment(
        invoice_id,
        user["user_id"],
        body.amount,
        payment_method=body.payment_method,
        notes=body.notes,
        transaction_id=body.transaction_id,
    )


@router.post("/invoices/{invoice_id}/payment-link", dependencies=[Depends(rate_limit("payment"))])
def create_payment_link(
    invoice_id: str,
    body: PaymentLinkRequest,
    user: CurrentUser = Depends(get_current_user),
    payments: PaymentService = Depends(payment_service)
):
    return payments.create_payment_link(invoice_id, user["user_id"], body.provider)


@router.post("/payments/verify", dependencies=[Depends(rate_limit("payment"))])
def verify_payment(body: PaymentVerifyRequest, payments: PaymentService = Depends(payment_service)):
    """Confirm a payment after the gateway redirects the payer back."""
    return payments.verify_payment(body.provider, body.reference, body.invoice_id)


@router.delete("/payments/{payment_id}")
def delete_payment(
    payment_id: str,
    user: CurrentUser = Depends(get_current_user),
    payments: PaymentService = Depends(payment_service)
):
    return payments.delete_payment(payment_id, user["user_id"])
