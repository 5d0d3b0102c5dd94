"""
Invoice payments: manual records, payment links, verification and webhooks.
"""

from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from services.base_service import BaseService
from storage.database import utcnow
from storage.tables import CompanyDefaults, Invoice, Payment, PaymentCredential, User
from tools.payment_gateways import SUPPORTED_PROVIDERS
from utils.calculations import round2
from utils.error_handling import AuthorizationError, ErrorBoundary, NotFoundError, ValidationError

SUBSCRIPTION_DAYS = 30


def settle_invoice(invoice: Invoice, paid_amount: float) -> None:
    """Set paid amount and status: paid once the total is covered, pending otherwise."""
    invoice.paid_amount = round2(paid_amount)
    if invoice.paid_amount >= (invoice.total or 0):
        invoice.payment_status = "paid"
        invoice.payment_date = utcnow()
    else:
        invoice.payment_status = "pending"


class PaymentService(BaseService):
    """Records payments against invoices and talks to the gateways."""

    name = "payments"

    # -------------------------------------------------------------------------
    # Manual payments
    # -------------------------------------------------------------------------

    def payment_history(self, invoice_id: str, user_id: str) -> Dict[str, Any]:
        invoice = self._get_owned(Invoice, invoice_id, user_id, "Invoice")
        return {
            "invoice": {
                "id": invoice.id,
                "invoice_number": invoice.invoice_number,
                "total": invoice.total,
                "paid_amount": invoice.paid_amount,
                "outstanding": round2(invoice.outstanding),
                "currency": invoice.currency,
                "payment_status": invoice.payment_status,
            },
            "payments": [payment.to_dict() for payment in invoice.payments],
        }

    def record_payment(
        self,
        invoice_id: str,
        user_id: str,
        amount: float,
        payment_method: Optional[str] = None,
        notes: Optional[str] = None,
        transaction_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Record a completed manual payment and update the invoice balance."""
        if not amount or amount <= 0:
            raise ValidationError("Valid payment amount is required")

        invoice = self._get_owned(Invoice, invoice_id, user_id, "Invoice")
        payment = Payment(
            invoice_id=invoice.id,
            amount=round2(amount),
            currency=invoice.currency,
            provider="manual",
            status="completed",
            payment_method=payment_method or "manual",
            notes=notes,
            transaction_id=transaction_id,
        )
        self.session.add(payment)
        settle_invoice(invoice, (invoice.paid_amount or 0) + payment.amount)
        self.session.flush()

        self.metrics.track_payment("manual")
        self.logger.info(f"Recorded payment {payment.id} of {payment.amount} on invoice {invoice.id}")
        return {"payment": payment.to_dict(), "invoice": invoice.to_dict()}

    def delete_payment(self, payment_id: str, user_id: str, today: Optional[date] = None) -> Dict[str, Any]:
        """
        Remove a payment and recompute the invoice from the remaining completed payments.
        """
        payment = self._get(Payment, payment_id, "Payment")
        invoice = payment.invoice
        if invoice.user_id != user_id:
            raise AuthorizationError()

        self.session.delete(payment)
        self.session.flush()
        self.session.refresh(invoice)

        remaining = [p for p in invoice.payments if p.status == "completed"]
        paid = round2(sum(p.amount for p in remaining))
        total = invoice.total or 0
        today = today or date.today()

        if paid >= total and total > 0:
            status = "paid"
        elif paid > 0:
            status = "pending"
        else:
            status = "overdue" if today > invoice.due_date else "pending"

        invoice.paid_amount = paid
        invoice.payment_status = status
        if status == "paid":
            invoice.payment_date = utcnow()
        elif not remaining:
            invoice.payment_date = None
        self.session.flush()

        return {"message": "Payment deleted", "invoice": invoice.to_dict()}

    # -------------------------------------------------------------------------
    # Payment links
    # -------------------------------------------------------------------------

    def _credential(self, user_id: str, provider: str) -> Optional[PaymentCredential]:
        return self.session.scalars(
            select(PaymentCredential).where(
                PaymentCredential.user_id == user_id,
                PaymentCredential.provider == provider,
            )
        ).first()

    def _decrypted(self, credential: PaymentCredential) -> Dict[str, Any]:
        values = self.context.cipher.decrypt_credential(credential)
        values["is_test_mode"] = credential.is_test_mode
        return values

    def create_payment_link(self, invoice_id: str, user_id: str, provider: Optional[str]) -> Dict[str, Any]:
        """
        Create a link with the given provider and store it on the invoice.

        Raises:
            ValidationError: Unknown provider or no usable credentials
            NotFoundError: Invoice not owned by the user
            PaymentProviderError: The gateway rejected the request
        """
        if not provider:
            raise ValidationError("Payment provider is required")
        if provider not in SUPPORTED_PROVIDERS:
            raise ValidationError("Invalid payment provider. Must be paypal, paystack, or stripe")

        invoice = self.session.get(Invoice, invoice_id)
        if invoice is None or invoice.user_id != user_id:
            raise NotFoundError("Invoice not found", resource="invoice")

        credential = self._credential(user_id, provider)
        if credential is None or not credential.is_active:
            raise ValidationError(f"Payment credentials for {provider} not configured")

        link = self.context.gateways.create_payment_link(
            invoice, provider, self._decrypted(credential),
            payer_email=invoice.user.email, payer_name=invoice.user.name,
        )
        invoice.payment_link = link
        invoice.payment_provider = provider
        self.session.flush()
        return {"payment_link": link, "provider": provider, "invoice": invoice.to_dict()}

    def get_default_payment_provider(self, user_id: str) -> Optional[str]:
        """The default provider when its credential is active, else the newest active credential."""
        defaults = self.session.scalars(
            select(CompanyDefaults).where(CompanyDefaults.user_id == user_id)
        ).first()
        if defaults is not None and defaults.default_payment_provider:
            credential = self._credential(user_id, defaults.default_payment_provider)
            if credential is not None and credential.is_active:
                return defaults.default_payment_provider

        credential = self.session.scalars(
            select(PaymentCredential)
            .where(PaymentCredential.user_id == user_id, PaymentCredential.is_active.is_(True))
            .order_by(PaymentCredential.created_at.desc())
        ).first()
        return credential.provider if credential is not None else None

    def auto_generate_payment_link(self, invoice_id: str, user_id: str, total: float) -> Optional[Dict[str, str]]:
        """
        Try to attach a payment link to a new invoice.

        Never raises: any failure is logged and None returned so invoice
        creation goes ahead without a link.
        """
        if not total or total <= 0:
            return None

        def generate() -> Optional[Dict[str, str]]:
            provider = self.get_default_payment_provider(user_id)
            if provider is None:
                return None
            invoice = self.session.get(Invoice, invoice_id)
            credential = self._credential(user_id, provider)
            if invoice is None or invoice.user_id != user_id or credential is None or not credential.is_active:
                return None

            link = self.context.gateways.create_payment_link(
                invoice, provider, self._decrypted(credential),
                payer_email=invoice.user.email, payer_name=invoice.user.name,
            )
            invoice.payment_link = link
            invoice.payment_provider = provider
            return {"payment_link": link, "provider": provider}

        return ErrorBoundary("auto_payment_link", fallback_value=None).execute(generate)

    # -------------------------------------------------------------------------
    # Verification and webhooks
    # -------------------------------------------------------------------------

    def _complete_payment(
        self,
        invoice: Invoice,
        provider: str,
        transaction_id: Optional[str],
        amount: float,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Payment:
        """Mark the matching pending payment completed, or record a new one, and settle the invoice."""
        payment = None
        if transaction_id:
            payment = self.session.scalars(
                select(Payment).where(Payment.invoice_id == invoice.id, Payment.transaction_id == transaction_id)
            ).first()

        if payment is None:
            payment = Payment(invoice_id=invoice.id, provider=provider, transaction_id=transaction_id)
            self.session.add(payment)
        elif payment.status == "completed":
            return payment

        payment.amount = round2(amount)
        payment.currency = invoice.currency
        payment.status = "completed"
        payment.payment_method = provider
        payment.payment_metadata = metadata

        invoice.paid_amount = round2(amount)
        invoice.payment_status = "paid"
        invoice.payment_date = utcnow()
        self.session.flush()

        self.metrics.track_payment(provider)
        self.logger.info(f"Completed {provider} payment {transaction_id} for invoice {invoice.id}")
        return payment

    def verify_payment(self, provider: Optional[str], reference: Optional[str], invoice_id: Optional[str]) -> Dict[str, Any]:
        """Confirm a gateway payment by reference and mark the invoice paid."""
        if not provider or not reference or not invoice_id:
            raise ValidationError("Missing required fields")
        if provider not in ("paystack", "stripe"):
            raise ValidationError(f"Payment verification is not supported for {provider}")

        invoice = self._get(Invoice, invoice_id, "Invoice")
        credential = self._credential(invoice.user_id, provider)
        if credential is None or not credential.is_active:
            raise ValidationError("Payment credentials not found")

        secret_key = self._decrypted(credential).get("secret_key")
        if provider == "paystack":
            data = self.context.gateways.verify_paystack_transaction(secret_key, reference)
            if data is None:
                raise ValidationError("Payment verification failed")
            transaction_id = str(data.get("id") or reference)
        else:
            data = self.context.gateways.retrieve_stripe_payment_intent(secret_key, reference)
            if data is None:
                raise ValidationError("Payment not completed")
            transaction_id = data.get("id") or reference

        payment = self._complete_payment(invoice, provider, transaction_id, invoice.total, {"reference": reference})
        return {"success": True, "payment": payment.to_dict()}

    def activate_subscription(self, user: User, plan: str, provider: str) -> None:
        now = utcnow()
        user.subscription_plan = plan
        user.subscription_status = "active"
        user.subscription_start_date = now
        user.subscription_end_date = now + timedelta(days=SUBSCRIPTION_DAYS)
        user.subscription_payment_method = provider
        self.logger.info(f"Subscription {plan} activated for user {user.id} via {provider}")

    def handle_stripe_event(self, event: Dict[str, Any]) -> None:
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}
        metadata = obj.get("metadata") or {}

        if event_type == "checkout.session.completed":
            if metadata.get("type") == "subscription" and metadata.get("user_id") and metadata.get("plan"):
                user = self.session.get(User, metadata["user_id"])
                if user is not None:
                    self.activate_subscription(user, metadata["plan"], "stripe")

        elif event_type == "payment_intent.succeeded":
            invoice = self.session.get(Invoice, metadata.get("invoice_id")) if metadata.get("invoice_id") else None
            if invoice is not None:
                self._complete_payment(invoice, "stripe", obj.get("id"), (obj.get("amount") or 0) / 100, obj)

    def handle_paystack_event(self, event: Dict[str, Any]) -> None:
        if event.get("event") != "charge.success":
            return

        data = event.get("data") or {}
        metadata = data.get("metadata") or {}
        if not isinstance(metadata, dict):
            metadata = {}

        if metadata.get("type") == "subscription" and metadata.get("user_id"):
            user = self.session.get(User, metadata["user_id"])
            if user is not None:
                self.activate_subscription(user, metadata.get("plan") or "premium", "paystack")
            return

        reference = data.get("reference")
        payment = None
        if reference:
            payment = self.session.scalars(select(Payment).where(Payment.transaction_id == reference)).first()
        invoice = payment.invoice if payment is not None else None
        if invoice is None and metadata.get("invoice_id"):
            invoice = self.session.get(Invoice, metadata["invoice_id"])
        if invoice is not None:
            self._complete_payment(invoice, "paystack", reference, (data.get("amount") or 0) / 100, data)

    def handle_paypal_event(self, event: Dict[str, Any]) -> None:
        if event.get("event_type") not in ("PAYMENT.CAPTURE.COMPLETED", "CHECKOUT.ORDER.APPROVED"):
            return

        resource = event.get("resource") or {}
        units = resource.get("purchase_units") or [{}]
        reference_id = units[0].get("reference_id") or ""

        user = None
        if reference_id.startswith("subscription_"):
            parts = reference_id.split("_")
            if len(parts) >= 2:
                user = self.session.get(User, parts[1])
        else:
            payer_email = (resource.get("payer") or {}).get("email_address")
            if payer_email:
                user = self.session.scalars(select(User).where(User.email == payer_email.lower())).first()

        if user is not None:
            self.activate_subscription(user, "premium", "paypal")

    def list_payments(self, invoice: Invoice) -> List[Dict[str, Any]]:
        return [payment.to_dict() for payment in invoice.payments]
