"""
Tests for invoice creation, approval, edit links, the overdue sweep and email delivery.
"""

from datetime import date, timedelta
from unittest.mock import patch

from models.documents import InvoiceCreate, InvoiceEdit, SendEmailRequest
from services.invoice_service import InvoiceService
from storage.tables import EmailLog, Invoice
from tests.mocks import (
    ServiceTestCase, create_company_defaults, create_credential, create_invoice, create_user,
    invoice_payload
)
from tools.email_sender import EmailResult
from utils.error_handling import (
    AuthorizationError, ConflictError, ExternalServiceError, NotFoundError, PaymentProviderError,
    ValidationError
)


class InvoiceServiceTestCase(ServiceTestCase):

    def setUp(self):
        super().setUp()
        self.user = create_user(self.session)
        self.service = InvoiceService(self.session, self.context)


class TestCreateInvoice(InvoiceServiceTestCase):

    def test_totals_are_recomputed(self):
        payload = invoice_payload(subtotal=1, total=999999)
        result = self.service.create_invoice(self.user.id, InvoiceCreate(**payload))

        invoice = result["invoice"]
        self.assertEqual(invoice["subtotal"], 125.5)
        self.assertEqual(invoice["tax_amount"], 12.55)
        self.assertEqual(invoice["total"], 138.05)
        self.assertEqual(invoice["line_items"][0]["amount"], 100.0)
        self.assertEqual(invoice["payment_status"], "pending")
        self.assertEqual(invoice["approval_status"], "draft")
        self.assertNotIn("editable_token", invoice)
        self.assertIsNone(result["payment_link"])

    def test_required_fields(self):
        with self.assertRaises(ValidationError) as ctx:
            self.service.create_invoice(self.user.id, InvoiceCreate(**invoice_payload(invoice_number="")))
        self.assertEqual(ctx.exception.message, "Invoice number, date, and due date are required")

        with self.assertRaises(ValidationError):
            self.service.create_invoice(self.user.id, InvoiceCreate(**invoice_payload(client_info=None)))
        with self.assertRaises(ValidationError):
            self.service.create_invoice(self.user.id, InvoiceCreate(**invoice_payload(line_items=[])))

    def test_negative_amounts(self):
        with self.assertRaises(ValidationError):
            self.service.create_invoice(self.user.id, InvoiceCreate(**invoice_payload(tax_rate=-1)))
        items = [{"description": "Refund", "quantity": 1, "rate": -10}]
        with self.assertRaises(ValidationError):
            self.service.create_invoice(self.user.id, InvoiceCreate(**invoice_payload(line_items=items)))

    def test_duplicate_number(self):
        create_invoice(self.session, self.user, number="INV-100")
        with self.assertRaises(ConflictError):
            self.service.create_invoice(self.user.id, InvoiceCreate(**invoice_payload()))

    def test_same_number_for_another_user(self):
        other = create_user(self.session, email="other@example.com")
        create_invoice(self.session, other, number="INV-100")
        result = self.service.create_invoice(self.user.id, InvoiceCreate(**invoice_payload()))
        self.assertEqual(result["invoice"]["invoice_number"], "INV-100")

    def test_unknown_client(self):
        with self.assertRaises(NotFoundError):
            self.service.create_invoice(self.user.id, InvoiceCreate(**invoice_payload(client_id="missing")))

    def test_payment_link_from_default_provider(self):
        create_credential(self.session, self.context, self.user, "stripe")
        create_company_defaults(self.session, self.user, default_payment_provider="stripe")

        with patch.object(self.context.gateways, "create_payment_link", return_value="https://pay.test/1") as create:
            result = self.service.create_invoice(self.user.id, InvoiceCreate(**invoice_payload()))

        self.assertEqual(result["payment_link"], "https://pay.test/1")
        self.assertEqual(create.call_args.args[1], "stripe")
        self.assertEqual(create.call_args.args[2]["secret_key"], "sk_test_1")
        invoice = self.session.get(Invoice, result["invoice"]["id"])
        self.assertEqual(invoice.payment_provider, "stripe")

    def test_payment_link_failure_does_not_block(self):
        create_credential(self.session, self.context, self.user, "paystack")
        error = PaymentProviderError("Gateway down", provider="paystack")
        with patch.object(self.context.gateways, "create_payment_link", side_effect=error):
            result = self.service.create_invoice(self.user.id, InvoiceCreate(**invoice_payload()))

        self.assertIsNone(result["payment_link"])
        self.assertEqual(self.session.query(Invoice).count(), 1)


class TestReadAndDelete(InvoiceServiceTestCase):

    def test_list_filters_by_status(self):
        create_invoice(self.session, self.user, number="A")
        create_invoice(self.session, self.user, number="B", payment_status="paid")
        other = create_user(self.session, email="other@example.com")
        create_invoice(self.session, other, number="C")

        self.assertEqual(len(self.service.list_invoices(self.user.id)), 2)
        paid = self.service.list_invoices(self.user.id, status="paid")
        self.assertEqual([i["invoice_number"] for i in paid], ["B"])
        self.assertEqual(paid[0]["payments"], [])

    def test_get_invoice(self):
        invoice = create_invoice(self.session, self.user)
        data = self.service.get_invoice(invoice.id)
        self.assertEqual(data["user"], {"name": "Owner Ltd", "email": "owner@example.com"})
        self.assertEqual(self.service.get_invoice(invoice.id, self.user.id)["id"], invoice.id)

        other = create_user(self.session, email="other@example.com")
        with self.assertRaises(AuthorizationError):
            self.service.get_invoice(invoice.id, other.id)
        with self.assertRaises(NotFoundError):
            self.service.get_invoice("missing")

    def test_delete(self):
        invoice = create_invoice(self.session, self.user)
        other = create_user(self.session, email="other@example.com")
        with self.assertRaises(NotFoundError):
            self.service.delete_invoice(invoice.id, other.id)

        self.service.delete_invoice(invoice.id, self.user.id)
        self.assertEqual(self.session.query(Invoice).count(), 0)


class TestApprovalWorkflow(InvoiceServiceTestCase):

    def setUp(self):
        super().setUp()
        self.invoice = create_invoice(self.session, self.user)

    def test_full_workflow(self):
        self.service.request_approval(self.invoice.id, self.user.id)
        self.assertEqual(self.invoice.approval_status, "pending")

        result = self.service.approve(self.invoice.id, self.user.id)
        self.assertEqual(result["message"], "Invoice approved successfully")
        self.assertEqual(self.invoice.approved_by, self.user.id)
        self.assertIsNotNone(self.invoice.approved_at)

        self.service.mark_sent(self.invoice.id, self.user.id)
        self.assertEqual(self.invoice.approval_status, "sent")
        self.assertIsNotNone(self.invoice.sent_at)

    def test_cannot_request_twice(self):
        self.service.request_approval(self.invoice.id, self.user.id)
        with self.assertRaises(ValidationError):
            self.service.request_approval(self.invoice.id, self.user.id)

    def test_send_requires_approval(self):
        with self.assertRaises(ValidationError) as ctx:
            self.service.mark_sent(self.invoice.id, self.user.id)
        self.assertEqual(ctx.exception.message, "Invoice must be approved before it can be sent")

    def test_reject(self):
        with self.assertRaises(ValidationError):
            self.service.reject(self.invoice.id, self.user.id, "  ")

        self.service.reject(self.invoice.id, self.user.id, " Wrong rate ")
        self.assertEqual(self.invoice.approval_status, "rejected")
        self.assertEqual(self.invoice.rejection_reason, "Wrong rate")

        # A rejected invoice can go back for approval
        self.service.request_approval(self.invoice.id, self.user.id)
        self.assertIsNone(self.invoice.rejection_reason)

    def test_admin_may_approve(self):
        admin = create_user(self.session, email="admin@example.com", is_admin=True)
        stranger = create_user(self.session, email="stranger@example.com")

        with self.assertRaises(AuthorizationError):
            self.service.approve(self.invoice.id, stranger.id)
        self.service.approve(self.invoice.id, admin.id)
        self.assertEqual(self.invoice.approved_by, admin.id)


class TestEditLinks(InvoiceServiceTestCase):

    def setUp(self):
        super().setUp()
        self.invoice = create_invoice(self.session, self.user, total=100, tax_rate=10, tax_amount=10)

    def test_generate_and_read(self):
        link = self.service.generate_edit_token(self.invoice.id, self.user.id)

        self.assertEqual(link["edit_url"], f"http://app.test/invoice/edit/{link['token']}")
        self.assertTrue(link["expires_at"].endswith("Z"))

        view = self.service.get_by_edit_token(link["token"])
        self.assertEqual(view["invoice"]["invoice_number"], "INV-001")
        self.assertNotIn("user_id", view["invoice"])
        self.assertEqual(view["owner"]["email"], "owner@example.com")

    def test_update_rebuilds_totals(self):
        token = self.service.generate_edit_token(self.invoice.id, self.user.id)["token"]
        changes = InvoiceEdit(
            line_items=[{"description": "Work", "quantity": 3, "rate": 40}],
            shipping=5,
            notes="Updated by customer",
        )
        result = self.service.update_by_edit_token(token, changes)

        invoice = result["invoice"]
        self.assertEqual(invoice["subtotal"], 120.0)
        self.assertEqual(invoice["tax_amount"], 12.0)
        self.assertEqual(invoice["total"], 137.0)
        self.assertEqual(invoice["notes"], "Updated by customer")

    def test_expired_token(self):
        token = self.service.generate_edit_token(self.invoice.id, self.user.id)["token"]
        self.invoice.editable_token_expiry = self.invoice.editable_token_expiry - timedelta(days=31)
        self.session.flush()
        with self.assertRaises(NotFoundError):
            self.service.get_by_edit_token(token)

    def test_only_owner_generates(self):
        other = create_user(self.session, email="other@example.com")
        with self.assertRaises(AuthorizationError):
            self.service.generate_edit_token(self.invoice.id, other.id)


class TestOverdueAndEmail(InvoiceServiceTestCase):

    def test_update_overdue(self):
        today = date.today()
        create_invoice(self.session, self.user, number="LATE", due_date=today - timedelta(days=1))
        create_invoice(self.session, self.user, number="PAID", due_date=today - timedelta(days=1),
                       payment_status="paid")
        create_invoice(self.session, self.user, number="OK", due_date=today + timedelta(days=1))

        self.assertEqual(self.service.update_overdue(today), 1)
        self.session.expire_all()
        late = self.session.query(Invoice).filter_by(invoice_number="LATE").one()
        self.assertEqual(late.payment_status, "overdue")

    def test_send_email(self):
        invoice = create_invoice(self.session, self.user)
        result = self.service.send_email(self.user.id, SendEmailRequest(
            invoice_id=invoice.id, recipient_email="billing@acme.test", message="Thanks!"
        ))

        self.assertEqual(result["message"], "Invoice sent successfully")
        log = self.session.query(EmailLog).one()
        self.assertEqual(log.status, "sent")
        self.assertIsNone(log.provider_id)
        self.assertIsNotNone(invoice.sent_at)

    def test_send_email_validation(self):
        with self.assertRaises(ValidationError):
            self.service.send_email(self.user.id, SendEmailRequest(invoice_id="x"))
        with self.assertRaises(ValidationError):
            self.service.send_email(self.user.id, SendEmailRequest(invoice_id="x", recipient_email="nope"))
        with self.assertRaises(NotFoundError):
            self.service.send_email(self.user.id, SendEmailRequest(invoice_id="x", recipient_email="a@b.co"))

    def test_send_email_failure_is_logged(self):
        invoice = create_invoice(self.session, self.user)
        failure = EmailResult(success=False, error="Mailbox unavailable")
        with patch.object(self.context.email, "send_invoice", return_value=failure):
            with self.assertRaises(ExternalServiceError):
                self.service.send_email(self.user.id, SendEmailRequest(
                    invoice_id=invoice.id, recipient_email="billing@acme.test"
                ))

        log = self.session.query(EmailLog).one()
        self.assertEqual(log.status, "failed")
        self.assertEqual(log.error_message, "Mailbox unavailable")
