"""
Tests for the payment provider client with a mocked HTTP session.
"""

import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import stripe

from tests.mocks import mock_response
from tools.payment_gateways import PaymentGatewayClient
from utils.error_handling import PaymentProviderError, ValidationError

CONFIG = {
    "timeout_seconds": 5,
    "max_retries": 0,
    "retry_delay_seconds": 0,
    "paystack": {"base_url": "https://paystack.test"},
    "stripe": {"base_url": "https://stripe.test"},
    "paypal": {"sandbox_url": "https://sandbox.paypal.test", "live_url": "https://paypal.test"},
}


def make_invoice(**fields):
    values = dict(id="inv1", invoice_number="INV-001", total=120.5, currency="USD",
                  client_info={"name": "Acme Corp"})
    values.update(fields)
    return SimpleNamespace(**values)


class TestPaymentLinks(unittest.TestCase):

    def setUp(self):
        self.http = MagicMock()
        self.client = PaymentGatewayClient("http://app.test/", CONFIG, session=self.http)

    def test_paystack_link(self):
        self.http.request.return_value = mock_response(200, {
            "status": True, "data": {"authorization_url": "https://checkout.paystack.test/abc"}
        })
        url = self.client.create_payment_link(make_invoice(), "paystack", {"secret_key": "sk"}, "owner@example.com")

        self.assertEqual(url, "https://checkout.paystack.test/abc")
        method, endpoint = self.http.request.call_args.args
        body = self.http.request.call_args.kwargs["json"]
        self.assertEqual((method, endpoint), ("POST", "https://paystack.test/transaction/initialize"))
        self.assertEqual(body["amount"], 12050)
        self.assertEqual(body["currency"], "USD")
        self.assertEqual(body["metadata"]["customer_name"], "Acme Corp")
        self.assertEqual(body["callback_url"], "http://app.test/pay/inv1/callback")

    def test_stripe_link(self):
        self.http.request.return_value = mock_response(200, {"url": "https://buy.stripe.test/x"})
        url = self.client.create_payment_link(make_invoice(), "stripe", {"secret_key": "sk"}, "owner@example.com")

        self.assertEqual(url, "https://buy.stripe.test/x")
        form = self.http.request.call_args.kwargs["data"]
        self.assertEqual(form["line_items[0][price_data][unit_amount]"], "12050")
        self.assertEqual(form["line_items[0][price_data][currency]"], "usd")

    def test_paypal_link_uses_sandbox(self):
        self.http.request.side_effect = [
            mock_response(200, {"access_token": "tok"}),
            mock_response(200, {"links": [{"rel": "approve", "href": "https://paypal.test/approve"}]}),
        ]
        credential = {"client_id": "id", "client_secret": "secret", "is_test_mode": True}
        url = self.client.create_payment_link(make_invoice(), "paypal", credential, "owner@example.com")

        self.assertEqual(url, "https://paypal.test/approve")
        first, second = self.http.request.call_args_list
        self.assertEqual(first.args[1], "https://sandbox.paypal.test/v1/oauth2/token")
        self.assertEqual(second.kwargs["json"]["purchase_units"][0]["amount"]["value"], "120.50")

    def test_missing_keys(self):
        with self.assertRaises(ValidationError):
            self.client.create_payment_link(make_invoice(), "stripe", {}, "owner@example.com")
        with self.assertRaises(ValidationError):
            self.client.create_payment_link(make_invoice(), "paypal", {"client_id": "id"}, "owner@example.com")
        self.http.request.assert_not_called()

    def test_zero_total(self):
        with self.assertRaises(ValidationError):
            self.client.create_payment_link(make_invoice(total=0), "paystack", {"secret_key": "sk"}, "a@b.co")

    def test_unsupported_provider(self):
        with self.assertRaises(ValidationError):
            self.client.create_payment_link(make_invoice(), "venmo", {}, "a@b.co")

    def test_provider_error_message(self):
        self.http.request.return_value = mock_response(400, {"message": "Invalid key"})
        with self.assertRaises(PaymentProviderError) as ctx:
            self.client.create_payment_link(make_invoice(), "paystack", {"secret_key": "sk"}, "a@b.co")
        self.assertEqual(ctx.exception.message, "Invalid key")
        self.assertEqual(ctx.exception.service_name, "paystack")


class TestVerification(unittest.TestCase):

    def setUp(self):
        self.http = MagicMock()
        self.client = PaymentGatewayClient("http://app.test", CONFIG, session=self.http)

    def test_paystack_success(self):
        self.http.request.return_value = mock_response(200, {"status": True, "data": {"status": "success", "id": 9}})
        self.assertEqual(self.client.verify_paystack_transaction("sk", "ref")["id"], 9)

    def test_paystack_abandoned(self):
        self.http.request.return_value = mock_response(200, {"status": True, "data": {"status": "abandoned"}})
        self.assertIsNone(self.client.verify_paystack_transaction("sk", "ref"))

    @patch("tools.payment_gateways.stripe.PaymentIntent.retrieve")
    def test_stripe_intent(self, retrieve):
        retrieve.return_value = SimpleNamespace(id="pi_1", status="requires_payment_method", amount=100, currency="usd")
        self.assertIsNone(self.client.retrieve_stripe_payment_intent("sk", "pi_1"))

        retrieve.return_value = SimpleNamespace(id="pi_1", status="succeeded", amount=12050, currency="usd")
        intent = self.client.retrieve_stripe_payment_intent("sk", "pi_1")
        self.assertEqual(intent, {"id": "pi_1", "status": "succeeded", "amount": 12050, "currency": "usd"})
        retrieve.assert_called_with(id="pi_1", api_key="sk")
        self.http.request.assert_not_called()

    @patch("tools.payment_gateways.stripe.PaymentIntent.retrieve")
    def test_stripe_error_becomes_provider_error(self, retrieve):
        retrieve.side_effect = stripe.InvalidRequestError("No such payment_intent: 'pi_x'", "intent")
        with self.assertRaises(PaymentProviderError) as ctx:
            self.client.retrieve_stripe_payment_intent("sk", "pi_x")
        self.assertEqual(ctx.exception.service_name, "stripe")
        self.assertIsInstance(ctx.exception.__cause__, stripe.InvalidRequestError)


class TestSubscriptionCheckouts(unittest.TestCase):

    def setUp(self):
        self.http = MagicMock()
        self.client = PaymentGatewayClient("http://app.test", CONFIG, session=self.http)

    @patch("tools.payment_gateways.stripe.checkout.Session.create")
    def test_stripe_checkout(self, create):
        create.return_value = SimpleNamespace(id="cs_1", url="https://checkout.stripe.test/cs_1")
        result = self.client.create_stripe_subscription_checkout("sk", "user1", "monthly", 9.99, "USD", "a@b.co")

        self.assertEqual(result, {"checkout_url": "https://checkout.stripe.test/cs_1", "session_id": "cs_1"})
        params = create.call_args.kwargs
        self.assertEqual(params["api_key"], "sk")
        self.assertEqual(params["mode"], "payment")
        self.assertEqual(params["customer_email"], "a@b.co")
        self.assertEqual(params["metadata"], {"user_id": "user1", "plan": "monthly", "type": "subscription"})
        price = params["line_items"][0]["price_data"]
        self.assertEqual(price["unit_amount"], 999)
        self.assertEqual(price["currency"], "usd")
        self.assertEqual(price["product_data"]["name"], "Premium Subscription - monthly")
        self.assertEqual(
            params["success_url"], "http://app.test/upgrade?success=true&session_id={CHECKOUT_SESSION_ID}"
        )

    def test_paypal_order(self):
        self.http.request.side_effect = [
            mock_response(200, {"access_token": "tok"}),
            mock_response(200, {"id": "ORDER1", "links": [{"rel": "approve", "href": "https://paypal.test/ok"}]}),
        ]
        credential = {"client_id": "id", "client_secret": "secret", "is_test_mode": False}
        result = self.client.create_paypal_subscription_order(credential, "user1", "monthly", 3000, "ngn")

        self.assertEqual(result, {"checkout_url": "https://paypal.test/ok", "order_id": "ORDER1"})
        token_call, order_call = self.http.request.call_args_list
        self.assertEqual(token_call.args[1], "https://paypal.test/v1/oauth2/token")
        unit = order_call.kwargs["json"]["purchase_units"][0]
        self.assertTrue(unit["reference_id"].startswith("subscription_user1_"))
        self.assertEqual(unit["amount"], {"currency_code": "NGN", "value": "3000.00"})
        self.assertEqual(order_call.kwargs["headers"]["Authorization"], "Bearer tok")

    def test_paypal_capture(self):
        self.http.request.side_effect = [
            mock_response(200, {"access_token": "tok"}),
            mock_response(201, {"id": "ORDER1", "status": "COMPLETED"}),
        ]
        credential = {"client_id": "id", "client_secret": "secret", "is_test_mode": True}
        order = self.client.capture_paypal_order(credential, "ORDER1")

        self.assertEqual(order["status"], "COMPLETED")
        capture_call = self.http.request.call_args_list[1]
        self.assertEqual(capture_call.args, ("POST", "https://sandbox.paypal.test/v2/checkout/orders/ORDER1/capture"))


if __name__ == "__main__":
    unittest.main()
