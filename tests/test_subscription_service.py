"""
Tests for subscription checkout, PayPal capture and the platform credentials.
"""

from datetime import datetime, timedelta
from unittest.mock import patch

from models.entities import PaymentCredentialRequest, SubscriptionCheckoutRequest
from services.subscription_service import PAYPAL_NOT_CONFIGURED, STRIPE_NOT_CONFIGURED, SubscriptionService
from storage.tables import PaymentCredential
from tests.mocks import ServiceTestCase, create_credential, create_user
from utils.error_handling import AuthorizationError, ConfigurationError, NotFoundError, ValidationError


class SubscriptionServiceTestCase(ServiceTestCase):

    def setUp(self):
        super().setUp()
        self.admin = create_user(self.session, email="admin@example.com", is_admin=True,
                                 created_at=datetime(2024, 1, 1))
        self.user = create_user(self.session)
        self.service = SubscriptionService(self.session, self.context)

    def checkout_request(self, **fields):
        values = dict(user_id=self.user.id, plan="monthly", amount=9.99, currency="USD",
                      user_email=self.user.email)
        values.update(fields)
        return SubscriptionCheckoutRequest(**values)


class TestPlatformCredentials(SubscriptionServiceTestCase):

    def test_first_admin_is_platform_admin(self):
        create_user(self.session, email="later@example.com", is_admin=True, created_at=datetime(2025, 1, 1))
        self.assertEqual(self.service.platform_admin().id, self.admin.id)

    def test_stripe_key_from_admin_credential(self):
        self.assertIsNone(self.service.stripe_secret_key())
        create_credential(self.session, self.context, self.admin, "stripe", secret_key="sk_admin")
        self.assertEqual(self.service.stripe_secret_key(), "sk_admin")

    def test_configured_keys_win(self):
        create_credential(self.session, self.context, self.admin, "stripe", secret_key="sk_admin")
        self.config["subscriptions"]["stripe_secret_key"] = "sk_env"
        self.assertEqual(self.service.stripe_secret_key(), "sk_env")

        self.config["subscriptions"].update(paypal_client_id="env_id", paypal_client_secret="env_secret")
        self.assertEqual(
            self.service.paypal_credential(),
            {"client_id": "env_id", "client_secret": "env_secret", "is_test_mode": False},
        )

    def test_inactive_credential_ignored(self):
        credential = create_credential(self.session, self.context, self.admin, "paypal",
                                       client_id="id", client_secret="secret")
        self.assertTrue(self.service.paypal_credential()["is_test_mode"])
        credential.is_active = False
        self.session.flush()
        self.assertIsNone(self.service.paypal_credential())

    def test_available_providers(self):
        self.assertEqual(
            self.service.available_providers(),
            {"providers": {"paypal": False, "paystack": False, "stripe": False}},
        )

        create_credential(self.session, self.context, self.admin, "paystack")
        create_credential(self.session, self.context, self.admin, "paypal", public_key=None, secret_key=None)
        self.config["subscriptions"]["stripe_publishable_key"] = "pk_env"

        providers = self.service.available_providers()["providers"]
        self.assertEqual(providers, {"paypal": False, "paystack": True, "stripe": True})

    def test_other_users_credentials_ignored(self):
        create_credential(self.session, self.context, self.user, "stripe")
        self.assertFalse(self.service.available_providers()["providers"]["stripe"])
        self.assertIsNone(self.service.stripe_secret_key())

    def test_payment_config(self):
        create_credential(self.session, self.context, self.admin, "stripe", public_key="pk_live_9")
        config = self.service.payment_config()["config"]

        self.assertEqual(config["admin_user_id"], self.admin.id)
        self.assertEqual(len(config["credentials"]), 1)
        self.assertEqual(config["credentials"][0]["public_key"], "pk_live_9")
        self.assertNotIn("secret_key", config["credentials"][0])

    def test_payment_config_without_admin(self):
        self.admin.is_admin = False
        self.session.flush()
        self.assertEqual(self.service.payment_config(), {"config": None})

    def test_save_and_delete_payment_config(self):
        request = PaymentCredentialRequest(provider="paypal", client_id="id", client_secret="secret",
                                           is_test_mode=True)
        result = self.service.save_payment_config(self.admin.id, request)
        self.assertEqual(result["message"], "Payment configuration saved successfully")
        self.assertEqual(self.service.paypal_credential()["client_id"], "id")

        with self.assertRaises(ValidationError):
            self.service.save_payment_config(self.admin.id, PaymentCredentialRequest(provider="stripe"))

        self.service.delete_payment_config(self.admin.id, "paypal")
        self.assertEqual(self.session.query(PaymentCredential).count(), 0)


class TestCheckout(SubscriptionServiceTestCase):

    def test_stripe_checkout(self):
        create_credential(self.session, self.context, self.admin, "stripe", secret_key="sk_admin")
        with patch.object(self.context.gateways, "create_stripe_subscription_checkout",
                          return_value={"checkout_url": "https://checkout.test/cs_1", "session_id": "cs_1"}) as create:
            result = self.service.create_stripe_checkout(self.user.id, self.checkout_request())

        self.assertEqual(result, {"checkout_url": "https://checkout.test/cs_1", "session_id": "cs_1"})
        create.assert_called_once_with(
            "sk_admin", self.user.id, "monthly", 9.99, "USD", self.user.email, days=30
        )

    def test_checkout_validation(self):
        with self.assertRaises(ValidationError) as ctx:
            self.service.create_stripe_checkout(self.user.id, self.checkout_request(plan=None))
        self.assertEqual(ctx.exception.message, "Missing required fields")

        with self.assertRaises(AuthorizationError):
            self.service.create_stripe_checkout(self.admin.id, self.checkout_request())

    def test_stripe_not_configured(self):
        with self.assertRaises(ConfigurationError) as ctx:
            self.service.create_stripe_checkout(self.user.id, self.checkout_request())
        self.assertEqual(ctx.exception.message, STRIPE_NOT_CONFIGURED)

    def test_unknown_user(self):
        self.config["subscriptions"]["stripe_secret_key"] = "sk_env"
        request = self.checkout_request(user_id="missing")
        with self.assertRaises(NotFoundError):
            self.service.create_stripe_checkout("missing", request)

    def test_paypal_checkout(self):
        create_credential(self.session, self.context, self.admin, "paypal", client_id="id", client_secret="secret")
        order = {"checkout_url": "https://paypal.test/approve", "order_id": "ORDER1"}
        with patch.object(self.context.gateways, "create_paypal_subscription_order", return_value=order) as create:
            result = self.service.create_paypal_checkout(self.user.id, self.checkout_request(currency="NGN"))

        self.assertEqual(result, order)
        credential, user_id, plan, amount, currency = create.call_args.args
        self.assertEqual((credential["client_id"], credential["client_secret"]), ("id", "secret"))
        self.assertEqual((user_id, plan, amount, currency), (self.user.id, "monthly", 9.99, "NGN"))

    def test_paypal_not_configured(self):
        with self.assertRaises(ConfigurationError) as ctx:
            self.service.create_paypal_checkout(self.user.id, self.checkout_request())
        self.assertEqual(ctx.exception.message, PAYPAL_NOT_CONFIGURED)


class TestPayPalVerify(SubscriptionServiceTestCase):

    def setUp(self):
        super().setUp()
        create_credential(self.session, self.context, self.admin, "paypal", client_id="id", client_secret="secret")

    def captured(self, status="COMPLETED", user_id=None):
        return {
            "id": "ORDER1",
            "status": status,
            "purchase_units": [{"reference_id": f"subscription_{user_id or self.user.id}_1700000000000"}],
        }

    def test_activates_premium(self):
        with patch.object(self.context.gateways, "capture_paypal_order", return_value=self.captured()) as capture:
            result = self.service.verify_paypal(self.user.id, "ORDER1")

        self.assertEqual(result, {"success": True, "message": "Subscription activated successfully"})
        self.assertEqual(capture.call_args.args[1], "ORDER1")
        self.assertEqual(self.user.subscription_plan, "premium")
        self.assertEqual(self.user.subscription_status, "active")
        self.assertEqual(self.user.subscription_payment_method, "paypal")
        self.assertEqual(
            self.user.subscription_end_date - self.user.subscription_start_date, timedelta(days=30)
        )

    def test_not_completed(self):
        with patch.object(self.context.gateways, "capture_paypal_order", return_value=self.captured("PENDING")):
            with self.assertRaises(ValidationError) as ctx:
                self.service.verify_paypal(self.user.id, "ORDER1")
        self.assertEqual(ctx.exception.message, "Payment not completed")
        self.assertEqual(ctx.exception.to_response()["status"], "PENDING")
        self.assertEqual(self.user.subscription_plan, "free")

    def test_user_mismatch(self):
        captured = self.captured(user_id=self.admin.id)
        with patch.object(self.context.gateways, "capture_paypal_order", return_value=captured):
            with self.assertRaises(AuthorizationError) as ctx:
                self.service.verify_paypal(self.user.id, "ORDER1")
        self.assertEqual(ctx.exception.message, "Payment verification failed - user mismatch")
        self.assertEqual(self.user.subscription_plan, "free")

    def test_token_required(self):
        with self.assertRaises(ValidationError) as ctx:
            self.service.verify_paypal(self.user.id, None)
        self.assertEqual(ctx.exception.message, "Payment token is required")
