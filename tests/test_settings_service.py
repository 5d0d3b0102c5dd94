"""
Tests for company defaults, payment credentials and public invoice slugs.
"""

import unittest

from models.documents import CompanyInfo
from models.entities import CompanyDefaultsRequest, PaymentCredentialRequest
from services.settings_service import SettingsService, base_public_slug, slugify
from storage.tables import PaymentCredential
from tests.mocks import ServiceTestCase, create_credential, create_user
from utils.error_handling import ValidationError
from utils.security import is_encrypted


class TestSlugs(unittest.TestCase):

    def test_slugify(self):
        self.assertEqual(slugify("  Acme & Sons, Ltd. "), "acme-sons-ltd")
        self.assertEqual(len(slugify("x" * 80)), 50)

    def test_base_slug_falls_back_to_email(self):
        self.assertEqual(base_public_slug("!!!", "jane.doe@example.com"), "jane-doe")
        self.assertTrue(base_public_slug(None, None).startswith("user-"))


class TestCompanyDefaults(ServiceTestCase):

    def setUp(self):
        super().setUp()
        self.user = create_user(self.session)
        self.service = SettingsService(self.session, self.context)

    def test_save_and_replace(self):
        request = CompanyDefaultsRequest(company_info=CompanyInfo(name="Owner Ltd"), currency="NGN", tax_rate=7.5)
        first = self.service.save_company_defaults(self.user.id, request)
        second = self.service.save_company_defaults(self.user.id, CompanyDefaultsRequest(
            company_info=CompanyInfo(name="Owner Ltd", city="Lagos")
        ))

        self.assertEqual(first["id"], second["id"])
        self.assertEqual(second["currency"], "USD")
        self.assertEqual(second["company_info"]["city"], "Lagos")

    def test_company_info_required(self):
        with self.assertRaises(ValidationError):
            self.service.save_company_defaults(self.user.id, CompanyDefaultsRequest())

    def test_delete(self):
        self.assertEqual(self.service.delete_company_defaults(self.user.id), 0)
        self.service.save_company_defaults(self.user.id, CompanyDefaultsRequest(company_info=CompanyInfo(name="A")))
        self.assertEqual(self.service.delete_company_defaults(self.user.id), 1)
        self.assertIsNone(self.service.get_company_defaults(self.user.id))

    def test_default_provider_needs_credential(self):
        with self.assertRaises(ValidationError):
            self.service.set_default_payment_provider(self.user.id, "stripe")
        with self.assertRaises(ValidationError):
            self.service.set_default_payment_provider(self.user.id, "venmo")

        create_credential(self.session, self.context, self.user, "stripe")
        result = self.service.set_default_payment_provider(self.user.id, "stripe")
        self.assertEqual(result["default_payment_provider"], "stripe")
        self.assertIsNone(self.service.set_default_payment_provider(self.user.id, None)["default_payment_provider"])


class TestPaymentCredentials(ServiceTestCase):

    def setUp(self):
        super().setUp()
        self.user = create_user(self.session)
        self.service = SettingsService(self.session, self.context)

    def test_save_encrypts(self):
        self.service.save_credential(self.user.id, PaymentCredentialRequest(
            provider="paystack", public_key="pk_1", secret_key="sk_1", is_test_mode=True
        ))
        stored = self.session.query(PaymentCredential).one()
        self.assertTrue(is_encrypted(stored.secret_key))
        self.assertEqual(self.context.cipher.decrypt(stored.secret_key), "sk_1")

        listed = self.service.list_credentials(self.user.id)
        self.assertEqual(listed[0]["public_key"], "pk_1")
        self.assertNotIn("secret_key", listed[0])

    def test_required_fields_per_provider(self):
        with self.assertRaises(ValidationError) as ctx:
            self.service.save_credential(self.user.id, PaymentCredentialRequest(provider="paypal", client_id="id"))
        self.assertEqual(ctx.exception.message, "PayPal requires both client ID and client secret")
        with self.assertRaises(ValidationError):
            self.service.save_credential(self.user.id, PaymentCredentialRequest(provider="square"))

    def test_update_keeps_blank_fields(self):
        create_credential(self.session, self.context, self.user, "paypal", client_id="id", client_secret="old")
        self.service.save_credential(self.user.id, PaymentCredentialRequest(
            provider="paypal", client_id="id", client_secret="new"
        ))
        stored = self.session.query(PaymentCredential).one()
        self.assertEqual(self.context.cipher.decrypt(stored.client_secret), "new")
        self.assertEqual(self.context.cipher.decrypt(stored.public_key), "pk_test_1")
        self.assertFalse(stored.is_test_mode)

    def test_delete_clears_default(self):
        create_credential(self.session, self.context, self.user, "stripe")
        self.service.set_default_payment_provider(self.user.id, "stripe")

        self.service.delete_credential(self.user.id, "stripe")
        available = self.service.available_providers(self.user.id)
        self.assertEqual(available, {"providers": [], "default_provider": None})

    def test_available_providers(self):
        create_credential(self.session, self.context, self.user, "paystack")
        available = self.service.available_providers(self.user.id)
        self.assertEqual([p["provider"] for p in available["providers"]], ["paystack"])


class TestPublicSlug(ServiceTestCase):

    def setUp(self):
        super().setUp()
        self.user = create_user(self.session, name="Owner Ltd")
        self.service = SettingsService(self.session, self.context)

    def test_generated_slug_is_unique(self):
        create_user(self.session, email="taken@example.com", public_slug="owner-ltd")
        result = self.service.set_public_slug(self.user.id)

        self.assertEqual(result["public_slug"], "owner-ltd-1")
        self.assertEqual(result["public_link"], "http://app.test/i/owner-ltd-1")
        self.assertEqual(self.service.get_public_slug(self.user.id)["public_slug"], "owner-ltd-1")

    def test_custom_slug_rules(self):
        with self.assertRaises(ValidationError):
            self.service.set_public_slug(self.user.id, "Bad Slug")
        with self.assertRaises(ValidationError):
            self.service.set_public_slug(self.user.id, "ab")
        create_user(self.session, email="taken@example.com", public_slug="taken")
        with self.assertRaises(ValidationError):
            self.service.set_public_slug(self.user.id, "taken")

        self.assertEqual(self.service.set_public_slug(self.user.id, "my-shop")["public_slug"], "my-shop")
        # Keeping one's own slug is fine
        self.assertEqual(self.service.set_public_slug(self.user.id, "my-shop")["public_slug"], "my-shop")
