"""
Tests for passwords, tokens, credential encryption and webhook signatures.
"""

import hashlib
import hmac
import time
import unittest

from tests.mocks import stripe_signature_header
from utils.error_handling import AuthenticationError, ConfigurationError, ValidationError
from utils.security import (
    CredentialCipher, TokenManager, construct_stripe_event, extract_bearer_token, generate_token,
    hash_password, is_encrypted, verify_password, verify_paystack_signature
)


class TestPasswords(unittest.TestCase):

    def test_hash_and_verify(self):
        hashed = hash_password("secret123")
        self.assertNotEqual(hashed, "secret123")
        self.assertTrue(verify_password(hashed, "secret123"))
        self.assertFalse(verify_password(hashed, "wrong"))
        self.assertFalse(verify_password("", "secret123"))

    def test_generate_token_is_hex(self):
        token = generate_token()
        self.assertEqual(len(token), 64)
        int(token, 16)
        self.assertNotEqual(token, generate_token())


class TestTokenManager(unittest.TestCase):

    def setUp(self):
        self.tokens = TokenManager("unit-test-secret-0123456789abcdef")

    def test_access_token_round_trip(self):
        token = self.tokens.create_access_token("u1", "a@b.test", "Alice", is_admin=True)
        payload = self.tokens.decode(token)
        self.assertEqual(payload["user_id"], "u1")
        self.assertEqual(payload["email"], "a@b.test")
        self.assertTrue(payload["is_admin"])

    def test_refresh_token_is_not_an_access_token(self):
        refresh = self.tokens.create_refresh_token("u1")
        self.assertEqual(self.tokens.decode(refresh, expected_type="refresh")["user_id"], "u1")
        with self.assertRaises(AuthenticationError):
            self.tokens.decode(refresh)

    def test_expired_token(self):
        tokens = TokenManager("unit-test-secret-0123456789abcdef", access_minutes=-1)
        token = tokens.create_access_token("u1", "a@b.test", "Alice")
        with self.assertRaises(AuthenticationError) as ctx:
            tokens.decode(token)
        self.assertEqual(ctx.exception.message, "Token has expired")

    def test_foreign_signature_rejected(self):
        other = TokenManager("another-secret-0123456789abcdefgh")
        token = other.create_access_token("u1", "a@b.test", "Alice")
        with self.assertRaises(AuthenticationError):
            self.tokens.decode(token)

    def test_missing_secret(self):
        with self.assertRaises(ConfigurationError):
            TokenManager("")

    def test_extract_bearer_token(self):
        self.assertEqual(extract_bearer_token("Bearer abc"), "abc")
        self.assertEqual(extract_bearer_token("bearer   abc"), "abc")
        self.assertEqual(extract_bearer_token(None, "xyz"), "xyz")
        self.assertIsNone(extract_bearer_token(None, None))


class TestCredentialCipher(unittest.TestCase):

    def setUp(self):
        self.cipher = CredentialCipher("unit-test-key")

    def test_encrypt_decrypt(self):
        encrypted = self.cipher.encrypt("sk_live_123")
        self.assertNotEqual(encrypted, "sk_live_123")
        self.assertTrue(is_encrypted(encrypted))
        self.assertEqual(self.cipher.decrypt(encrypted), "sk_live_123")

    def test_empty_values_pass_through(self):
        self.assertIsNone(self.cipher.encrypt(None))
        self.assertEqual(self.cipher.decrypt(""), "")

    def test_wrong_key(self):
        encrypted = CredentialCipher("another-key").encrypt("sk_live_123")
        with self.assertRaises(ValueError):
            self.cipher.decrypt(encrypted)

    def test_credential_with_bad_field_decrypts_to_nothing(self):
        encrypted = self.cipher.encrypt_credential({"public_key": "pk", "secret_key": "sk"})
        self.assertIsNone(encrypted["client_id"])
        self.assertEqual(self.cipher.decrypt_credential(encrypted)["secret_key"], "sk")

        encrypted["secret_key"] = CredentialCipher("another-key").encrypt("sk")
        decrypted = self.cipher.decrypt_credential(encrypted)
        self.assertEqual(set(decrypted.values()), {None})


class TestWebhookSignatures(unittest.TestCase):

    def test_paystack_signature(self):
        body = b'{"event":"charge.success"}'
        signature = hmac.new(b"sk_paystack", body, hashlib.sha512).hexdigest()
        self.assertTrue(verify_paystack_signature(body, signature, "sk_paystack"))
        self.assertFalse(verify_paystack_signature(body, signature, "other"))
        self.assertFalse(verify_paystack_signature(body, None, "sk_paystack"))

    def test_stripe_event(self):
        payload = b'{"type":"payment_intent.succeeded","data":{"object":{"id":"pi_1"}}}'
        event = construct_stripe_event(payload, stripe_signature_header(payload, "whsec_1"), "whsec_1")
        self.assertEqual(event["type"], "payment_intent.succeeded")
        self.assertEqual(event["data"]["object"]["id"], "pi_1")
        self.assertIsInstance(event, dict)

    def test_stripe_event_bad_signature(self):
        payload = b'{"type":"payment_intent.succeeded"}'
        header = stripe_signature_header(payload, "whsec_1")
        for body, signature, secret in (
            (payload + b" ", header, "whsec_1"),
            (payload, header, "whsec_other"),
            (payload, "v1=abc", "whsec_1"),
        ):
            with self.assertRaises(ValidationError) as ctx:
                construct_stripe_event(body, signature, secret)
            self.assertEqual(ctx.exception.message, "Webhook signature verification failed")

    def test_stripe_event_missing_secret(self):
        payload = b"{}"
        with self.assertRaises(ValidationError) as ctx:
            construct_stripe_event(payload, stripe_signature_header(payload, "whsec_1"), None)
        self.assertEqual(ctx.exception.message, "Missing webhook secret")
        with self.assertRaises(ValidationError):
            construct_stripe_event(payload, None, "whsec_1")

    def test_stripe_event_too_old(self):
        payload = b"{}"
        header = stripe_signature_header(payload, "whsec_1", int(time.time()) - 3600)
        with self.assertRaises(ValidationError):
            construct_stripe_event(payload, header, "whsec_1")


if __name__ == "__main__":
    unittest.main()
