"""
Tests for registration, login lockout, refresh tokens and email verification.
"""

import unittest
from datetime import timedelta
from unittest.mock import patch

from services.auth_service import AuthService, is_valid_email
from storage.database import utcnow
from storage.tables import RefreshToken, User
from tests.mocks import TEST_PASSWORD, ServiceTestCase, create_user
from utils.error_handling import (
    AccountLockedError, AuthenticationError, AuthorizationError, ConflictError,
    NotFoundError, ValidationError
)


class TestEmailFormat(unittest.TestCase):

    def test_is_valid_email(self):
        self.assertTrue(is_valid_email("a@b.co"))
        self.assertFalse(is_valid_email("a@b"))
        self.assertFalse(is_valid_email("a b@c.de"))
        self.assertFalse(is_valid_email(None))


class TestRegistration(ServiceTestCase):

    def setUp(self):
        super().setUp()
        self.service = AuthService(self.session, self.context)

    def test_register_returns_token(self):
        result = self.service.register("New@Example.com", TEST_PASSWORD, "New User")

        self.assertEqual(result["user"]["email"], "new@example.com")
        payload = self.context.tokens.decode(result["token"])
        self.assertEqual(payload["user_id"], result["user"]["id"])
        self.assertFalse(payload["is_admin"])

    def test_register_validation(self):
        with self.assertRaises(ValidationError):
            self.service.register("a@b.co", TEST_PASSWORD, "")
        with self.assertRaises(ValidationError) as ctx:
            self.service.register("a@b.co", "12345", "A")
        self.assertEqual(ctx.exception.message, "Password must be at least 6 characters")
        with self.assertRaises(ValidationError):
            self.service.register("not-an-email", TEST_PASSWORD, "A")

    def test_duplicate_email(self):
        create_user(self.session, email="taken@example.com")
        with self.assertRaises(ConflictError):
            self.service.register("TAKEN@example.com", TEST_PASSWORD, "Someone")


class TestLogin(ServiceTestCase):

    def setUp(self):
        super().setUp()
        self.user = create_user(self.session)
        self.service = AuthService(self.session, self.context)

    def test_login_issues_tokens(self):
        result = self.service.login(self.user.email, TEST_PASSWORD)

        self.assertEqual(result["user"]["id"], self.user.id)
        self.assertEqual(self.context.tokens.decode(result["refresh_token"], "refresh")["user_id"], self.user.id)
        self.assertEqual(self.session.query(RefreshToken).count(), 1)

    def test_unknown_user(self):
        with self.assertRaises(AuthenticationError) as ctx:
            self.service.login("nobody@example.com", TEST_PASSWORD)
        self.assertEqual(ctx.exception.message, "Invalid email or password")

    def test_attempts_remaining_warning(self):
        with self.assertRaises(AuthenticationError) as ctx:
            self.service.login(self.user.email, "wrong")
        self.assertEqual(ctx.exception.details, {})

        with self.assertRaises(AuthenticationError) as ctx:
            self.service.login(self.user.email, "wrong")
        self.assertEqual(
            ctx.exception.details["attempts_remaining"],
            "3 attempt(s) remaining before account lockout",
        )
        self.assertEqual(self.user.failed_login_attempts, 2)

    def test_lockout_after_five_failures(self):
        for _ in range(5):
            with self.assertRaises(AuthenticationError):
                self.service.login(self.user.email, "wrong")

        self.assertIsNotNone(self.user.locked_until)
        with self.assertRaises(AccountLockedError) as ctx:
            self.service.login(self.user.email, TEST_PASSWORD)
        self.assertTrue(ctx.exception.details["locked"])
        self.assertIn("15 minute(s)", ctx.exception.message)

    def test_success_clears_failures(self):
        with self.assertRaises(AuthenticationError):
            self.service.login(self.user.email, "wrong")
        self.service.login(self.user.email, TEST_PASSWORD)
        self.assertEqual(self.user.failed_login_attempts, 0)

    def test_expired_lock_allows_login(self):
        self.user.failed_login_attempts = 5
        self.user.locked_until = utcnow() - timedelta(minutes=1)
        result = self.service.login(self.user.email, TEST_PASSWORD)
        self.assertEqual(result["user"]["id"], self.user.id)
        self.assertIsNone(self.user.locked_until)


class TestRefreshAndLogout(ServiceTestCase):

    def setUp(self):
        super().setUp()
        self.user = create_user(self.session)
        self.service = AuthService(self.session, self.context)
        self.refresh_token = self.service.login(self.user.email, TEST_PASSWORD)["refresh_token"]

    def test_refresh(self):
        result = self.service.refresh(self.refresh_token)
        self.assertEqual(self.context.tokens.decode(result["token"])["user_id"], self.user.id)

    def test_refresh_rejects_access_token(self):
        access = self.context.tokens.create_access_token(self.user.id, self.user.email, self.user.name)
        with self.assertRaises(AuthenticationError):
            self.service.refresh(access)

    def test_logout_revokes(self):
        self.assertEqual(self.service.logout(self.user.id), 1)
        with self.assertRaises(AuthenticationError):
            self.service.refresh(self.refresh_token)

    def test_missing_refresh_token(self):
        with self.assertRaises(ValidationError):
            self.service.refresh(None)


class TestEmailVerification(ServiceTestCase):

    config_sections = {"security": {"require_email_verification": True}}

    def setUp(self):
        super().setUp()
        self.service = AuthService(self.session, self.context)

    def _register(self):
        with patch.object(self.context.email, "send_verification", wraps=self.context.email.send_verification) as send:
            result = self.service.register("new@example.com", TEST_PASSWORD, "New User")
        return self.session.get(User, result["user"]["id"]), send

    def test_register_sends_verification(self):
        user, send = self._register()

        self.assertFalse(user.email_verified)
        self.assertIsNotNone(user.email_verification_token)
        url = send.call_args.args[2]
        self.assertEqual(url, f"http://app.test/verify-email?token={user.email_verification_token}")

    def test_unverified_login_refused(self):
        self._register()
        with self.assertRaises(AuthorizationError) as ctx:
            self.service.login("new@example.com", TEST_PASSWORD)
        self.assertTrue(ctx.exception.details["requires_verification"])

    def test_verify_email(self):
        user, _ = self._register()
        result = self.service.verify_email(user.email_verification_token)

        self.assertTrue(result["verified"])
        self.assertTrue(user.email_verified)
        self.assertIsNone(user.email_verification_token)
        self.service.login("new@example.com", TEST_PASSWORD)

    def test_unknown_token(self):
        with self.assertRaises(ValidationError) as ctx:
            self.service.verify_email("nope")
        self.assertEqual(ctx.exception.error_code, "ERR_INVALID_TOKEN")

    def test_expired_token(self):
        user, _ = self._register()
        user.email_verification_expiry = utcnow() - timedelta(hours=1)
        with self.assertRaises(ValidationError) as ctx:
            self.service.verify_email(user.email_verification_token)

        self.assertEqual(ctx.exception.error_code, "ERR_EXPIRED_TOKEN")
        self.assertIsNone(user.email_verification_token)

    def test_resend(self):
        user, _ = self._register()
        old_token = user.email_verification_token

        message = self.service.resend_verification("new@example.com")
        self.assertIn("If an account with that email exists", message)
        self.assertNotEqual(user.email_verification_token, old_token)

        self.assertEqual(
            self.service.resend_verification("ghost@example.com"),
            "If an account with that email exists and is not verified, we have sent a verification email.",
        )

    def test_resend_when_verified(self):
        create_user(self.session, email="done@example.com", verified=True)
        self.assertEqual(
            self.service.resend_verification("done@example.com"),
            "Email is already verified. You can sign in.",
        )


class TestAdministration(ServiceTestCase):

    def setUp(self):
        super().setUp()
        self.service = AuthService(self.session, self.context)

    def test_make_admin(self):
        user = create_user(self.session, email="boss@example.com")
        self.assertEqual(self.service.make_admin("boss@example.com"), "Successfully made boss@example.com an admin!")
        self.assertTrue(user.is_admin)
        self.assertEqual(self.service.make_admin("boss@example.com"), "User boss@example.com is already an admin!")
        self.assertEqual([u.email for u in self.service.list_admins()], ["boss@example.com"])

    def test_make_admin_unknown(self):
        with self.assertRaises(NotFoundError):
            self.service.make_admin("ghost@example.com")

    def test_me(self):
        user = create_user(self.session, subscription_plan="pro", subscription_status="active")
        data = self.service.me(user.id)
        self.assertEqual(data["subscription"]["plan"], "pro")
        self.assertNotIn("password_hash", data)


if __name__ == "__main__":
    unittest.main()
