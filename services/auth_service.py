"""
Registration, sign-in, token refresh and email verification.
"""

import math
import re
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update

from services.base_service import BaseService
from storage.database import utcnow
from storage.tables import RefreshToken, User
from utils.error_handling import (
    AccountLockedError, AuthenticationError, AuthorizationError, ConflictError,
    ErrorSeverity, NotFoundError, ValidationError
)
from utils.security import generate_token, hash_password, verify_password

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 6
VERIFICATION_HOURS = 24


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email and EMAIL_PATTERN.match(email))


class AuthService(BaseService):
    """User accounts and session tokens."""

    name = "auth"

    @property
    def require_verification(self) -> bool:
        return bool(self.context.security.get("require_email_verification", True))

    def find_user_by_email(self, email: str) -> Optional[User]:
        return self.session.scalars(select(User).where(User.email == email.lower())).first()

    def register(self, email: Optional[str], password: Optional[str], name: Optional[str]) -> Dict[str, Any]:
        """
        Create an account and return an access token for it.

        Raises:
            ValidationError: Missing fields, short password or malformed email
            ConflictError: If the email is taken
        """
        if not email or not password or not name:
            raise ValidationError("Email, password, and name are required")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        if not is_valid_email(email):
            raise ValidationError("Invalid email format")
        if self.find_user_by_email(email) is not None:
            raise ConflictError("User with this email already exists")

        user = User(
            email=email.lower(),
            name=name,
            password_hash=hash_password(password),
            is_admin=False,
            email_verified=not self.require_verification,
        )
        self.session.add(user)
        self.session.flush()

        if self.require_verification:
            self._send_verification(user)

        self.logger.info(f"Registered user {user.id}")
        return {
            "token": self._access_token(user),
            "user": user.to_public(),
        }

    def login(self, email: Optional[str], password: Optional[str]) -> Dict[str, Any]:
        """
        Check credentials and issue an access and a refresh token.

        Five consecutive failures lock the account for the configured lockout.

        Raises:
            ValidationError: Missing email or password
            AuthenticationError: Unknown user or wrong password
            AccountLockedError: While the account is locked
            AuthorizationError: If the email is not verified
        """
        if not email or not password:
            raise ValidationError("Email and password are required")

        user = self.find_user_by_email(email)
        if user is None:
            raise AuthenticationError("Invalid email or password", severity=ErrorSeverity.LOW)

        now = utcnow()
        if user.locked_until and user.locked_until > now:
            minutes = math.ceil((user.locked_until - now).total_seconds() / 60)
            raise AccountLockedError(
                "Account is temporarily locked due to multiple failed login attempts. "
                f"Please try again in {minutes} minute(s).",
                details={"locked": True, "locked_until": user.locked_until.isoformat()},
            )

        if not verify_password(user.password_hash, password):
            max_attempts = int(self.context.security.get("max_failed_logins", 5))
            attempts = (user.failed_login_attempts or 0) + 1
            user.failed_login_attempts = attempts
            if attempts >= max_attempts:
                lockout = int(self.context.security.get("lockout_minutes", 15))
                user.locked_until = now + timedelta(minutes=lockout)
                self.logger.warning(f"Locked account {user.id} after {attempts} failed logins")
            # Keep the counter even though the request fails
            self.session.commit()

            details = {}
            remaining = max_attempts - attempts
            if 0 < remaining <= 3:
                details["attempts_remaining"] = f"{remaining} attempt(s) remaining before account lockout"
            raise AuthenticationError("Invalid email or password", severity=ErrorSeverity.LOW, details=details)

        if self.require_verification and not user.email_verified:
            raise AuthorizationError(
                "Please verify your email address before signing in. "
                "Check your inbox for the verification email.",
                details={"requires_verification": True, "email": user.email},
            )

        if user.failed_login_attempts or user.locked_until:
            user.failed_login_attempts = 0
            user.locked_until = None

        return {
            "token": self._access_token(user),
            "refresh_token": self.create_refresh_token(user),
            "user": user.to_public(),
        }

    def create_refresh_token(self, user: User) -> str:
        token = self.context.tokens.create_refresh_token(user.id)
        self.session.add(RefreshToken(
            user_id=user.id,
            token=token,
            expires_at=utcnow() + timedelta(days=self.context.tokens.refresh_days),
        ))
        self.session.flush()
        return token

    def refresh(self, refresh_token: Optional[str]) -> Dict[str, Any]:
        """Exchange a stored, unrevoked refresh token for a new access token."""
        if not refresh_token:
            raise ValidationError("Refresh token is required")

        try:
            payload = self.context.tokens.decode(refresh_token, expected_type="refresh")
        except AuthenticationError:
            raise AuthenticationError("Invalid or expired refresh token", severity=ErrorSeverity.LOW)

        stored = self.session.scalars(
            select(RefreshToken).where(RefreshToken.token == refresh_token)
        ).first()
        if stored is None or stored.revoked_at is not None or stored.expires_at < utcnow():
            raise AuthenticationError("Invalid or expired refresh token", severity=ErrorSeverity.LOW)

        user = self.session.get(User, payload["user_id"])
        if user is None:
            raise NotFoundError("User not found", resource="user")
        if self.require_verification and not user.email_verified:
            raise AuthorizationError("Email not verified", details={"requires_verification": True})

        return {"token": self._access_token(user), "user": user.to_public()}

    def logout(self, user_id: str) -> int:
        """Revoke every refresh token of the user; returns how many were revoked."""
        result = self.session.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.revoked_at.is_(None))
            .values(revoked_at=utcnow())
        )
        return result.rowcount or 0

    def me(self, user_id: str) -> Dict[str, Any]:
        user = self._get(User, user_id, "User")
        data = user.to_public()
        if user.subscription_plan:
            data["subscription"] = {
                "plan": user.subscription_plan,
                "status": user.subscription_status,
                "start_date": user.subscription_start_date.isoformat() if user.subscription_start_date else None,
                "end_date": user.subscription_end_date.isoformat() if user.subscription_end_date else None,
                "payment_method": user.subscription_payment_method,
            }
        return data

    # Email verification

    def _send_verification(self, user: User) -> None:
        user.email_verification_token = generate_token()
        user.email_verification_expiry = utcnow() + timedelta(hours=VERIFICATION_HOURS)
        self.session.flush()

        url = f"{self.context.app_url}/verify-email?token={user.email_verification_token}"
        result = self.context.email.send_verification(user.email, user.name, url)
        if not result.success:
            self.logger.error(f"Failed to send verification email to user {user.id}: {result.error}")

    def resend_verification(self, email: Optional[str]) -> str:
        """Send a fresh verification link. The reply does not reveal whether the account exists."""
        if not email:
            raise ValidationError("Email is required")
        if not is_valid_email(email):
            raise ValidationError("Invalid email format")

        user = self.find_user_by_email(email)
        if user is not None and user.email_verified:
            return "Email is already verified. You can sign in."
        if user is not None:
            self._send_verification(user)
        return "If an account with that email exists and is not verified, we have sent a verification email."

    def verify_email(self, token: Optional[str]) -> Dict[str, Any]:
        """
        Mark the account owning ``token`` as verified.

        Raises:
            ValidationError: Missing, unknown or expired token
        """
        if not token:
            raise ValidationError("Verification token is required")

        user = self.session.scalars(select(User).where(User.email_verification_token == token)).first()
        if user is None:
            raise ValidationError("Invalid or expired verification token", error_code="ERR_INVALID_TOKEN")

        if user.email_verified:
            return {"message": "Email is already verified", "verified": True}

        if user.email_verification_expiry is None or user.email_verification_expiry < utcnow():
            user.email_verification_token = None
            user.email_verification_expiry = None
            self.session.commit()
            raise ValidationError(
                "Verification token has expired. Please request a new verification email.",
                error_code="ERR_EXPIRED_TOKEN",
            )

        user.email_verified = True
        user.email_verification_token = None
        user.email_verification_expiry = None
        self.logger.info(f"Verified email for user {user.id}")
        return {"message": "Email verified successfully! You can now sign in.", "verified": True}

    # Administration

    def make_admin(self, email: Optional[str]) -> str:
        if not email:
            raise ValidationError("Email is required")

        user = self.find_user_by_email(email)
        if user is None:
            raise NotFoundError(f"User with email {email} not found. Please sign up first.", resource="user")
        if user.is_admin:
            return f"User {user.email} is already an admin!"

        user.is_admin = True
        self.logger.info(f"Granted admin to user {user.id}")
        return f"Successfully made {user.email} an admin!"

    def list_admins(self) -> List[User]:
        return list(self.session.scalars(select(User).where(User.is_admin.is_(True)).order_by(User.email)))

    def _access_token(self, user: User) -> str:
        return self.context.tokens.create_access_token(user.id, user.email, user.name, user.is_admin)
