"""
Password hashing, JWT tokens, credential encryption and webhook signatures.
"""

import base64
import hashlib
import hmac
import json
import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
import stripe
from cryptography.fernet import Fernet, InvalidToken
from werkzeug.security import check_password_hash, generate_password_hash

from utils.error_handling import AuthenticationError, ConfigurationError, ValidationError

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_MINUTES = 15
REFRESH_TOKEN_DAYS = 7

CREDENTIAL_FIELDS = ("public_key", "secret_key", "client_id", "client_secret")


# -----------------------------------------------------------------------------
# Passwords and random tokens
# -----------------------------------------------------------------------------

def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    if not password_hash:
        return False
    return check_password_hash(password_hash, password)


def generate_token(num_bytes: int = 32) -> str:
    """Random hex token (edit links, email verification)."""
    return secrets.token_hex(num_bytes)


# -----------------------------------------------------------------------------
# JWT
# -----------------------------------------------------------------------------

class TokenManager:
    """Issues and verifies access and refresh tokens."""

    def __init__(
        self,
        secret: str,
        access_minutes: int = ACCESS_TOKEN_MINUTES,
        refresh_days: int = REFRESH_TOKEN_DAYS
    ):
        if not secret:
            raise ConfigurationError("security.jwt_secret is not configured")
        self.secret = secret
        self.access_minutes = access_minutes
        self.refresh_days = refresh_days

    def create_access_token(self, user_id: str, email: str, name: str, is_admin: bool = False) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "user_id": user_id,
            "email": email,
            "name": name,
            "is_admin": bool(is_admin),
            "type": "access",
            "iat": now,
            "exp": now + timedelta(minutes=self.access_minutes),
        }
        return jwt.encode(payload, self.secret, algorithm=JWT_ALGORITHM)

    def create_refresh_token(self, user_id: str) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "user_id": user_id,
            "type": "refresh",
            # Distinguishes tokens minted in the same second
            "jti": secrets.token_hex(8),
            "iat": now,
            "exp": now + timedelta(days=self.refresh_days),
        }
        return jwt.encode(payload, self.secret, algorithm=JWT_ALGORITHM)

    def decode(self, token: str, expected_type: str = "access") -> Dict[str, Any]:
        """
        Verify a token and return its payload.

        Raises:
            AuthenticationError: If the token is invalid, expired or of the wrong type
        """
        try:
            payload = jwt.decode(token, self.secret, algorithms=[JWT_ALGORITHM])
        except jwt.ExpiredSignatureError as e:
            raise AuthenticationError("Token has expired", cause=e)
        except jwt.InvalidTokenError as e:
            raise AuthenticationError("Invalid token", cause=e)

        if payload.get("type") != expected_type or not payload.get("user_id"):
            raise AuthenticationError("Invalid token")
        return payload


def extract_bearer_token(authorization: Optional[str], fallback: Optional[str] = None) -> Optional[str]:
    """Token from an Authorization header, else from the fallback header value."""
    if authorization:
        token = re.sub(r"^Bearer\s+", "", authorization.strip(), flags=re.IGNORECASE)
        if token:
            return token
    return fallback or None


# -----------------------------------------------------------------------------
# Credential encryption
# -----------------------------------------------------------------------------

_FERNET_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+=*$")


class CredentialCipher:
    """
    Symmetric encryption for payment and messaging credentials at rest.

    Any passphrase is accepted; it is stretched to a Fernet key with SHA-256.
    """

    def __init__(self, passphrase: str):
        if not passphrase:
            raise ConfigurationError("security.encryption_key is not configured")
        key = base64.urlsafe_b64encode(hashlib.sha256(passphrase.encode("utf-8")).digest())
        self._fernet = Fernet(key)

    def encrypt(self, text: Optional[str]) -> Optional[str]:
        if not text:
            return text
        return self._fernet.encrypt(text.encode("utf-8")).decode("ascii")

    def decrypt(self, token: Optional[str]) -> Optional[str]:
        """
        Decrypt a value produced by encrypt().

        Raises:
            ValueError: If the value is corrupt or was encrypted with another key
        """
        if not token:
            return token
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as e:
            raise ValueError("Failed to decrypt data - invalid key or corrupted data") from e

    def encrypt_credential(self, credential: Dict[str, Optional[str]]) -> Dict[str, Optional[str]]:
        return {
            name: self.encrypt(credential.get(name)) if credential.get(name) else None
            for name in CREDENTIAL_FIELDS
        }

    def decrypt_credential(self, credential: Any) -> Dict[str, Optional[str]]:
        """Decrypt every credential field; all fields are None if any fails."""
        def value(name: str) -> Optional[str]:
            if isinstance(credential, dict):
                return credential.get(name)
            return getattr(credential, name, None)

        try:
            return {
                name: self.decrypt(value(name)) if value(name) else None
                for name in CREDENTIAL_FIELDS
            }
        except ValueError as e:
            logger.error(f"Error decrypting payment credential: {e}")
            return {name: None for name in CREDENTIAL_FIELDS}


def is_encrypted(text: Optional[str]) -> bool:
    """Heuristic: long, base64-looking strings are treated as ciphertext."""
    return bool(text and len(text) > 20 and _FERNET_PATTERN.match(text))


# -----------------------------------------------------------------------------
# Webhook signatures
# -----------------------------------------------------------------------------

def verify_paystack_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """Paystack signs the raw body with HMAC-SHA512 of the secret key."""
    if not signature or not secret:
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha512).hexdigest()
    return hmac.compare_digest(expected, signature)


STRIPE_TOLERANCE_SECONDS = 300


def construct_stripe_event(
    payload: bytes,
    header: Optional[str],
    secret: Optional[str],
    tolerance: int = STRIPE_TOLERANCE_SECONDS
) -> Dict[str, Any]:
    """
    Verify a Stripe-Signature header with the Stripe SDK and return the event
    body as plain dictionaries.

    Raises:
        ValidationError: Missing secret or header, a bad or stale signature,
            or a body that is not JSON
    """
    if not header or not secret:
        raise ValidationError("Missing webhook secret")
    try:
        stripe.Webhook.construct_event(payload, header, secret, tolerance=tolerance)
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Stripe webhook signature verification failed: {e}")
        raise ValidationError("Webhook signature verification failed") from e
    except ValueError as e:
        raise ValidationError("Invalid JSON payload") from e

    event = json.loads(payload)
    if not isinstance(event, dict):
        raise ValidationError("Invalid JSON payload")
    return event
