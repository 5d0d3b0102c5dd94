"""
Premium subscriptions paid with the platform's own gateway accounts.

Platform keys come from the ``subscriptions`` configuration section
(``STRIPE_SECRET_KEY``, ``PAYPAL_CLIENT_ID`` and ``PAYPAL_CLIENT_SECRET``)
and otherwise from the active credentials saved by the first admin.
"""

from typing import Any, Dict, Optional

from sqlalchemy import select

from models.entities import PaymentCredentialRequest, SubscriptionCheckoutRequest
from services.base_service import BaseService
from services.payment_service import SUBSCRIPTION_DAYS, PaymentService
from services.settings_service import SettingsService
from storage.tables import PaymentCredential, User
from tools.payment_gateways import SUPPORTED_PROVIDERS
from utils.error_handling import AuthorizationError, ConfigurationError, ValidationError

STRIPE_NOT_CONFIGURED = (
    "Stripe is not configured. Please configure Stripe in Admin Dashboard "
    "or set STRIPE_SECRET_KEY in environment variables."
)
PAYPAL_NOT_CONFIGURED = (
    "PayPal is not configured. Please configure PayPal in Admin Dashboard "
    "or set PAYPAL_CLIENT_ID and PAYPAL_CLIENT_SECRET in environment variables."
)

# Stored columns that must be set for a provider to count as configured
PROVIDER_KEYS = {
    "paypal": ("client_id", "client_secret"),
    "paystack": ("public_key", "secret_key"),
    "stripe": ("public_key", "secret_key"),
}


class SubscriptionService(BaseService):
    """Checkout and activation of premium plans, plus the admin's platform credentials."""

    name = "subscriptions"

    @property
    def platform_keys(self) -> Dict[str, Any]:
        return self.config.get("subscriptions") or {}

    def platform_admin(self) -> Optional[User]:
        """The earliest admin; their saved credentials are the platform's."""
        return self.session.scalars(
            select(User).where(User.is_admin.is_(True)).order_by(User.created_at, User.id)
        ).first()

    def _admin_credentials(self) -> Dict[str, PaymentCredential]:
        admin = self.platform_admin()
        if admin is None:
            return {}
        credentials = self.session.scalars(
            select(PaymentCredential).where(
                PaymentCredential.user_id == admin.id, PaymentCredential.is_active.is_(True)
            )
        )
        return {credential.provider: credential for credential in credentials}

    def _admin_credential(self, provider: str) -> Optional[Dict[str, Any]]:
        credential = self._admin_credentials().get(provider)
        if credential is None:
            return None
        values = self.context.cipher.decrypt_credential(credential)
        values["is_test_mode"] = credential.is_test_mode
        return values

    def stripe_secret_key(self) -> Optional[str]:
        configured = self.platform_keys.get("stripe_secret_key")
        if configured:
            return configured
        credential = self._admin_credential("stripe") or {}
        return credential.get("secret_key")

    def paypal_credential(self) -> Optional[Dict[str, Any]]:
        """Configured client id and secret (live), else the admin's PayPal credential."""
        keys = self.platform_keys
        if keys.get("paypal_client_id") and keys.get("paypal_client_secret"):
            return {
                "client_id": keys["paypal_client_id"],
                "client_secret": keys["paypal_client_secret"],
                "is_test_mode": False,
            }
        credential = self._admin_credential("paypal")
        if credential and credential.get("client_id") and credential.get("client_secret"):
            return credential
        return None

    def available_providers(self) -> Dict[str, Dict[str, bool]]:
        """Which gateways can take subscription payments right now."""
        keys = self.platform_keys
        webhooks = self.config.get("webhooks") or {}
        from_config = {
            "paypal": bool(keys.get("paypal_client_id") or keys.get("paypal_client_secret")),
            "paystack": bool(webhooks.get("paystack_secret")),
            "stripe": bool(keys.get("stripe_secret_key") or keys.get("stripe_publishable_key")),
        }

        stored = self._admin_credentials()
        providers = {}
        for provider in SUPPORTED_PROVIDERS:
            credential = stored.get(provider)
            in_database = credential is not None and all(
                getattr(credential, column) for column in PROVIDER_KEYS[provider]
            )
            providers[provider] = from_config[provider] or in_database
        return {"providers": providers}

    # -------------------------------------------------------------------------
    # Checkout
    # -------------------------------------------------------------------------

    def _check_request(self, user_id: str, request: SubscriptionCheckoutRequest) -> None:
        if not (request.user_id and request.plan and request.amount and request.currency and request.user_email):
            raise ValidationError("Missing required fields")
        if request.user_id != user_id:
            raise AuthorizationError()

    def create_stripe_checkout(self, user_id: str, request: SubscriptionCheckoutRequest) -> Dict[str, str]:
        """
        Start a Stripe Checkout session for the signed-in user.

        Raises:
            ValidationError: Missing fields
            AuthorizationError: ``user_id`` in the body is someone else
            ConfigurationError: No platform Stripe key
            NotFoundError: The user no longer exists
            PaymentProviderError: Stripe refused the session
        """
        self._check_request(user_id, request)
        secret_key = self.stripe_secret_key()
        if not secret_key:
            raise ConfigurationError(STRIPE_NOT_CONFIGURED)
        self._get(User, user_id, "User")

        checkout = self.context.gateways.create_stripe_subscription_checkout(
            secret_key, user_id, request.plan, request.amount, request.currency,
            request.user_email, days=SUBSCRIPTION_DAYS,
        )
        return {"checkout_url": checkout["checkout_url"], "session_id": checkout["session_id"]}

    def create_paypal_checkout(self, user_id: str, request: SubscriptionCheckoutRequest) -> Dict[str, str]:
        """Create a PayPal order for the signed-in user; errors as for Stripe."""
        self._check_request(user_id, request)
        credential = self.paypal_credential()
        if credential is None:
            raise ConfigurationError(PAYPAL_NOT_CONFIGURED)
        self._get(User, user_id, "User")

        order = self.context.gateways.create_paypal_subscription_order(
            credential, user_id, request.plan, request.amount, request.currency
        )
        return {"checkout_url": order["checkout_url"], "order_id": order["order_id"]}

    def verify_paypal(self, user_id: str, token: Optional[str]) -> Dict[str, Any]:
        """
        Capture the approved order PayPal redirected back with and activate
        premium for 30 days.

        The order's ``subscription_<user id>_...`` reference must name the
        caller. An order that is not COMPLETED after capture is a 400 carrying
        PayPal's status.
        """
        if not token:
            raise ValidationError("Payment token is required")
        credential = self.paypal_credential()
        if credential is None:
            raise ConfigurationError("PayPal is not configured")

        order = self.context.gateways.capture_paypal_order(credential, token)
        status = order.get("status")
        if status != "COMPLETED":
            self.logger.warning(f"PayPal order {token} not completed: {status}")
            raise ValidationError("Payment not completed", details={"status": status})

        reference_id = ((order.get("purchase_units") or [{}])[0]).get("reference_id") or ""
        payer_id = user_id
        if reference_id.startswith("subscription_"):
            parts = reference_id.split("_")
            if len(parts) >= 2:
                payer_id = parts[1]
        if payer_id != user_id:
            raise AuthorizationError("Payment verification failed - user mismatch")

        user = self._get(User, user_id, "User")
        PaymentService(self.session, self.context).activate_subscription(user, "premium", "paypal")
        self.session.flush()
        self.metrics.track_payment("paypal")
        return {"success": True, "message": "Subscription activated successfully"}

    # -------------------------------------------------------------------------
    # Platform credentials (admin)
    # -------------------------------------------------------------------------

    def payment_config(self) -> Dict[str, Any]:
        """The platform admin's active credentials, secrets withheld."""
        admin = self.platform_admin()
        if admin is None:
            return {"config": None}
        return {
            "config": {
                "credentials": SettingsService(self.session, self.context).list_credentials(admin.id),
                "admin_user_id": admin.id,
            }
        }

    def save_payment_config(self, admin_id: str, request: PaymentCredentialRequest) -> Dict[str, Any]:
        """Store gateway keys under the calling admin; same rules as a user's own credentials."""
        credential = SettingsService(self.session, self.context).save_credential(admin_id, request)
        return {"credential": credential, "message": "Payment configuration saved successfully"}

    def delete_payment_config(self, admin_id: str, provider: Optional[str]) -> Dict[str, Any]:
        SettingsService(self.session, self.context).delete_credential(admin_id, provider)
        return {"message": "Payment configuration deleted successfully"}
