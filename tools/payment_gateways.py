"""
Payment links, verification and subscription checkouts against Paystack,
Stripe and PayPal.

Every outbound call goes through the same pipeline: a per-provider circuit
breaker, retries with exponential backoff for timeouts and 5xx responses,
and conversion of failures into PaymentProviderError with a user-facing
message. Paystack and PayPal are called over REST with requests; payment
intents and checkout sessions use the Stripe SDK.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

import requests
import stripe

from config.provider_config import PAYMENT_CONFIG
from utils.error_handling import (
    CircuitBreaker, PaymentProviderError, ValidationError, format_error_message,
    is_retryable_http_error, retry
)
from utils.logging_config import log_provider_call, log_provider_response
from utils.metrics import AppMetricsCollector

logger = logging.getLogger("invoicegen.tools.payment_gateways")

SUPPORTED_PROVIDERS = ("paypal", "paystack", "stripe")

PROVIDER_NAMES = {
    "paypal": "PayPal",
    "paystack": "Paystack",
    "stripe": "Stripe",
}


def is_retryable_provider_error(error: Exception) -> bool:
    """HTTP failures worth retrying, plus Stripe connection failures and 5xx answers."""
    if isinstance(error, stripe.APIConnectionError):
        return True
    if isinstance(error, stripe.StripeError):
        return (error.http_status or 0) >= 500
    return is_retryable_http_error(error)


def _value(source: Any, key: str, default: Any = None) -> Any:
    if isinstance(source, dict):
        return source.get(key, default)
    return getattr(source, key, default)


class PaymentGatewayClient:
    """
    Talks to the payment providers on behalf of an invoice owner.

    Args:
        app_url: Public base URL used for callback and redirect URLs
        config: The ``payments`` configuration section
        session: Optional requests session (tests pass a mock)
    """

    def __init__(
        self,
        app_url: str,
        config: Optional[Dict[str, Any]] = None,
        session: Optional[requests.Session] = None
    ):
        self.app_url = app_url.rstrip("/")
        self.config = config or PAYMENT_CONFIG
        self.session = session or requests.Session()
        self.timeout = self.config.get("timeout_seconds", 10)
        self.max_retries = self.config.get("max_retries", 2)
        self.retry_delay = self.config.get("retry_delay_seconds", 1.0)
        self.metrics = AppMetricsCollector.get_instance()

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _circuit(self, provider: str) -> CircuitBreaker:
        return CircuitBreaker.get_instance(
            f"payments.{provider}",
            failure_threshold=self.config.get("circuit_failure_threshold", 5),
            recovery_timeout=self.config.get("circuit_recovery_seconds", 30),
            ignore=lambda e: not is_retryable_provider_error(e)
        )

    def _request(self, provider: str, operation: str, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        """
        Send one provider request with retries inside the provider's circuit.

        Raises:
            PaymentProviderError: When the provider fails or answers with an error
            ExternalServiceError: When the provider's circuit is open
        """
        kwargs.setdefault("timeout", self.timeout)
        log_provider_call(logger, provider, operation, kwargs.get("json") or kwargs.get("data") or {})

        @retry(
            max_attempts=self.max_retries + 1,
            delay=self.retry_delay,
            exceptions=requests.RequestException,
            retry_if=is_retryable_http_error
        )
        def send() -> requests.Response:
            response = self.session.request(method, url, **kwargs)
            log_provider_response(logger, provider, operation, response.status_code)
            response.raise_for_status()
            return response

        try:
            response = self._circuit(provider).execute(send)
        except requests.RequestException as e:
            message = format_error_message(e, f"{PROVIDER_NAMES[provider]} {operation}")
            logger.error(f"{PROVIDER_NAMES[provider]} {operation} failed: {message}")
            raise PaymentProviderError(message, provider=provider, cause=e) from e

        try:
            return response.json()
        except ValueError as e:
            raise PaymentProviderError(
                f"Invalid response from {PROVIDER_NAMES[provider]}", provider=provider, cause=e
            ) from e

    def _stripe_call(self, operation: str, func: Callable[..., Any], **params: Any) -> Any:
        """
        Call the Stripe SDK with retries inside the Stripe circuit.

        Raises:
            PaymentProviderError: When Stripe rejects or fails the call
            ExternalServiceError: When the Stripe circuit is open
        """
        log_provider_call(logger, "stripe", operation, params)

        @retry(
            max_attempts=self.max_retries + 1,
            delay=self.retry_delay,
            exceptions=stripe.StripeError,
            retry_if=is_retryable_provider_error
        )
        def send() -> Any:
            return func(**params)

        try:
            return self._circuit("stripe").execute(send)
        except stripe.StripeError as e:
            message = e.user_message or f"Stripe {operation} failed"
            logger.error(f"Stripe {operation} failed: {e}")
            raise PaymentProviderError(message, provider="stripe", cause=e) from e

    # -------------------------------------------------------------------------
    # Payment links
    # -------------------------------------------------------------------------

    def create_payment_link(
        self,
        invoice: Any,
        provider: str,
        credential: Dict[str, Any],
        payer_email: str,
        payer_name: Optional[str] = None
    ) -> str:
        """
        Create a hosted payment page for an invoice.

        Args:
            invoice: Invoice record (id, invoice_number, total, currency, client_info)
            provider: paypal, paystack or stripe
            credential: Decrypted credential fields plus ``is_test_mode``
            payer_email: Email the provider associates with the payment
            payer_name: Fallback customer name

        Returns:
            str: URL of the payment page

        Raises:
            ValidationError: For unsupported providers, missing keys or a zero total
            PaymentProviderError: When the provider call fails
        """
        if provider not in SUPPORTED_PROVIDERS:
            raise ValidationError(f"Unsupported payment provider: {provider}")

        try:
            if provider == "paystack":
                url = self._create_paystack_link(invoice, credential, payer_email, payer_name)
            elif provider == "stripe":
                url = self._create_stripe_link(invoice, credential)
            else:
                url = self._create_paypal_link(invoice, credential)
        except Exception:
            self.metrics.track_payment_link(provider, success=False)
            raise

        self.metrics.track_payment_link(provider, success=True)
        logger.info(f"Created {PROVIDER_NAMES[provider]} payment link for invoice {_value(invoice, 'id')}")
        return url

    def _create_paystack_link(
        self,
        invoice: Any,
        credential: Dict[str, Any],
        payer_email: str,
        payer_name: Optional[str]
    ) -> str:
        if not credential.get("secret_key"):
            raise ValidationError("Paystack secret key is required")

        # Smallest currency unit
        amount = int(round(float(_value(invoice, "total", 0)) * 100))
        if amount <= 0:
            raise ValidationError("Invoice amount must be greater than zero")

        invoice_id = _value(invoice, "id")
        client_info = _value(invoice, "client_info") or {}
        body = {
            "email": payer_email,
            "amount": amount,
            "reference": f"INV-{invoice_id}-{int(time.time() * 1000)}",
            "currency": "NGN" if _value(invoice, "currency") == "NGN" else "USD",
            "metadata": {
                "invoice_id": invoice_id,
                "invoice_number": _value(invoice, "invoice_number"),
                "customer_name": client_info.get("name") or payer_name or "Customer",
            },
            "callback_url": f"{self.app_url}/pay/{invoice_id}/callback",
        }

        data = self._request(
            "paystack", "payment link", "POST",
            f"{self.config['paystack']['base_url']}/transaction/initialize",
            json=body,
            headers={"Authorization": f"Bearer {credential['secret_key']}"},
        )

        url = (data.get("data") or {}).get("authorization_url")
        if data.get("status") and url:
            return url
        raise PaymentProviderError(
            data.get("message") or "Failed to create Paystack payment link", provider="paystack"
        )

    def _create_stripe_link(self, invoice: Any, credential: Dict[str, Any]) -> str:
        if not credential.get("secret_key"):
            raise ValidationError("Stripe secret key is required")

        amount = int(round(float(_value(invoice, "total", 0)) * 100))
        if amount <= 0:
            raise ValidationError("Invoice amount must be greater than zero")

        invoice_id = _value(invoice, "id")
        number = _value(invoice, "invoice_number")
        form = {
            "line_items[0][price_data][currency]": (_value(invoice, "currency") or "USD").lower(),
            "line_items[0][price_data][product_data][name]": f"Invoice {number}",
            "line_items[0][price_data][product_data][description]": f"Payment for invoice {number}",
            "line_items[0][price_data][unit_amount]": str(amount),
            "line_items[0][quantity]": "1",
            "metadata[invoice_id]": invoice_id,
            "metadata[invoice_number]": number,
            "after_completion[type]": "redirect",
            "after_completion[redirect][url]": f"{self.app_url}/pay/{invoice_id}/success",
        }

        data = self._request(
            "stripe", "payment link", "POST",
            f"{self.config['stripe']['base_url']}/v1/payment_links",
            data=form,
            headers={"Authorization": f"Bearer {credential['secret_key']}"},
        )

        if data.get("url"):
            return data["url"]
        raise PaymentProviderError("Failed to create Stripe payment link - no URL returned", provider="stripe")

    def _paypal_access_token(self, credential: Dict[str, Any]) -> Tuple[str, str]:
        """OAuth client-credentials token; returns the API base URL and the token."""
        paypal = self.config["paypal"]
        base_url = paypal["sandbox_url"] if credential.get("is_test_mode") else paypal["live_url"]
        token_data = self._request(
            "paypal", "access token", "POST",
            f"{base_url}/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(credential["client_id"], credential["client_secret"]),
        )
        access_token = token_data.get("access_token")
        if not access_token:
            raise PaymentProviderError("Failed to get PayPal access token", provider="paypal")
        return base_url, access_token

    def _paypal_order(self, base_url: str, access_token: str, order: Dict[str, Any]) -> Dict[str, Any]:
        data = self._request(
            "paypal", "order", "POST",
            f"{base_url}/v2/checkout/orders",
            json=order,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        for link in data.get("links") or []:
            if link.get("rel") == "approve" and link.get("href"):
                return {"approval_url": link["href"], "order_id": data.get("id")}
        raise PaymentProviderError("Failed to create PayPal order - no approval URL returned", provider="paypal")

    def _create_paypal_link(self, invoice: Any, credential: Dict[str, Any]) -> str:
        if not credential.get("client_id") or not credential.get("client_secret"):
            raise ValidationError("PayPal client ID and secret are required")

        total = float(_value(invoice, "total", 0))
        if total <= 0:
            raise ValidationError("Invoice amount must be greater than zero")

        base_url, access_token = self._paypal_access_token(credential)

        invoice_id = _value(invoice, "id")
        number = _value(invoice, "invoice_number")
        order = {
            "intent": "CAPTURE",
            "purchase_units": [{
                "reference_id": invoice_id,
                "description": f"Invoice {number}",
                "amount": {
                    "currency_code": _value(invoice, "currency") or "USD",
                    "value": f"{total:.2f}",
                },
                "invoice_id": number,
            }],
            "application_context": {
                "brand_name": self.config["paypal"].get("brand_name", "Invoice Payment"),
                "landing_page": "BILLING",
                "user_action": "PAY_NOW",
                "return_url": f"{self.app_url}/pay/{invoice_id}/success?provider=paypal",
                "cancel_url": f"{self.app_url}/pay/{invoice_id}?cancelled=true",
            },
        }

        return self._paypal_order(base_url, access_token, order)["approval_url"]

    # -------------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------------

    def verify_paystack_transaction(self, secret_key: str, reference: str) -> Optional[Dict[str, Any]]:
        """
        Look up a Paystack transaction.

        Returns:
            The transaction data when it succeeded, otherwise None
        """
        data = self._request(
            "paystack", "transaction", "GET",
            f"{self.config['paystack']['base_url']}/transaction/verify/{reference}",
            headers={"Authorization": f"Bearer {secret_key}"},
        )
        transaction = data.get("data") or {}
        if data.get("status") and transaction.get("status") == "success":
            return transaction
        return None

    def retrieve_stripe_payment_intent(self, secret_key: str, intent_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch a Stripe PaymentIntent.

        Returns:
            id, status, amount and currency of the intent when its status is
            ``succeeded``, otherwise None
        """
        intent = self._stripe_call(
            "payment intent", stripe.PaymentIntent.retrieve, id=intent_id, api_key=secret_key
        )
        if intent.status != "succeeded":
            return None
        return {"id": intent.id, "status": intent.status, "amount": intent.amount, "currency": intent.currency}

    # -------------------------------------------------------------------------
    # Subscription checkouts
    # -------------------------------------------------------------------------

    def create_stripe_subscription_checkout(
        self,
        secret_key: str,
        user_id: str,
        plan: str,
        amount: float,
        currency: str,
        email: str,
        days: int = 30
    ) -> Dict[str, str]:
        """
        Create a one-off Stripe Checkout session for a subscription period.

        The session metadata (``type=subscription``, ``user_id``, ``plan``) is
        what the ``checkout.session.completed`` webhook activates from.

        Returns:
            ``{"checkout_url", "session_id"}``
        """
        unit_amount = int(round(float(amount) * 100))
        if unit_amount <= 0:
            raise ValidationError("Amount must be greater than zero")

        session = self._stripe_call(
            "subscription checkout",
            stripe.checkout.Session.create,
            api_key=secret_key,
            payment_method_types=["card"],
            mode="payment",
            customer_email=email,
            line_items=[{
                "price_data": {
                    "currency": currency.lower(),
                    "product_data": {
                        "name": f"Premium Subscription - {plan}",
                        "description": f"Premium access for {days} days",
                    },
                    "unit_amount": unit_amount,
                },
                "quantity": 1,
            }],
            metadata={"user_id": user_id, "plan": plan, "type": "subscription"},
            success_url=f"{self.app_url}/upgrade?success=true&session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{self.app_url}/upgrade?canceled=true",
        )
        logger.info(f"Created Stripe subscription checkout {session.id} for user {user_id}")
        return {"checkout_url": session.url, "session_id": session.id}

    def create_paypal_subscription_order(
        self,
        credential: Dict[str, Any],
        user_id: str,
        plan: str,
        amount: float,
        currency: str
    ) -> Dict[str, str]:
        """
        Create a PayPal order for a subscription period.

        The purchase unit's ``reference_id`` is ``subscription_<user id>_<ms>``;
        capture and the PayPal webhook read the user back from it.

        Returns:
            ``{"checkout_url", "order_id"}``
        """
        if float(amount) <= 0:
            raise ValidationError("Amount must be greater than zero")

        base_url, access_token = self._paypal_access_token(credential)
        stamp = int(time.time() * 1000)
        order = {
            "intent": "CAPTURE",
            "purchase_units": [{
                "reference_id": f"subscription_{user_id}_{stamp}",
                "description": f"Premium Subscription - {plan}",
                "amount": {
                    "currency_code": currency.upper(),
                    "value": f"{float(amount):.2f}",
                },
                "invoice_id": f"SUB-{user_id}-{stamp}",
            }],
            "application_context": {
                "brand_name": self.config["paypal"].get("brand_name", "Invoice Payment"),
                "landing_page": "BILLING",
                "user_action": "PAY_NOW",
                "return_url": f"{self.app_url}/upgrade?success=true&provider=paypal",
                "cancel_url": f"{self.app_url}/upgrade?canceled=true&provider=paypal",
            },
        }

        created = self._paypal_order(base_url, access_token, order)
        logger.info(f"Created PayPal subscription order {created['order_id']} for user {user_id}")
        return {"checkout_url": created["approval_url"], "order_id": created["order_id"]}

    def capture_paypal_order(self, credential: Dict[str, Any], order_id: str) -> Dict[str, Any]:
        """Capture an approved PayPal order and return the order as PayPal reports it."""
        base_url, access_token = self._paypal_access_token(credential)
        return self._request(
            "paypal", "capture", "POST",
            f"{base_url}/v2/checkout/orders/{order_id}/capture",
            json={},
            headers={"Authorization": f"Bearer {access_token}"},
        )
