"""
Premium subscription checkout with the platform's gateway accounts.
"""

from fastapi import APIRouter, Depends

from models.entities import PayPalVerifyRequest, SubscriptionCheckoutRequest
from server.dependencies import CurrentUser, get_current_user, rate_limit, service
from services.subscription_service import SubscriptionService

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])

subscription_service = service(SubscriptionService)


@router.get("/available-providers")
def available_providers(subscriptions: SubscriptionService = Depends(subscription_service)):
    return subscriptions.available_providers()


@router.post("/create-checkout", dependencies=[Depends(rate_limit("payment"))])
def create_checkout(
    body: SubscriptionCheckoutRequest,
    user: CurrentUser = Depends(get_current_user),
    subscriptions: SubscriptionService = Depends(subscription_service)
):
    """Stripe Checkout session for a premium period."""
    return subscriptions.create_stripe_checkout(user["user_id"], body)


@router.post("/paypal-checkout", dependencies=[Depends(rate_limit("payment"))])
def paypal_checkout(
    body: SubscriptionCheckoutRequest,
    user: CurrentUser = Depends(get_current_user),
    subscriptions: SubscriptionService = Depends(subscription_service)
):
    return subscriptions.create_paypal_checkout(user["user_id"], body)


@router.post("/paypal-verify", dependencies=[Depends(rate_limit("payment"))])
def paypal_verify(
    body: PayPalVerifyRequest,
    user: CurrentUser = Depends(get_current_user),
    subscriptions: SubscriptionService = Depends(subscription_service)
):
    return subscriptions.verify_paypal(user["user_id"], body.token)
