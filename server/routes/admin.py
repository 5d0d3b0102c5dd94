"""
Administration: admin grants, pricing, platform payment credentials and the
WhatsApp provider settings.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from models.entities import MakeAdminRequest, PaymentCredentialRequest, PricingUpdate, WhatsAppSettingsUpdate
from server.dependencies import CurrentUser, rate_limit, require_admin, service
from services.auth_service import AuthService
from services.pricing_service import PricingService
from services.subscription_service import SubscriptionService
from services.whatsapp_service import WhatsAppService

logger = logging.getLogger("invoicegen.server.admin")

router = APIRouter(prefix="/api/admin", tags=["admin"])

auth_service = service(AuthService)
pricing_service = service(PricingService)
subscription_service = service(SubscriptionService)
whatsapp_service = service(WhatsAppService)


@router.post("/make-admin")
def make_admin(
    body: MakeAdminRequest,
    admin: CurrentUser = Depends(require_admin),
    auth: AuthService = Depends(auth_service)
):
    message = auth.make_admin(body.email)
    logger.info(f"make-admin for {body.email} requested by {admin['user_id']}")
    return {"message": message}


@router.get("/pricing")
def list_pricing(
    admin: CurrentUser = Depends(require_admin),
    pricing: PricingService = Depends(pricing_service)
):
    return pricing.list_settings()


@router.put("/pricing")
def update_pricing(
    body: PricingUpdate,
    admin: CurrentUser = Depends(require_admin),
    pricing: PricingService = Depends(pricing_service)
):
    return pricing.update_settings(body)


@router.get("/payment-config")
def get_payment_config(
    admin: CurrentUser = Depends(require_admin),
    subscriptions: SubscriptionService = Depends(subscription_service)
):
    return subscriptions.payment_config()


@router.post("/payment-config", dependencies=[Depends(rate_limit("general"))])
@router.put("/payment-config", dependencies=[Depends(rate_limit("general"))])
def save_payment_config(
    body: PaymentCredentialRequest,
    admin: CurrentUser = Depends(require_admin),
    subscriptions: SubscriptionService = Depends(subscription_service)
):
    """Gateway keys used for subscription payments, stored under the calling admin."""
    return subscriptions.save_payment_config(admin["user_id"], body)


@router.delete("/payment-config")
def delete_payment_config(
    provider: Optional[str] = Query(None),
    admin: CurrentUser = Depends(require_admin),
    subscriptions: SubscriptionService = Depends(subscription_service)
):
    return subscriptions.delete_payment_config(admin["user_id"], provider)


@router.get("/whatsapp")
def get_whatsapp_settings(
    admin: CurrentUser = Depends(require_admin),
    whatsapp: WhatsAppService = Depends(whatsapp_service)
):
    return whatsapp.get_settings()


@router.put("/whatsapp")
def update_whatsapp_settings(
    body: WhatsAppSettingsUpdate,
    admin: CurrentUser = Depends(require_admin),
    whatsapp: WhatsAppService = Depends(whatsapp_service)
):
    return whatsapp.update_settings(body)
