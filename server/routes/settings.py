"""
Per-user settings: company defaults, payment credentials and the public link.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from models.entities import (
    CompanyDefaultsRequest, DefaultProviderRequest, PaymentCredentialRequest, PublicSlugRequest
)
from server.dependencies import CurrentUser, get_current_user, rate_limit, service
from services.settings_service import SettingsService

router = APIRouter(prefix="/api", tags=["settings"])

settings_service = service(SettingsService)


@router.get("/company-defaults", dependencies=[Depends(rate_limit("general"))])
def get_company_defaults(
    user: CurrentUser = Depends(get_current_user),
    settings: SettingsService = Depends(settings_service)
):
    defaults = settings.get_company_defaults(user["user_id"])
    return defaults.to_dict() if defaults else None


@router.post("/company-defaults", dependencies=[Depends(rate_limit("general"))])
def save_company_defaults(
    body: CompanyDefaultsRequest,
    user: CurrentUser = Depends(get_current_user),
    settings: SettingsService = Depends(settings_service)
):
    return settings.save_company_defaults(user["user_id"], body)


@router.delete("/company-defaults", dependencies=[Depends(rate_limit("general"))])
def delete_company_defaults(
    user: CurrentUser = Depends(get_current_user),
    settings: SettingsService = Depends(settings_service)
):
    deleted = settings.delete_company_defaults(user["user_id"])
    return {"message": "Company defaults deleted", "deleted": deleted}


@router.put("/company-defaults/default-payment-provider", dependencies=[Depends(rate_limit("general"))])
def set_default_payment_provider(
    body: DefaultProviderRequest,
    user: CurrentUser = Depends(get_current_user),
    settings: SettingsService = Depends(settings_service)
):
    return settings.set_default_payment_provider(user["user_id"], body.provider)


@router.get("/payment-credentials")
def list_credentials(
    user: CurrentUser = Depends(get_current_user),
    settings: SettingsService = Depends(settings_service)
):
    return settings.list_credentials(user["user_id"])


@router.post("/payment-credentials")
def save_credential(
    body: PaymentCredentialRequest,
    user: CurrentUser = Depends(get_current_user),
    settings: SettingsService = Depends(settings_service)
):
    return settings.save_credential(user["user_id"], body)


@router.delete("/payment-credentials")
def delete_credential(
    provider: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    settings: SettingsService = Depends(settings_service)
):
    settings.delete_credential(user["user_id"], provider)
    return {"message": "Payment credentials deleted"}


@router.get("/payment-providers/available")
def available_providers(
    user: CurrentUser = Depends(get_current_user),
    settings: SettingsService = Depends(settings_service)
):
    return settings.available_providers(user["user_id"])


@router.get("/user/public-slug")
def get_public_slug(
    user: CurrentUser = Depends(get_current_user),
    settings: SettingsService = Depends(settings_service)
):
    return settings.get_public_slug(user["user_id"])


@router.post("/user/public-slug")
def set_public_slug(
    body: PublicSlugRequest,
    user: CurrentUser = Depends(get_current_user),
    settings: SettingsService = Depends(settings_service)
):
    return settings.set_public_slug(user["user_id"], body.slug)
