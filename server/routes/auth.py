"""
Account endpoints: registration, sign-in, tokens and email verification.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse

from models.entities import (
    LoginRequest, RefreshRequest, RegisterRequest, ResendVerificationRequest, VerifyEmailRequest
)
from server.dependencies import CurrentUser, get_current_user, rate_limit, service
from services.auth_service import AuthService
from utils.error_handling import ValidationError

logger = logging.getLogger("invoicegen.server.auth")

router = APIRouter(prefix="/api/auth", tags=["auth"])

auth_service = service(AuthService)


@router.post("/register", status_code=201, dependencies=[Depends(rate_limit("auth"))])
def register(body: RegisterRequest, auth: AuthService = Depends(auth_service)):
    return auth.register(body.email, body.password, body.name)


@router.post("/login")
def login(body: LoginRequest, auth: AuthService = Depends(auth_service)):
    return auth.login(body.email, body.password)


@router.post("/refresh")
def refresh(body: RefreshRequest, auth: AuthService = Depends(auth_service)):
    return auth.refresh(body.refresh_token)


@router.post("/logout")
def logout(user: CurrentUser = Depends(get_current_user), auth: AuthService = Depends(auth_service)):
    auth.logout(user["user_id"])
    return {"message": "Logged out successfully"}


@router.get("/me")
def me(user: CurrentUser = Depends(get_current_user), auth: AuthService = Depends(auth_service)):
    return auth.me(user["user_id"])


@router.post("/verify-email")
def verify_email(body: VerifyEmailRequest, auth: AuthService = Depends(auth_service)):
    return auth.verify_email(body.token)


@router.get("/verify-email")
def verify_email_link(token: Optional[str] = Query(None), auth: AuthService = Depends(auth_service)):
    """Target of the emailed link: verify, then send the browser back to the app."""
    target = f"{auth.context.app_url}/verify-email"
    try:
        auth.verify_email(token)
    except ValidationError as e:
        reason = "expired_token" if e.error_code == "ERR_EXPIRED_TOKEN" else "invalid_token"
        logger.info(f"Email verification link rejected: {reason}")
        return RedirectResponse(f"{target}?error={reason}", status_code=302)
    return RedirectResponse(f"{target}?verified=true", status_code=302)


@router.post("/resend-verification", dependencies=[Depends(rate_limit("auth"))])
def resend_verification(body: ResendVerificationRequest, auth: AuthService = Depends(auth_service)):
    return {"message": auth.resend_verification(body.email)}
