"""
Inbound webhooks from the payment gateways and the WhatsApp providers.

Gateway payloads are verified against their signatures before anything is
read from them.
"""

import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from server.dependencies import get_context, service
from services.base_service import ServiceContext
from services.payment_service import PaymentService
from services.whatsapp_service import WhatsAppService
from utils.error_handling import AuthenticationError, AuthorizationError, ValidationError
from utils.security import construct_stripe_event, verify_paystack_signature

logger = logging.getLogger("invoicegen.server.webhooks")

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

payment_service = service(PaymentService)
whatsapp_service = service(WhatsAppService)


async def raw_body(request: Request) -> bytes:
    return await request.body()


async def form_or_json(request: Request) -> Dict[str, Any]:
    """Twilio posts form fields, Meta posts JSON."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/x-www-form-urlencoded") or content_type.startswith("multipart/"):
        form = await request.form()
        return {key: value for key, value in form.items()}
    return _parse_json(await request.body())


def _parse_json(body: bytes) -> Dict[str, Any]:
    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        raise ValidationError("Invalid JSON payload")
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def _webhook_secret(context: ServiceContext, name: str) -> Optional[str]:
    return (context.config.get("webhooks") or {}).get(name)


@router.post("/stripe")
def stripe_webhook(
    body: bytes = Depends(raw_body),
    stripe_signature: Optional[str] = Header(None),
    context: ServiceContext = Depends(get_context),
    payments: PaymentService = Depends(payment_service)
):
    event = construct_stripe_event(body, stripe_signature, _webhook_secret(context, "stripe_secret"))
    logger.info(f"Stripe webhook received: {event.get('type')}")
    payments.handle_stripe_event(event)
    return {"received": True}


@router.post("/paystack")
def paystack_webhook(
    body: bytes = Depends(raw_body),
    x_paystack_signature: Optional[str] = Header(None),
    context: ServiceContext = Depends(get_context),
    payments: PaymentService = Depends(payment_service)
):
    secret = _webhook_secret(context, "paystack_secret")
    if secret:
        if not verify_paystack_signature(body, x_paystack_signature, secret):
            raise AuthenticationError("Invalid signature")
    else:
        logger.warning("Paystack webhook accepted without signature check: no secret configured")

    event = _parse_json(body)
    logger.info(f"Paystack webhook received: {event.get('event')}")
    payments.handle_paystack_event(event)
    return {"received": True}


@router.post("/paypal")
def paypal_webhook(
    body: bytes = Depends(raw_body),
    payments: PaymentService = Depends(payment_service)
):
    event = _parse_json(body)
    logger.info(f"PayPal webhook received: {event.get('event_type')}")
    payments.handle_paypal_event(event)
    return {"received": True}


@router.get("/whatsapp")
def whatsapp_verify(
    mode: Optional[str] = Query(None, alias="hub.mode"),
    token: Optional[str] = Query(None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(None, alias="hub.challenge"),
    whatsapp: WhatsAppService = Depends(whatsapp_service)
):
    """Meta subscription handshake."""
    accepted = whatsapp.verify_webhook(mode, token, challenge)
    if accepted is None:
        raise AuthorizationError("Forbidden")
    return PlainTextResponse(str(accepted))


@router.post("/whatsapp")
def whatsapp_webhook(
    payload: Dict[str, Any] = Depends(form_or_json),
    whatsapp: WhatsAppService = Depends(whatsapp_service)
):
    status_code, content = whatsapp.handle_webhook(payload)
    return JSONResponse(status_code=status_code, content=content)
