"""
Unauthenticated endpoints behind a user's public invoice link.
"""

from fastapi import APIRouter, Depends

from models.documents import PublicInvoiceCreate, PublicInvoiceUpdate
from server.dependencies import service
from services.public_invoice_service import PublicInvoiceService

router = APIRouter(prefix="/api/public", tags=["public"])

public_service = service(PublicInvoiceService)


@router.get("/invoice/{slug}")
def get_link_info(slug: str, public: PublicInvoiceService = Depends(public_service)):
    return public.get_link_info(slug)


@router.post("/invoice/{slug}", status_code=201)
def create_invoice(slug: str, body: PublicInvoiceCreate, public: PublicInvoiceService = Depends(public_service)):
    return public.create_invoice(slug, body)


@router.patch("/invoice/{slug}")
def update_invoice(slug: str, body: PublicInvoiceUpdate, public: PublicInvoiceService = Depends(public_service)):
    return public.update_invoice(slug, body)
