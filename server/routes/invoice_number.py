"""
Invoice number sequences.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from models.documents import SequenceConfigRequest
from server.dependencies import CurrentUser, get_current_user, rate_limit, service
from services.numbering_service import DEFAULT_FORMAT, DEFAULT_PREFIX, NumberingService

router = APIRouter(
    prefix="/api/invoice-number", tags=["invoice-number"], dependencies=[Depends(rate_limit("general"))]
)

numbering_service = service(NumberingService)


@router.get("/next")
def next_invoice_number(
    prefix: Optional[str] = Query(None),
    format: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    numbering: NumberingService = Depends(numbering_service)
):
    """Reserve the next number of the caller's sequence."""
    return numbering.next_invoice_number(user["user_id"], prefix or DEFAULT_PREFIX, format or DEFAULT_FORMAT)


@router.post("/next")
def configure_sequence(
    body: SequenceConfigRequest,
    user: CurrentUser = Depends(get_current_user),
    numbering: NumberingService = Depends(numbering_service)
):
    sequence = numbering.configure_sequence(user["user_id"], body.prefix, body.format, body.reset_period)
    return {"sequence": sequence.to_dict(), "message": "Invoice number sequence updated"}
