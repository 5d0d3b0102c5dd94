"""
Credit note endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from models.documents import ApplyCreditNoteRequest, CreditNoteCreate, CreditNoteUpdate
from server.dependencies import CurrentUser, get_current_user, service
from services.credit_note_service import CreditNoteService

router = APIRouter(prefix="/api/credit-notes", tags=["credit-notes"])

credit_note_service = service(CreditNoteService)


@router.get("")
def list_credit_notes(
    invoice_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    notes: CreditNoteService = Depends(credit_note_service)
):
    return notes.list_credit_notes(user["user_id"], invoice_id=invoice_id, status=status)


@router.post("", status_code=201)
def create_credit_note(
    body: CreditNoteCreate,
    user: CurrentUser = Depends(get_current_user),
    notes: CreditNoteService = Depends(credit_note_service)
):
    return notes.create_credit_note(user["user_id"], body)


@router.get("/{note_id}")
def get_credit_note(
    note_id: str,
    user: CurrentUser = Depends(get_current_user),
    notes: CreditNoteService = Depends(credit_note_service)
):
    return notes.get_credit_note(note_id, user["user_id"])


@router.put("/{note_id}")
def update_credit_note(
    note_id: str,
    body: CreditNoteUpdate,
    user: CurrentUser = Depends(get_current_user),
    notes: CreditNoteService = Depends(credit_note_service)
):
    return notes.update_credit_note(note_id, user["user_id"], body)


@router.delete("/{note_id}")
def delete_credit_note(
    note_id: str,
    user: CurrentUser = Depends(get_current_user),
    notes: CreditNoteService = Depends(credit_note_service)
):
    notes.delete_credit_note(note_id, user["user_id"])
    return {"message": "Credit note deleted"}


@router.post("/{note_id}/apply")
def apply_credit_note(
    note_id: str,
    body: ApplyCreditNoteRequest,
    user: CurrentUser = Depends(get_current_user),
    notes: CreditNoteService = Depends(credit_note_service)
):
    return notes.apply_credit_note(note_id, user["user_id"], body.invoice_id)
