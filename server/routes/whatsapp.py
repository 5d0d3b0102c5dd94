"""
Linking a user's phone number to the WhatsApp integration.
"""

from fastapi import APIRouter, Depends

from models.entities import WhatsAppConnectRequest
from server.dependencies import CurrentUser, get_current_user, service
from services.whatsapp_service import WhatsAppService

router = APIRouter(prefix="/api/whatsapp", tags=["whatsapp"])

whatsapp_service = service(WhatsAppService)


@router.get("/connect")
def get_connection(
    user: CurrentUser = Depends(get_current_user),
    whatsapp: WhatsAppService = Depends(whatsapp_service)
):
    return {"connection": whatsapp.get_connection(user["user_id"])}


@router.post("/connect")
def connect(
    body: WhatsAppConnectRequest,
    user: CurrentUser = Depends(get_current_user),
    whatsapp: WhatsAppService = Depends(whatsapp_service)
):
    connection = whatsapp.connect(user["user_id"], body.phone_number)
    return {
        "connection": connection,
        "message": "WhatsApp number connected. Send a message from it to verify the connection.",
    }


@router.delete("/connect")
def disconnect(
    user: CurrentUser = Depends(get_current_user),
    whatsapp: WhatsAppService = Depends(whatsapp_service)
):
    whatsapp.disconnect(user["user_id"])
    return {"message": "WhatsApp disconnected"}
