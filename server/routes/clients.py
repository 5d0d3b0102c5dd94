"""
Client address book endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from models.entities import ClientCreate, ClientUpdate
from server.dependencies import CurrentUser, get_current_user, rate_limit, service
from services.client_service import ClientService

router = APIRouter(
    prefix="/api/clients", tags=["clients"], dependencies=[Depends(rate_limit("general"))]
)

client_service = service(ClientService)


@router.get("")
def list_clients(
    search: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    clients: ClientService = Depends(client_service)
):
    return clients.list_clients(user["user_id"], search=search)


@router.post("", status_code=201)
def create_client(
    body: ClientCreate,
    user: CurrentUser = Depends(get_current_user),
    clients: ClientService = Depends(client_service)
):
    return clients.create_client(user["user_id"], body)


@router.get("/{client_id}")
def get_client(
    client_id: str,
    user: CurrentUser = Depends(get_current_user),
    clients: ClientService = Depends(client_service)
):
    return clients.get_client(client_id, user["user_id"])


@router.patch("/{client_id}")
def update_client(
    client_id: str,
    body: ClientUpdate,
    user: CurrentUser = Depends(get_current_user),
    clients: ClientService = Depends(client_service)
):
    return clients.update_client(client_id, user["user_id"], body)


@router.delete("/{client_id}")
def delete_client(
    client_id: str,
    user: CurrentUser = Depends(get_current_user),
    clients: ClientService = Depends(client_service)
):
    clients.delete_client(client_id, user["user_id"])
    return {"message": "Client deleted"}
