"""
Client address book.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_, select

from models.entities import ClientCreate, ClientUpdate
from services.base_service import BaseService
from storage.tables import Client, Invoice
from utils.error_handling import NotFoundError, ValidationError

OPTIONAL_FIELDS = ("email", "phone", "address", "city", "state", "zip", "country", "tax_id", "notes")


class ClientService(BaseService):
    name = "clients"

    def _invoice_counts(self, client_ids: List[str]) -> Dict[str, int]:
        if not client_ids:
            return {}
        rows = self.session.execute(
            select(Invoice.client_id, func.count(Invoice.id))
            .where(Invoice.client_id.in_(client_ids))
            .group_by(Invoice.client_id)
        )
        return {client_id: count for client_id, count in rows}

    def _serialize(self, client: Client, count: int) -> Dict[str, Any]:
        data = client.to_dict()
        data["invoice_count"] = count
        return data

    def list_clients(self, user_id: str, search: Optional[str] = None) -> List[Dict[str, Any]]:
        """Clients sorted by name, optionally filtered by a case-insensitive search."""
        query = select(Client).where(Client.user_id == user_id)
        if search:
            term = f"%{search.lower()}%"
            query = query.where(or_(
                func.lower(Client.name).like(term),
                func.lower(Client.email).like(term),
                func.lower(Client.phone).like(term),
            ))
        clients = list(self.session.scalars(query.order_by(Client.name)))
        counts = self._invoice_counts([client.id for client in clients])
        return [self._serialize(client, counts.get(client.id, 0)) for client in clients]

    def _owned(self, client_id: str, user_id: str) -> Client:
        client = self.session.get(Client, client_id) if client_id else None
        if client is None or client.user_id != user_id:
            raise NotFoundError("Client not found", resource="client")
        return client

    def get_client(self, client_id: str, user_id: str) -> Dict[str, Any]:
        client = self._owned(client_id, user_id)
        return self._serialize(client, self._invoice_counts([client.id]).get(client.id, 0))

    def create_client(self, user_id: str, request: ClientCreate) -> Dict[str, Any]:
        if not request.name or not request.name.strip():
            raise ValidationError("Client name is required")

        client = Client(
            user_id=user_id,
            name=request.name.strip(),
            tags=list(request.tags),
            **{field: getattr(request, field) or None for field in OPTIONAL_FIELDS},
        )
        self.session.add(client)
        self.session.flush()
        self.logger.info(f"Created client {client.id} for user {user_id}")
        return self._serialize(client, 0)

    def update_client(self, client_id: str, user_id: str, changes: ClientUpdate) -> Dict[str, Any]:
        """Apply only the fields present in the request; empty strings clear a field."""
        client = self._owned(client_id, user_id)
        supplied = changes.model_fields_set

        if changes.name:
            client.name = changes.name.strip()
        for field in OPTIONAL_FIELDS:
            if field in supplied:
                setattr(client, field, getattr(changes, field) or None)
        if "tags" in supplied:
            client.tags = list(changes.tags or [])

        self.session.flush()
        return self.get_client(client.id, user_id)

    def delete_client(self, client_id: str, user_id: str) -> None:
        client = self._owned(client_id, user_id)
        self.session.delete(client)
        self.session.flush()
