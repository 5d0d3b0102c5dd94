"""
Shared plumbing for the domain services.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Type, TypeVar

from sqlalchemy.orm import Session

from tools.email_sender import EmailSender
from tools.payment_gateways import PaymentGatewayClient
from tools.whatsapp_sender import WhatsAppSender
from utils.error_handling import AuthorizationError, ErrorManager, NotFoundError
from utils.metrics import AppMetricsCollector
from utils.security import CredentialCipher, TokenManager

T = TypeVar("T")


@dataclass
class ServiceContext:
    """Long-lived collaborators shared by every request."""
    config: Dict[str, Any]
    cipher: CredentialCipher
    tokens: TokenManager
    gateways: PaymentGatewayClient
    email: EmailSender
    whatsapp: WhatsAppSender

    @property
    def app_url(self) -> str:
        return self.config.get("app", {}).get("url", "http://localhost:3000").rstrip("/")

    @property
    def security(self) -> Dict[str, Any]:
        return self.config.get("security", {})

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'ServiceContext':
        security = config.get("security", {})
        app_url = config.get("app", {}).get("url", "http://localhost:3000")
        cipher = CredentialCipher(security.get("encryption_key") or security.get("jwt_secret"))
        return cls(
            config=config,
            cipher=cipher,
            tokens=TokenManager(
                security.get("jwt_secret"),
                access_minutes=security.get("access_token_minutes", 15),
                refresh_days=security.get("refresh_token_days", 7),
            ),
            gateways=PaymentGatewayClient(app_url, config.get("payments")),
            email=EmailSender.from_config(config),
            whatsapp=WhatsAppSender(cipher, config.get("whatsapp")),
        )


class BaseService:
    """
    Base class for services working inside one database session.

    Args:
        session: Open SQLAlchemy session; the caller commits
        context: Shared collaborators
    """

    name = "base"

    def __init__(self, session: Session, context: ServiceContext):
        self.session = session
        self.context = context
        self.config = context.config
        self.logger = logging.getLogger(f"invoicegen.services.{self.name}")
        self.metrics = AppMetricsCollector.get_instance()
        self.error_manager = ErrorManager.get_instance()

    def _get(self, model: Type[T], record_id: Optional[str], resource: str) -> T:
        """Load a record by id or raise NotFoundError."""
        record = self.session.get(model, record_id) if record_id else None
        if record is None:
            raise NotFoundError(f"{resource} not found", resource=resource)
        return record

    def _get_owned(self, model: Type[T], record_id: Optional[str], user_id: str, resource: str) -> T:
        """Load a record that must belong to ``user_id`` (403 otherwise)."""
        record = self._get(model, record_id, resource)
        if getattr(record, "user_id") != user_id:
            raise AuthorizationError()
        return record
