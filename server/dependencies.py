"""
FastAPI dependencies shared by the API routers.
"""

import logging
from typing import Any, Callable, Dict, Iterator, Optional, Type

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from services.base_service import BaseService, ServiceContext
from storage.tables import User
from utils.error_handling import AuthenticationError, AuthorizationError
from utils.rate_limit import RateLimiter, client_identifier
from utils.security import extract_bearer_token

logger = logging.getLogger("invoicegen.server.dependencies")

CurrentUser = Dict[str, Any]


def get_session(request: Request) -> Iterator[Session]:
    """One transaction per request; committed when the handler returns."""
    with request.app.state.database.session_scope() as session:
        yield session


def get_context(request: Request) -> ServiceContext:
    return request.app.state.context


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def service(service_cls: Type[BaseService]) -> Callable[..., BaseService]:
    """Dependency building ``service_cls`` on the request's session."""

    def dependency(
        session: Session = Depends(get_session),
        context: ServiceContext = Depends(get_context)
    ) -> BaseService:
        return service_cls(session, context)

    dependency.__name__ = f"get_{service_cls.name}_service"
    return dependency


def _request_token(authorization: Optional[str], x_auth_token: Optional[str]) -> Optional[str]:
    return extract_bearer_token(authorization, x_auth_token)


def get_current_user_optional(
    authorization: Optional[str] = Header(None),
    x_auth_token: Optional[str] = Header(None),
    context: ServiceContext = Depends(get_context)
) -> Optional[CurrentUser]:
    """The signed-in user, or None for anonymous callers and unusable tokens."""
    token = _request_token(authorization, x_auth_token)
    if not token:
        return None
    try:
        return context.tokens.decode(token)
    except AuthenticationError:
        return None


def get_current_user(
    authorization: Optional[str] = Header(None),
    x_auth_token: Optional[str] = Header(None),
    context: ServiceContext = Depends(get_context)
) -> CurrentUser:
    """
    Decode the access token from ``Authorization: Bearer`` or ``x-auth-token``.

    Raises:
        AuthenticationError: If the token is missing or invalid
    """
    token = _request_token(authorization, x_auth_token)
    if not token:
        raise AuthenticationError("No token, authorization denied")
    return context.tokens.decode(token)


def require_admin(
    user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session)
) -> CurrentUser:
    """Signed-in user whose account is currently flagged as admin."""
    account = session.get(User, user["user_id"])
    if account is None or not account.is_admin:
        raise AuthorizationError("Admin access required")
    return user


def rate_limit(limit_name: str) -> Callable[..., None]:
    """Dependency enforcing the named rate limit for the caller."""

    def dependency(
        request: Request,
        limiter: RateLimiter = Depends(get_rate_limiter),
        user: Optional[CurrentUser] = Depends(get_current_user_optional)
    ) -> None:
        identifier = client_identifier(
            user["user_id"] if user else None,
            forwarded_for=request.headers.get("x-forwarded-for"),
            real_ip=request.headers.get("x-real-ip"),
            client_host=request.client.host if request.client else None,
        )
        limiter.enforce(limit_name, identifier)

    dependency.__name__ = f"rate_limit_{limit_name}"
    return dependency
