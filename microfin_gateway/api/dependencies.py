"""Dependency injection for FastAPI endpoints"""

import uuid
from typing import Callable, Optional

from fastapi import Depends, Header, HTTPException, Request

from microfin_gateway.domain.exceptions import (
    ConcurrencyConflictError,
    DomainException,
    EditWindowExpiredError,
    InvalidAmountError,
    InvalidLoanStateError,
    LoanNotFoundError,
    PermissionDeniedError,
    RepaymentNotFoundError,
)
from microfin_gateway.domain.models import MANAGER_ROLES, STAFF_ROLES, Actor, Role
from microfin_gateway.infrastructure.clients.audit import AuditClient


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_audit_client() -> AuditClient:
    """Provide audit webhook client instance"""
    return AuditClient()


def get_current_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
    x_branch_id: Optional[str] = Header(None),
) -> Actor:
    """Caller identity as forwarded by the authenticating gateway"""
    if not x_user_id or not x_user_role:
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        role = Role(x_user_role.upper())
    except ValueError:
        raise HTTPException(status_code=403, detail="Forbidden: Insufficient permissions")
    return Actor(user_id=x_user_id, role=role, branch_id=x_branch_id or None)


def require_roles(*roles: Role) -> Callable[..., Actor]:
    """Route guard: only the listed roles may call the endpoint"""

    def _guard(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in roles:
            raise HTTPException(status_code=403, detail="Forbidden: Insufficient permissions")
        return actor

    return _guard


require_staff = require_roles(*STAFF_ROLES)
require_manager = require_roles(*MANAGER_ROLES)


def parse_id(value: str, what: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {what} ID format")


_STATUS_BY_ERROR = {
    LoanNotFoundError: 404,
    RepaymentNotFoundError: 404,
    InvalidLoanStateError: 409,
    InvalidAmountError: 422,
    PermissionDeniedError: 403,
    EditWindowExpiredError: 403,
    ConcurrencyConflictError: 503,
}


def domain_http_error(exc: DomainException) -> HTTPException:
    """Translate a domain failure into the HTTP error the caller sees"""
    status_code = _STATUS_BY_ERROR.get(type(exc), 400)
    headers = {"Retry-After": "1"} if isinstance(exc, ConcurrencyConflictError) else None
    return HTTPException(status_code=status_code, detail=str(exc), headers=headers)
