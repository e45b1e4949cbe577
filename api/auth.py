"""
Principal resolution.

Credentials are verified by the authentication proxy in front of this
service, which forwards the caller's identity in trusted headers. Nothing
here re-validates tokens; it only turns those headers into a ``Principal``
and applies tenant/role checks to video records.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from fastapi import HTTPException, Request

from api.enums import UserRole
from api.errors import AccessDeniedError
from config import AUTH_ROLE_HEADER, AUTH_TENANT_HEADER, AUTH_USER_HEADER

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    user_id: str
    tenant_id: str
    role: UserRole

    @property
    def is_viewer(self) -> bool:
        return self.role is UserRole.VIEWER


async def get_principal(request: Request) -> Principal:
    """FastAPI dependency: the authenticated caller, or 401."""
    user_id = (request.headers.get(AUTH_USER_HEADER) or "").strip()
    tenant_id = (request.headers.get(AUTH_TENANT_HEADER) or "").strip()
    role_value = (request.headers.get(AUTH_ROLE_HEADER) or "").strip().lower()

    if not user_id or not tenant_id or not role_value:
        raise HTTPException(status_code=401, detail="Authentication required")

    try:
        role = UserRole(role_value)
    except ValueError:
        logger.warning(f"Rejected unknown role '{role_value}' for user {user_id}")
        raise HTTPException(status_code=401, detail="Invalid role")

    return Principal(user_id=user_id, tenant_id=tenant_id, role=role)


def require_roles(*allowed: UserRole) -> Callable:
    """Build a dependency that admits only principals with one of ``allowed`` roles."""

    async def dependency(request: Request) -> Principal:
        principal = await get_principal(request)
        if principal.role not in allowed:
            raise AccessDeniedError("Forbidden: insufficient role")
        return principal

    return dependency


def ensure_can_view(video: Mapping[str, Any], principal: Principal) -> None:
    """Tenant isolation; viewers may only see their own videos."""
    if video["tenant_id"] != principal.tenant_id:
        raise AccessDeniedError()
    if principal.is_viewer and video["owner_id"] != principal.user_id:
        raise AccessDeniedError()


def ensure_can_manage(video: Mapping[str, Any], principal: Principal, action: str) -> None:
    """Tenant isolation; editors may only manage their own videos, admins any."""
    if video["tenant_id"] != principal.tenant_id:
        raise AccessDeniedError()
    if principal.role is UserRole.ADMIN:
        return
    if principal.role is UserRole.EDITOR and video["owner_id"] == principal.user_id:
        return
    raise AccessDeniedError(f"Access denied. You can only {action} your own videos.")
