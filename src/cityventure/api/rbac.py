"""RBAC (Role-Based Access Control) by business.

Provides:
- Role hierarchy: viewer < staff < manager < owner
- require_business_role(): FastAPI dependency for business-scoped routes
- has_business_role(): check for routes where the business comes from a
  loaded row (e.g. a refund's order) rather than the query string
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from fastapi import Depends, HTTPException, Query

from cityventure.api.auth import CurrentUser, get_current_user
from cityventure.infra.db import txn

# Lower index = less privilege
ROLE_HIERARCHY = ["viewer", "staff", "manager", "owner"]


@dataclass
class BusinessRoleContext:
    """Context returned by require_business_role."""

    user: CurrentUser
    business_id: str
    role: str


def _role_level(role: str | None) -> int:
    try:
        return ROLE_HIERARCHY.index(role)
    except ValueError:
        return -1


def _get_user_role_for_business(user_id: str, business_id: str) -> str | None:
    with txn() as cur:
        cur.execute(
            "SELECT role FROM user_business_roles WHERE user_id = %s AND business_id = %s",
            (user_id, business_id),
        )
        row = cur.fetchone()
    return row[0] if row else None


def has_business_role(user_id: str, business_id: str | None, min_role: str) -> bool:
    if not business_id:
        return False
    role = _get_user_role_for_business(user_id, business_id)
    return role is not None and _role_level(role) >= _role_level(min_role)


def require_business_role(min_role: str) -> Callable[..., BusinessRoleContext]:
    """Create a dependency that requires a minimum role on ?business_id=.

    Usage:
        @router.get("/something")
        def endpoint(ctx: BusinessRoleContext = Depends(require_business_role("staff"))):
            ...
    """
    min_level = _role_level(min_role)
    if min_level < 0:
        raise ValueError(f"Invalid role: {min_role}")

    def dependency(
        business_id: str = Query(..., description="Business ID"),
        user: CurrentUser = Depends(get_current_user),
    ) -> BusinessRoleContext:
        role = _get_user_role_for_business(user.id, business_id)

        if role is None:
            raise HTTPException(status_code=403, detail="No access to business")
        if _role_level(role) < min_level:
            raise HTTPException(status_code=403, detail="Insufficient role")

        return BusinessRoleContext(user=user, business_id=business_id, role=role)

    return dependency
