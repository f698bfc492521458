"""
Security guards for role-based and organization-based access control.

Provides dependencies for protecting endpoints plus the permission
predicates used by the assignment workflows.

All checks work on the token payload returned by get_current_user:
{"sub", "user_id", "role", "organization_id"}.
"""

from typing import List, Optional
from fastapi import Depends, HTTPException, status
from backend.app.models.enums import UserRole, ADMIN_ROLES
from backend.app.core.dependencies import get_current_user


def _role_of(current_user: dict) -> Optional[UserRole]:
    try:
        return UserRole(current_user.get("role"))
    except ValueError:
        return None


def is_admin(current_user: dict) -> bool:
    return _role_of(current_user) in ADMIN_ROLES


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/admin/settlements/automation")
        async def run(current_user: dict = Depends(require_role([UserRole.ADMIN]))):
            ...

    Admin roles imply each other: allowing ADMIN also allows SUPER_ADMIN.

    Args:
        allowed_roles: List of UserRole enums that are allowed to access the endpoint

    Returns:
        FastAPI dependency function that validates user role

    Raises:
        HTTPException 403 if user role is not in allowed_roles
    """
    allowed = set(allowed_roles)
    if allowed & ADMIN_ROLES:
        allowed |= ADMIN_ROLES

    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        if not current_user.get("role"):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Role information missing from token"
            )

        user_role = _role_of(current_user)
        if user_role is None:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Invalid role in token"
            )

        if user_role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )

        return current_user

    return role_checker


# Assignment permissions

def can_approve(current_user: dict, owner_org_id: Optional[int]) -> bool:
    """
    Final say over a truck: its carrier organization, or an admin.

    Dispatchers may propose matches but never approve them.
    """
    if is_admin(current_user):
        return True
    if _role_of(current_user) != UserRole.CARRIER:
        return False
    return owner_org_id is not None and current_user.get("organization_id") == owner_org_id


def can_assign(current_user: dict, shipper_org_id: Optional[int]) -> bool:
    """Direct assignment: admins, dispatchers, carriers, and the owning shipper."""
    role = _role_of(current_user)
    if role in ADMIN_ROLES or role in (UserRole.DISPATCHER, UserRole.CARRIER):
        return True
    if role == UserRole.SHIPPER:
        return shipper_org_id is not None and current_user.get("organization_id") == shipper_org_id
    return False


def can_propose(current_user: dict) -> bool:
    """Match proposals are a dispatcher tool."""
    role = _role_of(current_user)
    return role == UserRole.DISPATCHER or role in ADMIN_ROLES


def can_request_truck(current_user: dict, shipper_org_id: Optional[int]) -> bool:
    """Truck requests come from the shipper that owns the load."""
    if is_admin(current_user):
        return True
    return (
        _role_of(current_user) == UserRole.SHIPPER
        and shipper_org_id is not None
        and current_user.get("organization_id") == shipper_org_id
    )


def verify_ownership(resource_org_id: Optional[int], current_user: dict) -> bool:
    """
    Verify that the current user's organization owns the resource.

    Admins and dispatchers see every load and truck; everyone else only
    what belongs to their organization.
    """
    role = _role_of(current_user)
    if role in ADMIN_ROLES or role == UserRole.DISPATCHER:
        return True
    return resource_org_id is not None and current_user.get("organization_id") == resource_org_id


class OwnershipGuard:
    """
    Class-based ownership guard for validating multi-tenant access.

    Usage:
        ownership_guard = OwnershipGuard()

        @router.get("/loads/{load_id}")
        async def get_load(load_id: int, current_user: dict = Depends(get_current_user), ...):
            load = await fetch(load_id)
            ownership_guard.enforce(load.shipper_id, current_user, "load")
    """

    def enforce(
        self,
        resource_org_id: Optional[int],
        current_user: dict,
        resource_name: str = "resource"
    ):
        """
        Enforce ownership validation, raise 403 if access denied.

        Raises:
            HTTPException 403 if ownership check fails
        """
        if not verify_ownership(resource_org_id, current_user):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. You do not have permission to access this {resource_name}."
            )

    def filter_by_ownership(self, current_user: dict) -> Optional[int]:
        """
        Organization id to filter queries by, or None when no filtering applies.
        """
        role = _role_of(current_user)
        if role in ADMIN_ROLES or role == UserRole.DISPATCHER:
            return None
        return current_user.get("organization_id")


ownership_guard = OwnershipGuard()
