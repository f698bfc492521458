"""
User roles and organization types.

Defines the actor vocabulary for the freight marketplace.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        SHIPPER: Posts loads on behalf of a shipper organization
        CARRIER: Operates trucks on behalf of a carrier organization
        DISPATCHER: Coordinates matches, may propose but never approve
        ADMIN: Platform operator with override authority
        SUPER_ADMIN: Platform owner, same authority as ADMIN
    """
    SHIPPER = "SHIPPER"
    CARRIER = "CARRIER"
    DISPATCHER = "DISPATCHER"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


ADMIN_ROLES = frozenset({UserRole.ADMIN, UserRole.SUPER_ADMIN})


class OrganizationType(str, enum.Enum):
    """Organization type enumeration."""
    SHIPPER = "SHIPPER"
    CARRIER = "CARRIER"
    PLATFORM = "PLATFORM"
