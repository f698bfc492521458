"""
Trip-related enumerations.
"""

import enum


class TripStatus(str, enum.Enum):
    """Trip status enumeration."""
    ASSIGNED = "ASSIGNED"  # Created atomically with the load assignment
    PICKUP_PENDING = "PICKUP_PENDING"  # Truck heading to pickup
    IN_TRANSIT = "IN_TRANSIT"  # Cargo on board
    DELIVERED = "DELIVERED"  # Cargo dropped off
    COMPLETED = "COMPLETED"  # Closed
    CANCELLED = "CANCELLED"  # Unassigned or load cancelled
