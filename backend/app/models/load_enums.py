"""
Load and truck enumerations.
"""

import enum


class LoadStatus(str, enum.Enum):
    """Load lifecycle status enumeration."""
    DRAFT = "DRAFT"  # Created, not visible on the marketplace
    POSTED = "POSTED"  # Visible to carriers
    SEARCHING = "SEARCHING"  # Dispatcher actively looking for a truck
    OFFERED = "OFFERED"  # Offer sent, awaiting a response
    ASSIGNED = "ASSIGNED"  # Truck bound, trip created
    PICKUP_PENDING = "PICKUP_PENDING"  # Truck en route to pickup
    IN_TRANSIT = "IN_TRANSIT"  # Cargo picked up
    DELIVERED = "DELIVERED"  # Cargo delivered, awaiting POD
    COMPLETED = "COMPLETED"  # POD verified, closed
    EXCEPTION = "EXCEPTION"  # Problem raised, needs resolution
    CANCELLED = "CANCELLED"  # Terminal
    EXPIRED = "EXPIRED"  # Posting window passed
    UNPOSTED = "UNPOSTED"  # Withdrawn by the shipper


class TruckType(str, enum.Enum):
    """Truck body type enumeration."""
    DRY_VAN = "DRY_VAN"
    FLATBED = "FLATBED"
    CONTAINER = "CONTAINER"
    VAN = "VAN"
    REFRIGERATED = "REFRIGERATED"
    REEFER = "REEFER"
    TANKER = "TANKER"


class PostingStatus(str, enum.Enum):
    """Truck posting status enumeration."""
    ACTIVE = "ACTIVE"
    MATCHED = "MATCHED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
