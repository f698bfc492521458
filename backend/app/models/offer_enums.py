"""
Offer enumerations shared by load requests, truck requests and match proposals.
"""

import enum


class RequestStatus(str, enum.Enum):
    """Offer status enumeration."""
    PENDING = "PENDING"  # Awaiting a response from the owning party
    APPROVED = "APPROVED"  # Accepted, load assigned
    REJECTED = "REJECTED"  # Declined by the owning party
    CANCELLED = "CANCELLED"  # Superseded by another assignment or withdrawn
    EXPIRED = "EXPIRED"  # expires_at passed before a response


class ResponseAction(str, enum.Enum):
    """Response actions. Match proposals use ACCEPT, requests use APPROVE."""
    APPROVE = "APPROVE"
    ACCEPT = "ACCEPT"
    REJECT = "REJECT"

    @property
    def is_approval(self) -> bool:
        return self in (ResponseAction.APPROVE, ResponseAction.ACCEPT)
