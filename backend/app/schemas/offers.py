"""
Offer schemas shared by load requests, truck requests and match proposals.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from backend.app.models.offer_enums import RequestStatus, ResponseAction
from backend.app.schemas.load import AssignmentResponse


class OfferCreate(BaseModel):
    """Schema for creating an offer."""
    load_id: int = Field(..., gt=0)
    truck_id: int = Field(..., gt=0)
    notes: Optional[str] = Field(None, max_length=500)
    proposed_rate: Optional[Decimal] = Field(None, gt=0)
    expires_in_hours: int = Field(24, ge=1, le=72)


class OfferRespond(BaseModel):
    """
    Schema for answering an offer.

    Requests take APPROVE or REJECT, match proposals ACCEPT or REJECT.
    """
    action: ResponseAction
    response_notes: Optional[str] = Field(None, max_length=500)


class OfferResponse(BaseModel):
    id: int
    load_id: int
    truck_id: int
    requested_by_id: int
    responded_by_id: Optional[int]
    status: RequestStatus
    notes: Optional[str]
    proposed_rate: Optional[Decimal]
    expires_at: datetime
    responded_at: Optional[datetime]
    response_notes: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class OfferDecisionResponse(BaseModel):
    """Outcome of an approve/accept/reject."""
    offer_id: int
    status: RequestStatus
    message: str
    idempotent: bool = False
    assignment: Optional[AssignmentResponse] = None
    notifications_sent: bool = True
