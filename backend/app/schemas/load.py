"""
Load schemas: detail, status changes, assignment and proof of delivery.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any

from backend.app.models.load_enums import LoadStatus, TruckType
from backend.app.models.billing_enums import SettlementStatus, ServiceFeeStatus


class LoadResponse(BaseModel):
    """Load detail."""
    id: int
    shipper_id: int
    status: LoadStatus
    assigned_truck_id: Optional[int]
    assigned_at: Optional[datetime]

    pickup_city: str
    pickup_address: Optional[str]
    pickup_date: Optional[datetime]
    delivery_city: str
    delivery_address: Optional[str]
    delivery_date: Optional[datetime]

    truck_type: TruckType
    weight_kg: Optional[float]
    cargo_description: Optional[str]
    estimated_trip_km: Optional[float]

    rate: Optional[Decimal]
    total_fare: Optional[Decimal]

    tracking_enabled: bool
    tracking_url: Optional[str]

    pod_submitted: bool
    pod_verified: bool
    pod_url: Optional[str]

    escrow_funded: bool
    escrow_amount: Optional[Decimal]
    service_fee_amount: Optional[Decimal]
    service_fee_status: ServiceFeeStatus
    settlement_status: SettlementStatus
    settled_at: Optional[datetime]

    created_at: datetime

    class Config:
        from_attributes = True


class LoadStatusUpdate(BaseModel):
    """Schema for changing a load's status."""
    status: LoadStatus
    reason: Optional[str] = Field(None, max_length=500)


class StatusChangeResponse(BaseModel):
    """Response after a status change."""
    load_id: int
    previous_status: LoadStatus
    status: LoadStatus
    trip_status: Optional[str] = None
    truck_released: bool = False
    side_effects: Dict[str, Dict[str, Any]] = {}


class ValidNextStatesResponse(BaseModel):
    load_id: int
    status: LoadStatus
    description: str
    valid_next_states: List[LoadStatus]
    # Subset the current user's role may set
    allowed_for_role: List[LoadStatus]


class AssignRequest(BaseModel):
    """Schema for direct assignment."""
    truck_id: int = Field(..., gt=0)


class AssignmentResponse(BaseModel):
    """Response after an assignment, with each side-effect outcome."""
    load_id: int
    truck_id: int
    trip_id: int
    status: LoadStatus = LoadStatus.ASSIGNED
    tracking_slug: str
    cancelled_offers: int
    side_effects: Dict[str, Dict[str, Any]]
    notifications_sent: bool


class UnassignResponse(BaseModel):
    load_id: int
    previous_truck_id: int
    status: LoadStatus
    cancelled_trip_id: Optional[int]
    side_effects: Dict[str, Dict[str, Any]]


class PodSubmit(BaseModel):
    """Schema for submitting proof of delivery."""
    pod_url: str = Field(..., min_length=1, max_length=500)


class PodResponse(BaseModel):
    load_id: int
    pod_url: Optional[str]
    pod_submitted: bool
    pod_submitted_at: Optional[datetime]
    pod_verified: bool
    pod_verified_at: Optional[datetime]
    idempotent: bool = False


class LoadEventResponse(BaseModel):
    """Entry in a load's history."""
    id: int
    load_id: int
    event_type: str
    description: Optional[str]
    user_id: Optional[int]
    meta_data: Optional[Dict[str, Any]] = None
    created_at: datetime

    class Config:
        from_attributes = True
