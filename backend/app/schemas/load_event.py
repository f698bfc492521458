"""
Typed metadata for load events.

Each known event kind has its own model; record_load_event() validates the
metadata against it before storing. Unknown kinds keep a free-form mapping.
"""

from typing import Dict, Optional, Type

from pydantic import BaseModel, ConfigDict


class EventMetadata(BaseModel):
    model_config = ConfigDict(extra="forbid")


class AssignedMetadata(EventMetadata):
    truck_id: int
    trip_id: int
    source: str  # DIRECT, LOAD_REQUEST, TRUCK_REQUEST, MATCH_PROPOSAL
    offer_id: Optional[int] = None
    cancelled_offers: int = 0
    cleared_stale_load_ids: list[int] = []


class UnassignedMetadata(EventMetadata):
    previous_truck_id: int
    new_status: str
    trip_id: Optional[int] = None


class StatusChangedMetadata(EventMetadata):
    previous_status: str
    new_status: str
    trip_status: Optional[str] = None
    reason: Optional[str] = None


class OfferResolvedMetadata(EventMetadata):
    offer_id: int
    truck_id: int
    response_notes: Optional[str] = None


class MoneyMovementMetadata(EventMetadata):
    amount: str
    transaction_id: Optional[int] = None
    shipper_commission: Optional[str] = None
    carrier_commission: Optional[str] = None
    carrier_payout: Optional[str] = None
    platform_revenue: Optional[str] = None
    corridor_id: Optional[int] = None


class TrackingMetadata(EventMetadata):
    truck_id: int
    tracking_url: str


class SideEffectFailedMetadata(EventMetadata):
    side_effect: str
    error: str
    dlq_id: Optional[int] = None


class PodMetadata(EventMetadata):
    pod_url: Optional[str] = None
    auto_verified: bool = False


class SettlementMetadata(EventMetadata):
    carrier_payout: Optional[str] = None
    platform_revenue: Optional[str] = None
    service_fee: Optional[str] = None
    manual: bool = False


EVENT_METADATA_MODELS: Dict[str, Type[EventMetadata]] = {
    "ASSIGNED": AssignedMetadata,
    "UNASSIGNED": UnassignedMetadata,
    "STATUS_CHANGED": StatusChangedMetadata,
    "LOAD_REQUEST_APPROVED": OfferResolvedMetadata,
    "LOAD_REQUEST_REJECTED": OfferResolvedMetadata,
    "TRUCK_REQUEST_APPROVED": OfferResolvedMetadata,
    "TRUCK_REQUEST_REJECTED": OfferResolvedMetadata,
    "MATCH_PROPOSAL_ACCEPTED": OfferResolvedMetadata,
    "MATCH_PROPOSAL_REJECTED": OfferResolvedMetadata,
    "ESCROW_FUNDED": MoneyMovementMetadata,
    "ESCROW_REFUNDED": MoneyMovementMetadata,
    "ESCROW_RELEASED": MoneyMovementMetadata,
    "SERVICE_FEE_RESERVED": MoneyMovementMetadata,
    "SERVICE_FEE_REFUNDED": MoneyMovementMetadata,
    "SERVICE_FEE_DEDUCTED": MoneyMovementMetadata,
    "TRACKING_ENABLED": TrackingMetadata,
    "ESCROW_HOLD_FAILED": SideEffectFailedMetadata,
    "ESCROW_REFUND_FAILED": SideEffectFailedMetadata,
    "SERVICE_FEE_FAILED": SideEffectFailedMetadata,
    "SERVICE_FEE_REFUND_FAILED": SideEffectFailedMetadata,
    "TRACKING_FAILED": SideEffectFailedMetadata,
    "POD_SUBMITTED": PodMetadata,
    "POD_VERIFIED": PodMetadata,
    "SETTLEMENT_PROCESSED": SettlementMetadata,
}
