"""
Settlement and admin operations schemas.
"""

from pydantic import BaseModel
from datetime import datetime
from typing import Optional, List, Dict, Any

from backend.app.models.billing_enums import SettlementStatus
from backend.app.models.dlq import DLQStatus
from backend.app.schemas.load import LoadResponse


class SettlementOutcomeResponse(BaseModel):
    load_id: int
    settlement_status: SettlementStatus
    settled_at: Optional[datetime]
    carrier_payout: str
    platform_revenue: str
    service_fee: str


class SettlementApproveResponse(BaseModel):
    success: bool = True
    settlement: SettlementOutcomeResponse


class SettlementListResponse(BaseModel):
    loads: List[LoadResponse]
    total_count: int
    limit: int
    offset: int
    has_more: bool


class AutomationResult(BaseModel):
    action: str
    auto_verified_count: Optional[int] = None
    settled_count: Optional[int] = None


class AutomationResponse(BaseModel):
    result: AutomationResult
    stats: Dict[str, Any]
    timestamp: datetime


class SettlementStatsResponse(BaseModel):
    stats: Dict[str, Any]
    timestamp: datetime


class DeadLetterResponse(BaseModel):
    """Dead letter queue item."""
    id: int
    task_name: str
    load_id: Optional[int]
    error_message: str
    payload: Optional[Dict[str, Any]]
    status: DLQStatus
    retry_count: int
    created_at: datetime
    last_retry_at: Optional[datetime]

    class Config:
        from_attributes = True
