"""
Matching schemas.
"""

from pydantic import BaseModel
from typing import List, Optional


class MatchResponse(BaseModel):
    """One ranked truck/load pair."""
    load_id: int
    truck_id: int
    posting_id: Optional[int]
    carrier_id: Optional[int]
    pickup_city: str
    delivery_city: str
    truck_city: str
    score: int
    is_exact_match: bool
    dh_origin_km: Optional[float]
    dh_destination_km: Optional[float]
    within_dh_limits: bool
    reasons: List[str]


class MatchListResponse(BaseModel):
    matches: List[MatchResponse]
    total: int
