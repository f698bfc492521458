"""
Matching API Endpoints.

Ranked trucks for a load and ranked loads for a truck posting.
"""

from fastapi import APIRouter, Depends, HTTPException, status, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from backend.app.db.session import get_db
from backend.app.models.load import Load
from backend.app.models.truck_posting import TruckPosting
from backend.app.schemas.matching import MatchListResponse
from backend.app.core.dependencies import get_current_user
from backend.app.core.guards import ownership_guard
from backend.app.domain.matching.service import MatchingService

router = APIRouter(prefix="/matching", tags=["Matching"])


@router.get("/loads/{load_id}/trucks", response_model=MatchListResponse)
async def trucks_for_load(
    load_id: int = Path(..., description="Load ID"),
    min_score: Optional[int] = Query(None, ge=0, le=100),
    limit: int = Query(50, ge=1, le=200),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Trucks for a load (shipper owner, dispatcher, admin)."""
    load = await db.get(Load, load_id)
    if not load:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Load not found")
    ownership_guard.enforce(load.shipper_id, current_user, "load")

    matches = await MatchingService.trucks_for_load(db, load_id, min_score=min_score, limit=limit)
    return MatchListResponse(matches=matches, total=len(matches))


@router.get("/postings/{posting_id}/loads", response_model=MatchListResponse)
async def loads_for_posting(
    posting_id: int = Path(..., description="Truck posting ID"),
    min_score: Optional[int] = Query(None, ge=0, le=100),
    limit: int = Query(50, ge=1, le=200),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Loads for a truck posting (owning carrier, dispatcher, admin)."""
    posting = await db.get(TruckPosting, posting_id)
    if not posting:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Truck posting not found")
    ownership_guard.enforce(posting.carrier_id, current_user, "truck posting")

    matches = await MatchingService.loads_for_posting(db, posting_id, min_score=min_score, limit=limit)
    return MatchListResponse(matches=matches, total=len(matches))
