"""
Admin Settlement API Endpoints.

Settlement review, single-load approval and the automation sweep.
"""

from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.models.enums import UserRole
from backend.app.schemas.settlement import (
    SettlementApproveResponse, SettlementOutcomeResponse, SettlementListResponse,
    AutomationResponse, AutomationResult, SettlementStatsResponse
)
from backend.app.core.guards import require_role
from backend.app.domain.billing.settlement_service import SettlementAction, SettlementService

router = APIRouter(prefix="/admin", tags=["Admin - Settlements"])


@router.get("/settlements", response_model=SettlementListResponse)
async def list_settlements(
    settlement_status: str = Query("PENDING", alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    Loads for settlement review.

    Default PENDING lists DELIVERED loads with a verified POD that are not
    settled yet; `all` lists everything delivered or settled.
    """
    return await SettlementService.list_settlements(db, settlement_status, limit=limit, offset=offset)


@router.post("/settlements/{load_id}/approve", response_model=SettlementApproveResponse)
async def approve_settlement(
    load_id: int = Path(..., description="Load ID"),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """Settle one load now: release escrow, deduct the service fee, mark PAID."""
    outcome = await SettlementService.approve_settlement(db, load_id, current_user.get("user_id"))
    return SettlementApproveResponse(settlement=SettlementOutcomeResponse(**outcome.__dict__))


@router.get("/settlement-automation", response_model=SettlementStatsResponse)
async def settlement_stats(
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """Current settlement pipeline counts."""
    stats = await SettlementService.get_settlement_stats(db)
    return SettlementStatsResponse(stats=stats, timestamp=datetime.utcnow())


@router.post("/settlement-automation", response_model=AutomationResponse)
async def trigger_settlement_automation(
    action: str = Query(SettlementAction.FULL),
    timeout_hours: Optional[int] = Query(None, ge=1, le=168),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """Run `auto-verify`, `process-settlements` or `full` (default)."""
    summary = await SettlementService.run_settlement_automation(db, action, timeout_hours)
    stats = await SettlementService.get_settlement_stats(db)
    return AutomationResponse(
        result=AutomationResult(**summary),
        stats=stats,
        timestamp=datetime.utcnow(),
    )
