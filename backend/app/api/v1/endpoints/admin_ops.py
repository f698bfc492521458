"""
Admin Operations API Endpoints.

Dead letter queue inspection and replay, cache maintenance.
"""

from fastapi import APIRouter, Depends, HTTPException, status, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import List, Optional

from backend.app.db.session import get_db
from backend.app.models.dlq import DeadLetterQueue, DLQStatus
from backend.app.models.enums import UserRole
from backend.app.schemas.settlement import DeadLetterResponse
from backend.app.core.guards import require_role
from backend.app.domain.assignment.side_effects import retry_dead_letter
from backend.app.services.cache import CacheService

router = APIRouter(prefix="/admin/ops", tags=["Admin - Ops"])


@router.get("/dlq", response_model=List[DeadLetterResponse])
async def list_dlq_items(
    dlq_status: Optional[DLQStatus] = Query(None, alias="status"),
    load_id: Optional[int] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """Failed side effects, newest first."""
    query = select(DeadLetterQueue)
    if dlq_status is not None:
        query = query.where(DeadLetterQueue.status == dlq_status)
    if load_id is not None:
        query = query.where(DeadLetterQueue.load_id == load_id)
    result = await db.execute(query.order_by(DeadLetterQueue.id.desc()).limit(limit))
    return result.scalars().all()


@router.post("/dlq/{dlq_id}/retry", response_model=DeadLetterResponse)
async def retry_dlq_item(
    dlq_id: int = Path(..., description="DLQ Item ID"),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    Replay a failed side effect.

    Escrow and service fee handlers check their markers first, so a replay
    after a partial success never moves money twice.
    """
    item = await retry_dead_letter(db, dlq_id)
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="DLQ item not found")
    return item


@router.post("/clear-cache")
async def clear_system_cache(
    current_user: dict = Depends(require_role([UserRole.ADMIN]))
):
    """Clear the internal cache."""
    await CacheService.clear()
    return {"message": "Cache cleared successfully"}
