"""
Load API Endpoints.

Load detail and history, status changes, direct assignment, unassignment
and proof of delivery.
"""

from fastapi import APIRouter, Depends, HTTPException, status, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import List, Optional

from backend.app.db.session import get_db
from backend.app.models.load import Load
from backend.app.models.load_enums import LoadStatus
from backend.app.models.truck import Truck
from backend.app.models.enums import UserRole
from backend.app.schemas.load import (
    LoadResponse, LoadStatusUpdate, StatusChangeResponse, ValidNextStatesResponse,
    AssignRequest, AssignmentResponse, UnassignResponse,
    PodSubmit, PodResponse, LoadEventResponse
)
from backend.app.core.dependencies import get_current_user
from backend.app.core.guards import ownership_guard
from backend.app.domain.assignment.coordinator import AssignmentCoordinator
from backend.app.domain.loads.pod_service import PodService
from backend.app.domain.loads.state_machine import (
    ASSIGNABLE_STATUSES, can_role_set_status, get_status_description, get_valid_next_states
)
from backend.app.services.cache import CacheService, load_key, org_loads_key
from backend.app.services.load_events import get_load_history

router = APIRouter(prefix="/loads", tags=["Loads"])


async def _can_view(db: AsyncSession, current_user: dict, load: dict) -> bool:
    if ownership_guard.filter_by_ownership(current_user) is None:
        return True
    org_id = current_user.get("organization_id")
    if load["shipper_id"] == org_id:
        return True
    if current_user.get("role") == UserRole.CARRIER.value:
        # Open loads are on the marketplace
        if LoadStatus(load["status"]) in ASSIGNABLE_STATUSES:
            return True
        if load["assigned_truck_id"] is not None:
            truck = await db.get(Truck, load["assigned_truck_id"])
            return truck is not None and truck.carrier_id == org_id
    return False


@router.get("", response_model=List[LoadResponse])
async def list_loads(
    load_status: Optional[LoadStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Loads of the current user's organization.

    Shippers see their own loads, carriers the loads on their trucks,
    admins and dispatchers every load. The unfiltered organization list
    is cached.
    """
    org_id = ownership_guard.filter_by_ownership(current_user)
    cacheable = org_id is not None and load_status is None and limit == 50
    if cacheable:
        cached = await CacheService.get(org_loads_key(org_id))
        if cached is not None:
            return cached

    query = select(Load)
    if org_id is not None:
        if current_user.get("role") == UserRole.CARRIER.value:
            query = query.join(Truck, Truck.id == Load.assigned_truck_id).where(Truck.carrier_id == org_id)
        else:
            query = query.where(Load.shipper_id == org_id)
    if load_status is not None:
        query = query.where(Load.status == load_status)

    result = await db.execute(query.order_by(Load.id.desc()).limit(limit))
    loads = [LoadResponse.model_validate(load).model_dump(mode="json") for load in result.scalars().all()]

    if cacheable:
        await CacheService.set(org_loads_key(org_id), loads)
    return loads


@router.get("/{load_id}", response_model=LoadResponse)
async def get_load(
    load_id: int = Path(..., description="Load ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Load detail (cached)."""
    data = await CacheService.get(load_key(load_id))
    if data is None:
        load = await db.get(Load, load_id)
        if not load:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Load not found"
            )
        data = LoadResponse.model_validate(load).model_dump(mode="json")
        await CacheService.set(load_key(load_id), data)

    if not await _can_view(db, current_user, data):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. You do not have permission to access this load."
        )
    return data


@router.get("/{load_id}/history", response_model=List[LoadEventResponse])
async def load_history(
    load_id: int = Path(..., description="Load ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Event history of a load, oldest first."""
    load = await db.get(Load, load_id)
    if not load:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Load not found")
    if not await _can_view(db, current_user, LoadResponse.model_validate(load).model_dump(mode="json")):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. You do not have permission to access this load."
        )
    return await get_load_history(db, load_id)


@router.get("/{load_id}/next-states", response_model=ValidNextStatesResponse)
async def valid_next_states(
    load_id: int = Path(..., description="Load ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Statuses reachable from the load's current status."""
    load = await db.get(Load, load_id)
    if not load:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Load not found")

    next_states = get_valid_next_states(load.status)
    return ValidNextStatesResponse(
        load_id=load.id,
        status=load.status,
        description=get_status_description(load.status),
        valid_next_states=next_states,
        allowed_for_role=[s for s in next_states if can_role_set_status(current_user.get("role"), s)],
    )


@router.patch("/{load_id}/status", response_model=StatusChangeResponse)
async def update_load_status(
    body: LoadStatusUpdate,
    load_id: int = Path(..., description="Load ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Change a load's status.

    400 for a transition the lifecycle does not allow, 403 when the role
    may not set the target status.
    """
    result = await AssignmentCoordinator.apply_status_change(
        db, load_id, body.status, current_user, reason=body.reason
    )
    return StatusChangeResponse(
        load_id=result.load_id,
        previous_status=result.previous_status,
        status=result.new_status,
        trip_status=result.trip_status.value if result.trip_status else None,
        truck_released=result.truck_released,
        side_effects=result.side_effects,
    )


@router.post("/{load_id}/assign", response_model=AssignmentResponse)
async def assign_truck(
    body: AssignRequest,
    load_id: int = Path(..., description="Load ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Assign a truck directly, without an offer.

    409 when the load or the truck was taken by a concurrent assignment.
    """
    result = await AssignmentCoordinator.assign(db, load_id, body.truck_id, current_user)
    return AssignmentResponse(
        load_id=result.load_id,
        truck_id=result.truck_id,
        trip_id=result.trip_id,
        tracking_slug=result.tracking_slug,
        cancelled_offers=result.cancelled_offers,
        side_effects=result.side_effects,
        notifications_sent=result.notifications_sent,
    )


@router.post("/{load_id}/unassign", response_model=UnassignResponse)
async def unassign_truck(
    load_id: int = Path(..., description="Load ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Remove the truck from a load that has not been picked up yet."""
    result = await AssignmentCoordinator.unassign(db, load_id, current_user)
    return UnassignResponse(
        load_id=result.load_id,
        previous_truck_id=result.previous_truck_id,
        status=result.new_status,
        cancelled_trip_id=result.cancelled_trip_id,
        side_effects=result.side_effects,
    )


@router.post("/{load_id}/pod", response_model=PodResponse)
async def submit_pod(
    body: PodSubmit,
    load_id: int = Path(..., description="Load ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Carrier submits proof of delivery for a DELIVERED load."""
    result = await PodService.submit(db, load_id, body.pod_url, current_user)
    return PodResponse(**result.__dict__)


@router.post("/{load_id}/pod/verify", response_model=PodResponse)
async def verify_pod(
    load_id: int = Path(..., description="Load ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Shipper verifies proof of delivery."""
    result = await PodService.verify(db, load_id, current_user)
    return PodResponse(**result.__dict__)
