"""
Truck binding service.

A truck is bound to a load through Load.assigned_truck_id (unique). These
helpers answer "is the truck busy?" and release bindings left behind by
loads that already finished.
"""

from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from backend.app.models.load import Load
from backend.app.models.trip import Trip
from backend.app.models.trip_enums import TripStatus
from backend.app.domain.loads.state_machine import TRUCK_RELEASING_STATUSES


async def find_active_binding(
    db: AsyncSession,
    truck_id: int,
    exclude_load_id: Optional[int] = None,
) -> Optional[Load]:
    """
    Load currently keeping the truck busy, if any.

    Loads in DELIVERED, COMPLETED, CANCELLED or EXPIRED do not count: the
    truck is free even if the binding has not been cleared yet.

    Args:
        db: Database session
        truck_id: Truck to check
        exclude_load_id: Load being assigned (never counts as a conflict)

    Returns:
        The blocking load, or None if the truck is free
    """
    query = select(Load).where(
        Load.assigned_truck_id == truck_id,
        Load.status.notin_(list(TRUCK_RELEASING_STATUSES)),
    )
    if exclude_load_id is not None:
        query = query.where(Load.id != exclude_load_id)

    result = await db.execute(query.limit(1))
    return result.scalar_one_or_none()


async def clear_stale_bindings(db: AsyncSession, truck_id: int) -> List[int]:
    """
    Detach the truck from finished loads so the unique index admits a new binding.

    Returns:
        Ids of the loads that were detached
    """
    result = await db.execute(
        select(Load).where(
            Load.assigned_truck_id == truck_id,
            Load.status.in_(list(TRUCK_RELEASING_STATUSES)),
        )
    )
    stale = result.scalars().all()

    for load in stale:
        load.assigned_truck_id = None

    if stale:
        # Release the unique slot before the new binding is flushed
        await db.flush()

    return [load.id for load in stale]


async def get_current_trip(db: AsyncSession, load_id: int) -> Optional[Trip]:
    """The load's non-cancelled trip. At most one exists."""
    result = await db.execute(
        select(Trip)
        .where(Trip.load_id == load_id, Trip.status != TripStatus.CANCELLED)
        .order_by(Trip.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_latest_trip(db: AsyncSession, load_id: int) -> Optional[Trip]:
    """Most recent trip for the load, cancelled or not."""
    result = await db.execute(
        select(Trip).where(Trip.load_id == load_id).order_by(Trip.id.desc()).limit(1)
    )
    return result.scalar_one_or_none()
