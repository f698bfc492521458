"""
Assignment Coordinator (Domain Logic).

Every path that binds a truck to a load ends here: direct assignment and
approval of a load request, truck request or match proposal. The same
module owns unassignment and load status changes, because all three move
the truck binding, the trip and the money together.

Flow of assign():
1. Re-read and lock the load, then the truck, inside the transaction
2. Reject unavailable loads (400) and already-taken loads or trucks (409)
3. Write the binding, trip, offer outcomes, posting and truck state
4. Commit (a unique violation on loads.assigned_truck_id is also a 409)
5. After commit: cache, escrow, service fee, tracking, notifications

Step 5 is best effort. A failure there is recorded, never raised, and
never undoes the assignment.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, Union

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError

from backend.app.core.exceptions import (
    ConflictError,
    InsufficientPermissionsError,
    InvalidStateError,
    ResourceNotFoundError,
)
from backend.app.core.guards import is_admin, can_assign
from backend.app.db.locking import is_lock_conflict, lock_row
from backend.app.domain.assignment.side_effects import (
    Notice,
    SideEffect,
    run_side_effects,
    send_notices,
)
from backend.app.domain.loads.state_machine import (
    ASSIGNABLE_STATUSES,
    TRUCK_BOUND_STATUSES,
    TRUCK_RELEASING_STATUSES,
    TransitionFailure,
    can_role_set_status,
    get_valid_next_states,
    validate_state_transition,
)
from backend.app.domain.loads.trip_state_machine import resolve_trip_transition
from backend.app.models.enums import UserRole
from backend.app.models.load import Load
from backend.app.models.load_enums import LoadStatus, PostingStatus
from backend.app.models.load_request import LoadRequest
from backend.app.models.match_proposal import MatchProposal
from backend.app.models.notification import NotificationType
from backend.app.models.offer_enums import RequestStatus
from backend.app.models.trip import Trip
from backend.app.models.trip_enums import TripStatus
from backend.app.models.truck import Truck
from backend.app.models.truck_posting import TruckPosting
from backend.app.models.truck_request import TruckRequest
from backend.app.services.cache import CacheService
from backend.app.services.load_events import LoadEventType, record_load_event
from backend.app.services.truck_binding import (
    clear_stale_bindings,
    find_active_binding,
    get_current_trip,
)

logger = logging.getLogger(__name__)

Offer = Union[LoadRequest, TruckRequest, MatchProposal]
OFFER_MODELS: Tuple[Type, ...] = (LoadRequest, TruckRequest, MatchProposal)

ASSIGN_SIDE_EFFECTS = (SideEffect.ESCROW_HOLD, SideEffect.SERVICE_FEE_RESERVE, SideEffect.TRACKING)
RELEASE_SIDE_EFFECTS = (SideEffect.ESCROW_REFUND, SideEffect.SERVICE_FEE_REFUND)

LOAD_TAKEN_MESSAGE = "Load has already been assigned to another truck. Please refresh and try again."
TRUCK_TAKEN_MESSAGE = "This truck is already assigned to another load. Please refresh and try again."

_TRIP_TIMESTAMPS = {
    TripStatus.PICKUP_PENDING: "started_at",
    TripStatus.IN_TRANSIT: "picked_up_at",
    TripStatus.DELIVERED: "delivered_at",
    TripStatus.COMPLETED: "completed_at",
    TripStatus.CANCELLED: "cancelled_at",
}


class AssignmentSource:
    DIRECT = "DIRECT"
    LOAD_REQUEST = "LOAD_REQUEST"
    TRUCK_REQUEST = "TRUCK_REQUEST"
    MATCH_PROPOSAL = "MATCH_PROPOSAL"


@dataclass
class AssignmentResult:
    load_id: int
    truck_id: int
    trip_id: int
    tracking_slug: str
    cancelled_offers: int = 0
    side_effects: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    notifications_sent: bool = True


@dataclass
class UnassignmentResult:
    load_id: int
    previous_truck_id: int
    new_status: LoadStatus
    cancelled_trip_id: Optional[int] = None
    side_effects: Dict[str, Dict[str, Any]] = field(default_factory=dict)


@dataclass
class StatusChangeResult:
    load_id: int
    previous_status: LoadStatus
    new_status: LoadStatus
    trip_status: Optional[TripStatus] = None
    truck_released: bool = False
    side_effects: Dict[str, Dict[str, Any]] = field(default_factory=dict)


def make_tracking_slug(load_id: int) -> str:
    return f"trip-{str(load_id)[-6:]}-{uuid.uuid4().hex[:8]}"


def _route(load: Load) -> str:
    return f"{load.pickup_city} → {load.delivery_city}"


async def cancel_competing_offers(db: AsyncSession, load_id: int, keep: Optional[Offer] = None) -> int:
    """
    Cancel every other PENDING offer for the load. Returns how many were cancelled.

    The caller holds the load lock; sibling offers are locked after it.
    """
    now = datetime.utcnow()
    cancelled = 0
    for model in OFFER_MODELS:
        result = await db.execute(
            select(model)
            .where(model.load_id == load_id, model.status == RequestStatus.PENDING)
            .order_by(model.id)
            .with_for_update()
        )
        for offer in result.scalars().all():
            if keep is not None and isinstance(offer, type(keep)) and offer.id == keep.id:
                continue
            offer.status = RequestStatus.CANCELLED
            offer.responded_at = now
            offer.response_notes = "Load was assigned to another truck"
            cancelled += 1
    return cancelled


async def _set_posting_status(
    db: AsyncSession,
    truck_id: int,
    from_status: PostingStatus,
    to_status: PostingStatus,
    latest_only: bool = False,
) -> List[int]:
    query = (
        select(TruckPosting)
        .where(TruckPosting.truck_id == truck_id, TruckPosting.status == from_status)
        .order_by(TruckPosting.id.desc())
    )
    if latest_only:
        query = query.limit(1)
    result = await db.execute(query)
    postings = result.scalars().all()
    for posting in postings:
        posting.status = to_status
    return [posting.id for posting in postings]


async def _carrier_owns_load_truck(db: AsyncSession, actor: dict, load: Load) -> bool:
    if actor.get("organization_id") is None:
        return False
    if load.assigned_truck_id is not None:
        truck = await db.get(Truck, load.assigned_truck_id)
        if truck is not None and truck.carrier_id == actor.get("organization_id"):
            return True
    trip = await get_current_trip(db, load.id)
    return trip is not None and trip.carrier_id == actor.get("organization_id")


async def ensure_load_access(db: AsyncSession, actor: dict, load: Load) -> None:
    """
    Who may act on a load: admins, dispatchers, the owning shipper, and the
    carrier whose truck is on it.

    Raises:
        InsufficientPermissionsError
    """
    role = actor.get("role")
    if is_admin(actor) or role == UserRole.DISPATCHER.value:
        return
    if role == UserRole.SHIPPER.value and actor.get("organization_id") == load.shipper_id:
        return
    if role == UserRole.CARRIER.value and await _carrier_owns_load_truck(db, actor, load):
        return
    raise InsufficientPermissionsError("You do not have permission to modify this load")


class AssignmentCoordinator:

    @staticmethod
    async def check_direct_assign_permission(db: AsyncSession, actor: dict, load: Load, truck: Truck) -> None:
        """
        Permission for assigning without an offer.

        Raises:
            InsufficientPermissionsError
        """
        if not can_assign(actor, load.shipper_id):
            raise InsufficientPermissionsError("You do not have permission to assign this load")
        if not can_role_set_status(actor.get("role"), LoadStatus.ASSIGNED):
            raise InsufficientPermissionsError(
                f"Role {actor.get('role')} cannot set status {LoadStatus.ASSIGNED.value}"
            )
        if actor.get("role") == UserRole.CARRIER.value and truck.carrier_id != actor.get("organization_id"):
            raise InsufficientPermissionsError("You can only assign your own trucks")

    @staticmethod
    async def assign(
        db: AsyncSession,
        load_id: int,
        truck_id: int,
        actor: dict,
        offer: Optional[Offer] = None,
        response_notes: Optional[str] = None,
        source: str = AssignmentSource.DIRECT,
        offer_event: Optional[str] = None,
        extra_notices: Sequence[Notice] = (),
    ) -> AssignmentResult:
        """
        Bind a truck to a load atomically.

        Direct assignment checks permissions here. Offer paths have already
        checked approval authority and pass the locked offer, which is
        marked APPROVED in the same transaction.

        Args:
            db: Database session (committed or rolled back here)
            load_id: Load to assign
            truck_id: Truck to bind
            actor: Current user payload
            offer: Offer being approved, if any
            response_notes: Responder's notes stored on the offer
            source: Entry path, recorded on the ASSIGNED event
            offer_event: Event type recording the offer approval
            extra_notices: Notifications to send after commit

        Returns:
            AssignmentResult with side-effect outcomes

        Raises:
            ResourceNotFoundError: Load or truck missing
            InvalidStateError: Load not in POSTED, SEARCHING or OFFERED
            ConflictError: Load or truck already taken
            InsufficientPermissionsError: Direct assign not allowed
        """
        user_id = actor.get("user_id")
        try:
            # 1. Re-read the load under lock
            load = await lock_row(db, Load, load_id)
            if load is None:
                raise ResourceNotFoundError("Load", load_id)

            if load.assigned_truck_id is not None:
                raise ConflictError(
                    LOAD_TAKEN_MESSAGE,
                    details={"currentStatus": load.status.value, "assignedTruckId": load.assigned_truck_id},
                )
            if load.status not in ASSIGNABLE_STATUSES:
                raise InvalidStateError(
                    f"Load is no longer available (status: {load.status.value})",
                    details={"currentStatus": load.status.value},
                )

            # 2. Truck under lock
            truck = await lock_row(db, Truck, truck_id)
            if truck is None:
                raise ResourceNotFoundError("Truck", truck_id)

            if offer is None:
                await AssignmentCoordinator.check_direct_assign_permission(db, actor, load, truck)

            busy = await find_active_binding(db, truck.id, exclude_load_id=load.id)
            if busy is not None:
                raise ConflictError(
                    f"This truck is already assigned to an active load ({_route(busy)})",
                    details={"blockingLoadId": busy.id, "blockingStatus": busy.status.value},
                )

            stale_load_ids = await clear_stale_bindings(db, truck.id)

            # 3. Writes
            now = datetime.utcnow()
            load.status = LoadStatus.ASSIGNED
            load.assigned_truck_id = truck.id
            load.assigned_at = now

            trip = Trip(
                load_id=load.id,
                truck_id=truck.id,
                carrier_id=truck.carrier_id,
                shipper_id=load.shipper_id,
                status=TripStatus.ASSIGNED,
                pickup_city=load.pickup_city,
                pickup_address=load.pickup_address,
                pickup_lat=load.pickup_lat,
                pickup_lng=load.pickup_lng,
                delivery_city=load.delivery_city,
                delivery_address=load.delivery_address,
                delivery_lat=load.delivery_lat,
                delivery_lng=load.delivery_lng,
                estimated_distance_km=load.estimated_trip_km,
                tracking_url=make_tracking_slug(load.id),
            )
            db.add(trip)

            if offer is not None:
                offer.status = RequestStatus.APPROVED
                offer.responded_at = now
                offer.responded_by_id = user_id
                offer.response_notes = response_notes

            cancelled = await cancel_competing_offers(db, load.id, keep=offer)
            posting_ids = await _set_posting_status(db, truck.id, PostingStatus.ACTIVE, PostingStatus.MATCHED)
            truck.is_available = False

            await db.flush()

            await record_load_event(
                db,
                load.id,
                LoadEventType.ASSIGNED,
                description=f"Assigned to truck {truck.license_plate}",
                user_id=user_id,
                metadata={
                    "truck_id": truck.id,
                    "trip_id": trip.id,
                    "source": source,
                    "offer_id": offer.id if offer is not None else None,
                    "cancelled_offers": cancelled,
                    "cleared_stale_load_ids": stale_load_ids,
                },
            )
            if offer is not None and offer_event is not None:
                await record_load_event(
                    db,
                    load.id,
                    offer_event,
                    description=f"{offer.kind_label} {offer.id} approved",
                    user_id=user_id,
                    metadata={"offer_id": offer.id, "truck_id": truck.id, "response_notes": response_notes},
                )

            # 4. Commit
            await db.commit()
        except IntegrityError:
            await db.rollback()
            logger.info("Assignment of truck %s to load %s lost a race", truck_id, load_id)
            raise ConflictError(TRUCK_TAKEN_MESSAGE, details={"truckId": truck_id})
        except DBAPIError as exc:
            await db.rollback()
            if not is_lock_conflict(exc):
                raise
            logger.info("Assignment of truck %s to load %s aborted by a lock conflict", truck_id, load_id)
            raise ConflictError(LOAD_TAKEN_MESSAGE, details={"loadId": load_id, "truckId": truck_id})
        except Exception:
            await db.rollback()
            raise

        logger.info(
            "Load %s assigned to truck %s via %s (trip %s, %d offers cancelled)",
            load_id, truck_id, source, trip.id, cancelled,
        )

        result = AssignmentResult(
            load_id=load_id,
            truck_id=truck_id,
            trip_id=trip.id,
            tracking_slug=trip.tracking_url,
            cancelled_offers=cancelled,
        )
        shipper_id, carrier_id = load.shipper_id, truck.carrier_id
        notices = [
            Notice(
                type=NotificationType.LOAD_ASSIGNED,
                title="Load assigned",
                message=f"Load {load_id} ({_route(load)}) was assigned to truck {truck.license_plate}",
                organization_id=shipper_id,
                metadata={"load_id": load_id, "truck_id": truck_id, "trip_id": trip.id},
            ),
            Notice(
                type=NotificationType.LOAD_ASSIGNED,
                title="New load assigned",
                message=f"Truck {truck.license_plate} was assigned to load {load_id} ({_route(load)})",
                organization_id=carrier_id,
                metadata={"load_id": load_id, "truck_id": truck_id, "trip_id": trip.id},
            ),
            *extra_notices,
        ]

        # 5. Post-commit side effects
        await CacheService.invalidate_load(load_id, shipper_id, carrier_id)
        await CacheService.invalidate_truck(truck_id, *posting_ids)
        result.side_effects = await run_side_effects(db, ASSIGN_SIDE_EFFECTS, load_id, user_id)
        result.notifications_sent = await send_notices(db, notices, actor_id=user_id)
        return result

    @staticmethod
    async def unassign(db: AsyncSession, load_id: int, actor: dict) -> UnassignmentResult:
        """
        Take the truck off a load that has not been picked up yet.

        The load goes back to SEARCHING, the trip is cancelled and the truck
        and its posting become available again. Escrow and the reserved
        service fee are refunded after commit.

        Raises:
            ResourceNotFoundError, InsufficientPermissionsError, InvalidStateError
        """
        user_id = actor.get("user_id")
        try:
            load = await lock_row(db, Load, load_id)
            if load is None:
                raise ResourceNotFoundError("Load", load_id)

            await ensure_load_access(db, actor, load)

            if load.assigned_truck_id is None:
                raise InvalidStateError(
                    "Load is not assigned to any truck",
                    details={"currentStatus": load.status.value},
                )
            if load.status in (LoadStatus.IN_TRANSIT, LoadStatus.DELIVERED):
                raise InvalidStateError(
                    "Cannot unassign load that is in transit or delivered",
                    details={"currentStatus": load.status.value},
                )
            if load.status not in (LoadStatus.ASSIGNED, LoadStatus.PICKUP_PENDING):
                raise InvalidStateError(
                    f"Cannot unassign load with status {load.status.value}",
                    details={"currentStatus": load.status.value},
                )

            truck_id = load.assigned_truck_id
            truck = await lock_row(db, Truck, truck_id)
            trip = await get_current_trip(db, load.id)
            trip_id = trip.id if trip is not None else None

            now = datetime.utcnow()
            if trip is not None:
                trip.status = TripStatus.CANCELLED
                trip.cancelled_at = now
                trip.tracking_enabled = False

            load.status = LoadStatus.SEARCHING
            load.assigned_truck_id = None
            load.assigned_at = None
            load.tracking_enabled = False

            posting_ids: List[int] = []
            if truck is not None:
                truck.is_available = True
                posting_ids = await _set_posting_status(
                    db, truck.id, PostingStatus.MATCHED, PostingStatus.ACTIVE, latest_only=True
                )

            await record_load_event(
                db,
                load.id,
                LoadEventType.UNASSIGNED,
                description=f"Truck {truck.license_plate if truck else truck_id} removed from load",
                user_id=user_id,
                metadata={
                    "previous_truck_id": truck_id,
                    "new_status": LoadStatus.SEARCHING.value,
                    "trip_id": trip_id,
                },
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Load %s unassigned from truck %s", load_id, truck_id)

        shipper_id = load.shipper_id
        carrier_id = truck.carrier_id if truck is not None else None
        notices = [
            Notice(
                type=NotificationType.LOAD_UNASSIGNED,
                title="Load unassigned",
                message=f"Load {load_id} ({_route(load)}) is searching for a truck again",
                organization_id=org_id,
                metadata={"load_id": load_id, "truck_id": truck_id},
            )
            for org_id in (shipper_id, carrier_id)
        ]

        await CacheService.invalidate_load(load_id, shipper_id, carrier_id)
        await CacheService.invalidate_truck(truck_id, *posting_ids)
        side_effects = await run_side_effects(db, RELEASE_SIDE_EFFECTS, load_id, user_id)
        await send_notices(db, notices, actor_id=user_id)

        return UnassignmentResult(
            load_id=load_id,
            previous_truck_id=truck_id,
            new_status=LoadStatus.SEARCHING,
            cancelled_trip_id=trip_id,
            side_effects=side_effects,
        )

    @staticmethod
    async def apply_status_change(
        db: AsyncSession,
        load_id: int,
        new_status: LoadStatus,
        actor: dict,
        reason: Optional[str] = None,
    ) -> StatusChangeResult:
        """
        Move a load to a new status, keeping trip and truck in step.

        - The trip follows the load (see resolve_trip_transition)
        - DELIVERED, COMPLETED, CANCELLED and EXPIRED free the truck
        - Statuses that cannot hold a truck drop the binding and cancel the trip
        - CANCELLED and EXPIRED refund escrow and the service fee after commit

        Raises:
            ResourceNotFoundError: Load missing
            InvalidStateError: Transition not in the table (400)
            InsufficientPermissionsError: Role may not set the status (403)
        """
        user_id = actor.get("user_id")
        try:
            load = await lock_row(db, Load, load_id)
            if load is None:
                raise ResourceNotFoundError("Load", load_id)

            await ensure_load_access(db, actor, load)

            previous_status = load.status
            check = validate_state_transition(previous_status, new_status, actor.get("role"))
            if not check.valid:
                if check.reason == TransitionFailure.ROLE_NOT_PERMITTED:
                    raise InsufficientPermissionsError(
                        check.error,
                        details={"currentStatus": previous_status.value, "requestedStatus": new_status.value},
                    )
                raise InvalidStateError(
                    check.error,
                    details={
                        "currentStatus": previous_status.value,
                        "requestedStatus": new_status.value,
                        "validNextStates": [s.value for s in get_valid_next_states(previous_status)],
                    },
                )

            if new_status == LoadStatus.ASSIGNED and load.assigned_truck_id is None:
                raise InvalidStateError(
                    "Cannot set status ASSIGNED without a truck; assign a truck instead",
                    details={"currentStatus": previous_status.value},
                )

            now = datetime.utcnow()
            load.status = new_status

            # Trip follows the load
            trip = await get_current_trip(db, load.id)
            trip_status = None
            if trip is not None:
                trip_status = resolve_trip_transition(trip.status, new_status)
                if trip_status is not None:
                    trip.status = trip_status
                    setattr(trip, _TRIP_TIMESTAMPS[trip_status], now)

            truck = None
            truck_id = load.assigned_truck_id
            if truck_id is not None:
                truck = await lock_row(db, Truck, truck_id)

            truck_released = False
            posting_ids: List[int] = []
            if truck is not None and new_status in TRUCK_RELEASING_STATUSES:
                truck.is_available = True
                truck_released = True

            if truck_id is not None and new_status not in TRUCK_BOUND_STATUSES:
                load.assigned_truck_id = None
                load.tracking_enabled = False
                if trip is not None and trip.status != TripStatus.CANCELLED:
                    trip.status = TripStatus.CANCELLED
                    trip.cancelled_at = now
                    trip_status = TripStatus.CANCELLED
                if truck is not None:
                    truck.is_available = True
                    truck_released = True
                    posting_ids = await _set_posting_status(
                        db, truck.id, PostingStatus.MATCHED, PostingStatus.ACTIVE, latest_only=True
                    )

            await record_load_event(
                db,
                load.id,
                LoadEventType.STATUS_CHANGED,
                description=f"Status changed from {previous_status.value} to {new_status.value}",
                user_id=user_id,
                metadata={
                    "previous_status": previous_status.value,
                    "new_status": new_status.value,
                    "trip_status": trip_status.value if trip_status is not None else None,
                    "reason": reason,
                },
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Load %s status %s -> %s", load_id, previous_status.value, new_status.value)

        shipper_id = load.shipper_id
        carrier_id = truck.carrier_id if truck is not None else None
        notices = [
            Notice(
                type=NotificationType.LOAD_STATUS_CHANGED,
                title="Load status changed",
                message=f"Load {load_id} ({_route(load)}) is now {new_status.value}",
                organization_id=org_id,
                metadata={"load_id": load_id, "previous_status": previous_status.value, "new_status": new_status.value},
            )
            for org_id in (shipper_id, carrier_id)
            if org_id is not None
        ]

        await CacheService.invalidate_load(load_id, shipper_id, carrier_id)
        if truck_id is not None:
            await CacheService.invalidate_truck(truck_id, *posting_ids)

        side_effects: Dict[str, Dict[str, Any]] = {}
        if new_status in (LoadStatus.CANCELLED, LoadStatus.EXPIRED):
            side_effects = await run_side_effects(db, RELEASE_SIDE_EFFECTS, load_id, user_id)
        await send_notices(db, notices, actor_id=user_id)

        return StatusChangeResult(
            load_id=load_id,
            previous_status=previous_status,
            new_status=new_status,
            trip_status=trip_status,
            truck_released=truck_released,
            side_effects=side_effects,
        )
