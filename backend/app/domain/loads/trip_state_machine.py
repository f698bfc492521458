"""
Trip State Machine.

The trip record follows a narrower lifecycle than its load. Load status
changes are mirrored onto the trip through map_load_status_to_trip_status().
"""

from typing import Dict, FrozenSet, Optional

from backend.app.models.load_enums import LoadStatus
from backend.app.models.trip_enums import TripStatus


TRIP_TRANSITIONS: Dict[TripStatus, FrozenSet[TripStatus]] = {
    TripStatus.ASSIGNED: frozenset({TripStatus.PICKUP_PENDING, TripStatus.CANCELLED}),
    TripStatus.PICKUP_PENDING: frozenset({TripStatus.IN_TRANSIT, TripStatus.CANCELLED}),
    TripStatus.IN_TRANSIT: frozenset({TripStatus.DELIVERED, TripStatus.CANCELLED}),
    TripStatus.DELIVERED: frozenset({TripStatus.COMPLETED, TripStatus.CANCELLED}),
    TripStatus.COMPLETED: frozenset(),
    TripStatus.CANCELLED: frozenset(),
}

assert set(TRIP_TRANSITIONS) == set(TripStatus), "TRIP_TRANSITIONS must cover every TripStatus"

# EXCEPTION and pre-assignment statuses leave the trip untouched
_LOAD_TO_TRIP: Dict[LoadStatus, TripStatus] = {
    LoadStatus.ASSIGNED: TripStatus.ASSIGNED,
    LoadStatus.PICKUP_PENDING: TripStatus.PICKUP_PENDING,
    LoadStatus.IN_TRANSIT: TripStatus.IN_TRANSIT,
    LoadStatus.DELIVERED: TripStatus.DELIVERED,
    LoadStatus.COMPLETED: TripStatus.COMPLETED,
    LoadStatus.CANCELLED: TripStatus.CANCELLED,
    LoadStatus.EXPIRED: TripStatus.CANCELLED,
}


def is_valid_trip_transition(current: TripStatus, target: TripStatus) -> bool:
    return target in TRIP_TRANSITIONS.get(current, frozenset())


def map_load_status_to_trip_status(load_status: LoadStatus) -> Optional[TripStatus]:
    """Trip status implied by a load status, or None for no change."""
    return _LOAD_TO_TRIP.get(load_status)


def resolve_trip_transition(current: TripStatus, load_status: LoadStatus) -> Optional[TripStatus]:
    """
    Trip status to apply after the load moved to load_status.

    Skipped steps are allowed (ASSIGNED straight to IN_TRANSIT mirrors the
    load edge of the same name) as long as the trip only moves forward.

    Returns:
        New trip status, or None when the trip should stay as it is.
    """
    target = map_load_status_to_trip_status(load_status)
    if target is None or target == current:
        return None

    if target == TripStatus.CANCELLED:
        return target if TRIP_TRANSITIONS[current] else None

    # Walk forward along the main line
    step = current
    while True:
        forward = [s for s in TRIP_TRANSITIONS[step] if s != TripStatus.CANCELLED]
        if not forward:
            return None
        step = forward[0]
        if step == target:
            return target
