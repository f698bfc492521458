"""
Load State Machine.

Pure transition logic for the load lifecycle. No I/O.

Two independent tables:
- LOAD_TRANSITIONS: which status may follow which (not role-aware)
- ROLE_PERMISSIONS: which statuses each role may set

validate_state_transition() composes both and tells the caller which one
failed, because the API answers 400 for an impossible transition and 403
for a role that may not set the target status.
"""

import enum
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Union

from backend.app.models.enums import UserRole
from backend.app.models.load_enums import LoadStatus


LOAD_TRANSITIONS: Dict[LoadStatus, FrozenSet[LoadStatus]] = {
    LoadStatus.DRAFT: frozenset({LoadStatus.POSTED, LoadStatus.CANCELLED}),
    LoadStatus.POSTED: frozenset({
        LoadStatus.SEARCHING,
        LoadStatus.OFFERED,
        LoadStatus.ASSIGNED,
        LoadStatus.UNPOSTED,
        LoadStatus.CANCELLED,
        LoadStatus.EXPIRED,
    }),
    LoadStatus.SEARCHING: frozenset({
        LoadStatus.OFFERED,
        LoadStatus.ASSIGNED,
        LoadStatus.EXCEPTION,
        LoadStatus.CANCELLED,
        LoadStatus.EXPIRED,
    }),
    LoadStatus.OFFERED: frozenset({
        LoadStatus.ASSIGNED,
        LoadStatus.SEARCHING,
        LoadStatus.EXCEPTION,
        LoadStatus.CANCELLED,
        LoadStatus.EXPIRED,
    }),
    LoadStatus.ASSIGNED: frozenset({
        LoadStatus.PICKUP_PENDING,
        LoadStatus.IN_TRANSIT,
        LoadStatus.SEARCHING,
        LoadStatus.EXCEPTION,
        LoadStatus.CANCELLED,
    }),
    LoadStatus.PICKUP_PENDING: frozenset({
        LoadStatus.IN_TRANSIT,
        LoadStatus.SEARCHING,
        LoadStatus.EXCEPTION,
        LoadStatus.CANCELLED,
    }),
    # No CANCELLED here: cancelling in transit goes through EXCEPTION
    LoadStatus.IN_TRANSIT: frozenset({LoadStatus.DELIVERED, LoadStatus.EXCEPTION}),
    LoadStatus.DELIVERED: frozenset({LoadStatus.COMPLETED, LoadStatus.EXCEPTION}),
    LoadStatus.COMPLETED: frozenset({LoadStatus.EXCEPTION}),
    LoadStatus.EXCEPTION: frozenset({
        LoadStatus.SEARCHING,
        LoadStatus.ASSIGNED,
        LoadStatus.CANCELLED,
        LoadStatus.COMPLETED,
    }),
    LoadStatus.EXPIRED: frozenset({LoadStatus.POSTED, LoadStatus.CANCELLED}),
    LoadStatus.UNPOSTED: frozenset({LoadStatus.POSTED, LoadStatus.CANCELLED}),
    LoadStatus.CANCELLED: frozenset(),
}

ROLE_PERMISSIONS: Dict[UserRole, FrozenSet[LoadStatus]] = {
    UserRole.SHIPPER: frozenset({
        LoadStatus.DRAFT,
        LoadStatus.POSTED,
        LoadStatus.CANCELLED,
        LoadStatus.UNPOSTED,
    }),
    UserRole.CARRIER: frozenset({
        LoadStatus.ASSIGNED,
        LoadStatus.PICKUP_PENDING,
        LoadStatus.IN_TRANSIT,
        LoadStatus.DELIVERED,
    }),
    UserRole.DISPATCHER: frozenset({
        LoadStatus.SEARCHING,
        LoadStatus.OFFERED,
        LoadStatus.EXCEPTION,
    }),
    UserRole.ADMIN: frozenset(LoadStatus),
    UserRole.SUPER_ADMIN: frozenset(LoadStatus),
}

STATUS_DESCRIPTIONS: Dict[LoadStatus, str] = {
    LoadStatus.DRAFT: "Load created but not yet posted to the marketplace",
    LoadStatus.POSTED: "Load is posted and visible to carriers",
    LoadStatus.SEARCHING: "Dispatcher is actively searching for a truck",
    LoadStatus.OFFERED: "Load has been offered to a carrier, awaiting response",
    LoadStatus.ASSIGNED: "Load is assigned to a truck",
    LoadStatus.PICKUP_PENDING: "Truck is on its way to the pickup location",
    LoadStatus.IN_TRANSIT: "Load is picked up and in transit",
    LoadStatus.DELIVERED: "Load delivered, awaiting proof of delivery verification",
    LoadStatus.COMPLETED: "Delivery completed and POD verified",
    LoadStatus.EXCEPTION: "An exception was raised and needs resolution",
    LoadStatus.CANCELLED: "Load was cancelled",
    LoadStatus.EXPIRED: "Load posting expired without assignment",
    LoadStatus.UNPOSTED: "Load was withdrawn from the marketplace",
}

# Statuses with no outbound transitions
TERMINAL_STATUSES: FrozenSet[LoadStatus] = frozenset(
    status for status, targets in LOAD_TRANSITIONS.items() if not targets
)

# A truck bound to a load in one of these statuses is free for new work
TRUCK_RELEASING_STATUSES: FrozenSet[LoadStatus] = frozenset({
    LoadStatus.DELIVERED,
    LoadStatus.COMPLETED,
    LoadStatus.CANCELLED,
    LoadStatus.EXPIRED,
})

# Statuses in which assigned_truck_id may be set
TRUCK_BOUND_STATUSES: FrozenSet[LoadStatus] = frozenset({
    LoadStatus.ASSIGNED,
    LoadStatus.PICKUP_PENDING,
    LoadStatus.IN_TRANSIT,
    LoadStatus.DELIVERED,
    LoadStatus.COMPLETED,
    LoadStatus.EXCEPTION,
})

# Statuses from which the assignment coordinator may bind a truck
ASSIGNABLE_STATUSES: FrozenSet[LoadStatus] = frozenset({
    LoadStatus.POSTED,
    LoadStatus.SEARCHING,
    LoadStatus.OFFERED,
})


def check_tables_complete() -> None:
    """Adding a status or role without extending the tables fails at import."""
    gaps = []
    if set(LOAD_TRANSITIONS) != set(LoadStatus):
        gaps.append("LOAD_TRANSITIONS must cover every LoadStatus")
    if set(STATUS_DESCRIPTIONS) != set(LoadStatus):
        gaps.append("STATUS_DESCRIPTIONS must cover every LoadStatus")
    if set(ROLE_PERMISSIONS) != set(UserRole):
        gaps.append("ROLE_PERMISSIONS must cover every UserRole")
    if gaps:
        raise RuntimeError("; ".join(gaps))


check_tables_complete()


class TransitionFailure(str, enum.Enum):
    INVALID_TRANSITION = "INVALID_TRANSITION"
    ROLE_NOT_PERMITTED = "ROLE_NOT_PERMITTED"


@dataclass(frozen=True)
class TransitionResult:
    valid: bool
    error: Optional[str] = None
    reason: Optional[TransitionFailure] = None


def _coerce_status(value: Union[LoadStatus, str]) -> Optional[LoadStatus]:
    try:
        return LoadStatus(value)
    except ValueError:
        return None


def _coerce_role(value: Union[UserRole, str, None]) -> Optional[UserRole]:
    if value is None:
        return None
    try:
        return UserRole(value)
    except ValueError:
        return None


def is_valid_transition(current: Union[LoadStatus, str], target: Union[LoadStatus, str]) -> bool:
    """Whether target may follow current, regardless of who asks."""
    current_status = _coerce_status(current)
    target_status = _coerce_status(target)
    if current_status is None or target_status is None:
        return False
    return target_status in LOAD_TRANSITIONS[current_status]


def can_role_set_status(role: Union[UserRole, str, None], status: Union[LoadStatus, str]) -> bool:
    """Whether role may set status. Unknown roles may set nothing."""
    user_role = _coerce_role(role)
    target_status = _coerce_status(status)
    if user_role is None or target_status is None:
        return False
    return target_status in ROLE_PERMISSIONS[user_role]


def validate_state_transition(
    current: Union[LoadStatus, str],
    target: Union[LoadStatus, str],
    role: Union[UserRole, str, None],
) -> TransitionResult:
    """
    Validate a status change requested by a user with the given role.

    Args:
        current: Load's current status
        target: Requested status
        role: Role of the acting user

    Returns:
        TransitionResult. When invalid, reason tells whether the edge does
        not exist (INVALID_TRANSITION) or the role may not set the target
        (ROLE_NOT_PERMITTED).
    """
    current_value = getattr(current, "value", current)
    target_value = getattr(target, "value", target)

    if not is_valid_transition(current, target):
        return TransitionResult(
            valid=False,
            error=f"Invalid transition from {current_value} to {target_value}",
            reason=TransitionFailure.INVALID_TRANSITION,
        )

    if not can_role_set_status(role, target):
        role_value = getattr(role, "value", role)
        return TransitionResult(
            valid=False,
            error=f"Role {role_value} cannot set status {target_value}",
            reason=TransitionFailure.ROLE_NOT_PERMITTED,
        )

    return TransitionResult(valid=True)


def get_valid_next_states(current: Union[LoadStatus, str]) -> List[LoadStatus]:
    """Statuses reachable from current in one step, in declaration order."""
    current_status = _coerce_status(current)
    if current_status is None:
        return []
    targets = LOAD_TRANSITIONS[current_status]
    return [status for status in LoadStatus if status in targets]


def get_status_description(status: Union[LoadStatus, str]) -> str:
    load_status = _coerce_status(status)
    if load_status is None:
        return "Unknown status"
    return STATUS_DESCRIPTIONS[load_status]


def is_terminal(status: Union[LoadStatus, str]) -> bool:
    load_status = _coerce_status(status)
    return load_status in TERMINAL_STATUSES
