"""
Load lifecycle tests.

Transition table, role permissions and the 400/403 split.
"""

import itertools

import pytest

from backend.app.domain.loads.state_machine import (
    LOAD_TRANSITIONS,
    ROLE_PERMISSIONS,
    TransitionFailure,
    can_role_set_status,
    check_tables_complete,
    get_status_description,
    get_valid_next_states,
    is_terminal,
    is_valid_transition,
    validate_state_transition,
)
from backend.app.models.enums import UserRole
from backend.app.models.load_enums import LoadStatus


def test_every_pair_matches_the_table():
    for current, target in itertools.product(LoadStatus, LoadStatus):
        assert is_valid_transition(current, target) == (target in LOAD_TRANSITIONS[current])


def test_in_transit_cannot_be_cancelled_directly():
    assert not is_valid_transition(LoadStatus.IN_TRANSIT, LoadStatus.CANCELLED)
    assert is_valid_transition(LoadStatus.IN_TRANSIT, LoadStatus.EXCEPTION)
    assert is_valid_transition(LoadStatus.EXCEPTION, LoadStatus.CANCELLED)


def test_cancelled_is_the_only_terminal_status():
    assert is_terminal(LoadStatus.CANCELLED)
    assert get_valid_next_states(LoadStatus.CANCELLED) == []
    assert [s for s in LoadStatus if is_terminal(s)] == [LoadStatus.CANCELLED]


def test_strings_are_accepted_and_unknowns_rejected():
    assert is_valid_transition("POSTED", "SEARCHING")
    assert not is_valid_transition("POSTED", "TELEPORTED")
    assert not is_valid_transition("NOPE", "POSTED")
    assert get_valid_next_states("NOPE") == []
    assert get_status_description("NOPE") == "Unknown status"


def test_next_states_follow_declaration_order():
    assert get_valid_next_states(LoadStatus.DRAFT) == [LoadStatus.POSTED, LoadStatus.CANCELLED]
    assert get_valid_next_states(LoadStatus.IN_TRANSIT) == [LoadStatus.DELIVERED, LoadStatus.EXCEPTION]


@pytest.mark.parametrize("role,status,allowed", [
    (UserRole.SHIPPER, LoadStatus.POSTED, True),
    (UserRole.SHIPPER, LoadStatus.IN_TRANSIT, False),
    (UserRole.CARRIER, LoadStatus.DELIVERED, True),
    (UserRole.CARRIER, LoadStatus.CANCELLED, False),
    (UserRole.DISPATCHER, LoadStatus.EXCEPTION, True),
    (UserRole.DISPATCHER, LoadStatus.ASSIGNED, False),
    (UserRole.ADMIN, LoadStatus.COMPLETED, True),
    ("SUPER_ADMIN", "EXPIRED", True),
    ("DRIVER", LoadStatus.POSTED, False),
    (None, LoadStatus.POSTED, False),
])
def test_role_permissions(role, status, allowed):
    assert can_role_set_status(role, status) is allowed


def test_admin_roles_may_set_every_status():
    assert ROLE_PERMISSIONS[UserRole.ADMIN] == frozenset(LoadStatus)
    assert ROLE_PERMISSIONS[UserRole.SUPER_ADMIN] == frozenset(LoadStatus)


def test_invalid_edge_is_reported_before_role():
    result = validate_state_transition(LoadStatus.IN_TRANSIT, LoadStatus.CANCELLED, UserRole.SHIPPER)
    assert not result.valid
    assert result.reason == TransitionFailure.INVALID_TRANSITION
    assert result.error == "Invalid transition from IN_TRANSIT to CANCELLED"


def test_role_failure_on_a_valid_edge():
    result = validate_state_transition(LoadStatus.ASSIGNED, LoadStatus.IN_TRANSIT, UserRole.SHIPPER)
    assert not result.valid
    assert result.reason == TransitionFailure.ROLE_NOT_PERMITTED
    assert result.error == "Role SHIPPER cannot set status IN_TRANSIT"


def test_valid_transition():
    result = validate_state_transition(LoadStatus.ASSIGNED, LoadStatus.PICKUP_PENDING, UserRole.CARRIER)
    assert result.valid
    assert result.error is None
    assert result.reason is None


def test_tables_cover_every_status_and_role():
    check_tables_complete()


def test_missing_role_entry_is_reported(mocker):
    trimmed = {role: allowed for role, allowed in ROLE_PERMISSIONS.items() if role != UserRole.DISPATCHER}
    mocker.patch.dict(ROLE_PERMISSIONS, trimmed, clear=True)

    with pytest.raises(RuntimeError, match="ROLE_PERMISSIONS must cover every UserRole"):
        check_tables_complete()
