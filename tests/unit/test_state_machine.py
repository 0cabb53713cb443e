# tests/unit/test_state_machine.py

import pytest

from boxoffice.domain.state_machine import (
    ReservationState,
    ReservationStateMachine,
    SeatStateMachine,
    SeatStatus,
)
from boxoffice.domain.exceptions import InvalidStateTransitionError


# ---------------------
# VALID TRANSITIONS
# ---------------------

def test_hold_can_be_committed_released_or_expired():
    for target in (
        ReservationState.COMMITTED,
        ReservationState.RELEASED,
        ReservationState.EXPIRED,
    ):
        assert ReservationStateMachine.can_transition(ReservationState.HELD, target)


def test_seat_happy_path():
    assert SeatStateMachine.can_transition(SeatStatus.AVAILABLE, SeatStatus.RESERVED)
    assert SeatStateMachine.can_transition(SeatStatus.RESERVED, SeatStatus.SOLD)


def test_seat_release_and_block():
    assert SeatStateMachine.can_transition(SeatStatus.RESERVED, SeatStatus.AVAILABLE)
    assert SeatStateMachine.can_transition(SeatStatus.AVAILABLE, SeatStatus.BLOCKED)
    assert SeatStateMachine.can_transition(SeatStatus.RESERVED, SeatStatus.BLOCKED)
    assert SeatStateMachine.can_transition(SeatStatus.BLOCKED, SeatStatus.AVAILABLE)


# ---------------------
# INVALID TRANSITIONS
# ---------------------

def test_cannot_sell_without_hold():
    with pytest.raises(InvalidStateTransitionError):
        SeatStateMachine.validate_transition(SeatStatus.AVAILABLE, SeatStatus.SOLD)


def test_sold_seat_is_terminal():
    assert SeatStateMachine.is_terminal(SeatStatus.SOLD)

    with pytest.raises(InvalidStateTransitionError):
        SeatStateMachine.validate_transition(SeatStatus.SOLD, SeatStatus.AVAILABLE)


def test_blocked_seat_only_leaves_through_unblock():
    assert SeatStateMachine.get_allowed_transitions(SeatStatus.BLOCKED) == {SeatStatus.AVAILABLE}

    with pytest.raises(InvalidStateTransitionError):
        SeatStateMachine.validate_transition(SeatStatus.BLOCKED, SeatStatus.RESERVED)


@pytest.mark.parametrize(
    "state",
    [ReservationState.COMMITTED, ReservationState.RELEASED, ReservationState.EXPIRED],
)
def test_closed_reservations_are_terminal(state):
    assert ReservationStateMachine.is_terminal(state)

    with pytest.raises(InvalidStateTransitionError):
        ReservationStateMachine.validate_transition(state, ReservationState.HELD)


def test_rejects_foreign_status_type():
    with pytest.raises(TypeError):
        ReservationStateMachine.can_transition(SeatStatus.AVAILABLE, ReservationState.HELD)
