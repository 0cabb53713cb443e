# boxoffice/domain/state_machine.py

from enum import Enum
from typing import ClassVar, Dict, Set

from boxoffice.domain.exceptions import InvalidStateTransitionError


class ReservationState(str, Enum):
    HELD = "held"
    COMMITTED = "committed"
    RELEASED = "released"
    EXPIRED = "expired"


class SeatStatus(str, Enum):
    AVAILABLE = "available"
    RESERVED = "reserved"
    SOLD = "sold"
    BLOCKED = "blocked"


class _StateMachine:
    """
    Table-driven lifecycle controller.
    Subclasses define the status enum and the legal transitions.
    """

    _STATUS_TYPE: ClassVar[type[Enum]]
    _ALLOWED_TRANSITIONS: ClassVar[Dict[Enum, Set[Enum]]]

    @classmethod
    def can_transition(cls, from_status: Enum, to_status: Enum) -> bool:
        """
        Returns True if transition is allowed.
        """
        cls._ensure_valid_status(from_status)
        cls._ensure_valid_status(to_status)

        return to_status in cls._ALLOWED_TRANSITIONS.get(from_status, set())

    @classmethod
    def validate_transition(cls, from_status: Enum, to_status: Enum) -> None:
        """
        Raises InvalidStateTransitionError if transition is illegal.
        """
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=to_status.value,
            )

    @classmethod
    def is_terminal(cls, status: Enum) -> bool:
        """
        Returns True if the state is terminal (no further transitions allowed).
        """
        cls._ensure_valid_status(status)
        return len(cls._ALLOWED_TRANSITIONS.get(status, set())) == 0

    @classmethod
    def get_allowed_transitions(cls, status: Enum) -> Set[Enum]:
        cls._ensure_valid_status(status)
        return cls._ALLOWED_TRANSITIONS.get(status, set())

    @classmethod
    def _ensure_valid_status(cls, status: Enum) -> None:
        if not isinstance(status, cls._STATUS_TYPE):
            raise TypeError(
                f"Expected {cls._STATUS_TYPE.__name__}, got {type(status)}"
            )


class ReservationStateMachine(_StateMachine):
    """
    Lifecycle of a hold: held until committed (payment success),
    released (explicit cancel) or expired (sweep).
    """

    _STATUS_TYPE = ReservationState
    _ALLOWED_TRANSITIONS = {
        ReservationState.HELD: {
            ReservationState.COMMITTED,
            ReservationState.RELEASED,
            ReservationState.EXPIRED,
        },
        ReservationState.COMMITTED: set(),
        ReservationState.RELEASED: set(),
        ReservationState.EXPIRED: set(),
    }


class SeatStateMachine(_StateMachine):
    """
    Per-seat lifecycle. Sold is terminal; blocked only leaves through a
    manual unblock back to available.
    """

    _STATUS_TYPE = SeatStatus
    _ALLOWED_TRANSITIONS = {
        SeatStatus.AVAILABLE: {
            SeatStatus.RESERVED,
            SeatStatus.BLOCKED,
        },
        SeatStatus.RESERVED: {
            SeatStatus.SOLD,
            SeatStatus.AVAILABLE,
            SeatStatus.BLOCKED,
        },
        SeatStatus.SOLD: set(),
        SeatStatus.BLOCKED: {
            SeatStatus.AVAILABLE,
        },
    }
