from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from boxoffice.domain.state_machine import ReservationState


class ReservationKind(str, Enum):
    TICKETS = "tickets"
    SEATS = "seats"


class PurchaseChannel(str, Enum):
    ONLINE = "online"
    CASH = "cash"
    ADMIN = "admin"
    BULK = "bulk"


@dataclass(frozen=True)
class ReservationHandle:
    """What a caller keeps between reserve and commit/release."""

    reservation_id: str
    kind: ReservationKind
    buyer_id: str
    event_id: str
    state: ReservationState
    quantity: int
    expires_at: datetime
    ticket_type_id: Optional[str] = None
    seat_ids: tuple[str, ...] = ()
    unit_price: Optional[int] = None
    total_price: int = 0
    currency: str = "USD"
    channel: PurchaseChannel = PurchaseChannel.ONLINE


@dataclass(frozen=True)
class ReleaseOutcome:
    """
    Result of a release. `released` is False when the hold was already
    terminal or unknown; `prior_state` is None for unknown ids.
    """

    reservation_id: str
    released: bool
    prior_state: Optional[ReservationState]


@dataclass
class SweepReport:
    expired_reservations: list[str] = field(default_factory=list)
    released_seats: list[str] = field(default_factory=list)
    errors: int = 0

    @property
    def released_count(self) -> int:
        return len(self.expired_reservations) + len(self.released_seats)
