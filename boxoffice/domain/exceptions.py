

class BoxOfficeError(Exception):
    """
    Base exception for all domain-level errors
    inside the box office hold engine.
    """


class InvalidStateTransitionError(BoxOfficeError):
    """
    Raised when an illegal reservation or seat state transition is attempted.
    """

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class InsufficientInventoryError(BoxOfficeError):
    """Raised when the requested quantity or seats are not available."""

    def __init__(self, message: str, requested: int = 0, available: int = 0):
        self.requested = requested
        self.available = available
        super().__init__(message)


class TicketTypeNotFoundError(InsufficientInventoryError):
    """Raised when a ticket type id does not exist."""

    def __init__(self, ticket_type_id: str):
        self.ticket_type_id = ticket_type_id
        super().__init__(f"Ticket type not found: {ticket_type_id}")


class SeatNotFoundError(InsufficientInventoryError):
    """Raised when one or more requested seat ids do not exist."""

    def __init__(self, seat_ids: list[str]):
        self.seat_ids = list(seat_ids)
        super().__init__(
            f"Seats not found: {', '.join(self.seat_ids)}",
            requested=len(self.seat_ids),
        )


class AlreadyReservedError(BoxOfficeError):
    """
    Raised when a specific seat is held, sold or blocked.
    `conflicts` maps seat id -> current status.
    """

    def __init__(self, conflicts: dict[str, str]):
        self.conflicts = dict(conflicts)
        message = "Seats not available: " + ", ".join(
            f"{seat_id} ({status})" for seat_id, status in sorted(self.conflicts.items())
        )
        super().__init__(message)


class ReservationNotFoundError(BoxOfficeError):
    """Raised when a reservation handle is unknown, terminal or expired."""

    def __init__(
        self,
        reservation_id: str,
        prior_state: str | None = None,
        message: str | None = None,
    ):
        self.reservation_id = reservation_id
        self.prior_state = prior_state

        if message is None and prior_state is None:
            message = f"Reservation not found: {reservation_id}"
        elif message is None:
            message = f"Reservation {reservation_id} is no longer held (state: {prior_state})"
        super().__init__(message)


class SeatConflictError(ReservationNotFoundError):
    """
    Raised by a seat commit when some seats are not held by the committing
    buyer. `conflicts` maps seat id -> current status.
    """

    def __init__(self, conflicts: dict[str, str], reservation_id: str | None = None):
        self.conflicts = dict(conflicts)
        message = "Seats not held by this buyer: " + ", ".join(
            f"{seat_id} ({status})" for seat_id, status in sorted(self.conflicts.items())
        )
        super().__init__(reservation_id or "", prior_state="conflict", message=message)


class RestrictionViolationError(BoxOfficeError):
    """Raised when a buyer fails an age, membership or order-size rule."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class SaleWindowClosedError(RestrictionViolationError):
    """Raised when a ticket type is requested outside its sale window."""


class InvalidPricingInputError(BoxOfficeError):
    """Raised for non-positive base prices or quantities."""


class PricingConfigurationError(InvalidPricingInputError):
    """Raised when pricing configuration is contradictory."""
