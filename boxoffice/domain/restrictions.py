from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from boxoffice.domain.exceptions import RestrictionViolationError, SaleWindowClosedError
from boxoffice.domain.pricing_rules import TicketTerms
from boxoffice.domain.timeutils import ensure_utc


@dataclass(frozen=True)
class BuyerProfile:
    """Opaque buyer id plus the facts restriction rules look at."""

    buyer_id: str
    age: Optional[int] = None
    is_member: bool = False


def check_sale_window(ticket_type: TicketTerms, now: datetime) -> None:
    now = ensure_utc(now)
    if ticket_type.valid_from is not None and now < ensure_utc(ticket_type.valid_from):
        raise SaleWindowClosedError(
            [f"Sales for ticket type {ticket_type.id} open at {ensure_utc(ticket_type.valid_from).isoformat()}"]
        )
    if ticket_type.valid_until is not None and now > ensure_utc(ticket_type.valid_until):
        raise SaleWindowClosedError(
            [f"Sales for ticket type {ticket_type.id} closed at {ensure_utc(ticket_type.valid_until).isoformat()}"]
        )


def validate_ticket_restrictions(
    ticket_type: TicketTerms,
    buyer: BuyerProfile,
    quantity: int,
    now: datetime,
) -> None:
    """
    Raises RestrictionViolationError listing every failed rule.
    Age limits are only checked when the buyer's age is known.
    """
    check_sale_window(ticket_type, now)

    errors: list[str] = []
    restrictions = ticket_type.restrictions

    if quantity > ticket_type.max_per_order:
        errors.append(f"Maximum {ticket_type.max_per_order} tickets per order")

    if buyer.age is not None:
        if restrictions.age_min is not None and buyer.age < restrictions.age_min:
            errors.append(f"Minimum age requirement: {restrictions.age_min} years")
        if restrictions.age_max is not None and buyer.age > restrictions.age_max:
            errors.append(f"Maximum age requirement: {restrictions.age_max} years")

    if restrictions.member_only and not buyer.is_member:
        errors.append("This ticket is available to members only")

    if errors:
        raise RestrictionViolationError(errors)


def validate_seat_request(seat_ids: list[str], max_seats: int) -> None:
    errors: list[str] = []
    if not seat_ids:
        errors.append("At least one seat must be requested")
    if len(seat_ids) > max_seats:
        errors.append(f"Maximum {max_seats} seats per order")
    if errors:
        raise RestrictionViolationError(errors)
