# boxoffice/infrastructure/repositories/catalog_repository.py

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from boxoffice.domain.exceptions import (
    InvalidPricingInputError,
    PricingConfigurationError,
)
from boxoffice.domain.pricing_rules import PricingTier
from boxoffice.domain.state_machine import SeatStatus
from boxoffice.infrastructure.db.models import Seat, TicketType


@dataclass
class SeatDefinition:
    section: str
    row_name: str
    seat_number: str
    price: int | None = None
    table_label: str | None = None
    table_price: int | None = None
    seat_type: str = "standard"
    is_ada: bool = False
    is_blocked: bool = False
    position_x: float | None = None
    position_y: float | None = None

    def validate(self) -> None:
        if self.price is not None and self.table_price is not None:
            raise PricingConfigurationError(
                f"Seat {self.section}/{self.row_name}/{self.seat_number} "
                "has both a per-seat and a per-table price"
            )
        if self.price is None and self.table_price is None:
            raise PricingConfigurationError(
                f"Seat {self.section}/{self.row_name}/{self.seat_number} has no price"
            )
        if self.table_price is not None and not self.table_label:
            raise PricingConfigurationError(
                f"Seat {self.section}/{self.row_name}/{self.seat_number} "
                "is priced per table but has no table label"
            )
        amount = self.price if self.price is not None else self.table_price
        if amount < 0:
            raise InvalidPricingInputError(f"Seat price must not be negative, got {amount}")


class CatalogRepository:
    """
    Inputs authored elsewhere (ticket types, seating charts). The engine
    reads these; counters and seat status belong to the stores.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_ticket_type(self, ticket_type_id: str) -> TicketType | None:
        stmt = select(TicketType).where(TicketType.id == ticket_type_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def create_ticket_type(
        self,
        event_id: str,
        name: str,
        base_price: int,
        quantity_available: int,
        currency: str = "USD",
        currency_exponent: int = 2,
        pricing_tier: PricingTier = PricingTier.BASIC,
        fixed_discount_percent: Decimal | None = None,
        early_bird_starts_at: datetime | None = None,
        early_bird_ends_at: datetime | None = None,
        early_bird_percent: Decimal | None = None,
        last_minute_starts_at: datetime | None = None,
        last_minute_percent: Decimal | None = None,
        group_min_quantity: int | None = None,
        group_discount_percent: Decimal | None = None,
        valid_from: datetime | None = None,
        valid_until: datetime | None = None,
        max_per_order: int = 10,
        age_min: int | None = None,
        age_max: int | None = None,
        member_only: bool = False,
    ) -> TicketType:
        if base_price <= 0:
            raise InvalidPricingInputError(f"Base price must be positive, got {base_price}")
        if quantity_available < 0:
            raise InvalidPricingInputError(
                f"Quantity available must not be negative, got {quantity_available}"
            )
        if (early_bird_ends_at is None) != (early_bird_percent is None):
            raise PricingConfigurationError("Early-bird rule needs both an end date and a percent")
        if (last_minute_starts_at is None) != (last_minute_percent is None):
            raise PricingConfigurationError("Last-minute rule needs both a start date and a percent")
        if (group_min_quantity is None) != (group_discount_percent is None):
            raise PricingConfigurationError("Group rule needs both a threshold and a percent")

        ticket_type = TicketType(
            event_id=event_id,
            name=name,
            base_price=base_price,
            currency=currency,
            currency_exponent=currency_exponent,
            pricing_tier=pricing_tier,
            quantity_available=quantity_available,
            quantity_sold=0,
            quantity_reserved=0,
            version=1,
            fixed_discount_percent=fixed_discount_percent,
            early_bird_starts_at=early_bird_starts_at,
            early_bird_ends_at=early_bird_ends_at,
            early_bird_percent=early_bird_percent,
            last_minute_starts_at=last_minute_starts_at,
            last_minute_percent=last_minute_percent,
            group_min_quantity=group_min_quantity,
            group_discount_percent=group_discount_percent,
            valid_from=valid_from,
            valid_until=valid_until,
            max_per_order=max_per_order,
            age_min=age_min,
            age_max=age_max,
            member_only=member_only,
        )
        # Builds the rule objects, which validate percents and windows.
        ticket_type.to_terms()

        self.db.add(ticket_type)
        self.db.flush()
        return ticket_type

    def create_seats(
        self,
        event_id: str,
        seats: list[SeatDefinition],
        seating_chart_id: str | None = None,
        currency: str = "USD",
    ) -> list[Seat]:
        for definition in seats:
            definition.validate()

        rows = [
            Seat(
                event_id=event_id,
                seating_chart_id=seating_chart_id,
                section=definition.section,
                row_name=definition.row_name,
                seat_number=definition.seat_number,
                position_x=definition.position_x,
                position_y=definition.position_y,
                price=definition.price,
                table_label=definition.table_label,
                table_price=definition.table_price,
                currency=currency,
                seat_type=definition.seat_type,
                is_ada=definition.is_ada,
                status=SeatStatus.BLOCKED if definition.is_blocked else SeatStatus.AVAILABLE,
            )
            for definition in seats
        ]
        self.db.add_all(rows)
        self.db.flush()
        return rows
