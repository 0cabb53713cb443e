from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select

from boxoffice.domain.pricing_rules import PricingTier
from boxoffice.infrastructure.db.models import Base, Seat, TicketType
from boxoffice.infrastructure.db.session import engine, session_scope
from boxoffice.infrastructure.repositories.catalog_repository import (
    CatalogRepository,
    SeatDefinition,
)

CONCERT_EVENT_ID = "summer-stage-2026"
GALA_EVENT_ID = "harbour-gala-2026"


def _days_from_now(days: int) -> datetime:
    now = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0)
    return now + timedelta(days=days)


def seed_ticket_types(catalog: CatalogRepository) -> None:
    ticket_defs = [
        {
            "name": "General Admission",
            "base_price": 2000,
            "quantity_available": 500,
            "pricing_tier": PricingTier.BASIC,
            "early_bird_ends_at": _days_from_now(7),
            "early_bird_percent": Decimal("20"),
            "last_minute_starts_at": _days_from_now(29),
            "last_minute_percent": Decimal("15"),
            "group_min_quantity": 3,
            "group_discount_percent": Decimal("10"),
        },
        {
            "name": "VIP",
            "base_price": 5000,
            "quantity_available": 40,
            "pricing_tier": PricingTier.VIP,
            "max_per_order": 4,
            "age_min": 18,
        },
        {
            "name": "Members Preview",
            "base_price": 1500,
            "quantity_available": 100,
            "pricing_tier": PricingTier.EARLY_BIRD,
            "fixed_discount_percent": Decimal("5"),
            "member_only": True,
            "valid_until": _days_from_now(14),
        },
    ]

    for item in ticket_defs:
        existing = catalog.db.execute(
            select(TicketType)
            .where(TicketType.event_id == CONCERT_EVENT_ID)
            .where(TicketType.name == item["name"])
        ).scalar_one_or_none()
        if existing:
            continue
        catalog.create_ticket_type(event_id=CONCERT_EVENT_ID, **item)


def seed_seats(catalog: CatalogRepository) -> None:
    existing = catalog.db.execute(
        select(Seat.id).where(Seat.event_id == GALA_EVENT_ID).limit(1)
    ).scalar_one_or_none()
    if existing:
        return

    seats = [
        SeatDefinition(section="Stalls", row_name=row, seat_number=str(number), price=4500)
        for row in ("A", "B", "C")
        for number in range(1, 11)
    ]
    seats.append(
        SeatDefinition(section="Stalls", row_name="A", seat_number="11", price=4500, is_ada=True)
    )
    for table in ("T1", "T2", "T3"):
        seats.extend(
            SeatDefinition(
                section="Terrace",
                row_name=table,
                seat_number=str(number),
                table_label=table,
                table_price=24000,
                seat_type="table",
            )
            for number in range(1, 7)
        )

    catalog.create_seats(GALA_EVENT_ID, seats)


def main() -> None:
    Base.metadata.create_all(bind=engine)
    with session_scope() as db:
        catalog = CatalogRepository(db)
        seed_ticket_types(catalog)
        seed_seats(catalog)
    print(f"Seed complete: ticket types for {CONCERT_EVENT_ID}, seating for {GALA_EVENT_ID}.")


if __name__ == "__main__":
    main()
