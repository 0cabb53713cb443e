from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from boxoffice.domain.exceptions import InvalidPricingInputError, PricingConfigurationError
from boxoffice.domain.pricing_rules import EarlyBird, GroupDiscount
from boxoffice.domain.state_machine import SeatStatus
from boxoffice.infrastructure.db.session import session_scope
from boxoffice.infrastructure.repositories.catalog_repository import (
    CatalogRepository,
    SeatDefinition,
)

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def test_ticket_type_round_trips_to_terms(session_factory, make_ticket_type):
    ticket_type_id = make_ticket_type(
        early_bird_ends_at=NOW + timedelta(days=1),
        early_bird_percent=Decimal("10"),
        group_min_quantity=3,
        group_discount_percent=Decimal("10"),
        age_min=18,
    )

    with session_scope(session_factory) as db:
        terms = CatalogRepository(db).get_ticket_type(ticket_type_id).to_terms()

    assert terms.rule(EarlyBird).percent == Decimal("10")
    assert terms.rule(EarlyBird).ends_at == NOW + timedelta(days=1)
    assert terms.rule(GroupDiscount).min_quantity == 3
    assert terms.restrictions.age_min == 18


def test_rejects_non_positive_base_price(make_ticket_type):
    with pytest.raises(InvalidPricingInputError):
        make_ticket_type(base_price=0)


def test_rejects_half_configured_rule(make_ticket_type):
    with pytest.raises(PricingConfigurationError):
        make_ticket_type(early_bird_percent=Decimal("10"))


def test_seat_cannot_have_both_pricing_models(session_factory):
    definition = SeatDefinition(
        section="Terrace",
        row_name="T1",
        seat_number="1",
        price=4500,
        table_label="T1",
        table_price=24000,
    )

    with pytest.raises(PricingConfigurationError):
        with session_scope(session_factory) as db:
            CatalogRepository(db).create_seats("event1", [definition])


def test_seat_needs_a_price(session_factory):
    definition = SeatDefinition(section="Stalls", row_name="A", seat_number="1")

    with pytest.raises(PricingConfigurationError):
        with session_scope(session_factory) as db:
            CatalogRepository(db).create_seats("event1", [definition])


def test_blocked_seats_start_blocked(session_factory):
    definitions = [
        SeatDefinition(section="Stalls", row_name="A", seat_number="1", price=4500),
        SeatDefinition(section="Stalls", row_name="A", seat_number="2", price=4500, is_blocked=True),
    ]

    with session_scope(session_factory) as db:
        seats = CatalogRepository(db).create_seats("event1", definitions)
        statuses = [seat.status for seat in seats]

    assert statuses == [SeatStatus.AVAILABLE, SeatStatus.BLOCKED]
