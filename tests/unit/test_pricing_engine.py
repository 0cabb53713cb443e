# tests/unit/test_pricing_engine.py

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from boxoffice.domain.exceptions import InvalidPricingInputError, PricingConfigurationError
from boxoffice.domain.money import to_major_units
from boxoffice.domain.pricing_engine import PricingEngine
from boxoffice.domain.pricing_rules import (
    AppliedRule,
    EarlyBird,
    FixedDiscount,
    LastMinute,
    PricingTier,
    TicketTerms,
)

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)

engine = PricingEngine()


def _terms(base_price: int = 2000, rules=()) -> TicketTerms:
    return TicketTerms(id="tt1", event_id="event1", base_price=base_price, rules=tuple(rules))


# ---------------------
# RULE SELECTION
# ---------------------

def test_base_price_when_no_rules():
    quote = engine.compute_price(_terms(), 2, NOW)

    assert quote.unit_price == 2000
    assert quote.total_price == 4000
    assert quote.applied_rule == AppliedRule.BASE_PRICE


def test_early_bird_discount_applies_inside_window():
    terms = _terms(rules=[EarlyBird(ends_at=NOW + timedelta(days=1), percent=Decimal("10"))])

    quote = engine.compute_price(terms, 3, NOW)

    assert quote.unit_price == 1800
    assert quote.total_price == 5400
    assert quote.applied_rule == AppliedRule.EARLY_BIRD


def test_early_bird_end_is_inclusive():
    terms = _terms(rules=[EarlyBird(ends_at=NOW, percent=Decimal("10"))])

    assert engine.compute_price(terms, 1, NOW).applied_rule == AppliedRule.EARLY_BIRD
    assert (
        engine.compute_price(terms, 1, NOW + timedelta(seconds=1)).applied_rule
        == AppliedRule.BASE_PRICE
    )


def test_early_bird_not_active_before_its_start():
    terms = _terms(
        rules=[
            EarlyBird(
                starts_at=NOW + timedelta(hours=1),
                ends_at=NOW + timedelta(days=1),
                percent=Decimal("10"),
            )
        ]
    )

    assert engine.compute_price(terms, 1, NOW).applied_rule == AppliedRule.BASE_PRICE


def test_last_minute_surcharge_from_its_start():
    terms = _terms(rules=[LastMinute(starts_at=NOW, percent=Decimal("15"))])

    quote = engine.compute_price(terms, 1, NOW)

    assert quote.unit_price == 2300
    assert quote.applied_rule == AppliedRule.LAST_MINUTE


def test_early_bird_wins_over_last_minute():
    terms = _terms(
        rules=[
            LastMinute(starts_at=NOW - timedelta(hours=1), percent=Decimal("15")),
            EarlyBird(ends_at=NOW + timedelta(hours=1), percent=Decimal("10")),
        ]
    )

    assert engine.compute_price(terms, 1, NOW).applied_rule == AppliedRule.EARLY_BIRD


def test_fixed_discount_when_no_time_rule_is_active():
    terms = _terms(
        rules=[
            LastMinute(starts_at=NOW + timedelta(days=3), percent=Decimal("15")),
            FixedDiscount(percent=Decimal("25")),
        ]
    )

    quote = engine.compute_price(terms, 2, NOW)

    assert quote.unit_price == 1500
    assert quote.total_price == 3000
    assert quote.applied_rule == AppliedRule.FIXED_DISCOUNT


# ---------------------
# ROUNDING
# ---------------------

def test_rounds_half_up_to_minor_unit():
    assert engine.compute_price(_terms(1001, [FixedDiscount(Decimal("50"))]), 1, NOW).unit_price == 501
    assert engine.compute_price(_terms(999, [FixedDiscount(Decimal("15"))]), 1, NOW).unit_price == 849


def test_total_is_unit_times_quantity():
    quote = engine.compute_price(_terms(1001, [FixedDiscount(Decimal("50"))]), 7, NOW)

    assert quote.total_price == 501 * 7


def test_major_units_rendering():
    assert to_major_units(5400) == Decimal("54.00")
    assert to_major_units(5400, exponent=0) == Decimal("5400")


def test_is_deterministic():
    terms = _terms(rules=[EarlyBird(ends_at=NOW + timedelta(days=1), percent=Decimal("12.5"))])

    assert engine.compute_price(terms, 4, NOW) == engine.compute_price(terms, 4, NOW)


# ---------------------
# INVALID INPUT
# ---------------------

@pytest.mark.parametrize("quantity", [0, -1])
def test_rejects_non_positive_quantity(quantity):
    with pytest.raises(InvalidPricingInputError):
        engine.compute_price(_terms(), quantity, NOW)


def test_rejects_non_positive_base_price():
    with pytest.raises(InvalidPricingInputError):
        engine.compute_price(_terms(base_price=0), 1, NOW)


def test_rejects_out_of_range_discount():
    with pytest.raises(PricingConfigurationError):
        FixedDiscount(percent=Decimal("120"))


def test_rejects_duplicate_rule_kinds():
    with pytest.raises(PricingConfigurationError):
        _terms(rules=[FixedDiscount(Decimal("5")), FixedDiscount(Decimal("10"))])


def test_tier_multipliers():
    assert PricingTier.VIP.suggested_multiplier == Decimal("2.5")
    assert PricingTier.EARLY_BIRD.suggested_multiplier == Decimal("0.8")
