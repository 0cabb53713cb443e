from datetime import datetime, timedelta, timezone
from decimal import Decimal

from boxoffice.domain.group_pricing import GroupPricingCalculator
from boxoffice.domain.pricing_engine import PricingEngine
from boxoffice.domain.pricing_rules import EarlyBird, GroupDiscount, TicketTerms

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)

calculator = GroupPricingCalculator()


def _terms(rules=()) -> TicketTerms:
    return TicketTerms(id="tt1", event_id="event1", base_price=2000, rules=tuple(rules))


def test_below_threshold_is_exact_product():
    terms = _terms([GroupDiscount(min_quantity=5, percent=Decimal("10"))])

    price = calculator.compute_group_price(terms, 1999, 4)

    assert price.total_price == 1999 * 4
    assert price.discount_amount == 0
    assert price.price_per_ticket == 1999
    assert not price.applied


def test_no_rule_is_exact_product():
    price = calculator.compute_group_price(_terms(), 1800, 10)

    assert price.total_price == 18000
    assert not price.applied


def test_discount_applies_at_threshold():
    terms = _terms([GroupDiscount(min_quantity=3, percent=Decimal("10"))])

    price = calculator.compute_group_price(terms, 2000, 3)

    assert price.price_per_ticket == 1800
    assert price.total_price == 5400
    assert price.discount_amount == 600
    assert price.applied


def test_total_is_rounded_per_ticket_times_quantity():
    terms = _terms([GroupDiscount(min_quantity=2, percent=Decimal("15"))])

    price = calculator.compute_group_price(terms, 999, 3)

    # 999 * 0.85 = 849.15 -> 849 per ticket
    assert price.price_per_ticket == 849
    assert price.total_price == 849 * 3
    assert price.discount_amount == 999 * 3 - 849 * 3


def test_stacks_after_time_rule():
    terms = _terms(
        [
            EarlyBird(ends_at=NOW + timedelta(days=1), percent=Decimal("10")),
            GroupDiscount(min_quantity=3, percent=Decimal("10")),
        ]
    )

    quote = PricingEngine().compute_price(terms, 3, NOW)
    price = calculator.compute_group_price(terms, quote.unit_price, 3)

    assert quote.unit_price == 1800
    assert price.price_per_ticket == 1620
    assert price.total_price == 4860
    assert price.discount_amount == 540
