from dataclasses import dataclass
from datetime import datetime

from boxoffice.domain.exceptions import InvalidPricingInputError
from boxoffice.domain.money import discounted, surcharged
from boxoffice.domain.pricing_rules import (
    AppliedRule,
    EarlyBird,
    FixedDiscount,
    LastMinute,
    TicketTerms,
)


@dataclass(frozen=True)
class PriceQuote:
    unit_price: int
    total_price: int
    applied_rule: AppliedRule
    base_price: int
    quantity: int
    currency: str
    currency_exponent: int


class PricingEngine:
    """
    Time-based unit pricing for a ticket type.

    Exactly one rule applies per quote, in this order:
    early-bird window, last-minute surcharge, fixed discount, base price.
    The result depends only on (ticket_type, quantity, now).
    """

    def compute_price(
        self,
        ticket_type: TicketTerms,
        quantity: int,
        now: datetime,
    ) -> PriceQuote:
        if ticket_type.base_price <= 0:
            raise InvalidPricingInputError(
                f"Base price must be positive, got {ticket_type.base_price}"
            )
        if quantity < 1:
            raise InvalidPricingInputError(
                f"Quantity must be at least 1, got {quantity}"
            )

        unit_price, applied_rule = self._unit_price(ticket_type, now)

        return PriceQuote(
            unit_price=unit_price,
            total_price=unit_price * quantity,
            applied_rule=applied_rule,
            base_price=ticket_type.base_price,
            quantity=quantity,
            currency=ticket_type.currency,
            currency_exponent=ticket_type.currency_exponent,
        )

    @staticmethod
    def _unit_price(ticket_type: TicketTerms, now: datetime) -> tuple[int, AppliedRule]:
        base = ticket_type.base_price

        early_bird = ticket_type.rule(EarlyBird)
        if early_bird is not None and early_bird.is_active(now):
            return discounted(base, early_bird.percent), AppliedRule.EARLY_BIRD

        last_minute = ticket_type.rule(LastMinute)
        if last_minute is not None and last_minute.is_active(now):
            return surcharged(base, last_minute.percent), AppliedRule.LAST_MINUTE

        fixed = ticket_type.rule(FixedDiscount)
        if fixed is not None:
            return discounted(base, fixed.percent), AppliedRule.FIXED_DISCOUNT

        return base, AppliedRule.BASE_PRICE
