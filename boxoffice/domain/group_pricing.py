from dataclasses import dataclass

from boxoffice.domain.exceptions import InvalidPricingInputError
from boxoffice.domain.money import discounted
from boxoffice.domain.pricing_rules import GroupDiscount, TicketTerms


@dataclass(frozen=True)
class GroupPrice:
    total_price: int
    discount_amount: int
    price_per_ticket: int
    applied: bool


class GroupPricingCalculator:
    """
    Quantity-threshold discount layered on a unit price already produced
    by PricingEngine. Below the threshold the total is unit_price * quantity.
    """

    def compute_group_price(
        self,
        ticket_type: TicketTerms,
        unit_price: int,
        quantity: int,
    ) -> GroupPrice:
        if quantity < 1:
            raise InvalidPricingInputError(
                f"Quantity must be at least 1, got {quantity}"
            )

        undiscounted_total = unit_price * quantity
        rule = ticket_type.rule(GroupDiscount)

        if rule is None or not rule.applies_to(quantity):
            return GroupPrice(
                total_price=undiscounted_total,
                discount_amount=0,
                price_per_ticket=unit_price,
                applied=False,
            )

        price_per_ticket = discounted(unit_price, rule.percent)
        total_price = price_per_ticket * quantity

        return GroupPrice(
            total_price=total_price,
            discount_amount=undiscounted_total - total_price,
            price_per_ticket=price_per_ticket,
            applied=True,
        )
