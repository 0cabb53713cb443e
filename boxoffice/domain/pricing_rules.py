"""
Ticket terms and the discount rules attached to them.

Discount rules are a closed set of variants. PricingEngine picks at most one
time-based rule (EarlyBird, LastMinute, FixedDiscount) per quote;
GroupDiscount is applied afterwards by GroupPricingCalculator.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, TypeVar, Union

from boxoffice.domain.exceptions import PricingConfigurationError
from boxoffice.domain.timeutils import ensure_utc


class PricingTier(str, Enum):
    BASIC = "basic"
    EARLY_BIRD = "early_bird"
    PREMIUM = "premium"
    VIP = "vip"
    LAST_MINUTE = "last_minute"

    @property
    def suggested_multiplier(self) -> Decimal:
        """Suggested base-price multiplier relative to general admission."""
        return _TIER_MULTIPLIERS[self]


_TIER_MULTIPLIERS = {
    PricingTier.BASIC: Decimal("1.0"),
    PricingTier.EARLY_BIRD: Decimal("0.8"),
    PricingTier.PREMIUM: Decimal("1.5"),
    PricingTier.VIP: Decimal("2.5"),
    PricingTier.LAST_MINUTE: Decimal("1.2"),
}


class AppliedRule(str, Enum):
    EARLY_BIRD = "early_bird"
    LAST_MINUTE = "last_minute"
    FIXED_DISCOUNT = "fixed_discount"
    BASE_PRICE = "base_price"


def _check_discount_percent(name: str, percent: Decimal) -> None:
    if not Decimal(0) < percent <= Decimal(100):
        raise PricingConfigurationError(
            f"{name} percent must be in (0, 100], got {percent}"
        )


@dataclass(frozen=True)
class EarlyBird:
    ends_at: datetime
    percent: Decimal
    starts_at: Optional[datetime] = None

    def __post_init__(self):
        _check_discount_percent("Early-bird", self.percent)
        if self.starts_at is not None and ensure_utc(self.starts_at) > ensure_utc(self.ends_at):
            raise PricingConfigurationError("Early-bird window starts after it ends")

    def is_active(self, now: datetime) -> bool:
        now = ensure_utc(now)
        if self.starts_at is not None and now < ensure_utc(self.starts_at):
            return False
        return now <= ensure_utc(self.ends_at)


@dataclass(frozen=True)
class LastMinute:
    starts_at: datetime
    percent: Decimal

    def __post_init__(self):
        if self.percent <= 0:
            raise PricingConfigurationError(
                f"Last-minute surcharge must be positive, got {self.percent}"
            )

    def is_active(self, now: datetime) -> bool:
        return ensure_utc(now) >= ensure_utc(self.starts_at)


@dataclass(frozen=True)
class FixedDiscount:
    percent: Decimal

    def __post_init__(self):
        _check_discount_percent("Fixed discount", self.percent)


@dataclass(frozen=True)
class GroupDiscount:
    min_quantity: int
    percent: Decimal

    def __post_init__(self):
        _check_discount_percent("Group discount", self.percent)
        if self.min_quantity < 1:
            raise PricingConfigurationError(
                f"Group discount threshold must be at least 1, got {self.min_quantity}"
            )

    def applies_to(self, quantity: int) -> bool:
        return quantity >= self.min_quantity


DiscountRule = Union[EarlyBird, LastMinute, FixedDiscount, GroupDiscount]

RuleT = TypeVar("RuleT", EarlyBird, LastMinute, FixedDiscount, GroupDiscount)


@dataclass(frozen=True)
class Restrictions:
    age_min: Optional[int] = None
    age_max: Optional[int] = None
    member_only: bool = False

    def __post_init__(self):
        if (
            self.age_min is not None
            and self.age_max is not None
            and self.age_min > self.age_max
        ):
            raise PricingConfigurationError(
                f"age_min {self.age_min} is greater than age_max {self.age_max}"
            )


@dataclass(frozen=True)
class TicketTerms:
    """Everything pricing and restriction checks need about a ticket type."""

    id: str
    event_id: str
    base_price: int
    currency: str = "USD"
    currency_exponent: int = 2
    pricing_tier: PricingTier = PricingTier.BASIC
    rules: tuple[DiscountRule, ...] = ()
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    max_per_order: int = 10
    restrictions: Restrictions = field(default_factory=Restrictions)

    def __post_init__(self):
        seen = set()
        for rule in self.rules:
            kind = type(rule)
            if kind in seen:
                raise PricingConfigurationError(
                    f"Ticket type {self.id} has more than one {kind.__name__} rule"
                )
            seen.add(kind)

    def rule(self, kind: type[RuleT]) -> Optional[RuleT]:
        for rule in self.rules:
            if isinstance(rule, kind):
                return rule
        return None
