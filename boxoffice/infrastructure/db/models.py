# boxoffice/infrastructure/db/models.py

from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from boxoffice.domain.pricing_rules import (
    EarlyBird,
    FixedDiscount,
    GroupDiscount,
    LastMinute,
    PricingTier,
    Restrictions,
    TicketTerms,
)
from boxoffice.domain.reservation import ReservationKind
from boxoffice.domain.state_machine import ReservationState, SeatStatus
from boxoffice.infrastructure.db.session import Base
from boxoffice.infrastructure.db.types import UTCDateTime


def _new_id() -> str:
    return str(uuid4())


def _enum_column(enum_cls: type[PyEnum], name: str) -> Enum:
    # Store enum values ("reserved"), not member names ("RESERVED").
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


class TicketType(Base):
    """
    General-admission inventory and the pricing terms for it.
    Counters are only mutated through InventoryStore conditional updates.
    """

    __tablename__ = "ticket_types"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    event_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)

    base_price: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="USD")
    currency_exponent: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    pricing_tier: Mapped[PricingTier] = mapped_column(
        _enum_column(PricingTier, "pricing_tier"),
        nullable=False,
        default=PricingTier.BASIC,
    )

    quantity_available: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_sold: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity_reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    fixed_discount_percent: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    early_bird_starts_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    early_bird_ends_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    early_bird_percent: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    last_minute_starts_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_minute_percent: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    group_min_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    group_discount_percent: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)

    valid_from: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    valid_until: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    max_per_order: Mapped[int] = mapped_column(Integer, nullable=False, default=10)

    age_min: Mapped[int | None] = mapped_column(Integer, nullable=True)
    age_max: Mapped[int | None] = mapped_column(Integer, nullable=True)
    member_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("base_price > 0", name="ck_ticket_type_base_price_positive"),
        CheckConstraint("quantity_available >= 0", name="ck_ticket_type_available_nonnegative"),
        CheckConstraint("quantity_sold >= 0", name="ck_ticket_type_sold_nonnegative"),
        CheckConstraint("quantity_reserved >= 0", name="ck_ticket_type_reserved_nonnegative"),
        CheckConstraint(
            "quantity_sold + quantity_reserved <= quantity_available",
            name="ck_ticket_type_no_oversell",
        ),
        CheckConstraint("max_per_order > 0", name="ck_ticket_type_max_per_order_positive"),
    )

    def to_terms(self) -> TicketTerms:
        rules = []
        if self.early_bird_ends_at is not None and self.early_bird_percent is not None:
            rules.append(
                EarlyBird(
                    ends_at=self.early_bird_ends_at,
                    percent=Decimal(self.early_bird_percent),
                    starts_at=self.early_bird_starts_at,
                )
            )
        if self.last_minute_starts_at is not None and self.last_minute_percent is not None:
            rules.append(
                LastMinute(
                    starts_at=self.last_minute_starts_at,
                    percent=Decimal(self.last_minute_percent),
                )
            )
        if self.fixed_discount_percent is not None:
            rules.append(FixedDiscount(percent=Decimal(self.fixed_discount_percent)))
        if self.group_min_quantity is not None and self.group_discount_percent is not None:
            rules.append(
                GroupDiscount(
                    min_quantity=self.group_min_quantity,
                    percent=Decimal(self.group_discount_percent),
                )
            )

        return TicketTerms(
            id=self.id,
            event_id=self.event_id,
            base_price=self.base_price,
            currency=self.currency,
            currency_exponent=self.currency_exponent,
            pricing_tier=self.pricing_tier,
            rules=tuple(rules),
            valid_from=self.valid_from,
            valid_until=self.valid_until,
            max_per_order=self.max_per_order,
            restrictions=Restrictions(
                age_min=self.age_min,
                age_max=self.age_max,
                member_only=self.member_only,
            ),
        )


class Seat(Base):
    """
    Assigned-seating inventory. A seat is priced either per seat (`price`)
    or as part of a table (`table_label` + `table_price`), never both.
    """

    __tablename__ = "seats"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    event_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    seating_chart_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    section: Mapped[str] = mapped_column(String(64), nullable=False)
    row_name: Mapped[str] = mapped_column(String(16), nullable=False)
    seat_number: Mapped[str] = mapped_column(String(16), nullable=False)
    position_x: Mapped[float | None] = mapped_column(Float, nullable=True)
    position_y: Mapped[float | None] = mapped_column(Float, nullable=True)

    price: Mapped[int | None] = mapped_column(Integer, nullable=True)
    table_label: Mapped[str | None] = mapped_column(String(32), nullable=True)
    table_price: Mapped[int | None] = mapped_column(Integer, nullable=True)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="USD")

    seat_type: Mapped[str] = mapped_column(String(32), nullable=False, default="standard")
    is_ada: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    status: Mapped[SeatStatus] = mapped_column(
        _enum_column(SeatStatus, "seat_status"),
        nullable=False,
        default=SeatStatus.AVAILABLE,
    )
    reserved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reserved_until: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    # Ledger row that owns the hold. Releases and commits match on it.
    reservation_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    sold_to: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "event_id",
            "section",
            "row_name",
            "seat_number",
            name="uq_seat_event_location",
        ),
        CheckConstraint(
            "price IS NULL OR table_price IS NULL",
            name="ck_seat_single_pricing_model",
        ),
        CheckConstraint(
            "status <> 'reserved' OR (reserved_by IS NOT NULL AND reserved_until IS NOT NULL)",
            name="ck_seat_reserved_has_holder",
        ),
        CheckConstraint(
            "status = 'reserved' OR "
            "(reserved_by IS NULL AND reserved_until IS NULL AND reservation_id IS NULL)",
            name="ck_seat_holder_only_when_reserved",
        ),
        Index("ix_seats_status_reserved_until", "status", "reserved_until"),
    )


class Reservation(Base):
    """
    Ledger row for a hold. The id is the token handed back to callers.
    """

    __tablename__ = "reservations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    kind: Mapped[ReservationKind] = mapped_column(
        _enum_column(ReservationKind, "reservation_kind"),
        nullable=False,
    )
    buyer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    event_id: Mapped[str] = mapped_column(String(64), nullable=False)
    ticket_type_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("ticket_types.id"),
        nullable=True,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    seat_ids: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    channel: Mapped[str] = mapped_column(String(16), nullable=False, default="online")
    state: Mapped[ReservationState] = mapped_column(
        _enum_column(ReservationState, "reservation_state"),
        nullable=False,
        default=ReservationState.HELD,
    )
    unit_price: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_price: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="USD")

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    closed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_reservation_quantity_positive"),
        Index("ix_reservations_state_expires_at", "state", "expires_at"),
    )


class OutboxEvent(Base):
    __tablename__ = "outbox_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    aggregate_type: Mapped[str] = mapped_column(String(64), nullable=False)
    aggregate_id: Mapped[str] = mapped_column(String(36), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    dedupe_key: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="PENDING")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        server_default=func.now(),
        nullable=False,
    )
    published_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("dedupe_key", name="uq_outbox_dedupe_key"),
    )
