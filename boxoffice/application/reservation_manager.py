import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional, TypeVar, Union

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from boxoffice.config.settings import Settings, settings
from boxoffice.domain.exceptions import (
    PricingConfigurationError,
    ReservationNotFoundError,
    SeatNotFoundError,
)
from boxoffice.domain.group_pricing import GroupPricingCalculator
from boxoffice.domain.inventory import EventInventorySummary, InventorySnapshot
from boxoffice.domain.pricing_engine import PricingEngine
from boxoffice.domain.pricing_rules import AppliedRule, TicketTerms
from boxoffice.domain.reservation import (
    PurchaseChannel,
    ReleaseOutcome,
    ReservationHandle,
    ReservationKind,
    SweepReport,
)
from boxoffice.domain.restrictions import (
    BuyerProfile,
    validate_seat_request,
    validate_ticket_restrictions,
)
from boxoffice.domain.state_machine import ReservationState
from boxoffice.domain.timeutils import ensure_utc, utc_now
from boxoffice.infrastructure.db.models import Reservation, Seat
from boxoffice.infrastructure.db.session import SessionLocal, session_scope
from boxoffice.infrastructure.repositories.inventory_store import InventoryStore
from boxoffice.infrastructure.repositories.outbox_repository import OutboxRepository
from boxoffice.infrastructure.repositories.reservation_repository import ReservationRepository
from boxoffice.infrastructure.repositories.seat_store import SeatStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

HandleOrId = Union[ReservationHandle, str]


@dataclass(frozen=True)
class Quote:
    ticket_type_id: str
    quantity: int
    unit_price: int
    applied_rule: AppliedRule
    price_per_ticket: int
    discount_amount: int
    group_discount_applied: bool
    total_price: int
    currency: str
    currency_exponent: int


@dataclass(frozen=True)
class SeatQuote:
    """Per-seat prices plus each distinct table's price, counted once."""

    seat_ids: tuple[str, ...]
    total_price: int
    currency: str
    seat_prices: dict[str, int] = field(default_factory=dict)
    table_prices: dict[str, int] = field(default_factory=dict)


def _as_buyer(buyer: Union[BuyerProfile, str]) -> BuyerProfile:
    if isinstance(buyer, BuyerProfile):
        return buyer
    return BuyerProfile(buyer_id=buyer)


def _reservation_id(handle_or_id: HandleOrId) -> str:
    if isinstance(handle_or_id, ReservationHandle):
        return handle_or_id.reservation_id
    return handle_or_id


def to_handle(reservation: Reservation) -> ReservationHandle:
    return ReservationHandle(
        reservation_id=reservation.id,
        kind=reservation.kind,
        buyer_id=reservation.buyer_id,
        event_id=reservation.event_id,
        state=reservation.state,
        quantity=reservation.quantity,
        expires_at=ensure_utc(reservation.expires_at),
        ticket_type_id=reservation.ticket_type_id,
        seat_ids=tuple(reservation.seat_ids or ()),
        unit_price=reservation.unit_price,
        total_price=reservation.total_price,
        currency=reservation.currency,
        channel=PurchaseChannel(reservation.channel),
    )


def _event_payload(reservation: Reservation, **extra) -> dict:
    payload = {
        "reservation_id": reservation.id,
        "kind": reservation.kind.value,
        "buyer_id": reservation.buyer_id,
        "event_id": reservation.event_id,
        "ticket_type_id": reservation.ticket_type_id,
        "seat_ids": list(reservation.seat_ids or ()),
        "quantity": reservation.quantity,
        "total_price": reservation.total_price,
        "currency": reservation.currency,
        "channel": reservation.channel,
    }
    payload.update(extra)
    return payload


class ReservationManager:
    """
    Coordinates pricing, restriction checks and the inventory stores.

    Every public mutation runs as one transaction holding the conditional
    store update, the reservation ledger row and the outbox event. Storage
    contention is retried; business conflicts propagate unchanged.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] = SessionLocal,
        config: Settings = settings,
        pricing_engine: Optional[PricingEngine] = None,
        group_calculator: Optional[GroupPricingCalculator] = None,
    ):
        self.session_factory = session_factory
        self.config = config
        self.pricing_engine = pricing_engine or PricingEngine()
        self.group_calculator = group_calculator or GroupPricingCalculator()

    # -----------------------------
    # Quotes
    # -----------------------------
    def quote(self, ticket_type_id: str, quantity: int, now: Optional[datetime] = None) -> Quote:
        now = ensure_utc(now or utc_now())

        def work(db: Session) -> Quote:
            terms = self._inventory(db).get_ticket_type(ticket_type_id).to_terms()
            return self._price(terms, quantity, now)

        return self._run_in_transaction("quote", work)

    def quote_seats(self, seat_ids: list[str], event_id: Optional[str] = None) -> SeatQuote:
        def work(db: Session) -> SeatQuote:
            return self._price_seats(SeatStore(db), seat_ids, event_id)

        return self._run_in_transaction("quote_seats", work)

    # -----------------------------
    # Holds
    # -----------------------------
    def reserve(
        self,
        buyer: Union[BuyerProfile, str],
        ticket_type_id: Optional[str] = None,
        quantity: Optional[int] = None,
        event_id: Optional[str] = None,
        seat_ids: Optional[list[str]] = None,
        now: Optional[datetime] = None,
        channel: PurchaseChannel = PurchaseChannel.ONLINE,
    ) -> ReservationHandle:
        """Hold either a ticket quantity or a specific seat set."""
        if seat_ids is not None:
            if ticket_type_id is not None:
                raise ValueError("Reserve either a ticket type quantity or seats, not both")
            if event_id is None:
                raise ValueError("event_id is required for a seat reservation")
            return self.reserve_seats(buyer, event_id, seat_ids, now=now, channel=channel)

        if ticket_type_id is None or quantity is None:
            raise ValueError("ticket_type_id and quantity are required for a ticket reservation")
        return self.reserve_tickets(buyer, ticket_type_id, quantity, now=now, channel=channel)

    def reserve_tickets(
        self,
        buyer: Union[BuyerProfile, str],
        ticket_type_id: str,
        quantity: int,
        now: Optional[datetime] = None,
        channel: PurchaseChannel = PurchaseChannel.ONLINE,
    ) -> ReservationHandle:
        buyer = _as_buyer(buyer)
        now = ensure_utc(now or utc_now())
        expires_at = now + self.hold_ttl(channel)

        def work(db: Session) -> ReservationHandle:
            inventory = self._inventory(db)
            terms = inventory.get_ticket_type(ticket_type_id).to_terms()

            validate_ticket_restrictions(terms, buyer, quantity, now)
            quote = self._price(terms, quantity, now)

            reservation = inventory.reserve(
                ticket_type_id=ticket_type_id,
                quantity=quantity,
                holder_id=buyer.buyer_id,
                now=now,
                expires_at=expires_at,
                channel=channel,
                unit_price=quote.price_per_ticket,
                total_price=quote.total_price,
            )
            self._emit(
                db,
                reservation,
                "reservation.held",
                applied_rule=quote.applied_rule.value,
                expires_at=expires_at.isoformat(),
            )
            return to_handle(reservation)

        handle = self._run_in_transaction("reserve_tickets", work)
        logger.info(
            "Held %s x %s for buyer %s as %s until %s",
            quantity,
            ticket_type_id,
            buyer.buyer_id,
            handle.reservation_id,
            handle.expires_at.isoformat(),
        )
        return handle

    def reserve_seats(
        self,
        buyer: Union[BuyerProfile, str],
        event_id: str,
        seat_ids: list[str],
        now: Optional[datetime] = None,
        channel: PurchaseChannel = PurchaseChannel.ONLINE,
    ) -> ReservationHandle:
        buyer = _as_buyer(buyer)
        seat_ids = list(dict.fromkeys(seat_ids))
        now = ensure_utc(now or utc_now())
        expires_at = now + self.hold_ttl(channel)

        validate_seat_request(seat_ids, self.config.max_seats_per_order)

        def work(db: Session) -> ReservationHandle:
            seats = SeatStore(db)
            quote = self._price_seats(seats, seat_ids, event_id)

            reservation = ReservationRepository(db).create(
                kind=ReservationKind.SEATS,
                buyer_id=buyer.buyer_id,
                event_id=event_id,
                quantity=len(seat_ids),
                created_at=now,
                expires_at=expires_at,
                channel=channel,
                seat_ids=seat_ids,
                total_price=quote.total_price,
                currency=quote.currency,
            )
            seats.reserve_seats(
                seat_ids,
                holder_id=buyer.buyer_id,
                reserved_until=expires_at,
                event_id=event_id,
                reservation_id=reservation.id,
            )
            self._emit(db, reservation, "reservation.held", expires_at=expires_at.isoformat())
            return to_handle(reservation)

        handle = self._run_in_transaction("reserve_seats", work)
        logger.info(
            "Held %s seats of event %s for buyer %s as %s",
            len(seat_ids),
            event_id,
            buyer.buyer_id,
            handle.reservation_id,
        )
        return handle

    def commit(self, handle_or_id: HandleOrId, now: Optional[datetime] = None) -> ReservationHandle:
        """
        held -> committed. A hold past its expiry cannot be committed even
        if the sweep has not released it yet.
        """
        reservation_id = _reservation_id(handle_or_id)
        now = ensure_utc(now or utc_now())

        def work(db: Session) -> ReservationHandle:
            reservations = ReservationRepository(db)
            reservation = reservations.get_by_id(reservation_id)
            if reservation is None:
                raise ReservationNotFoundError(reservation_id)

            if reservation.kind == ReservationKind.TICKETS:
                reservation = self._inventory(db).commit(reservation_id, now=now)
            else:
                if not reservations.close(
                    reservation_id,
                    ReservationState.COMMITTED,
                    now=now,
                    unexpired_at=now,
                ):
                    raise self._not_held(reservations.get_by_id(reservation_id))
                SeatStore(db).commit_seats(
                    reservation.seat_ids or [],
                    holder_id=reservation.buyer_id,
                    now=now,
                    reservation_id=reservation_id,
                )
                reservation = reservations.get_by_id(reservation_id)

            self._emit(db, reservation, "reservation.committed")
            return to_handle(reservation)

        handle = self._run_in_transaction("commit", work)
        logger.info("Committed reservation %s for buyer %s", reservation_id, handle.buyer_id)
        return handle

    def release(self, handle_or_id: HandleOrId, now: Optional[datetime] = None) -> ReleaseOutcome:
        """Return a hold to inventory. Safe to call on any handle, any number of times."""
        reservation_id = _reservation_id(handle_or_id)
        now = ensure_utc(now or utc_now())

        def work(db: Session) -> ReleaseOutcome:
            return self._close_hold(db, reservation_id, now, ReservationState.RELEASED)

        outcome = self._run_in_transaction("release", work)
        if outcome.released:
            logger.info("Released reservation %s", reservation_id)
        return outcome

    def release_event_holds(self, event_id: str, now: Optional[datetime] = None) -> list[ReleaseOutcome]:
        """Release every open hold for an event, e.g. when sales are cancelled."""
        now = ensure_utc(now or utc_now())

        def list_held(db: Session) -> list[str]:
            return [r.id for r in ReservationRepository(db).list_held(event_id)]

        outcomes = []
        for reservation_id in self._run_in_transaction("list_event_holds", list_held):
            outcome = self.release(reservation_id, now=now)
            if outcome.released:
                outcomes.append(outcome)

        logger.info("Released %s holds for event %s", len(outcomes), event_id)
        return outcomes

    # -----------------------------
    # Expiry
    # -----------------------------
    def sweep_expired(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> SweepReport:
        """
        Expire held reservations past their deadline, then release any seat
        whose hold lapsed without an open ledger row. Each reservation is expired
        in its own transaction; a failure is counted and the rest continue.
        """
        now = ensure_utc(now or utc_now())
        limit = limit or self.config.sweep_batch_size
        report = SweepReport()

        def find(db: Session) -> list[str]:
            return [r.id for r in ReservationRepository(db).find_expired(now, limit)]

        for reservation_id in self._run_in_transaction("find_expired", find):
            try:
                outcome = self._run_in_transaction(
                    "expire",
                    lambda db, rid=reservation_id: self._close_hold(
                        db, rid, now, ReservationState.EXPIRED
                    ),
                )
            except SQLAlchemyError:
                report.errors += 1
                logger.exception("Failed to expire reservation %s", reservation_id)
                continue
            if outcome.released:
                report.expired_reservations.append(reservation_id)

        try:
            orphaned = self._run_in_transaction(
                "sweep_seats",
                lambda db: SeatStore(db).sweep_expired(now, limit),
            )
        except SQLAlchemyError:
            report.errors += 1
            logger.exception("Seat sweep failed")
        else:
            report.released_seats.extend(orphaned)

        if report.released_count or report.errors:
            logger.info(
                "Sweep expired %s reservations, released %s seats, %s errors",
                len(report.expired_reservations),
                len(report.released_seats),
                report.errors,
            )
        return report

    # -----------------------------
    # Reads and administration
    # -----------------------------
    def get_reservation(self, reservation_id: str) -> ReservationHandle:
        def work(db: Session) -> ReservationHandle:
            reservation = ReservationRepository(db).get_by_id(reservation_id)
            if reservation is None:
                raise ReservationNotFoundError(reservation_id)
            return to_handle(reservation)

        return self._run_in_transaction("get_reservation", work)

    def availability(self, ticket_type_id: str) -> InventorySnapshot:
        return self._run_in_transaction(
            "availability",
            lambda db: self._inventory(db).snapshot(ticket_type_id),
        )

    def bulk_availability(self, ticket_type_ids: list[str]) -> list[InventorySnapshot]:
        return self._run_in_transaction(
            "bulk_availability",
            lambda db: self._inventory(db).snapshots(ticket_type_ids),
        )

    def event_inventory_summary(self, event_id: str) -> EventInventorySummary:
        return self._run_in_transaction(
            "event_inventory_summary",
            lambda db: self._inventory(db).event_summary(event_id),
        )

    def held_reservations(self, event_id: Optional[str] = None) -> list[ReservationHandle]:
        """Open holds, oldest first. Expired but unswept holds are included."""
        return self._run_in_transaction(
            "held_reservations",
            lambda db: [to_handle(r) for r in ReservationRepository(db).list_held(event_id)],
        )

    def available_seats(self, event_id: str) -> list[Seat]:
        return self._run_in_transaction(
            "available_seats",
            lambda db: SeatStore(db).list_available(event_id),
        )

    def adjust_inventory(
        self,
        ticket_type_id: str,
        delta: int,
        reason: Optional[str] = None,
    ) -> InventorySnapshot:
        def work(db: Session) -> InventorySnapshot:
            snapshot = self._inventory(db).adjust_capacity(ticket_type_id, delta)
            OutboxRepository(db).add(
                aggregate_type="ticket_type",
                aggregate_id=ticket_type_id,
                event_type="inventory.adjusted",
                payload={
                    "ticket_type_id": ticket_type_id,
                    "delta": delta,
                    "reason": reason,
                    "quantity_available": snapshot.quantity_available,
                    "version": snapshot.version,
                },
                dedupe_key=f"{ticket_type_id}:inventory.adjusted:{snapshot.version}",
            )
            return snapshot

        snapshot = self._run_in_transaction("adjust_inventory", work)
        logger.info(
            "Adjusted capacity of %s by %s to %s (%s)",
            ticket_type_id,
            delta,
            snapshot.quantity_available,
            reason or "no reason given",
        )
        return snapshot

    def block_seats(self, seat_ids: list[str]) -> list[str]:
        blocked = self._run_in_transaction(
            "block_seats",
            lambda db: SeatStore(db).block_seats(seat_ids),
        )
        logger.warning("Blocked seats %s", ", ".join(blocked))
        return blocked

    def unblock_seats(self, seat_ids: list[str]) -> list[str]:
        unblocked = self._run_in_transaction(
            "unblock_seats",
            lambda db: SeatStore(db).unblock_seats(seat_ids),
        )
        logger.info("Unblocked seats %s", ", ".join(unblocked))
        return unblocked

    def hold_ttl(self, channel: PurchaseChannel) -> timedelta:
        return timedelta(seconds=getattr(self.config.hold_timeouts, channel.value))

    # -----------------------------
    # Internals
    # -----------------------------
    def _inventory(self, db: Session) -> InventoryStore:
        return InventoryStore(
            db,
            low_stock_threshold=self.config.low_stock_threshold,
            very_low_stock_threshold=self.config.very_low_stock_threshold,
        )

    def _price(self, terms: TicketTerms, quantity: int, now: datetime) -> Quote:
        price = self.pricing_engine.compute_price(terms, quantity, now)
        group = self.group_calculator.compute_group_price(terms, price.unit_price, quantity)
        return Quote(
            ticket_type_id=terms.id,
            quantity=quantity,
            unit_price=price.unit_price,
            applied_rule=price.applied_rule,
            price_per_ticket=group.price_per_ticket,
            discount_amount=group.discount_amount,
            group_discount_applied=group.applied,
            total_price=group.total_price,
            currency=price.currency,
            currency_exponent=price.currency_exponent,
        )

    @staticmethod
    def _price_seats(seats: SeatStore, seat_ids: list[str], event_id: Optional[str]) -> SeatQuote:
        seat_ids = list(dict.fromkeys(seat_ids))
        rows = seats.get_seats(seat_ids, event_id=event_id)
        missing = sorted(set(seat_ids) - {seat.id for seat in rows})
        if missing:
            raise SeatNotFoundError(missing)

        currencies = {seat.currency for seat in rows}
        if len(currencies) > 1:
            raise PricingConfigurationError(
                f"Seats are priced in more than one currency: {', '.join(sorted(currencies))}"
            )

        seat_prices: dict[str, int] = {}
        table_prices: dict[str, int] = {}
        for seat in rows:
            if seat.price is not None:
                seat_prices[seat.id] = seat.price
            elif seat.table_label is not None and seat.table_price is not None:
                table_prices.setdefault(seat.table_label, seat.table_price)
            else:
                raise PricingConfigurationError(f"Seat {seat.id} has no price")

        return SeatQuote(
            seat_ids=tuple(seat_ids),
            total_price=sum(seat_prices.values()) + sum(table_prices.values()),
            currency=currencies.pop() if currencies else "USD",
            seat_prices=seat_prices,
            table_prices=table_prices,
        )

    def _close_hold(
        self,
        db: Session,
        reservation_id: str,
        now: datetime,
        final_state: ReservationState,
    ) -> ReleaseOutcome:
        reservations = ReservationRepository(db)
        reservation = reservations.get_by_id(reservation_id)
        if reservation is None:
            logger.info("Release of %s ignored, reservation is unknown", reservation_id)
            return ReleaseOutcome(reservation_id=reservation_id, released=False, prior_state=None)

        if reservation.kind == ReservationKind.TICKETS:
            outcome = self._inventory(db).release(reservation_id, now, final_state=final_state)
        elif reservations.close(reservation_id, final_state, now=now):
            SeatStore(db).release_seats(reservation.seat_ids or [], reservation_id=reservation_id)
            outcome = ReleaseOutcome(
                reservation_id=reservation_id,
                released=True,
                prior_state=ReservationState.HELD,
            )
        else:
            outcome = ReleaseOutcome(
                reservation_id=reservation_id,
                released=False,
                prior_state=reservation.state,
            )

        if outcome.released:
            reservation = reservations.get_by_id(reservation_id)
            event_type = (
                "reservation.expired"
                if final_state == ReservationState.EXPIRED
                else "reservation.released"
            )
            self._emit(db, reservation, event_type)
        return outcome

    @staticmethod
    def _not_held(reservation: Reservation) -> ReservationNotFoundError:
        if reservation.state == ReservationState.HELD:
            return ReservationNotFoundError(reservation.id, prior_state=ReservationState.EXPIRED.value)
        return ReservationNotFoundError(reservation.id, prior_state=reservation.state.value)

    @staticmethod
    def _emit(db: Session, reservation: Reservation, event_type: str, **extra) -> None:
        OutboxRepository(db).add(
            aggregate_type="reservation",
            aggregate_id=reservation.id,
            event_type=event_type,
            payload=_event_payload(reservation, state=reservation.state.value, **extra),
            dedupe_key=f"{reservation.id}:{event_type}",
        )

    def _run_in_transaction(self, operation: str, work: Callable[[Session], T]) -> T:
        max_attempts = max(1, self.config.store_max_retries)

        for attempt in range(1, max_attempts + 1):
            try:
                with session_scope(self.session_factory) as db:
                    return work(db)
            except OperationalError:
                if attempt == max_attempts:
                    logger.exception(
                        "%s failed after %s attempts on storage contention",
                        operation,
                        max_attempts,
                    )
                    raise
                delay = self.config.store_retry_backoff_seconds * attempt
                logger.warning(
                    "%s hit storage contention (attempt %s/%s). Retrying in %.2f seconds...",
                    operation,
                    attempt,
                    max_attempts,
                    delay,
                )
                time.sleep(delay)
