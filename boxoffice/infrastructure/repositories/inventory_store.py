# boxoffice/infrastructure/repositories/inventory_store.py

import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from boxoffice.domain.exceptions import (
    InsufficientInventoryError,
    ReservationNotFoundError,
    TicketTypeNotFoundError,
)
from boxoffice.domain.inventory import EventInventorySummary, InventorySnapshot, classify_stock
from boxoffice.domain.reservation import PurchaseChannel, ReleaseOutcome, ReservationKind
from boxoffice.domain.state_machine import ReservationState
from boxoffice.domain.timeutils import utc_now
from boxoffice.infrastructure.db.models import Reservation, TicketType
from boxoffice.infrastructure.repositories.reservation_repository import ReservationRepository

logger = logging.getLogger(__name__)

_NO_SYNC = {"synchronize_session": False}


class InventoryStore:
    """
    Authoritative general-admission counters.

    Every mutation is a single conditional UPDATE on the ticket_types row, so
    two buyers racing for the last unit cannot both win: the second UPDATE
    re-evaluates the WHERE clause against the committed counters and matches
    zero rows.
    """

    def __init__(
        self,
        db: Session,
        low_stock_threshold: int = 10,
        very_low_stock_threshold: int = 3,
    ):
        self.db = db
        self.reservations = ReservationRepository(db)
        self.low_stock_threshold = low_stock_threshold
        self.very_low_stock_threshold = very_low_stock_threshold

    def get_ticket_type(self, ticket_type_id: str) -> TicketType:
        stmt = (
            select(TicketType)
            .where(TicketType.id == ticket_type_id)
            .execution_options(populate_existing=True)
        )
        ticket_type = self.db.execute(stmt).scalar_one_or_none()
        if ticket_type is None:
            raise TicketTypeNotFoundError(ticket_type_id)
        return ticket_type

    def reserve(
        self,
        ticket_type_id: str,
        quantity: int,
        holder_id: str,
        now: datetime,
        expires_at: datetime,
        channel: PurchaseChannel = PurchaseChannel.ONLINE,
        unit_price: int | None = None,
        total_price: int = 0,
    ) -> Reservation:
        """
        Check-and-increment in one statement. Returns the reservation row;
        its id is the token for commit/release.
        """
        if quantity < 1:
            raise InsufficientInventoryError(
                f"Quantity must be at least 1, got {quantity}",
                requested=quantity,
            )

        remaining = (
            TicketType.quantity_available
            - TicketType.quantity_sold
            - TicketType.quantity_reserved
        )
        result = self.db.execute(
            update(TicketType)
            .where(TicketType.id == ticket_type_id)
            .where(remaining >= quantity)
            .values(
                quantity_reserved=TicketType.quantity_reserved + quantity,
                version=TicketType.version + 1,
            ),
            execution_options=_NO_SYNC,
        )

        ticket_type = self.get_ticket_type(ticket_type_id)

        if result.rowcount != 1:
            available = (
                ticket_type.quantity_available
                - ticket_type.quantity_sold
                - ticket_type.quantity_reserved
            )
            raise InsufficientInventoryError(
                f"Only {max(available, 0)} tickets available, {quantity} requested",
                requested=quantity,
                available=max(available, 0),
            )

        return self.reservations.create(
            kind=ReservationKind.TICKETS,
            buyer_id=holder_id,
            event_id=ticket_type.event_id,
            ticket_type_id=ticket_type_id,
            quantity=quantity,
            created_at=now,
            expires_at=expires_at,
            channel=channel,
            unit_price=unit_price,
            total_price=total_price,
            currency=ticket_type.currency,
        )

    def commit(self, token: str, now: datetime | None = None) -> Reservation:
        """
        Move a held quantity from reserved to sold. When `now` is given the
        hold must not have expired yet.
        """
        closed_at = now if now is not None else utc_now()
        if not self.reservations.close(
            token,
            ReservationState.COMMITTED,
            now=closed_at,
            unexpired_at=now,
        ):
            raise self._not_held(token)

        reservation = self.reservations.get_by_id(token)
        self.db.execute(
            update(TicketType)
            .where(TicketType.id == reservation.ticket_type_id)
            .values(
                quantity_reserved=TicketType.quantity_reserved - reservation.quantity,
                quantity_sold=TicketType.quantity_sold + reservation.quantity,
                version=TicketType.version + 1,
            ),
            execution_options=_NO_SYNC,
        )
        return reservation

    def release(
        self,
        token: str,
        now: datetime,
        final_state: ReservationState = ReservationState.RELEASED,
    ) -> ReleaseOutcome:
        """
        Return a held quantity to the pool. Releasing a token that is unknown
        or already terminal is a no-op reporting the prior state.
        """
        if not self.reservations.close(token, final_state, now=now):
            existing = self.reservations.get_by_id(token)
            prior_state = existing.state if existing is not None else None
            logger.info(
                "Release of %s ignored, reservation is %s",
                token,
                prior_state.value if prior_state else "unknown",
            )
            return ReleaseOutcome(reservation_id=token, released=False, prior_state=prior_state)

        reservation = self.reservations.get_by_id(token)
        self.db.execute(
            update(TicketType)
            .where(TicketType.id == reservation.ticket_type_id)
            .values(
                quantity_reserved=TicketType.quantity_reserved - reservation.quantity,
                version=TicketType.version + 1,
            ),
            execution_options=_NO_SYNC,
        )
        return ReleaseOutcome(
            reservation_id=token,
            released=True,
            prior_state=ReservationState.HELD,
        )

    def find_expired(self, now: datetime, limit: int = 500) -> list[str]:
        return [
            reservation.id
            for reservation in self.reservations.find_expired(
                now, limit, kind=ReservationKind.TICKETS
            )
        ]

    def snapshot(self, ticket_type_id: str) -> InventorySnapshot:
        return self._to_snapshot(self.get_ticket_type(ticket_type_id))

    def snapshots(self, ticket_type_ids: list[str]) -> list[InventorySnapshot]:
        """Snapshots in request order. Unknown ids are skipped."""
        stmt = (
            select(TicketType)
            .where(TicketType.id.in_(ticket_type_ids))
            .execution_options(populate_existing=True)
        )
        by_id = {row.id: row for row in self.db.execute(stmt).scalars().all()}
        return [
            self._to_snapshot(by_id[ticket_type_id])
            for ticket_type_id in dict.fromkeys(ticket_type_ids)
            if ticket_type_id in by_id
        ]

    def event_summary(self, event_id: str) -> EventInventorySummary:
        stmt = (
            select(TicketType)
            .where(TicketType.event_id == event_id)
            .order_by(TicketType.created_at, TicketType.name)
            .execution_options(populate_existing=True)
        )
        return EventInventorySummary(
            event_id=event_id,
            ticket_types=tuple(
                self._to_snapshot(row) for row in self.db.execute(stmt).scalars().all()
            ),
        )

    def _to_snapshot(self, ticket_type: TicketType) -> InventorySnapshot:
        remaining = (
            ticket_type.quantity_available
            - ticket_type.quantity_sold
            - ticket_type.quantity_reserved
        )
        return InventorySnapshot(
            ticket_type_id=ticket_type.id,
            event_id=ticket_type.event_id,
            quantity_available=ticket_type.quantity_available,
            quantity_sold=ticket_type.quantity_sold,
            quantity_reserved=ticket_type.quantity_reserved,
            version=ticket_type.version,
            status=classify_stock(
                remaining,
                self.low_stock_threshold,
                self.very_low_stock_threshold,
            ),
        )

    def adjust_capacity(self, ticket_type_id: str, delta: int) -> InventorySnapshot:
        """
        Grow or shrink capacity. Shrinking below sold + reserved is refused.
        """
        result = self.db.execute(
            update(TicketType)
            .where(TicketType.id == ticket_type_id)
            .where(
                TicketType.quantity_available + delta
                >= TicketType.quantity_sold + TicketType.quantity_reserved
            )
            .values(
                quantity_available=TicketType.quantity_available + delta,
                version=TicketType.version + 1,
            ),
            execution_options=_NO_SYNC,
        )
        snapshot = self.snapshot(ticket_type_id)
        if result.rowcount != 1:
            raise InsufficientInventoryError(
                f"Cannot remove {-delta} tickets, only {max(snapshot.remaining, 0)} unsold and unheld",
                requested=-delta,
                available=max(snapshot.remaining, 0),
            )
        return snapshot

    def _not_held(self, token: str) -> ReservationNotFoundError:
        existing = self.reservations.get_by_id(token)
        if existing is None:
            return ReservationNotFoundError(token)
        if existing.state == ReservationState.HELD:
            # Still held but past its expiry; the sweep has not reached it yet.
            return ReservationNotFoundError(token, prior_state=ReservationState.EXPIRED.value)
        return ReservationNotFoundError(token, prior_state=existing.state.value)
