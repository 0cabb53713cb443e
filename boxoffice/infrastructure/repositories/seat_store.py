# boxoffice/infrastructure/repositories/seat_store.py

import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from boxoffice.domain.exceptions import (
    AlreadyReservedError,
    SeatConflictError,
    SeatNotFoundError,
)
from boxoffice.domain.state_machine import ReservationState, SeatStateMachine, SeatStatus
from boxoffice.infrastructure.db.models import Reservation, Seat

logger = logging.getLogger(__name__)

_NO_SYNC = {"synchronize_session": False}

_CLEAR_HOLD = {"reserved_by": None, "reserved_until": None, "reservation_id": None}


def _unique(seat_ids: list[str]) -> list[str]:
    return list(dict.fromkeys(seat_ids))


def _owned_by_open_hold():
    return (
        select(Reservation.id)
        .where(Reservation.id == Seat.reservation_id)
        .where(Reservation.state == ReservationState.HELD)
        .exists()
    )


class SeatStore:
    """
    Authoritative per-seat state.

    Multi-seat operations are all-or-nothing: when fewer rows match than were
    requested the method raises, and the caller's transaction (see
    `session_scope`) rolls back every seat flipped by the same statement.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_seats(self, seat_ids: list[str], event_id: str | None = None) -> list[Seat]:
        stmt = (
            select(Seat)
            .where(Seat.id.in_(seat_ids))
            .execution_options(populate_existing=True)
        )
        if event_id is not None:
            stmt = stmt.where(Seat.event_id == event_id)
        return list(self.db.execute(stmt).scalars().all())

    def list_seats(self, event_id: str, status: SeatStatus | None = None) -> list[Seat]:
        stmt = (
            select(Seat)
            .where(Seat.event_id == event_id)
            .order_by(Seat.section, Seat.row_name, Seat.seat_number)
            .execution_options(populate_existing=True)
        )
        if status is not None:
            stmt = stmt.where(Seat.status == status)
        return list(self.db.execute(stmt).scalars().all())

    def list_available(self, event_id: str) -> list[Seat]:
        return self.list_seats(event_id, status=SeatStatus.AVAILABLE)

    def reserve_seats(
        self,
        seat_ids: list[str],
        holder_id: str,
        reserved_until: datetime,
        event_id: str | None = None,
        reservation_id: str | None = None,
    ) -> list[str]:
        """
        available -> reserved for every seat, or for none of them. The seats
        are stamped with `reservation_id` so only that hold can release them.
        """
        seat_ids = _unique(seat_ids)

        stmt = (
            update(Seat)
            .where(Seat.id.in_(seat_ids))
            .where(Seat.status == SeatStatus.AVAILABLE)
        )
        if event_id is not None:
            stmt = stmt.where(Seat.event_id == event_id)

        result = self.db.execute(
            stmt.values(
                status=SeatStatus.RESERVED,
                reserved_by=holder_id,
                reserved_until=reserved_until,
                reservation_id=reservation_id,
            ),
            execution_options=_NO_SYNC,
        )

        if result.rowcount != len(seat_ids):
            seats = self.get_seats(seat_ids, event_id=event_id)
            missing = sorted(set(seat_ids) - {seat.id for seat in seats})
            if missing:
                raise SeatNotFoundError(missing)

            conflicts = {
                seat.id: seat.status.value
                for seat in seats
                if not (
                    seat.status == SeatStatus.RESERVED
                    and seat.reserved_by == holder_id
                    and seat.reserved_until == reserved_until
                    and seat.reservation_id == reservation_id
                )
            }
            logger.info(
                "Seat hold for %s refused, %s of %s seats unavailable",
                holder_id,
                len(conflicts),
                len(seat_ids),
            )
            raise AlreadyReservedError(conflicts)

        return seat_ids

    def commit_seats(
        self,
        seat_ids: list[str],
        holder_id: str,
        now: datetime | None = None,
        reservation_id: str | None = None,
    ) -> list[str]:
        """
        reserved -> sold, only for seats held by `holder_id` (and by
        `reservation_id`, and still unexpired at `now`, when given).
        Anything else is a conflict.
        """
        seat_ids = _unique(seat_ids)

        stmt = (
            update(Seat)
            .where(Seat.id.in_(seat_ids))
            .where(Seat.status == SeatStatus.RESERVED)
            .where(Seat.reserved_by == holder_id)
        )
        if reservation_id is not None:
            stmt = stmt.where(Seat.reservation_id == reservation_id)
        if now is not None:
            stmt = stmt.where(Seat.reserved_until >= now)

        result = self.db.execute(
            stmt.values(status=SeatStatus.SOLD, sold_to=holder_id, **_CLEAR_HOLD),
            execution_options=_NO_SYNC,
        )

        if result.rowcount != len(seat_ids):
            seats = {seat.id: seat for seat in self.get_seats(seat_ids)}
            conflicts = {}
            for seat_id in seat_ids:
                seat = seats.get(seat_id)
                if seat is None:
                    conflicts[seat_id] = "missing"
                elif seat.status == SeatStatus.SOLD and seat.sold_to == holder_id:
                    # Sold to this holder, either earlier or by this statement.
                    continue
                elif (
                    seat.status == SeatStatus.RESERVED
                    and seat.reserved_by == holder_id
                    and (reservation_id is None or seat.reservation_id == reservation_id)
                ):
                    conflicts[seat_id] = "expired"
                else:
                    conflicts[seat_id] = seat.status.value
            if not conflicts:
                conflicts = {seat_id: SeatStatus.SOLD.value for seat_id in seat_ids}
            raise SeatConflictError(conflicts, reservation_id=reservation_id)

        return seat_ids

    def release_seats(
        self,
        seat_ids: list[str],
        holder_id: str | None = None,
        reservation_id: str | None = None,
    ) -> int:
        """
        reserved -> available. Sold and blocked seats are left alone. With
        `holder_id` or `reservation_id` only the matching holds are released.
        """
        stmt = (
            update(Seat)
            .where(Seat.id.in_(_unique(seat_ids)))
            .where(Seat.status == SeatStatus.RESERVED)
        )
        if holder_id is not None:
            stmt = stmt.where(Seat.reserved_by == holder_id)
        if reservation_id is not None:
            stmt = stmt.where(Seat.reservation_id == reservation_id)

        result = self.db.execute(
            stmt.values(status=SeatStatus.AVAILABLE, **_CLEAR_HOLD),
            execution_options=_NO_SYNC,
        )
        return result.rowcount

    def sweep_expired(self, now: datetime, limit: int = 500) -> list[str]:
        """
        Release seats whose hold lapsed before `now` and whose ledger row, if
        any, is no longer held. Seats of a held reservation are left for the
        ledger sweep, which closes the row and frees them together.

        Each release re-checks status and expiry, so a seat committed after
        being selected here stays sold.
        """
        candidates = self.db.execute(
            select(Seat.id)
            .where(Seat.status == SeatStatus.RESERVED)
            .where(Seat.reserved_until < now)
            .where(~_owned_by_open_hold())
            .order_by(Seat.reserved_until)
            .limit(limit)
        ).scalars().all()

        released = []
        for seat_id in candidates:
            result = self.db.execute(
                update(Seat)
                .where(Seat.id == seat_id)
                .where(Seat.status == SeatStatus.RESERVED)
                .where(Seat.reserved_until < now)
                .where(~_owned_by_open_hold())
                .values(status=SeatStatus.AVAILABLE, **_CLEAR_HOLD),
                execution_options=_NO_SYNC,
            )
            if result.rowcount == 1:
                released.append(seat_id)
        return released

    def block_seats(self, seat_ids: list[str]) -> list[str]:
        """Administrative block of available or held seats."""
        return self._transition_many(
            seat_ids,
            from_statuses=(SeatStatus.AVAILABLE, SeatStatus.RESERVED),
            to_status=SeatStatus.BLOCKED,
        )

    def unblock_seats(self, seat_ids: list[str]) -> list[str]:
        return self._transition_many(
            seat_ids,
            from_statuses=(SeatStatus.BLOCKED,),
            to_status=SeatStatus.AVAILABLE,
        )

    def _transition_many(
        self,
        seat_ids: list[str],
        from_statuses: tuple[SeatStatus, ...],
        to_status: SeatStatus,
    ) -> list[str]:
        for from_status in from_statuses:
            SeatStateMachine.validate_transition(from_status, to_status)

        seat_ids = _unique(seat_ids)
        result = self.db.execute(
            update(Seat)
            .where(Seat.id.in_(seat_ids))
            .where(Seat.status.in_(from_statuses))
            .values(status=to_status, **_CLEAR_HOLD),
            execution_options=_NO_SYNC,
        )
        if result.rowcount != len(seat_ids):
            seats = self.get_seats(seat_ids)
            missing = sorted(set(seat_ids) - {seat.id for seat in seats})
            if missing:
                raise SeatNotFoundError(missing)
            # Seats already in the target status are not conflicts.
            conflicts = {
                seat.id: seat.status.value
                for seat in seats
                if seat.status != to_status
            }
            if conflicts:
                raise AlreadyReservedError(conflicts)
        return seat_ids
