# boxoffice/infrastructure/repositories/reservation_repository.py

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from boxoffice.domain.reservation import PurchaseChannel, ReservationKind
from boxoffice.domain.state_machine import ReservationState, ReservationStateMachine
from boxoffice.infrastructure.db.models import Reservation


class ReservationRepository:
    """
    Ledger of holds. State changes are conditional on the row still being
    held, so a hold can only leave `held` once.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, reservation_id: str) -> Reservation | None:
        stmt = (
            select(Reservation)
            .where(Reservation.id == reservation_id)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def create(
        self,
        kind: ReservationKind,
        buyer_id: str,
        event_id: str,
        quantity: int,
        created_at: datetime,
        expires_at: datetime,
        channel: PurchaseChannel = PurchaseChannel.ONLINE,
        ticket_type_id: str | None = None,
        seat_ids: list[str] | None = None,
        unit_price: int | None = None,
        total_price: int = 0,
        currency: str = "USD",
    ) -> Reservation:
        reservation = Reservation(
            kind=kind,
            buyer_id=buyer_id,
            event_id=event_id,
            ticket_type_id=ticket_type_id,
            quantity=quantity,
            seat_ids=seat_ids,
            channel=channel.value,
            state=ReservationState.HELD,
            unit_price=unit_price,
            total_price=total_price,
            currency=currency,
            created_at=created_at,
            expires_at=expires_at,
        )
        self.db.add(reservation)
        self.db.flush()
        return reservation

    def close(
        self,
        reservation_id: str,
        to_state: ReservationState,
        now: datetime,
        unexpired_at: datetime | None = None,
    ) -> bool:
        """
        UPDATE ... WHERE state = 'held'. Returns False when the row is
        missing, already terminal, or (with `unexpired_at`) past its expiry.
        """
        ReservationStateMachine.validate_transition(ReservationState.HELD, to_state)

        stmt = (
            update(Reservation)
            .where(Reservation.id == reservation_id)
            .where(Reservation.state == ReservationState.HELD)
        )
        if unexpired_at is not None:
            stmt = stmt.where(Reservation.expires_at >= unexpired_at)

        result = self.db.execute(
            stmt.values(state=to_state, closed_at=now),
            execution_options={"synchronize_session": False},
        )
        return result.rowcount == 1

    def find_expired(
        self,
        now: datetime,
        limit: int,
        kind: ReservationKind | None = None,
    ) -> list[Reservation]:
        stmt = (
            select(Reservation)
            .where(Reservation.state == ReservationState.HELD)
            .where(Reservation.expires_at < now)
            .order_by(Reservation.expires_at)
            .limit(limit)
        )
        if kind is not None:
            stmt = stmt.where(Reservation.kind == kind)
        return list(self.db.execute(stmt).scalars().all())

    def list_held(self, event_id: str | None = None) -> list[Reservation]:
        stmt = (
            select(Reservation)
            .where(Reservation.state == ReservationState.HELD)
            .order_by(Reservation.created_at)
            .execution_options(populate_existing=True)
        )
        if event_id is not None:
            stmt = stmt.where(Reservation.event_id == event_id)
        return list(self.db.execute(stmt).scalars().all())
