import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from boxoffice.api.schemas.schemas import (
    EventInventoryResponse,
    InventoryAdjustmentRequest,
    InventoryResponse,
    OutboxEventResponse,
    QuoteRequest,
    QuoteResponse,
    ReleaseResponse,
    ReservationRequest,
    ReservationResponse,
    SweepResponse,
)
from boxoffice.application.reservation_manager import ReservationManager
from boxoffice.domain.exceptions import (
    AlreadyReservedError,
    BoxOfficeError,
    InsufficientInventoryError,
    InvalidPricingInputError,
    InvalidStateTransitionError,
    ReservationNotFoundError,
    RestrictionViolationError,
    SeatConflictError,
    SeatNotFoundError,
    TicketTypeNotFoundError,
)
from boxoffice.domain.inventory import InventorySnapshot
from boxoffice.domain.money import to_major_units
from boxoffice.domain.reservation import ReservationHandle
from boxoffice.domain.restrictions import BuyerProfile
from boxoffice.infrastructure.db.models import OutboxEvent
from boxoffice.infrastructure.db.session import SessionLocal
from boxoffice.infrastructure.repositories.outbox_repository import OutboxRepository


router = APIRouter()
logger = logging.getLogger(__name__)

_manager = ReservationManager()


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_manager() -> ReservationManager:
    return _manager


def _http_error(exc: BoxOfficeError) -> HTTPException:
    detail: dict = {"message": str(exc), "error": type(exc).__name__}

    if isinstance(exc, (TicketTypeNotFoundError, SeatNotFoundError)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, SeatConflictError):
        code = status.HTTP_409_CONFLICT
        detail["conflicts"] = exc.conflicts
    elif isinstance(exc, ReservationNotFoundError):
        code = status.HTTP_404_NOT_FOUND if exc.prior_state is None else status.HTTP_409_CONFLICT
        detail["prior_state"] = exc.prior_state
    elif isinstance(exc, AlreadyReservedError):
        code = status.HTTP_409_CONFLICT
        detail["conflicts"] = exc.conflicts
    elif isinstance(exc, InsufficientInventoryError):
        code = status.HTTP_409_CONFLICT
        detail["requested"] = exc.requested
        detail["available"] = exc.available
    elif isinstance(exc, InvalidStateTransitionError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, RestrictionViolationError):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
        detail["errors"] = exc.errors
    elif isinstance(exc, InvalidPricingInputError):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    else:
        code = status.HTTP_400_BAD_REQUEST

    return HTTPException(status_code=code, detail=detail)


def _reservation_response(handle: ReservationHandle) -> ReservationResponse:
    return ReservationResponse(
        reservation_id=handle.reservation_id,
        kind=handle.kind.value,
        state=handle.state.value,
        buyer_id=handle.buyer_id,
        event_id=handle.event_id,
        ticket_type_id=handle.ticket_type_id,
        seat_ids=list(handle.seat_ids),
        quantity=handle.quantity,
        unit_price=handle.unit_price,
        total_price=handle.total_price,
        currency=handle.currency,
        channel=handle.channel.value,
        expires_at=handle.expires_at.isoformat(),
    )


def _inventory_response(snapshot: InventorySnapshot) -> InventoryResponse:
    return InventoryResponse(
        ticket_type_id=snapshot.ticket_type_id,
        event_id=snapshot.event_id,
        quantity_available=snapshot.quantity_available,
        quantity_sold=snapshot.quantity_sold,
        quantity_reserved=snapshot.quantity_reserved,
        remaining=snapshot.remaining,
        version=snapshot.version,
        status=snapshot.status.value,
    )


def _outbox_response(item: OutboxEvent) -> OutboxEventResponse:
    return OutboxEventResponse(
        id=item.id,
        aggregate_type=item.aggregate_type,
        aggregate_id=item.aggregate_id,
        event_type=item.event_type,
        payload=json.loads(item.payload),
        status=item.status,
        attempts=item.attempts,
        created_at=item.created_at.isoformat(),
    )


@router.get("/health")
def health():
    return {"message": "Box office hold engine is running"}


@router.post("/quotes", response_model=QuoteResponse)
def create_quote(
    request: QuoteRequest,
    manager: ReservationManager = Depends(get_manager),
):
    try:
        if request.seat_ids is not None:
            seat_quote = manager.quote_seats(request.seat_ids, event_id=request.event_id)
            return QuoteResponse(
                total_price=seat_quote.total_price,
                total_display=str(to_major_units(seat_quote.total_price)),
                currency=seat_quote.currency,
                quantity=len(seat_quote.seat_ids),
                seat_prices=seat_quote.seat_prices,
                table_prices=seat_quote.table_prices,
            )

        if request.ticket_type_id is None or request.quantity is None:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="Provide ticket_type_id and quantity, or seat_ids",
            )

        quote = manager.quote(request.ticket_type_id, request.quantity)
    except BoxOfficeError as exc:
        raise _http_error(exc) from exc

    return QuoteResponse(
        total_price=quote.total_price,
        total_display=str(to_major_units(quote.total_price, quote.currency_exponent)),
        currency=quote.currency,
        ticket_type_id=quote.ticket_type_id,
        quantity=quote.quantity,
        unit_price=quote.unit_price,
        applied_rule=quote.applied_rule.value,
        price_per_ticket=quote.price_per_ticket,
        discount_amount=quote.discount_amount,
        group_discount_applied=quote.group_discount_applied,
    )


@router.post("/reservations", response_model=ReservationResponse)
def create_reservation(
    request: ReservationRequest,
    manager: ReservationManager = Depends(get_manager),
):
    buyer = BuyerProfile(
        buyer_id=request.buyer_id,
        age=request.age,
        is_member=request.is_member,
    )
    try:
        handle = manager.reserve(
            buyer,
            ticket_type_id=request.ticket_type_id,
            quantity=request.quantity,
            event_id=request.event_id,
            seat_ids=request.seat_ids,
            channel=request.channel,
        )
    except BoxOfficeError as exc:
        raise _http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc

    return _reservation_response(handle)


@router.get("/reservations/{reservation_id}", response_model=ReservationResponse)
def get_reservation(
    reservation_id: str,
    manager: ReservationManager = Depends(get_manager),
):
    try:
        handle = manager.get_reservation(reservation_id)
    except BoxOfficeError as exc:
        raise _http_error(exc) from exc
    return _reservation_response(handle)


@router.post("/reservations/{reservation_id}/commit", response_model=ReservationResponse)
def commit_reservation(
    reservation_id: str,
    manager: ReservationManager = Depends(get_manager),
):
    try:
        handle = manager.commit(reservation_id)
    except BoxOfficeError as exc:
        raise _http_error(exc) from exc
    return _reservation_response(handle)


@router.post("/reservations/{reservation_id}/release", response_model=ReleaseResponse)
def release_reservation(
    reservation_id: str,
    manager: ReservationManager = Depends(get_manager),
):
    outcome = manager.release(reservation_id)
    return ReleaseResponse(
        reservation_id=outcome.reservation_id,
        released=outcome.released,
        prior_state=outcome.prior_state.value if outcome.prior_state else None,
    )


@router.get("/holds", response_model=list[ReservationResponse])
def list_holds(
    event_id: str | None = None,
    manager: ReservationManager = Depends(get_manager),
):
    return [_reservation_response(handle) for handle in manager.held_reservations(event_id)]


@router.get("/inventory", response_model=list[InventoryResponse])
def get_bulk_inventory(
    ticket_type_id: list[str] = Query(default=[]),
    manager: ReservationManager = Depends(get_manager),
):
    return [_inventory_response(snapshot) for snapshot in manager.bulk_availability(ticket_type_id)]


@router.get("/inventory/{ticket_type_id}", response_model=InventoryResponse)
def get_inventory(
    ticket_type_id: str,
    manager: ReservationManager = Depends(get_manager),
):
    try:
        snapshot = manager.availability(ticket_type_id)
    except BoxOfficeError as exc:
        raise _http_error(exc) from exc
    return _inventory_response(snapshot)


@router.post("/inventory/{ticket_type_id}/adjustments", response_model=InventoryResponse)
def adjust_inventory(
    ticket_type_id: str,
    request: InventoryAdjustmentRequest,
    manager: ReservationManager = Depends(get_manager),
):
    try:
        snapshot = manager.adjust_inventory(ticket_type_id, request.delta, reason=request.reason)
    except BoxOfficeError as exc:
        raise _http_error(exc) from exc
    return _inventory_response(snapshot)


@router.get("/events/{event_id}/inventory", response_model=EventInventoryResponse)
def get_event_inventory(
    event_id: str,
    manager: ReservationManager = Depends(get_manager),
):
    summary = manager.event_inventory_summary(event_id)
    return EventInventoryResponse(
        event_id=summary.event_id,
        total_capacity=summary.total_capacity,
        total_sold=summary.total_sold,
        total_reserved=summary.total_reserved,
        total_remaining=summary.total_remaining,
        low_stock_alerts=summary.low_stock_alerts,
        ticket_types=[_inventory_response(snapshot) for snapshot in summary.ticket_types],
    )


@router.post("/sweeps", response_model=SweepResponse)
def run_sweep(manager: ReservationManager = Depends(get_manager)):
    report = manager.sweep_expired()
    return SweepResponse(
        expired_reservations=report.expired_reservations,
        released_seats=report.released_seats,
        errors=report.errors,
    )


@router.get("/outbox/events", response_model=list[OutboxEventResponse])
def list_outbox_events(
    status_filter: str = "PENDING",
    limit: int = 50,
    db: Session = Depends(get_db),
):
    events = OutboxRepository(db).list_by_status(status_filter, limit)
    return [_outbox_response(item) for item in events]


@router.post("/outbox/events/{event_id}/mark-published", response_model=OutboxEventResponse)
def mark_outbox_event_published(
    event_id: str,
    db: Session = Depends(get_db),
):
    item = OutboxRepository(db).mark_published(event_id)
    if not item:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Outbox event not found",
        )
    db.flush()
    return _outbox_response(item)
