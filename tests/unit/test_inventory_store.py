from datetime import datetime, timedelta, timezone

import pytest

from boxoffice.domain.exceptions import (
    InsufficientInventoryError,
    ReservationNotFoundError,
    TicketTypeNotFoundError,
)
from boxoffice.domain.inventory import InventoryStatus
from boxoffice.domain.state_machine import ReservationState
from boxoffice.infrastructure.db.session import session_scope
from boxoffice.infrastructure.repositories.inventory_store import InventoryStore

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)

EXPIRES = NOW + timedelta(minutes=15)


def _reserve(session_factory, ticket_type_id, quantity, holder="buyer1", expires_at=EXPIRES):
    with session_scope(session_factory) as db:
        return InventoryStore(db).reserve(ticket_type_id, quantity, holder, NOW, expires_at).id


def _snapshot(session_factory, ticket_type_id):
    with session_scope(session_factory) as db:
        return InventoryStore(db).snapshot(ticket_type_id)


def test_reserve_moves_units_to_reserved(session_factory, make_ticket_type):
    ticket_type_id = make_ticket_type(quantity_available=10)

    _reserve(session_factory, ticket_type_id, 4)

    snapshot = _snapshot(session_factory, ticket_type_id)
    assert snapshot.quantity_reserved == 4
    assert snapshot.quantity_sold == 0
    assert snapshot.remaining == 6
    assert snapshot.version == 2


def test_reserve_refuses_more_than_remaining(session_factory, make_ticket_type):
    ticket_type_id = make_ticket_type(quantity_available=5)
    _reserve(session_factory, ticket_type_id, 3)

    with pytest.raises(InsufficientInventoryError) as exc_info:
        _reserve(session_factory, ticket_type_id, 3)

    assert exc_info.value.available == 2
    assert _snapshot(session_factory, ticket_type_id).quantity_reserved == 3


def test_reserve_unknown_ticket_type(session_factory):
    with pytest.raises(TicketTypeNotFoundError):
        _reserve(session_factory, "missing", 1)


def test_commit_moves_reserved_to_sold(session_factory, make_ticket_type):
    ticket_type_id = make_ticket_type(quantity_available=10)
    token = _reserve(session_factory, ticket_type_id, 4)

    with session_scope(session_factory) as db:
        reservation = InventoryStore(db).commit(token, now=NOW)
        assert reservation.state == ReservationState.COMMITTED

    snapshot = _snapshot(session_factory, ticket_type_id)
    assert snapshot.quantity_reserved == 0
    assert snapshot.quantity_sold == 4


def test_commit_twice_raises_with_prior_state(session_factory, make_ticket_type):
    ticket_type_id = make_ticket_type()
    token = _reserve(session_factory, ticket_type_id, 1)
    with session_scope(session_factory) as db:
        InventoryStore(db).commit(token)

    with pytest.raises(ReservationNotFoundError) as exc_info:
        with session_scope(session_factory) as db:
            InventoryStore(db).commit(token)

    assert exc_info.value.prior_state == "committed"
    assert _snapshot(session_factory, ticket_type_id).quantity_sold == 1


def test_commit_after_expiry_is_refused(session_factory, make_ticket_type):
    ticket_type_id = make_ticket_type()
    token = _reserve(session_factory, ticket_type_id, 2)

    with pytest.raises(ReservationNotFoundError) as exc_info:
        with session_scope(session_factory) as db:
            InventoryStore(db).commit(token, now=EXPIRES + timedelta(seconds=1))

    assert exc_info.value.prior_state == "expired"
    assert _snapshot(session_factory, ticket_type_id).quantity_reserved == 2


def test_release_is_idempotent(session_factory, make_ticket_type):
    ticket_type_id = make_ticket_type(quantity_available=10)
    token = _reserve(session_factory, ticket_type_id, 3)

    with session_scope(session_factory) as db:
        first = InventoryStore(db).release(token, NOW)
    with session_scope(session_factory) as db:
        second = InventoryStore(db).release(token, NOW)

    assert first.released
    assert not second.released
    assert second.prior_state == ReservationState.RELEASED
    assert _snapshot(session_factory, ticket_type_id).remaining == 10


def test_release_unknown_token_is_noop(session_factory):
    with session_scope(session_factory) as db:
        outcome = InventoryStore(db).release("missing", NOW)

    assert not outcome.released
    assert outcome.prior_state is None


def test_release_after_commit_does_not_return_units(session_factory, make_ticket_type):
    ticket_type_id = make_ticket_type(quantity_available=10)
    token = _reserve(session_factory, ticket_type_id, 3)
    with session_scope(session_factory) as db:
        InventoryStore(db).commit(token)

    with session_scope(session_factory) as db:
        outcome = InventoryStore(db).release(token, NOW)

    assert not outcome.released
    snapshot = _snapshot(session_factory, ticket_type_id)
    assert snapshot.quantity_sold == 3
    assert snapshot.remaining == 7


def test_find_expired(session_factory, make_ticket_type):
    ticket_type_id = make_ticket_type()
    stale = _reserve(session_factory, ticket_type_id, 1, expires_at=NOW + timedelta(seconds=30))
    _reserve(session_factory, ticket_type_id, 1, expires_at=NOW + timedelta(hours=1))

    with session_scope(session_factory) as db:
        expired = InventoryStore(db).find_expired(NOW + timedelta(minutes=1))

    assert expired == [stale]


def test_find_expired_excludes_hold_at_its_deadline(session_factory, make_ticket_type):
    ticket_type_id = make_ticket_type()
    token = _reserve(session_factory, ticket_type_id, 1)

    with session_scope(session_factory) as db:
        store = InventoryStore(db)
        assert store.find_expired(EXPIRES - timedelta(seconds=1)) == []
        assert store.find_expired(EXPIRES) == []
        assert store.find_expired(EXPIRES + timedelta(milliseconds=1)) == [token]


def test_stock_status_thresholds(session_factory, make_ticket_type):
    ticket_type_id = make_ticket_type(quantity_available=12)
    assert _snapshot(session_factory, ticket_type_id).status == InventoryStatus.AVAILABLE

    _reserve(session_factory, ticket_type_id, 2)
    assert _snapshot(session_factory, ticket_type_id).status == InventoryStatus.LOW_STOCK

    _reserve(session_factory, ticket_type_id, 7)
    assert _snapshot(session_factory, ticket_type_id).status == InventoryStatus.VERY_LOW_STOCK

    _reserve(session_factory, ticket_type_id, 3)
    assert _snapshot(session_factory, ticket_type_id).status == InventoryStatus.SOLD_OUT


def test_capacity_cannot_drop_below_committed_units(session_factory, make_ticket_type):
    ticket_type_id = make_ticket_type(quantity_available=10)
    _reserve(session_factory, ticket_type_id, 6)

    with pytest.raises(InsufficientInventoryError):
        with session_scope(session_factory) as db:
            InventoryStore(db).adjust_capacity(ticket_type_id, -5)

    with session_scope(session_factory) as db:
        snapshot = InventoryStore(db).adjust_capacity(ticket_type_id, -4)

    assert snapshot.quantity_available == 6
    assert snapshot.remaining == 0


def test_snapshots_in_request_order(session_factory, make_ticket_type):
    first = make_ticket_type(quantity_available=10)
    second = make_ticket_type(name="Balcony", quantity_available=5)

    with session_scope(session_factory) as db:
        snapshots = InventoryStore(db).snapshots([second, "missing", first, second])

    assert [snapshot.ticket_type_id for snapshot in snapshots] == [second, first]


def test_event_summary_only_counts_the_event(session_factory, make_ticket_type):
    first = make_ticket_type(quantity_available=10)
    make_ticket_type(event_id="event2", quantity_available=50)
    _reserve(session_factory, first, 4)

    with session_scope(session_factory) as db:
        summary = InventoryStore(db).event_summary("event1")

    assert [snapshot.ticket_type_id for snapshot in summary.ticket_types] == [first]
    assert summary.total_capacity == 10
    assert summary.total_reserved == 4
    assert summary.total_remaining == 6
