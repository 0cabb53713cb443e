from dataclasses import replace
from datetime import timedelta
import time

from boxoffice.application.expiry_sweeper import ExpirySweeper
from boxoffice.application.reservation_manager import ReservationManager
from boxoffice.config.settings import HoldTimeouts
from boxoffice.domain.reservation import SweepReport
from boxoffice.domain.state_machine import ReservationState
from boxoffice.domain.timeutils import utc_now


def test_run_once_expires_lapsed_holds(session_factory, test_settings, make_ticket_type, engine):
    config = replace(test_settings, hold_timeouts=HoldTimeouts(online=60))
    manager = ReservationManager(session_factory=session_factory, config=config)
    ticket_type_id = make_ticket_type(quantity_available=3)
    handle = manager.reserve_tickets("buyer1", ticket_type_id, 3, now=utc_now() - timedelta(minutes=5))

    report = ExpirySweeper(manager, engine=engine).run_once()

    assert report.expired_reservations == [handle.reservation_id]
    assert manager.availability(ticket_type_id).remaining == 3


def test_run_once_skips_when_already_sweeping(manager):
    sweeper = ExpirySweeper(manager)
    sweeper._lock.acquire()
    try:
        assert sweeper.run_once() is None
    finally:
        sweeper._lock.release()


def test_background_loop_survives_failures(manager):
    calls = []

    def flaky_sweep():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("storage unavailable")
        return SweepReport()

    manager.sweep_expired = flaky_sweep
    sweeper = ExpirySweeper(manager, interval_seconds=0.01)

    sweeper.start()
    deadline = time.monotonic() + 5
    while len(calls) < 3 and time.monotonic() < deadline:
        time.sleep(0.01)
    sweeper.stop()

    assert len(calls) >= 3


def test_expired_reservation_state(session_factory, test_settings, make_ticket_type, engine):
    config = replace(test_settings, hold_timeouts=HoldTimeouts(online=1))
    manager = ReservationManager(session_factory=session_factory, config=config)
    ticket_type_id = make_ticket_type()
    handle = manager.reserve_tickets("buyer1", ticket_type_id, 1, now=utc_now() - timedelta(seconds=5))

    ExpirySweeper(manager, engine=engine).run_once()

    assert manager.get_reservation(handle.reservation_id).state == ReservationState.EXPIRED
