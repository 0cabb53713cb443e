import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from boxoffice.application.reservation_manager import ReservationManager
from boxoffice.domain.reservation import SweepReport

logger = logging.getLogger(__name__)

# Arbitrary but fixed key shared by every process sweeping the same database.
SWEEP_ADVISORY_LOCK_KEY = 0x5EA7_0001


class ExpirySweeper:
    """
    Periodically expires lapsed holds.

    One sweep at a time per process (in-process lock) and, on PostgreSQL,
    per database (session advisory lock). A failing tick is logged and the
    next tick tries again.
    """

    def __init__(
        self,
        manager: ReservationManager,
        engine: Optional[Engine] = None,
        interval_seconds: Optional[float] = None,
    ):
        self.manager = manager
        self.engine = engine
        self.interval_seconds = (
            interval_seconds
            if interval_seconds is not None
            else manager.config.sweep_interval_seconds
        )
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="boxoffice-expiry-sweeper",
            daemon=True,
        )
        self._thread.start()
        logger.info("Expiry sweeper started, interval %.1f seconds", self.interval_seconds)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Expiry sweeper stopped")

    def run_once(self) -> Optional[SweepReport]:
        """
        Run a single sweep. Returns None when another sweep already holds
        the lock.
        """
        if not self._lock.acquire(blocking=False):
            logger.debug("Sweep already running in this process, skipping")
            return None
        try:
            with self._database_lock() as acquired:
                if not acquired:
                    logger.debug("Sweep running in another process, skipping")
                    return None
                return self.manager.sweep_expired()
        finally:
            self._lock.release()

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                self.run_once()
            except Exception:
                logger.exception("Expiry sweep failed; retrying next tick")

    @contextmanager
    def _database_lock(self) -> Iterator[bool]:
        if self.engine is None or self.engine.dialect.name != "postgresql":
            yield True
            return

        try:
            conn = self.engine.connect()
        except SQLAlchemyError:
            logger.exception("Could not connect to take the sweep lock")
            yield False
            return

        try:
            acquired = conn.execute(
                text("SELECT pg_try_advisory_lock(:key)"),
                {"key": SWEEP_ADVISORY_LOCK_KEY},
            ).scalar()
            conn.commit()
            try:
                yield bool(acquired)
            finally:
                if acquired:
                    conn.execute(
                        text("SELECT pg_advisory_unlock(:key)"),
                        {"key": SWEEP_ADVISORY_LOCK_KEY},
                    )
                    conn.commit()
        finally:
            conn.close()
