import os

# Configure before any boxoffice module builds the module-level engine.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SWEEP_ENABLED"] = "false"

from dataclasses import replace

import pytest

from boxoffice.application.reservation_manager import ReservationManager
from boxoffice.config.settings import settings
from boxoffice.infrastructure.db.models import Base
from boxoffice.infrastructure.db.session import build_engine, build_session_factory, session_scope
from boxoffice.infrastructure.repositories.catalog_repository import (
    CatalogRepository,
    SeatDefinition,
)


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'boxoffice.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def test_settings():
    return replace(settings, store_max_retries=5, store_retry_backoff_seconds=0.01)


@pytest.fixture
def manager(session_factory, test_settings):
    return ReservationManager(session_factory=session_factory, config=test_settings)


@pytest.fixture
def make_ticket_type(session_factory):
    def _make(event_id: str = "event1", **overrides) -> str:
        fields = {
            "name": "General Admission",
            "base_price": 2000,
            "quantity_available": 10,
        }
        fields.update(overrides)
        with session_scope(session_factory) as db:
            return CatalogRepository(db).create_ticket_type(event_id=event_id, **fields).id

    return _make


@pytest.fixture
def make_seats(session_factory):
    def _make(event_id: str = "event1", count: int = 5, price: int = 4500) -> list[str]:
        definitions = [
            SeatDefinition(section="Stalls", row_name="A", seat_number=str(number), price=price)
            for number in range(1, count + 1)
        ]
        with session_scope(session_factory) as db:
            return [seat.id for seat in CatalogRepository(db).create_seats(event_id, definitions)]

    return _make


@pytest.fixture
def client(manager, session_factory):
    from fastapi.testclient import TestClient

    from boxoffice.api.routes.routes import get_db, get_manager
    from boxoffice.main import app

    def _get_db():
        db = session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    app.dependency_overrides[get_manager] = lambda: manager
    app.dependency_overrides[get_db] = _get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
