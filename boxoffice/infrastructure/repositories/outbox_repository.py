# boxoffice/infrastructure/repositories/outbox_repository.py

import json

from sqlalchemy import select
from sqlalchemy.orm import Session

from boxoffice.domain.timeutils import utc_now
from boxoffice.infrastructure.db.models import OutboxEvent


class OutboxRepository:
    """
    Domain events for downstream order/payment processing, written in the
    same transaction as the state change they describe.
    """

    def __init__(self, db: Session):
        self.db = db

    def add(
        self,
        aggregate_type: str,
        aggregate_id: str,
        event_type: str,
        payload: dict,
        dedupe_key: str,
    ) -> OutboxEvent | None:
        existing = self.db.execute(
            select(OutboxEvent).where(OutboxEvent.dedupe_key == dedupe_key)
        ).scalar_one_or_none()
        if existing:
            return None

        event = OutboxEvent(
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            event_type=event_type,
            payload=json.dumps(payload, sort_keys=True, default=str),
            dedupe_key=dedupe_key,
            status="PENDING",
            attempts=0,
            created_at=utc_now(),
        )
        self.db.add(event)
        self.db.flush()
        return event

    def list_by_status(self, status: str = "PENDING", limit: int = 50) -> list[OutboxEvent]:
        safe_limit = max(1, min(limit, 200))
        stmt = (
            select(OutboxEvent)
            .where(OutboxEvent.status == status)
            .order_by(OutboxEvent.created_at, OutboxEvent.id)
            .limit(safe_limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_for_aggregate(self, aggregate_id: str) -> list[OutboxEvent]:
        stmt = (
            select(OutboxEvent)
            .where(OutboxEvent.aggregate_id == aggregate_id)
            .order_by(OutboxEvent.created_at, OutboxEvent.id)
        )
        return list(self.db.execute(stmt).scalars().all())

    def mark_published(self, event_id: str) -> OutboxEvent | None:
        item = self.db.execute(
            select(OutboxEvent).where(OutboxEvent.id == event_id)
        ).scalar_one_or_none()
        if not item:
            return None

        item.status = "PUBLISHED"
        item.published_at = utc_now()
        item.attempts += 1
        return item
