"""Transactional outbox relay.

Outbox rows are written in the same database transaction as the state they
describe; the relay claims pending rows, publishes them to Kafka and marks
them sent. A row stuck in `PROCESSING` longer than the processing timeout is
claimed again.
"""

import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, or_, select, update

from tenantpay.common.events import EventEnvelope, KafkaBus
from tenantpay.common.logging import logger
from tenantpay.common.metrics import outbox_oldest_pending_age_seconds, outbox_pending_total

PENDING_STATUSES = ("PENDING", "PROCESSING")


class OutboxRelay:
    """Moves outbox rows of one model to Kafka."""

    def __init__(
        self,
        session_factory,
        outbox_model,
        bus: KafkaBus,
        service_name: str,
        batch_size: int = 100,
        processing_timeout_seconds: int = 30,
    ) -> None:
        self.session_factory = session_factory
        self.table = outbox_model.__table__
        self.bus = bus
        self.service_name = service_name
        self.batch_size = batch_size
        self.processing_timeout_seconds = processing_timeout_seconds

    def claim_batch(self, db) -> list[dict]:
        """Lock a batch of pending/stale rows and flag them `PROCESSING`."""

        table = self.table
        now = datetime.now(timezone.utc)
        stale_before = now - timedelta(seconds=self.processing_timeout_seconds)
        rows = db.execute(
            select(table.c.id, table.c.topic, table.c.payload)
            .where(
                or_(
                    table.c.status == "PENDING",
                    (table.c.status == "PROCESSING") & (table.c.sent_at < stale_before),
                )
            )
            .order_by(table.c.created_at)
            .limit(self.batch_size)
            .with_for_update(skip_locked=True)
        ).all()
        if rows:
            db.execute(
                update(table).where(table.c.id.in_([row.id for row in rows])).values(status="PROCESSING", sent_at=now)
            )
        return [{"id": row.id, "topic": row.topic, "payload": row.payload} for row in rows]

    def mark_sent(self, db, event_id: str) -> None:
        db.execute(
            update(self.table)
            .where(self.table.c.id == event_id, self.table.c.status == "PROCESSING")
            .values(status="SENT", sent_at=datetime.now(timezone.utc))
        )

    def requeue(self, db, event_id: str) -> None:
        """Return a claimed row to `PENDING` so the next pass retries it."""

        db.execute(
            update(self.table)
            .where(self.table.c.id == event_id, self.table.c.status == "PROCESSING")
            .values(status="PENDING", sent_at=None)
        )

    def refresh_backlog_metrics(self, db) -> None:
        table = self.table
        pending_count = db.execute(
            select(func.count()).select_from(table).where(table.c.status.in_(PENDING_STATUSES))
        ).scalar_one()
        oldest_pending = db.execute(
            select(func.min(table.c.created_at)).where(table.c.status.in_(PENDING_STATUSES))
        ).scalar_one()
        age_seconds = 0.0
        if oldest_pending is not None:
            if oldest_pending.tzinfo is None:
                oldest_pending = oldest_pending.replace(tzinfo=timezone.utc)
            age_seconds = max(0.0, (datetime.now(timezone.utc) - oldest_pending).total_seconds())
        outbox_pending_total.labels(service=self.service_name).set(float(pending_count))
        outbox_oldest_pending_age_seconds.labels(service=self.service_name).set(age_seconds)

    async def publish_pending(self) -> int:
        """Run one claim/publish pass and return how many rows were sent."""

        with self.session_factory() as db:
            rows = self.claim_batch(db)
            self.refresh_backlog_metrics(db)
            db.commit()
        sent = 0
        for row in rows:
            try:
                await self.bus.publish(row["topic"], EventEnvelope(**row["payload"]))
            except Exception as exc:
                logger.exception("outbox publish failed event_id=%s error=%s", row["id"], exc)
                with self.session_factory() as db:
                    self.requeue(db, row["id"])
                    self.refresh_backlog_metrics(db)
                    db.commit()
                continue
            with self.session_factory() as db:
                self.mark_sent(db, row["id"])
                self.refresh_backlog_metrics(db)
                db.commit()
            sent += 1
        return sent

    async def run_forever(self, interval_seconds: float = 0.5) -> None:
        """Publish continuously until cancelled."""

        while True:
            try:
                await self.publish_pending()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("outbox relay pass failed service=%s error=%s", self.service_name, exc)
            await asyncio.sleep(interval_seconds)
