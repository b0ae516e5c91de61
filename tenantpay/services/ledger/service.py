"""Transaction ledger: idempotent upserts, tenant-scoped history and reporting.

`upsert` is keyed on `transaction_id` and replaces the whole record (attempt
history, final status, `updated_at`) in one statement; `created_at` is only
written on insert. Each upsert also enqueues a `transactions.recorded` outbox
event in the same database transaction.
"""

from collections import defaultdict
from datetime import timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from tenantpay.common.errors import PersistenceError
from tenantpay.common.events import TRANSACTIONS_RECORDED_TOPIC, EventEnvelope, KafkaBus
from tenantpay.common.logging import logger, trace_id_ctx
from tenantpay.common.metrics import ledger_write_errors_total, ledger_writes_total
from tenantpay.common.outbox import OutboxRelay
from tenantpay.services.ledger.models import LedgerTransaction, OutboxEvent
from tenantpay.services.ledger.schemas import (
    ProcessorAttempt,
    ProcessorStats,
    Transaction,
    TransactionSummary,
)

MAX_LIST_LIMIT = 1000
REPLACED_COLUMNS = ("amount", "currency", "source", "processor_attempts", "final_status", "updated_at")
_INSERT_BY_DIALECT = {"postgresql": pg_insert, "sqlite": sqlite_insert}


def validate_attempt_history(attempts: tuple[ProcessorAttempt, ...], final_status: str) -> None:
    """Raise when the final status contradicts the attempt history.

    A completed transaction ends with its only completed attempt; a failed one
    has no completed attempt at all.
    """

    completed = [a for a in attempts if a.status == "completed"]
    if final_status == "completed":
        if len(completed) != 1 or attempts[-1].status != "completed":
            raise ValueError("completed transaction must end with exactly one completed attempt")
    elif final_status == "failed":
        if completed:
            raise ValueError("failed transaction cannot contain a completed attempt")
    else:
        raise ValueError(f"unknown final status: {final_status}")


class TransactionLedger:
    """Durable store of transaction audit records."""

    def __init__(self, session_factory, service_name: str = "payments", bus: KafkaBus | None = None) -> None:
        self.session_factory = session_factory
        self.service_name = service_name
        self.relay = OutboxRelay(session_factory, OutboxEvent, bus or KafkaBus(), service_name)

    def _insert_for(self, db):
        dialect = db.get_bind().dialect.name
        try:
            return _INSERT_BY_DIALECT[dialect]
        except KeyError:
            raise PersistenceError(f"ledger upsert is not supported on dialect {dialect}") from None

    def _recorded_event(self, transaction: Transaction) -> OutboxEvent:
        succeeded = [a.processor for a in transaction.processor_attempts if a.status == "completed"]
        envelope = EventEnvelope(
            event_type=TRANSACTIONS_RECORDED_TOPIC,
            aggregate_id=transaction.transaction_id,
            trace_id=trace_id_ctx.get() or transaction.transaction_id,
            payload={
                "tenant_id": transaction.tenant_id,
                "final_status": transaction.final_status,
                "attempts": len(transaction.processor_attempts),
                "processor": succeeded[0] if succeeded else None,
                "amount": str(transaction.amount),
                "currency": transaction.currency,
            },
        )
        return OutboxEvent(
            aggregate_type="transaction",
            aggregate_id=transaction.transaction_id,
            event_type=TRANSACTIONS_RECORDED_TOPIC,
            topic=TRANSACTIONS_RECORDED_TOPIC,
            payload=envelope.model_dump(),
        )

    def upsert(self, transaction: Transaction) -> None:
        """Insert or fully replace the record for `transaction.transaction_id`.

        Raises:
            ValueError: the final status contradicts the attempt history.
            PersistenceError: the store is unavailable, or the id belongs to
                another tenant.
        """

        validate_attempt_history(transaction.processor_attempts, transaction.final_status)
        values = {
            "transaction_id": transaction.transaction_id,
            "tenant_id": transaction.tenant_id,
            "amount": transaction.amount,
            "currency": transaction.currency,
            "source": transaction.source,
            "processor_attempts": [a.model_dump(mode="json") for a in transaction.processor_attempts],
            "final_status": transaction.final_status,
            "created_at": transaction.created_at,
            "updated_at": transaction.updated_at,
        }
        try:
            with self.session_factory() as db:
                insert = self._insert_for(db)
                stmt = insert(LedgerTransaction).values(**values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[LedgerTransaction.transaction_id],
                    set_={column: stmt.excluded[column] for column in REPLACED_COLUMNS},
                    where=LedgerTransaction.tenant_id == stmt.excluded.tenant_id,
                )
                result = db.execute(stmt)
                if result.rowcount == 0:
                    db.rollback()
                    raise PersistenceError(
                        f"transaction {transaction.transaction_id} is already recorded for another tenant"
                    )
                db.add(self._recorded_event(transaction))
                db.commit()
        except SQLAlchemyError as exc:
            ledger_write_errors_total.labels(service=self.service_name).inc()
            logger.error("ledger upsert failed transaction_id=%s error=%s", transaction.transaction_id, exc)
            raise PersistenceError(f"failed to persist transaction {transaction.transaction_id}") from exc

        ledger_writes_total.labels(service=self.service_name, final_status=transaction.final_status).inc()
        logger.info(
            "ledger upsert transaction_id=%s final_status=%s attempts=%s",
            transaction.transaction_id,
            transaction.final_status,
            len(transaction.processor_attempts),
        )

    @staticmethod
    def _to_record(row: LedgerTransaction) -> Transaction:
        created_at = row.created_at
        updated_at = row.updated_at
        # SQLite hands back naive datetimes; everything is written in UTC.
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)
        return Transaction(
            transaction_id=row.transaction_id,
            tenant_id=row.tenant_id,
            amount=row.amount,
            currency=row.currency,
            source=row.source,
            processor_attempts=tuple(ProcessorAttempt.model_validate(a) for a in row.processor_attempts or []),
            final_status=row.final_status,
            created_at=created_at,
            updated_at=updated_at,
        )

    def get(self, transaction_id: str) -> Transaction | None:
        try:
            with self.session_factory() as db:
                row = db.get(LedgerTransaction, transaction_id)
                return self._to_record(row) if row is not None else None
        except SQLAlchemyError as exc:
            raise PersistenceError(f"failed to read transaction {transaction_id}") from exc

    def list_by_tenant(self, tenant_id: str, limit: int = 100, order: str = "desc") -> list[Transaction]:
        """Most recent `limit` transactions of one tenant, ordered by `created_at`."""

        if order not in ("desc", "asc"):
            raise ValueError("order must be 'desc' or 'asc'")
        if not 1 <= limit <= MAX_LIST_LIMIT:
            raise ValueError(f"limit must be between 1 and {MAX_LIST_LIMIT}")

        if order == "desc":
            ordering = (LedgerTransaction.created_at.desc(), LedgerTransaction.transaction_id.desc())
        else:
            ordering = (LedgerTransaction.created_at.asc(), LedgerTransaction.transaction_id.asc())
        try:
            with self.session_factory() as db:
                rows = db.execute(
                    select(LedgerTransaction)
                    .where(LedgerTransaction.tenant_id == tenant_id)
                    .order_by(*ordering)
                    .limit(limit)
                ).scalars().all()
                return [self._to_record(row) for row in rows]
        except SQLAlchemyError as exc:
            raise PersistenceError(f"failed to list transactions for tenant {tenant_id}") from exc

    def summarize(self, tenant_id: str, limit: int = 100) -> TransactionSummary:
        """Roll up the tenant's recent history for reporting."""

        transactions = self.list_by_tenant(tenant_id, limit=limit)
        completed = [t for t in transactions if t.final_status == "completed"]
        processors: dict[str, ProcessorStats] = defaultdict(ProcessorStats)
        volume: dict[str, Decimal] = defaultdict(Decimal)
        fallback_recoveries = 0
        for transaction in transactions:
            for attempt in transaction.processor_attempts:
                stats = processors[attempt.processor]
                if attempt.status == "completed":
                    stats.completed += 1
                else:
                    stats.failed += 1
            if transaction.final_status == "completed":
                volume[transaction.currency] += transaction.amount
                if len(transaction.processor_attempts) > 1:
                    fallback_recoveries += 1

        total = len(transactions)
        return TransactionSummary(
            tenant_id=tenant_id,
            transactions_checked=total,
            completed=len(completed),
            failed=total - len(completed),
            success_rate=round(len(completed) / total, 4) if total else 0.0,
            fallback_recoveries=fallback_recoveries,
            volume_by_currency=dict(volume),
            processors=dict(processors),
        )

    async def outbox_publisher(self) -> None:
        """Continuously publish ledger outbox rows to Kafka."""

        await self.relay.run_forever()
