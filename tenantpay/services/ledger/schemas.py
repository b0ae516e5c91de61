"""Audit-trail records exchanged between the orchestrator and the ledger."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

AttemptStatus = Literal["completed", "failed"]


class ProcessorAttempt(BaseModel):
    """One try of a payment against one processor; never mutated once appended."""

    model_config = ConfigDict(frozen=True)

    processor: str
    status: AttemptStatus
    timestamp: datetime
    response: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None


class Transaction(BaseModel):
    """Full audit record of one `process_payment` call."""

    model_config = ConfigDict(frozen=True)

    transaction_id: str
    tenant_id: str
    amount: Decimal
    currency: str
    source: str
    processor_attempts: tuple[ProcessorAttempt, ...] = ()
    final_status: AttemptStatus
    created_at: datetime
    updated_at: datetime


class ProcessorStats(BaseModel):
    completed: int = 0
    failed: int = 0


class TransactionSummary(BaseModel):
    """Deterministic roll-up of a tenant's recent transactions."""

    tenant_id: str
    transactions_checked: int
    completed: int
    failed: int
    success_rate: float
    fallback_recoveries: int
    volume_by_currency: dict[str, Decimal]
    processors: dict[str, ProcessorStats]
