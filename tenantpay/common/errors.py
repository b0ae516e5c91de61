"""Error taxonomy for payment routing.

Only `TenantNotFound`, `AllProcessorsFailed` and `PersistenceError` ever reach a
caller of the orchestrator. `DecryptionError` and `GatewayError` are absorbed
into the attempt history as failed attempts.
"""

from typing import Any


class PaymentError(Exception):
    """Base class carrying a stable machine-readable code."""

    code = "PAYMENT_ERROR"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class TenantNotFound(PaymentError):
    code = "TENANT_NOT_FOUND"

    def __init__(self, tenant_id: str) -> None:
        self.tenant_id = tenant_id
        super().__init__(f"tenant configuration not found: {tenant_id}")


class AllProcessorsFailed(PaymentError):
    """Every processor in the attempt order rejected the payment (or none was active)."""

    code = "ALL_PROCESSORS_FAILED"

    def __init__(self, transaction_id: str, attempts: tuple[Any, ...], last_error: str | None) -> None:
        self.transaction_id = transaction_id
        self.attempts = attempts
        self.last_error = last_error
        detail = last_error if last_error is not None else "no active processors configured"
        super().__init__(f"All payment processors failed. Last error: {detail}")


class DecryptionError(PaymentError):
    code = "DECRYPTION_ERROR"


class GatewayError(PaymentError):
    """One processor call could not be completed."""

    code = "GATEWAY_ERROR"

    def __init__(self, processor: str, message: str) -> None:
        self.processor = processor
        super().__init__(message)


class PersistenceError(PaymentError):
    """The ledger could not store the audit record."""

    code = "PERSISTENCE_ERROR"
