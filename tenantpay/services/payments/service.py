"""Payment orchestration with processor failover.

One call walks the tenant's processors in attempt order, stops at the first
success, and commits the complete attempt history to the ledger exactly once,
after the outcome is known. Nothing is written if the call is cancelled before
that point.
"""

import time
from datetime import datetime, timezone
from uuid import uuid4

from tenantpay.common.errors import AllProcessorsFailed, DecryptionError, GatewayError, TenantNotFound
from tenantpay.common.logging import log_context, logger, tenant_id_ctx, transaction_id_ctx
from tenantpay.common.metrics import (
    fallbacks_total,
    payment_failure_total,
    payment_latency_seconds,
    payment_requests_total,
    payment_success_total,
    processor_attempt_seconds,
    processor_attempts_total,
)
from tenantpay.common.tracing import get_tracer
from tenantpay.common.vault import CredentialVault
from tenantpay.services.ledger.schemas import ProcessorAttempt, Transaction
from tenantpay.services.ledger.service import TransactionLedger
from tenantpay.services.payments.schemas import PaymentRequest, PaymentResponse
from tenantpay.services.processors.gateway import ProcessorGateway
from tenantpay.services.tenants.provider import TenantConfigProvider
from tenantpay.services.tenants.schemas import ProcessorConfig, TenantConfig

tracer = get_tracer(__name__)


def build_attempt_order(tenant: TenantConfig) -> list[ProcessorConfig]:
    """Preferred processor first when it is configured and active, then the other
    active processors in configured order. No name appears twice."""

    order: list[ProcessorConfig] = []
    preferred = next(
        (p for p in tenant.processors if p.name == tenant.preferred_processor and p.is_active),
        None,
    )
    if preferred is not None:
        order.append(preferred)
    seen = {p.name for p in order}
    for processor in tenant.processors:
        if not processor.is_active or processor.name == tenant.preferred_processor or processor.name in seen:
            continue
        order.append(processor)
        seen.add(processor.name)
    return order


def _now() -> datetime:
    return datetime.now(timezone.utc)


class PaymentOrchestrator:
    """Routes payments across a tenant's processors and records the audit trail."""

    def __init__(
        self,
        tenants: TenantConfigProvider,
        gateway: ProcessorGateway,
        vault: CredentialVault,
        ledger: TransactionLedger,
        service_name: str = "payments",
    ) -> None:
        self.tenants = tenants
        self.gateway = gateway
        self.vault = vault
        self.ledger = ledger
        self.service_name = service_name

    async def process_payment(self, tenant_id: str, request: PaymentRequest) -> PaymentResponse:
        """Charge `request` for `tenant_id`, falling back across processors.

        Raises:
            TenantNotFound: no configuration for the tenant; nothing is recorded.
            AllProcessorsFailed: no processor accepted the charge; the failed
                transaction is recorded first.
            PersistenceError: the audit record could not be stored.
        """

        payment_requests_total.labels(service=self.service_name).inc()
        with log_context(tenant_id_ctx, tenant_id), payment_latency_seconds.labels(service=self.service_name).time():
            tenant = self.tenants.get_tenant(tenant_id)
            if tenant is None:
                payment_failure_total.labels(service=self.service_name, reason="tenant_not_found").inc()
                logger.warning("payment rejected: tenant not found tenant_id=%s", tenant_id)
                raise TenantNotFound(tenant_id)

            transaction_id = str(uuid4())
            with log_context(transaction_id_ctx, transaction_id):
                return await self._route(tenant, transaction_id, request)

    async def _route(self, tenant: TenantConfig, transaction_id: str, request: PaymentRequest) -> PaymentResponse:
        created_at = _now()
        attempts: list[ProcessorAttempt] = []
        last_error: str | None = None
        order = build_attempt_order(tenant)
        logger.info(
            "payment started transaction_id=%s attempt_order=%s",
            transaction_id,
            [p.name for p in order],
        )

        for processor in order:
            attempt = await self._attempt(processor, request)
            attempts.append(attempt)
            if attempt.status == "completed":
                self._commit(tenant, transaction_id, request, attempts, "completed", created_at)
                payment_success_total.labels(service=self.service_name).inc()
                if len(attempts) > 1:
                    fallbacks_total.labels(service=self.service_name).inc()
                logger.info(
                    "payment completed transaction_id=%s processor=%s attempts=%s",
                    transaction_id,
                    processor.name,
                    len(attempts),
                )
                return PaymentResponse(
                    success=True,
                    transaction_id=transaction_id,
                    processor=processor.name,
                    amount=request.amount,
                    currency=request.currency,
                    timestamp=attempt.timestamp,
                )
            last_error = attempt.error

        self._commit(tenant, transaction_id, request, attempts, "failed", created_at)
        reason = "all_processors_failed" if order else "no_active_processors"
        payment_failure_total.labels(service=self.service_name, reason=reason).inc()
        logger.error(
            "payment failed transaction_id=%s attempts=%s last_error=%s",
            transaction_id,
            len(attempts),
            last_error,
        )
        raise AllProcessorsFailed(transaction_id, tuple(attempts), last_error)

    async def _attempt(self, processor: ProcessorConfig, request: PaymentRequest) -> ProcessorAttempt:
        """Run one processor; every processor-level failure becomes a failed attempt."""

        started = time.perf_counter()
        with tracer.start_as_current_span(
            "processor.attempt",
            attributes={"processor.name": processor.name, "payment.currency": request.currency},
        ) as span:
            try:
                api_key = self.vault.decrypt(processor.api_key)
                api_secret = self.vault.decrypt(processor.api_secret)
                result = await self.gateway.attempt(processor.name, api_key, api_secret, request)
            except (DecryptionError, GatewayError) as exc:
                logger.warning("processor attempt error processor=%s error_code=%s error=%s", processor.name, exc.code, exc)
                attempt = ProcessorAttempt(
                    processor=processor.name,
                    status="failed",
                    timestamp=_now(),
                    response={"success": False, "error_code": exc.code},
                    error=str(exc),
                )
            except Exception as exc:
                # CancelledError is not an Exception and still propagates.
                logger.exception("processor attempt crashed processor=%s error=%s", processor.name, exc)
                attempt = ProcessorAttempt(
                    processor=processor.name,
                    status="failed",
                    timestamp=_now(),
                    response={"success": False, "error_code": GatewayError.code},
                    error=f"Payment processor {processor.name} raised {type(exc).__name__}: {exc}",
                )
            else:
                if result.success:
                    attempt = ProcessorAttempt(
                        processor=processor.name,
                        status="completed",
                        timestamp=_now(),
                        response=result.response,
                    )
                else:
                    logger.warning("processor declined processor=%s error=%s", processor.name, result.error)
                    attempt = ProcessorAttempt(
                        processor=processor.name,
                        status="failed",
                        timestamp=_now(),
                        response=result.response or {"success": False},
                        error=result.error or f"Payment processor {processor.name} failed to process the transaction",
                    )
            span.set_attribute("processor.status", attempt.status)

        processor_attempt_seconds.labels(service=self.service_name, processor=processor.name).observe(
            max(0.0, time.perf_counter() - started)
        )
        processor_attempts_total.labels(
            service=self.service_name,
            processor=processor.name,
            status=attempt.status,
        ).inc()
        return attempt

    def _commit(
        self,
        tenant: TenantConfig,
        transaction_id: str,
        request: PaymentRequest,
        attempts: list[ProcessorAttempt],
        final_status: str,
        created_at: datetime,
    ) -> None:
        self.ledger.upsert(
            Transaction(
                transaction_id=transaction_id,
                tenant_id=tenant.tenant_id,
                amount=request.amount,
                currency=request.currency,
                source=request.source,
                processor_attempts=tuple(attempts),
                final_status=final_status,
                created_at=created_at,
                updated_at=_now(),
            )
        )
