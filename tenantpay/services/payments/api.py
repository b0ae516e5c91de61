"""HTTP routes for payment processing and tenant transaction history."""

import asyncio
from contextlib import asynccontextmanager
from typing import Literal
from uuid import uuid4

from fastapi import FastAPI, Header, HTTPException, Query
from fastapi.responses import JSONResponse

from tenantpay.common.errors import AllProcessorsFailed, PersistenceError, TenantNotFound
from tenantpay.common.logging import log_context, logger, trace_id_ctx
from tenantpay.common.metrics import metrics_response
from tenantpay.services.ledger.schemas import Transaction, TransactionSummary
from tenantpay.services.ledger.service import MAX_LIST_LIMIT, TransactionLedger
from tenantpay.services.payments.schemas import PaymentFailure, PaymentRequest, PaymentResponse
from tenantpay.services.payments.service import PaymentOrchestrator


def create_app(
    orchestrator: PaymentOrchestrator,
    ledger: TransactionLedger,
    history_limit: int = 100,
    run_outbox: bool = True,
) -> FastAPI:
    """Wire routes around already-built service objects."""

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        """Run the ledger outbox publisher with the app lifecycle."""

        publisher_task = asyncio.create_task(ledger.outbox_publisher()) if run_outbox else None
        yield
        if publisher_task is not None:
            publisher_task.cancel()
        await ledger.relay.bus.close()
        await orchestrator.gateway.close()

    app = FastAPI(title="TenantPay Payments", lifespan=lifespan)

    @app.post("/tenants/{tenant_id}/payments", response_model=PaymentResponse)
    async def create_payment(tenant_id: str, req: PaymentRequest, x_trace_id: str | None = Header(default=None)):
        """Charge through the tenant's processors, failing over in order."""

        try:
            with log_context(trace_id_ctx, x_trace_id or str(uuid4())):
                return await orchestrator.process_payment(tenant_id, req)
        except TenantNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except AllProcessorsFailed as exc:
            body = PaymentFailure(
                error="Payment processing failed",
                code=exc.code,
                transaction_id=exc.transaction_id,
                attempts=len(exc.attempts),
                last_error=exc.last_error,
            )
            return JSONResponse(status_code=502, content=body.model_dump())
        except PersistenceError as exc:
            logger.error("payment audit record not stored tenant_id=%s error=%s", tenant_id, exc)
            raise HTTPException(status_code=503, detail="transaction ledger unavailable") from exc

    @app.get("/tenants/{tenant_id}/transactions", response_model=list[Transaction])
    def list_transactions(
        tenant_id: str,
        limit: int = Query(default=history_limit, ge=1, le=MAX_LIST_LIMIT),
        order: Literal["desc", "asc"] = "desc",
    ):
        """Most recent transactions of one tenant."""

        try:
            return ledger.list_by_tenant(tenant_id, limit=limit, order=order)
        except PersistenceError as exc:
            raise HTTPException(status_code=503, detail="transaction ledger unavailable") from exc

    @app.get("/tenants/{tenant_id}/summary", response_model=TransactionSummary)
    def summary(tenant_id: str, limit: int = Query(default=history_limit, ge=1, le=MAX_LIST_LIMIT)):
        """Success rate, fallback recoveries and per-processor outcomes."""

        try:
            return ledger.summarize(tenant_id, limit=limit)
        except PersistenceError as exc:
            raise HTTPException(status_code=503, detail="transaction ledger unavailable") from exc

    @app.get("/metrics")
    def metrics():
        """Prometheus scrape endpoint."""

        return metrics_response()

    @app.get("/health")
    def health():
        """Container health probe endpoint."""

        return {"ok": True}

    return app
