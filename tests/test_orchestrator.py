"""Failover, audit and error-surface behavior of the payment orchestrator."""

import asyncio
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import func, select, update

from tenantpay.common.errors import (
    AllProcessorsFailed,
    GatewayError,
    PersistenceError,
    TenantNotFound,
)
from tenantpay.common.db import Base
from tenantpay.services.ledger.models import LedgerTransaction, OutboxEvent
from tenantpay.services.payments.schemas import PaymentRequest
from tenantpay.services.processors.gateway import HttpProcessorGateway, ProcessorGateway, ProcessorResult
from tenantpay.services.tenants.models import TenantProcessor


REQUEST = PaymentRequest(amount=Decimal("25.00"), currency="usd", source="tok_visa")


def stored_count(session_factory) -> int:
    with session_factory() as db:
        return db.execute(select(func.count()).select_from(LedgerTransaction)).scalar_one()


def outbox_count(session_factory) -> int:
    with session_factory() as db:
        return db.execute(select(func.count()).select_from(OutboxEvent)).scalar_one()


def record_upserts(ledger, monkeypatch) -> list:
    """Wrap `ledger.upsert` and return the list of final statuses it was called with."""

    calls = []
    upsert = ledger.upsert

    def counting_upsert(transaction):
        calls.append(transaction.final_status)
        return upsert(transaction)

    monkeypatch.setattr(ledger, "upsert", counting_upsert)
    return calls


@pytest.mark.asyncio
async def test_falls_back_from_failing_preferred_processor(
    add_tenant, make_orchestrator, scripted_gateway, ledger, session_factory, monkeypatch
):
    add_tenant("T1", "paypal", [("stripe", True), ("paypal", True)])
    gateway = scripted_gateway({"paypal": False, "stripe": True})
    upserts = record_upserts(ledger, monkeypatch)

    response = await make_orchestrator(gateway).process_payment("T1", REQUEST)

    assert [call[0] for call in gateway.calls] == ["paypal", "stripe"]
    assert response.success is True
    assert response.processor == "stripe"
    assert response.status == "completed"
    assert response.amount == Decimal("25.00")
    assert response.currency == "USD"

    record = ledger.get(response.transaction_id)
    assert record.final_status == "completed"
    assert [(a.processor, a.status) for a in record.processor_attempts] == [
        ("paypal", "failed"),
        ("stripe", "completed"),
    ]
    assert record.processor_attempts[0].error == "paypal declined"
    assert record.processor_attempts[1].response == {"success": True, "processor": "stripe"}
    assert upserts == ["completed"]
    assert outbox_count(session_factory) == 1


@pytest.mark.asyncio
async def test_inactive_only_processor_fails_immediately(add_tenant, make_orchestrator, scripted_gateway, ledger):
    add_tenant("T2", "stripe", [("stripe", False)])
    gateway = scripted_gateway({"stripe": True})

    with pytest.raises(AllProcessorsFailed) as excinfo:
        await make_orchestrator(gateway).process_payment("T2", REQUEST)

    assert gateway.calls == []
    assert excinfo.value.attempts == ()
    assert excinfo.value.last_error is None
    record = ledger.get(excinfo.value.transaction_id)
    assert record.final_status == "failed"
    assert record.processor_attempts == ()


@pytest.mark.asyncio
async def test_unknown_tenant_writes_nothing(make_orchestrator, scripted_gateway, session_factory):
    gateway = scripted_gateway({})

    with pytest.raises(TenantNotFound):
        await make_orchestrator(gateway).process_payment("T9", REQUEST)

    assert gateway.calls == []
    assert stored_count(session_factory) == 0


@pytest.mark.asyncio
async def test_first_success_stops_further_attempts(add_tenant, make_orchestrator, scripted_gateway, ledger):
    add_tenant("acme", "stripe", [("stripe", True), ("paypal", True), ("adyen", True)])
    gateway = scripted_gateway({"stripe": True, "paypal": True, "adyen": True})

    response = await make_orchestrator(gateway).process_payment("acme", REQUEST)

    assert response.processor == "stripe"
    assert len(gateway.calls) == 1
    assert len(ledger.get(response.transaction_id).processor_attempts) == 1


@pytest.mark.asyncio
async def test_exhaustion_records_every_attempt_and_last_error(
    add_tenant, make_orchestrator, scripted_gateway, ledger, session_factory, monkeypatch
):
    add_tenant("acme", "paypal", [("stripe", True), ("paypal", True), ("adyen", True)])
    gateway = scripted_gateway({})
    upserts = record_upserts(ledger, monkeypatch)

    with pytest.raises(AllProcessorsFailed) as excinfo:
        await make_orchestrator(gateway).process_payment("acme", REQUEST)

    assert excinfo.value.last_error == "adyen declined"
    assert "adyen declined" in str(excinfo.value)
    record = ledger.get(excinfo.value.transaction_id)
    assert record.final_status == "failed"
    assert [a.processor for a in record.processor_attempts] == ["paypal", "stripe", "adyen"]
    assert all(a.status == "failed" for a in record.processor_attempts)
    assert upserts == ["failed"]
    assert outbox_count(session_factory) == 1


@pytest.mark.asyncio
async def test_gateway_sees_only_plaintext_credentials(add_tenant, make_orchestrator, scripted_gateway):
    add_tenant("acme", "stripe", [("stripe", True)])
    gateway = scripted_gateway({"stripe": True})

    await make_orchestrator(gateway).process_payment("acme", REQUEST)

    assert gateway.calls == [("stripe", "key_stripe", "secret_stripe")]


@pytest.mark.asyncio
async def test_corrupt_credentials_fail_only_that_processor(
    add_tenant, make_orchestrator, scripted_gateway, session_factory, ledger
):
    add_tenant("acme", "stripe", [("stripe", True), ("paypal", True)])
    with session_factory() as db:
        db.execute(
            update(TenantProcessor).where(TenantProcessor.name == "stripe").values(api_secret_encrypted="not-a-token")
        )
        db.commit()
    gateway = scripted_gateway({"stripe": True, "paypal": True})

    response = await make_orchestrator(gateway).process_payment("acme", REQUEST)

    assert response.processor == "paypal"
    assert [call[0] for call in gateway.calls] == ["paypal"]
    first = ledger.get(response.transaction_id).processor_attempts[0]
    assert first.processor == "stripe"
    assert first.status == "failed"
    assert first.response["error_code"] == "DECRYPTION_ERROR"


@pytest.mark.asyncio
async def test_gateway_error_is_recorded_and_next_processor_tried(add_tenant, make_orchestrator, scripted_gateway, ledger):
    add_tenant("acme", "stripe", [("stripe", True), ("paypal", True)])
    gateway = scripted_gateway({"stripe": GatewayError("stripe", "connection refused"), "paypal": True})

    response = await make_orchestrator(gateway).process_payment("acme", REQUEST)

    assert response.processor == "paypal"
    first = ledger.get(response.transaction_id).processor_attempts[0]
    assert first.error == "connection refused"
    assert first.response["error_code"] == "GATEWAY_ERROR"


@pytest.mark.asyncio
async def test_unexpected_gateway_exception_is_a_failed_attempt(add_tenant, make_orchestrator, scripted_gateway, ledger):
    add_tenant("acme", "stripe", [("stripe", True), ("paypal", True)])
    gateway = scripted_gateway({"stripe": RuntimeError("boom"), "paypal": True})

    response = await make_orchestrator(gateway).process_payment("acme", REQUEST)

    assert response.processor == "paypal"
    first = ledger.get(response.transaction_id).processor_attempts[0]
    assert first.status == "failed"
    assert "RuntimeError: boom" in first.error
    assert first.response["error_code"] == "GATEWAY_ERROR"


@pytest.mark.asyncio
async def test_malformed_processor_endpoint_falls_through_to_next_processor(add_tenant, make_orchestrator, ledger):
    add_tenant("acme", "stripe", [("stripe", True), ("paypal", True)])
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"id": "ch_1"})))
    gateway = HttpProcessorGateway(
        {"stripe": "http://stripe.test:notaport", "paypal": "http://paypal.test"},
        max_retries=0,
        client=client,
        service_name="test",
    )

    response = await make_orchestrator(gateway).process_payment("acme", REQUEST)

    assert response.processor == "paypal"
    first = ledger.get(response.transaction_id).processor_attempts[0]
    assert first.processor == "stripe"
    assert first.response["error_code"] == "GATEWAY_ERROR"


@pytest.mark.asyncio
async def test_recorded_amount_matches_charged_amount(add_tenant, make_orchestrator, scripted_gateway, ledger):
    add_tenant("acme", "stripe", [("stripe", True)])
    request = PaymentRequest(amount=Decimal("1234567.8901"), currency="USD", source="tok_visa")

    response = await make_orchestrator(scripted_gateway({"stripe": True})).process_payment("acme", request)

    assert ledger.get(response.transaction_id).amount == Decimal("1234567.8901")


@pytest.mark.asyncio
async def test_each_call_is_a_new_transaction(add_tenant, make_orchestrator, scripted_gateway, ledger):
    add_tenant("acme", "stripe", [("stripe", True)])
    orchestrator = make_orchestrator(scripted_gateway({"stripe": True}))

    responses = await asyncio.gather(*(orchestrator.process_payment("acme", REQUEST) for _ in range(10)))

    ids = {r.transaction_id for r in responses}
    assert len(ids) == 10
    assert len(ledger.list_by_tenant("acme")) == 10


@pytest.mark.asyncio
async def test_tenant_config_is_read_fresh_each_call(add_tenant, make_orchestrator, scripted_gateway, session_factory):
    add_tenant("acme", "stripe", [("stripe", True), ("paypal", True)])
    gateway = scripted_gateway({"stripe": True, "paypal": True})
    orchestrator = make_orchestrator(gateway)

    first = await orchestrator.process_payment("acme", REQUEST)
    with session_factory() as db:
        db.execute(update(TenantProcessor).where(TenantProcessor.name == "stripe").values(is_active=False))
        db.commit()
    second = await orchestrator.process_payment("acme", REQUEST)

    assert first.processor == "stripe"
    assert second.processor == "paypal"


@pytest.mark.asyncio
async def test_ledger_failure_surfaces_as_persistence_error(add_tenant, make_orchestrator, scripted_gateway, engine):
    add_tenant("acme", "stripe", [("stripe", True)])
    Base.metadata.tables["transactions"].drop(engine)

    with pytest.raises(PersistenceError):
        await make_orchestrator(scripted_gateway({"stripe": True})).process_payment("acme", REQUEST)


class BlockingGateway(ProcessorGateway):
    """Declines the first processor, then hangs until cancelled."""

    def __init__(self) -> None:
        self.hanging = asyncio.Event()

    async def attempt(self, processor_name, api_key, api_secret, request):
        if processor_name == "stripe":
            return ProcessorResult(success=False, error="stripe declined")
        self.hanging.set()
        await asyncio.Event().wait()


@pytest.mark.asyncio
async def test_cancelled_payment_leaves_no_record(add_tenant, make_orchestrator, session_factory):
    add_tenant("acme", "stripe", [("stripe", True), ("paypal", True)])
    gateway = BlockingGateway()
    task = asyncio.create_task(make_orchestrator(gateway).process_payment("acme", REQUEST))

    await asyncio.wait_for(gateway.hanging.wait(), timeout=1)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert stored_count(session_factory) == 0
