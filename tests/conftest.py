"""Shared fixtures: in-memory SQLite stores, a vault, and scripted processors."""

import os

from cryptography.fernet import Fernet

os.environ.setdefault("POSTGRES_DSN", "sqlite://")
os.environ.setdefault("CREDENTIAL_ENCRYPTION_KEYS", Fernet.generate_key().decode())

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tenantpay.common.db import Base
from tenantpay.common.vault import CredentialVault
from tenantpay.services.ledger.service import TransactionLedger
from tenantpay.services.payments.service import PaymentOrchestrator
from tenantpay.services.processors.gateway import ProcessorGateway, ProcessorResult
from tenantpay.services.tenants.models import Tenant, TenantProcessor
from tenantpay.services.tenants.provider import TenantConfigProvider


class RecordingBus:
    """Kafka stand-in that keeps published envelopes in memory."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.published = []

    async def publish(self, topic, event) -> None:
        if self.fail:
            raise ConnectionError("kafka unavailable")
        self.published.append((topic, event))

    async def close(self) -> None:
        return None


class ScriptedGateway(ProcessorGateway):
    """Processor double: `outcomes[name]` is True (approve), False (decline) or an exception to raise."""

    def __init__(self, outcomes: dict) -> None:
        self.outcomes = outcomes
        self.calls = []

    async def attempt(self, processor_name, api_key, api_secret, request):
        self.calls.append((processor_name, api_key, api_secret))
        outcome = self.outcomes.get(processor_name, False)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome:
            return ProcessorResult(success=True, response={"success": True, "processor": processor_name})
        return ProcessorResult(success=False, response={"success": False}, error=f"{processor_name} declined")


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def vault():
    return CredentialVault([Fernet.generate_key().decode()])


@pytest.fixture
def bus():
    return RecordingBus()


@pytest.fixture
def ledger(session_factory, bus):
    return TransactionLedger(session_factory, service_name="test", bus=bus)


@pytest.fixture
def tenants(session_factory):
    return TenantConfigProvider(session_factory)


@pytest.fixture
def add_tenant(session_factory, vault):
    """Store a tenant; `processors` is a list of `(name, is_active)` in routing order."""

    def _add(tenant_id: str, preferred: str, processors: list[tuple[str, bool]]) -> None:
        with session_factory() as db:
            tenant = Tenant(tenant_id=tenant_id, preferred_processor=preferred)
            for position, (name, is_active) in enumerate(processors):
                tenant.processors.append(
                    TenantProcessor(
                        position=position,
                        name=name,
                        api_key_encrypted=vault.encrypt(f"key_{name}"),
                        api_secret_encrypted=vault.encrypt(f"secret_{name}"),
                        is_active=is_active,
                    )
                )
            db.add(tenant)
            db.commit()

    return _add


@pytest.fixture
def make_orchestrator(tenants, vault, ledger):
    def _make(gateway: ProcessorGateway) -> PaymentOrchestrator:
        return PaymentOrchestrator(tenants=tenants, gateway=gateway, vault=vault, ledger=ledger, service_name="test")

    return _make


@pytest.fixture
def scripted_gateway():
    return ScriptedGateway
