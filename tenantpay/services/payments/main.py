"""Payments service process: logging, tracing and service wiring.

Run with `uvicorn tenantpay.services.payments.main:app`.
"""

from tenantpay.common.config import settings
from tenantpay.common.db import SessionLocal
from tenantpay.common.logging import configure_logging
from tenantpay.common.startup import log_startup_config
from tenantpay.common.tracing import instrument_app, setup_tracing
from tenantpay.common.vault import CredentialVault
from tenantpay.services.ledger.service import TransactionLedger
from tenantpay.services.payments.api import create_app
from tenantpay.services.payments.service import PaymentOrchestrator
from tenantpay.services.processors.gateway import build_gateway
from tenantpay.services.tenants.provider import TenantConfigProvider

configure_logging(settings.service_name, settings.log_level)
setup_tracing(settings.service_name)
log_startup_config(
    settings,
    [
        "postgres_dsn",
        "credential_encryption_keys",
        "kafka_bootstrap_servers",
        "processor_mode",
        "processor_base_urls",
        "processor_timeout_seconds",
        "transaction_history_limit",
    ],
)

ledger = TransactionLedger(SessionLocal, service_name=settings.service_name)
orchestrator = PaymentOrchestrator(
    tenants=TenantConfigProvider(SessionLocal),
    gateway=build_gateway(settings),
    vault=CredentialVault.from_settings(settings),
    ledger=ledger,
    service_name=settings.service_name,
)

app = create_app(orchestrator, ledger, history_limit=settings.transaction_history_limit)
instrument_app(app)
