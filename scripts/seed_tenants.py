"""Load sample tenants with encrypted processor credentials.

Existing rows for the sample tenant ids are replaced.
"""

import argparse

from tenantpay.common.config import settings
from tenantpay.common.db import Base, SessionLocal, engine
from tenantpay.common.logging import configure_logging, logger
from tenantpay.common.vault import CredentialVault
from tenantpay.services.tenants.models import Tenant, TenantProcessor

SAMPLE_TENANTS = [
    {
        "tenant_id": "tenant_001",
        "preferred_processor": "stripe",
        "processors": [
            ("stripe", "sk_test_stripe_001", "stripe_secret_001", True),
            ("paypal", "pk_test_paypal_001", "paypal_secret_001", True),
        ],
    },
    {
        "tenant_id": "tenant_002",
        "preferred_processor": "paypal",
        "processors": [
            ("paypal", "pk_test_paypal_002", "paypal_secret_002", True),
            ("stripe", "sk_test_stripe_002", "stripe_secret_002", True),
        ],
    },
    {
        "tenant_id": "tenant_003",
        "preferred_processor": "stripe",
        "processors": [
            ("stripe", "sk_test_stripe_003", "stripe_secret_003", True),
            ("paypal", "pk_test_paypal_003", "paypal_secret_003", False),
        ],
    },
]


def seed(session_factory, vault: CredentialVault) -> list[str]:
    """Write SAMPLE_TENANTS and return the tenant ids written."""

    written = []
    with session_factory() as db:
        for spec in SAMPLE_TENANTS:
            existing = db.get(Tenant, spec["tenant_id"])
            if existing is not None:
                db.delete(existing)
                db.flush()
            tenant = Tenant(tenant_id=spec["tenant_id"], preferred_processor=spec["preferred_processor"])
            for position, (name, api_key, api_secret, is_active) in enumerate(spec["processors"]):
                tenant.processors.append(
                    TenantProcessor(
                        position=position,
                        name=name,
                        api_key_encrypted=vault.encrypt(api_key),
                        api_secret_encrypted=vault.encrypt(api_secret),
                        is_active=is_active,
                    )
                )
            db.add(tenant)
            written.append(spec["tenant_id"])
        db.commit()
    return written


def main() -> None:
    """CLI entrypoint for local seeding."""

    parser = argparse.ArgumentParser(description="Seed sample tenants and processor credentials.")
    parser.add_argument("--create-schema", action="store_true", help="Create tables before seeding")
    args = parser.parse_args()

    configure_logging()
    if args.create_schema:
        Base.metadata.create_all(engine)
    tenant_ids = seed(SessionLocal, CredentialVault.from_settings(settings))
    logger.info("seeded tenants=%s", tenant_ids)


if __name__ == "__main__":
    main()
