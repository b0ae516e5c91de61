"""Tenant configuration lookups backed by the tenants tables."""

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from tenantpay.services.tenants.models import Tenant
from tenantpay.services.tenants.schemas import ProcessorConfig, TenantConfig


class TenantConfigProvider:
    """Reads tenant routing configuration; every call opens a fresh session."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def get_tenant(self, tenant_id: str) -> TenantConfig | None:
        """Return the tenant's config with processors in routing order, or `None`."""

        with self.session_factory() as db:
            tenant = db.execute(
                select(Tenant).where(Tenant.tenant_id == tenant_id).options(selectinload(Tenant.processors))
            ).scalar_one_or_none()
            if tenant is None:
                return None
            return TenantConfig(
                tenant_id=tenant.tenant_id,
                preferred_processor=tenant.preferred_processor,
                processors=tuple(
                    ProcessorConfig(
                        name=p.name,
                        api_key=p.api_key_encrypted,
                        api_secret=p.api_secret_encrypted,
                        is_active=p.is_active,
                    )
                    for p in tenant.processors
                ),
            )
