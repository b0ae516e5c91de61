"""Tenant configuration tables.

Processor credentials are stored encrypted; only the orchestrator decrypts them
right before a processor attempt.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tenantpay.common.db import Base


class Tenant(Base):
    """One isolated customer account and its routing preference."""

    __tablename__ = "tenants"

    tenant_id: Mapped[str] = mapped_column(String, primary_key=True)
    preferred_processor: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    processors: Mapped[list["TenantProcessor"]] = relationship(
        back_populates="tenant",
        order_by="TenantProcessor.position",
        cascade="all, delete-orphan",
    )


class TenantProcessor(Base):
    """Processor credentials configured for a tenant, in routing order."""

    __tablename__ = "tenant_processors"
    __table_args__ = (UniqueConstraint("tenant_id", "position", name="uq_tenant_processor_position"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    tenant_id: Mapped[str] = mapped_column(ForeignKey("tenants.tenant_id"), index=True)
    position: Mapped[int] = mapped_column(Integer)
    name: Mapped[str] = mapped_column(String)
    api_key_encrypted: Mapped[str] = mapped_column(String)
    api_secret_encrypted: Mapped[str] = mapped_column(String)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    tenant: Mapped[Tenant] = relationship(back_populates="processors")
