"""Read-only tenant configuration handed to the orchestrator."""

from pydantic import BaseModel, ConfigDict


class ProcessorConfig(BaseModel):
    """Processor entry; `api_key`/`api_secret` are vault ciphertext."""

    model_config = ConfigDict(frozen=True)

    name: str
    api_key: str
    api_secret: str
    is_active: bool = True


class TenantConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    tenant_id: str
    preferred_processor: str
    processors: tuple[ProcessorConfig, ...] = ()
