"""Processor integrations behind a single charge capability.

The orchestrator only knows `ProcessorGateway.attempt`: charge once against a
named processor with plaintext credentials and report success or failure with
the processor's response payload. Latency bounds and retries belong to each
integration.
"""

import asyncio
import random
from abc import ABC, abstractmethod
from typing import Any
from uuid import uuid4

import httpx
from pydantic import BaseModel, Field

from tenantpay.common.errors import GatewayError
from tenantpay.common.logging import logger
from tenantpay.common.metrics import retries_total
from tenantpay.services.payments.schemas import PaymentRequest


class ProcessorResult(BaseModel):
    """Outcome of one charge against one processor."""

    success: bool
    response: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None


class ProcessorGateway(ABC):
    """Capability to attempt a charge against a named processor."""

    @abstractmethod
    async def attempt(
        self,
        processor_name: str,
        api_key: str,
        api_secret: str,
        request: PaymentRequest,
    ) -> ProcessorResult:
        """Charge once; a declined or timed-out charge is a failed result, not an exception.

        Raises:
            GatewayError: the processor could not be reached or is not configured.
        """

    async def close(self) -> None:
        return None


def _forced(source: str, action: str, processor_name: str) -> bool:
    """`force-<action>` applies to every processor, `force-<action>:<name>` to one."""

    token = source.lower()
    prefix = f"force-{action}"
    if not token.startswith(prefix):
        return False
    target = token[len(prefix):]
    return target == "" or (target.startswith(":") and target[1:] == processor_name.lower())


class SimulatedProcessorGateway(ProcessorGateway):
    """Stand-in processor network for local runs and demos.

    Declines at random according to `success_rate`. Sources starting with
    `force-decline` or `force-timeout` (optionally `:<processor>`) pin the
    outcome.
    """

    def __init__(
        self,
        success_rate: float = 0.5,
        latency_seconds: float = 1.0,
        timeout_seconds: float = 5.0,
        rng: random.Random | None = None,
    ) -> None:
        if not 0.0 <= success_rate <= 1.0:
            raise ValueError("success_rate must be between 0 and 1")
        self.success_rate = success_rate
        self.latency_seconds = latency_seconds
        self.timeout_seconds = timeout_seconds
        self.rng = rng or random.Random()

    async def attempt(
        self,
        processor_name: str,
        api_key: str,
        api_secret: str,
        request: PaymentRequest,
    ) -> ProcessorResult:
        try:
            return await asyncio.wait_for(self._charge(processor_name, request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("simulated processor timeout processor=%s timeout_s=%s", processor_name, self.timeout_seconds)
            return ProcessorResult(
                success=False,
                response={"success": False, "error_code": "PROVIDER_TIMEOUT"},
                error=f"Payment processor {processor_name} timed out after {self.timeout_seconds}s",
            )

    async def _charge(self, processor_name: str, request: PaymentRequest) -> ProcessorResult:
        if _forced(request.source, "timeout", processor_name):
            await asyncio.sleep(self.timeout_seconds + 1)
        if self.latency_seconds > 0:
            await asyncio.sleep(self.rng.uniform(0, self.latency_seconds))

        if _forced(request.source, "decline", processor_name):
            approved = False
        else:
            approved = self.rng.random() < self.success_rate

        if not approved:
            return ProcessorResult(
                success=False,
                response={"success": False, "error_code": "PROVIDER_DECLINE"},
                error=f"Payment processor {processor_name} failed to process the transaction",
            )
        return ProcessorResult(
            success=True,
            response={
                "success": True,
                "processor": processor_name,
                "processor_reference": str(uuid4()),
                "amount": str(request.amount),
                "currency": request.currency,
                "status": "completed",
            },
        )


class HttpProcessorGateway(ProcessorGateway):
    """JSON-over-HTTP processor integration.

    POSTs `{amount, currency, source}` to `<base_url>/charges` with basic auth.
    Timeouts and 5xx responses are retried with exponential backoff under the
    same `Idempotency-Key`; 4xx responses are declines and are not retried.
    """

    def __init__(
        self,
        base_urls: dict[str, str],
        timeout_seconds: float = 5.0,
        max_retries: int = 2,
        backoff_seconds: float = 0.5,
        client: httpx.AsyncClient | None = None,
        service_name: str = "payments",
    ) -> None:
        self.base_urls = {name.lower(): url.rstrip("/") for name, url in base_urls.items()}
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.service_name = service_name
        self._client = client
        self._owns_client = client is None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._client

    @staticmethod
    def _body(resp: httpx.Response) -> dict[str, Any]:
        try:
            payload = resp.json()
        except ValueError:
            return {"status_code": resp.status_code, "text": resp.text[:500]}
        if isinstance(payload, dict):
            return payload
        return {"status_code": resp.status_code, "body": payload}

    async def attempt(
        self,
        processor_name: str,
        api_key: str,
        api_secret: str,
        request: PaymentRequest,
    ) -> ProcessorResult:
        base_url = self.base_urls.get(processor_name.lower())
        if base_url is None:
            raise GatewayError(processor_name, f"no endpoint configured for processor {processor_name}")
        try:
            url = httpx.URL(f"{base_url}/charges")
        except httpx.InvalidURL as exc:
            raise GatewayError(processor_name, f"invalid endpoint for processor {processor_name}: {exc}") from exc

        payload = {"amount": str(request.amount), "currency": request.currency, "source": request.source}
        headers = {"Idempotency-Key": str(uuid4())}
        last_error = f"Payment processor {processor_name} failed to process the transaction"
        error_code = "PROVIDER_ERROR"
        for attempt in range(1, self.max_retries + 2):
            try:
                resp = await self._http().post(
                    url,
                    json=payload,
                    headers=headers,
                    auth=(api_key, api_secret),
                    timeout=self.timeout_seconds,
                )
            except httpx.TimeoutException:
                last_error = f"Payment processor {processor_name} timed out after {self.timeout_seconds}s"
                error_code = "PROVIDER_TIMEOUT"
            except httpx.HTTPError as exc:
                raise GatewayError(processor_name, f"Payment processor {processor_name} unreachable: {exc}") from exc
            else:
                if resp.is_success:
                    return ProcessorResult(success=True, response=self._body(resp))
                if resp.status_code < 500:
                    return ProcessorResult(
                        success=False,
                        response=self._body(resp),
                        error=f"Payment processor {processor_name} declined the transaction (status={resp.status_code})",
                    )
                last_error = f"Payment processor {processor_name} responded with status {resp.status_code}"
                error_code = "PROVIDER_UNAVAILABLE"

            if attempt <= self.max_retries:
                retries_total.labels(service=self.service_name, dependency=processor_name).inc()
                backoff_seconds = self.backoff_seconds * 2 ** (attempt - 1)
                logger.warning(
                    "processor retry processor=%s attempt=%s backoff_s=%s error=%s",
                    processor_name,
                    attempt,
                    backoff_seconds,
                    last_error,
                )
                await asyncio.sleep(backoff_seconds)

        return ProcessorResult(success=False, response={"success": False, "error_code": error_code}, error=last_error)

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


def build_gateway(config) -> ProcessorGateway:
    """Select the processor integration configured by `PROCESSOR_MODE`."""

    if config.processor_mode == "simulated":
        return SimulatedProcessorGateway(
            success_rate=config.simulated_success_rate,
            latency_seconds=config.simulated_latency_seconds,
            timeout_seconds=config.processor_timeout_seconds,
        )
    if config.processor_mode == "http":
        return HttpProcessorGateway(
            config.processor_base_urls,
            timeout_seconds=config.processor_timeout_seconds,
            max_retries=config.processor_max_retries,
            service_name=config.service_name,
        )
    raise ValueError(f"unknown processor mode: {config.processor_mode}")
