"""JSON logs tagged with trace, tenant and transaction identifiers.

Identifiers live in context variables so concurrent payments on one event loop
never see each other's tags.
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from tenantpay.common.config import settings


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
tenant_id_ctx: ContextVar[str] = ContextVar("tenant_id", default="")
transaction_id_ctx: ContextVar[str] = ContextVar("transaction_id", default="")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(service_name)s %(trace_id)s %(tenant_id)s %(transaction_id)s %(message)s"
# Client libraries that log every request at INFO.
QUIET_LOGGERS = ("aiokafka", "httpx", "httpcore")


class ContextFilter(logging.Filter):
    def __init__(self, service_name: str) -> None:
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = self.service_name
        record.trace_id = trace_id_ctx.get()
        record.tenant_id = tenant_id_ctx.get()
        record.transaction_id = transaction_id_ctx.get()
        return True


@contextmanager
def log_context(var: ContextVar[str], value: str):
    """Tag log records with `value` for the duration of the block."""

    token = var.set(value)
    try:
        yield
    finally:
        var.reset(token)


def configure_logging(service_name: str | None = None, level: str | None = None) -> None:
    """Route all records through one stdout JSON handler."""

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ContextFilter(service_name or settings.service_name))
    handler.setFormatter(JsonFormatter(LOG_FORMAT, rename_fields={"levelname": "level", "name": "logger"}))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level or settings.log_level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


logger = logging.getLogger("tenantpay")
