"""Startup-time helpers for safe config logging."""

from tenantpay.common.config import CommonSettings
from tenantpay.common.logging import logger

SECRET_MARKERS = ("key", "secret", "password", "token", "dsn")


def redacted_settings(config: CommonSettings, fields: list[str]) -> dict[str, object]:
    """Pick `fields` from settings, masking anything that may carry credentials."""

    snapshot: dict[str, object] = {}
    for field in fields:
        if any(marker in field for marker in SECRET_MARKERS):
            snapshot[field] = "<redacted>"
        else:
            snapshot[field] = getattr(config, field, "<unset>")
    return snapshot


def log_startup_config(config: CommonSettings, fields: list[str]) -> None:
    """Log selected startup settings for quick troubleshooting."""

    snapshot = {"service": config.service_name, **redacted_settings(config, fields)}
    logger.info("startup_config=%s", snapshot)
