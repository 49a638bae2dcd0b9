"""Startup-time helpers for safe config logging."""

import os

from pushpay.common.logging import logger


_SECRET_MARKERS = ["KEY", "SECRET", "PASSWORD", "TOKEN", "PASSKEY", "CREDENTIAL"]


def _safe_env(name: str) -> str:
    """Return env value with simple redaction for secret-like variable names."""

    value = os.getenv(name)
    if value is None:
        return "<unset>"
    if any(secret in name for secret in _SECRET_MARKERS):
        return "<redacted>"
    return value


def log_startup_config(service_name: str, keys: list[str]) -> None:
    """Log selected startup config keys for quick troubleshooting."""

    config = {"service": service_name}
    for key in keys:
        config[key] = _safe_env(key)
    logger.info("startup_config=%s", config)


def warn_missing_provider_config(values: dict[str, str | None]) -> list[str]:
    """Log one warning per unset provider setting and return their names."""

    missing = [name for name, value in values.items() if not value]
    for name in missing:
        logger.warning("provider_config_missing setting=%s", name)
    return missing
