import logging
import os

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration

logger = logging.getLogger(__name__)


def _parse_sample_rate(env_var: str, default: float = 0.0) -> float:
    raw_value = os.getenv(env_var)
    if raw_value is None:
        return default

    try:
        value = float(raw_value)
    except ValueError:
        logger.warning(
            "%s is not a valid float (got %r); defaulting to %.2f",
            env_var,
            raw_value,
            default,
        )
        return default

    if not 0 <= value <= 1:
        logger.warning("%s must be between 0 and 1; defaulting to %.2f", env_var, default)
        return default

    return value


def init_sentry(service: str = "ryder-cup-api") -> bool:
    """Initialise Sentry from ``SENTRY_*`` variables. Returns False when disabled."""

    dsn = os.getenv("SENTRY_DSN")
    if not dsn:
        logger.info("SENTRY_DSN not provided; skipping Sentry initialization.")
        return False

    environment = (os.getenv("SENTRY_ENVIRONMENT") or "").strip() or None
    release = (os.getenv("SENTRY_RELEASE") or "").strip() or None

    sentry_sdk.init(
        dsn=dsn,
        integrations=[FastApiIntegration()],
        environment=environment,
        release=release,
        traces_sample_rate=_parse_sample_rate("SENTRY_TRACES_SAMPLE_RATE"),
        profiles_sample_rate=_parse_sample_rate("SENTRY_PROFILES_SAMPLE_RATE"),
    )
    sentry_sdk.set_tag("service", service)
    logger.info(
        "Initialized Sentry for %s%s",
        service,
        f" (environment={environment})" if environment else "",
    )
    return True
