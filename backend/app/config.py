import logging
import os

logger = logging.getLogger(__name__)


def _canon_prefix(val):
    """
    Normalize API prefix to always be exactly like '/api':
      - defaults to '/api' when unset/empty
      - ensures a single leading slash
      - removes any trailing slash (except for root)
    """
    val = (val or "/api").strip()
    if not val.startswith("/"):
        val = "/" + val
    if len(val) > 1 and val.endswith("/"):
        val = val[:-1]
    return val


def _parse_positive_float(env_var: str, default: float) -> float:
    raw_value = os.getenv(env_var)
    if raw_value is None or not raw_value.strip():
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

    if value <= 0:
        logger.warning("%s must be positive; defaulting to %.2f", env_var, default)
        return default

    return value


API_PREFIX = _canon_prefix(os.getenv("API_PREFIX"))

DEFAULT_POINTS_TO_WIN = _parse_positive_float("DEFAULT_POINTS_TO_WIN", 14.5)
SYNC_EVENT_TIMEOUT_SECONDS = _parse_positive_float("SYNC_EVENT_TIMEOUT_SECONDS", 5.0)
STANDINGS_CACHE_TTL_SECONDS = _parse_positive_float("STANDINGS_CACHE_TTL_SECONDS", 30.0)

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")

VAPID_PUBLIC_KEY = os.getenv("VAPID_PUBLIC_KEY")
VAPID_PRIVATE_KEY = os.getenv("VAPID_PRIVATE_KEY")
VAPID_SUBJECT = (
    os.getenv("VAPID_SUBJECT")
    or os.getenv("NOTIFICATION_CONTACT_EMAIL")
    or "mailto:admin@example.com"
)
