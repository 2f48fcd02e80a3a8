"""
Paste lifecycle: expiry computation and classification.

TTL is fixed from creation. Reads never move `expires_at`, so the
`max-age` handed to caches always ends exactly when the paste does.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from pastebox.config import settings

logger = logging.getLogger(__name__)


def current_timestamp(x_test_now_ms: Optional[str] = None) -> int:
    """
    Get current Unix time in seconds, respecting TEST_MODE for deterministic testing.

    Args:
        x_test_now_ms: Test timestamp header (milliseconds since epoch)

    Returns:
        Current time in whole seconds
    """
    if settings.TEST_MODE and x_test_now_ms:
        try:
            return int(x_test_now_ms) // 1000
        except (ValueError, TypeError) as e:
            logger.warning(f"Invalid x-test-now-ms header: {e}")

    return int(datetime.now(timezone.utc).timestamp())


def next_expiry(now: int, ttl_seconds: int) -> int:
    if ttl_seconds <= 0:
        raise ValueError("ttl_seconds must be positive")
    return now + ttl_seconds


def is_expired(now: int, expires_at: int) -> bool:
    return expires_at < now


def remaining_seconds(now: int, expires_at: int) -> int:
    return max(0, expires_at - now)


def format_timestamp(timestamp: int) -> str:
    """ISO 8601 UTC rendering used in response headers."""
    moment = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    return moment.isoformat().replace("+00:00", "Z")
