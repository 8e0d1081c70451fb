"""
Per-client rate limiting for the expensive endpoints (upload, generation).
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

from datastory.core.config import get_settings

limiter = Limiter(key_func=get_remote_address)


def rate_limit() -> str:
    """Limit string from RATE_LIMIT_PER_MINUTE, read at request time."""
    return f"{get_settings().rate_limit_per_minute}/minute"
