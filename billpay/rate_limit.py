"""Shared rate limiter instance.

Lives outside main.py so route modules can decorate endpoints with
``@limiter.limit()`` without a circular import.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from billpay.config import get_settings


def client_ip(request: Request) -> str:
    """Client IP, taking the first X-Forwarded-For hop when behind a proxy."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


def purchase_limit() -> str:
    """Per-client limit on new purchases, e.g. ``20/minute``."""
    return get_settings().purchase_rate_limit


limiter = Limiter(key_func=client_ip, default_limits=["120/minute"])
