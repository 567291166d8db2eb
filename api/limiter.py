"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in
api/routes/v1/auth.py (to apply per-route limits with @limiter.limit()).

One shared instance means all routes share the same in-memory counter
store. Per-module instances would each count separately and never trigger.

Limits are read from settings at call time (slowapi accepts a callable), so
tests and deployments can change them through the environment.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_limit() -> str:
    return get_settings().login_rate_limit


def link_request_limit() -> str:
    return get_settings().link_request_rate_limit
