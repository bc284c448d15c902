"""Rate limiting configuration using slowapi.

The limiter is wired into the app in main.py; routers that run batch jobs
apply a tighter per-route limit.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from hrleave.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
)

BATCH_RATE_LIMIT = "5/minute"
