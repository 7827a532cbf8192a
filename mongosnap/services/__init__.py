"""Services module."""

from .limiter import ConcurrencyLimitExceeded, UserConcurrencyLimiter
from .query_service import (
    get_executor,
    get_generator,
    get_limiter,
    get_registry,
    service_lifespan,
)

__all__ = [
    "ConcurrencyLimitExceeded",
    "UserConcurrencyLimiter",
    "get_executor",
    "get_generator",
    "get_limiter",
    "get_registry",
    "service_lifespan",
]
