"""Service layer modules."""

from .cache_store import CacheStore
from .orchestrator import FetchOrchestrator, FetchOutcome, merge_quotes
from .price_service import (
    PriceService,
    create_price_service,
    get_price_service,
    init_price_service,
)
from .rate_limiter import RateLimiter, RateLimitPhase, RateLimitState
from .scheduler import ensure_refresh_state, init_scheduler, run_scheduled_refresh

__all__ = [
    "CacheStore",
    "FetchOrchestrator",
    "FetchOutcome",
    "PriceService",
    "RateLimitPhase",
    "RateLimitState",
    "RateLimiter",
    "create_price_service",
    "ensure_refresh_state",
    "get_price_service",
    "init_price_service",
    "init_scheduler",
    "merge_quotes",
    "run_scheduled_refresh",
]
