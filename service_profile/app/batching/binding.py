"""
One-time registration of the batch aggregation engine on the application.

The engine is created on first use and stored under
``app.state.server_methods["batch"]``. Registration is guarded by a lock
so concurrent first requests (or worker threads) bind exactly once.
"""

from __future__ import annotations

import threading
from typing import Any, Dict, Optional, TYPE_CHECKING

from shared.config import BaseConfig
from shared.logging import get_logger

from service_profile.app.domain.models import BatchRequest, Credentials
from .engine import AggregationEngine, GenerateFunc
from .store import CacheStore, create_cache_store

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


BATCH_METHOD = "batch"

logger = get_logger("profile.batch.binding")
_binding_lock = threading.Lock()


def key_for(credentials: Credentials) -> str:
    """Cache key for a caller: the authenticated user id, nothing else."""
    return credentials.user


def batch_request_key(request: BatchRequest) -> str:
    return key_for(request.credentials)


def _server_methods(app: Any) -> Dict[str, Any]:
    methods = getattr(app.state, "server_methods", None)
    if methods is None:
        methods = {}
        app.state.server_methods = methods
    return methods


def get_batch_method(app: Any) -> Optional[AggregationEngine]:
    """Return the registered engine, or None before first use."""
    methods = getattr(app.state, "server_methods", None) or {}
    return methods.get(BATCH_METHOD)


def ensure_batch_method(
    app: Any,
    config: BaseConfig,
    generate: GenerateFunc,
    *,
    store: Optional[CacheStore] = None,
    metrics: Optional["MetricsCollector"] = None,
) -> AggregationEngine:
    """Register the batch engine on ``app`` unless it is already there."""
    engine = get_batch_method(app)
    if engine is not None:
        return engine

    with _binding_lock:
        methods = _server_methods(app)
        engine = methods.get(BATCH_METHOD)
        if engine is None:
            cache = config.server_cache
            engine = AggregationEngine(
                generate,
                generate_key=batch_request_key,
                expires_in=cache.expires_in,
                generate_timeout=cache.generate_timeout,
                stale_ttl=cache.stale_ttl,
                store=store if store is not None else create_cache_store(config.cache_backend, config.redis_url),
                metrics=metrics,
            )
            methods[BATCH_METHOD] = engine
            logger.info(
                "Registered batch server method",
                expires_in=cache.expires_in,
                generate_timeout=cache.generate_timeout,
                stale_ttl=cache.stale_ttl,
                cache_backend=config.cache_backend if store is None else type(store).__name__,
            )
    return engine
