"""
Batched, cached profile fetch.

- engine: per-key cached, coalescing execution with generation timeout
  and stale-on-error fallback
- store: memory and Redis cache stores
- fetch: the fan-out generator calling the identity services
- binding: lazy one-time registration of the engine on the app
"""

from .engine import AggregationEngine, BatchOutcome, BatchReport
from .binding import ensure_batch_method, get_batch_method, key_for

__all__ = [
    "AggregationEngine",
    "BatchOutcome",
    "BatchReport",
    "ensure_batch_method",
    "get_batch_method",
    "key_for",
]
