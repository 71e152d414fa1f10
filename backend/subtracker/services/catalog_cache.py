"""
Process-local TTL cache for the service catalog.

One CatalogCache is built per process (see main.py) and passed by reference to
whatever needs the catalog. The clock is injected so expiry can be tested
without sleeping.
"""
import logging
import os
import time
from typing import Callable, Generic, List, Optional, Tuple, TypeVar

from sqlalchemy.orm import Session

from subtracker.models import StreamingService
from subtracker.services.catalog_matcher import CatalogEntry

logger = logging.getLogger(__name__)

T = TypeVar("T")

CATALOG_CACHE_TTL_SECONDS = float(os.getenv("CATALOG_CACHE_TTL_SECONDS", "3600"))


class TTLCache(Generic[T]):
    """Single-value cache that expires `ttl_seconds` after it was filled."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entry: Optional[Tuple[float, T]] = None

    def get(self) -> Optional[T]:
        if self._entry is None:
            return None
        stored_at, value = self._entry
        if self.clock() - stored_at >= self.ttl_seconds:
            self._entry = None
            return None
        return value

    def set(self, value: T) -> None:
        self._entry = (self.clock(), value)

    def invalidate(self) -> None:
        self._entry = None

    def get_or_load(self, loader: Callable[[], T]) -> T:
        value = self.get()
        if value is None:
            value = loader()
            self.set(value)
        return value


class CatalogCache:
    """Caches the (static, read-only) service catalog as CatalogEntry tuples."""

    def __init__(
        self,
        ttl_seconds: float = CATALOG_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._cache: TTLCache[List[CatalogEntry]] = TTLCache(ttl_seconds, clock)

    def get_entries(self, db: Session) -> List[CatalogEntry]:
        return self._cache.get_or_load(lambda: load_catalog(db))

    def invalidate(self) -> None:
        self._cache.invalidate()


def load_catalog(db: Session) -> List[CatalogEntry]:
    """Read every catalog row into immutable entries, ordered by name."""
    services = db.query(StreamingService).order_by(StreamingService.name.asc()).all()
    entries = [
        CatalogEntry.build(
            id=service.id,
            name=service.name,
            merchant_patterns=service.merchant_patterns or [],
            base_price=service.base_price,
        )
        for service in services
    ]
    logger.info(f"[CATALOG] Loaded {len(entries)} catalog entries")
    return entries
