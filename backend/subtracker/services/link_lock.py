"""
Per-link single-flight lock backed by Redis.

Overlapping webhook deliveries for the same link must not run two syncs at
once; the second caller gets SyncInProgressError instead of waiting.
"""
import logging
import os
import uuid
from contextlib import contextmanager
from typing import Iterator, Optional

import redis

from subtracker.errors import SyncInProgressError

logger = logging.getLogger(__name__)

SYNC_LOCK_TTL_SECONDS = int(os.getenv("SYNC_LOCK_TTL_SECONDS", "300"))


class LinkLock:
    """SET NX EX lock keyed by link id. The TTL bounds a crashed holder."""

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        redis_url: Optional[str] = None,
        ttl_seconds: int = SYNC_LOCK_TTL_SECONDS,
    ):
        self.redis_url = redis_url or os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self._redis = redis_client
        self.ttl_seconds = ttl_seconds

    @property
    def redis(self) -> redis.Redis:
        """Lazy-load Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url, decode_responses=True)
        return self._redis

    @staticmethod
    def _key(link_id: str) -> str:
        return f"plaid_sync_lock:{link_id}"

    @contextmanager
    def hold(self, link_id: str) -> Iterator[None]:
        key = self._key(link_id)
        token = uuid.uuid4().hex

        if not self.redis.set(key, token, nx=True, ex=self.ttl_seconds):
            logger.warning(f"[SYNC] Sync already in progress for link {link_id}")
            raise SyncInProgressError(link_id)

        try:
            yield
        finally:
            current = self.redis.get(key)
            if isinstance(current, bytes):
                current = current.decode("utf-8")
            # Only release a lock we still own (it may have expired and been retaken)
            if current == token:
                self.redis.delete(key)
