"""
FastAPI dependencies for process-wide collaborators.

The catalog cache, link lock and clock are built once in main.py and kept on
app.state; routes receive them through these functions so tests can override
any of them with app.dependency_overrides.
"""
from typing import Callable, Iterator

from fastapi import Depends, HTTPException, Request

from subtracker.errors import FeedError
from subtracker.integrations.base import TransactionFeed
from subtracker.integrations.plaid_client import PlaidClient
from subtracker.services.catalog_cache import CatalogCache
from subtracker.services.link_lock import LinkLock


def get_feed_factory() -> Callable[[], TransactionFeed]:
    return PlaidClient.from_env


def get_feed_client(
    feed_factory: Callable[[], TransactionFeed] = Depends(get_feed_factory),
) -> Iterator[TransactionFeed]:
    try:
        feed = feed_factory()
    except FeedError as e:
        raise HTTPException(status_code=503, detail=str(e))
    try:
        yield feed
    finally:
        feed.close()


def get_catalog_cache(request: Request) -> CatalogCache:
    return request.app.state.catalog_cache


def get_link_lock(request: Request) -> LinkLock:
    return request.app.state.link_lock


def get_clock(request: Request):
    return request.app.state.clock
