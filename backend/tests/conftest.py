"""
Shared fixtures: in-memory SQLite store, fake Redis, a scripted Plaid feed
and a seeded catalog.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import date, timedelta
from decimal import Decimal
from typing import List, Optional

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from subtracker.database import Base, build_engine, get_db
from subtracker.models import PlaidLink, StreamingService, Transaction
from subtracker.services.catalog_cache import CatalogCache
from subtracker.services.link_lock import LinkLock
from tests.helpers import USER_ID, MockPlaidFeed, fixed_clock


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    yield session
    session.close()


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def link_lock(redis_client):
    return LinkLock(redis_client=redis_client)


@pytest.fixture
def catalog(db):
    services = [
        StreamingService(name="Netflix", base_price=Decimal("15.49"), merchant_patterns=["NETFLIX", "Netflix.com"]),
        StreamingService(name="Spotify", base_price=Decimal("10.99"), merchant_patterns=["SPOTIFY"]),
    ]
    db.add_all(services)
    db.commit()
    return {service.name: service for service in services}


@pytest.fixture
def catalog_cache():
    return CatalogCache(ttl_seconds=3600)


@pytest.fixture
def link(db):
    link = PlaidLink(
        user_id=USER_ID,
        item_id="item-1",
        access_token="access-sandbox-1",
        institution_name="First Platypus Bank",
    )
    db.add(link)
    db.commit()
    db.refresh(link)
    return link


@pytest.fixture
def add_transactions(db, link):
    """Insert already-synced transactions directly into the store."""

    def _add(name: str, amounts: List[float], start: date, interval_days: int, prefix: Optional[str] = None):
        prefix = prefix or name.lower().replace(" ", "-")
        rows = []
        for i, amount in enumerate(amounts):
            rows.append(Transaction(
                user_id=link.user_id,
                link_id=link.id,
                external_id=f"{prefix}-{i}",
                account_id="acc-1",
                amount=Decimal(str(amount)),
                iso_currency_code="USD",
                date=start + timedelta(days=interval_days * i),
                merchant_name=name,
                category=["Service"],
                pending=False,
            ))
        db.add_all(rows)
        db.commit()
        return rows

    return _add


@pytest.fixture
def feed():
    return MockPlaidFeed()


@pytest.fixture
def client(db, feed, link_lock, catalog_cache):
    from subtracker.deps import get_feed_factory
    from subtracker.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_feed_factory] = lambda: (lambda: feed)
    app.state.catalog_cache = catalog_cache
    app.state.link_lock = link_lock
    app.state.clock = fixed_clock

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
