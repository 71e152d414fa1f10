"""
Tests for Plaid webhook dispatch.
"""
from datetime import date

import pytest
import redis
from sqlalchemy.exc import OperationalError

from subtracker.errors import FeedTransientError
from subtracker.integrations.base import RawFeedPage
from subtracker.models import PlaidLink, Transaction, UserSubscription
from subtracker.services.link_lock import LinkLock
from subtracker.services.webhook_service import WebhookService
from tests.helpers import MockPlaidFeed, fixed_clock, plaid_txn


@pytest.fixture
def make_service(db, link_lock, catalog_cache):
    def _make(feed=None):
        feed = feed or MockPlaidFeed()
        return WebhookService(db, lambda: feed, link_lock, catalog_cache, clock=fixed_clock)

    return _make


def _external_ids(db):
    return sorted(t.external_id for t in db.query(Transaction).all())


def test_unknown_item_is_acknowledged(make_service):
    response = make_service().receive({
        "webhook_type": "TRANSACTIONS",
        "webhook_code": "SYNC_UPDATES_AVAILABLE",
        "item_id": "no-such-item",
    })
    assert response == {"acknowledged": True}


def test_malformed_payload_is_acknowledged(make_service):
    response = make_service().receive({"item_id": "item-1"})
    assert response["acknowledged"] is True
    assert "error" in response


def test_sync_webhook_pulls_transactions_and_detects(db, link, catalog, make_service):
    start = date(2025, 1, 1)
    added = [
        plaid_txn(f"nf-{i}", "Netflix", 15.99, date.fromordinal(start.toordinal() + 30 * i))
        for i in range(6)
    ]
    feed = MockPlaidFeed(pages={None: RawFeedPage(added=added, next_cursor="c1")})

    response = make_service(feed).receive({
        "webhook_type": "TRANSACTIONS",
        "webhook_code": "SYNC_UPDATES_AVAILABLE",
        "item_id": "item-1",
    })

    assert response == {"acknowledged": True}
    assert feed.closed is True
    assert len(_external_ids(db)) == 6
    db.refresh(link)
    assert link.sync_cursor == "c1"

    subscriptions = db.query(UserSubscription).all()
    assert [(s.service_name, s.billing_cycle) for s in subscriptions] == [("Netflix", "monthly")]


@pytest.mark.parametrize("code", ["INITIAL_UPDATE", "HISTORICAL_UPDATE", "DEFAULT_UPDATE"])
def test_legacy_update_codes_trigger_sync(link, make_service, code):
    feed = MockPlaidFeed(pages={None: RawFeedPage(next_cursor="c1")})
    make_service(feed).receive({"webhook_type": "TRANSACTIONS", "webhook_code": code, "item_id": "item-1"})
    assert len(feed.calls) == 1


def test_removed_webhook_deletes_exactly_listed_ids(db, link, add_transactions, make_service):
    add_transactions("Netflix", [15.99] * 4, date(2025, 3, 1), 30, prefix="nf")

    other = PlaidLink(user_id="user-2", item_id="item-2", access_token="access-2")
    db.add(other)
    db.commit()
    db.add(Transaction(
        user_id="user-2",
        link_id=other.id,
        external_id="foreign-1",
        account_id="acc-9",
        amount=5,
        date=date(2025, 3, 1),
        merchant_name="Hulu",
        category=[],
    ))
    db.commit()

    response = make_service().receive({
        "webhook_type": "TRANSACTIONS",
        "webhook_code": "TRANSACTIONS_REMOVED",
        "item_id": "item-1",
        "removed_transactions": ["nf-1", "nf-3", "foreign-1", "never-existed"],
    })

    assert response == {"acknowledged": True}
    assert _external_ids(db) == ["foreign-1", "nf-0", "nf-2"]


def test_item_error_deactivates_link(db, link, make_service):
    make_service().receive({
        "webhook_type": "ITEM",
        "webhook_code": "ERROR",
        "item_id": "item-1",
        "error": {"error_code": "ITEM_LOGIN_REQUIRED", "error_message": "login required"},
    })

    db.refresh(link)
    assert link.is_active is False
    assert link.error_code == "ITEM_LOGIN_REQUIRED"


def test_item_error_without_code(db, link, make_service):
    make_service().receive({"webhook_type": "ITEM", "webhook_code": "ERROR", "item_id": "item-1"})

    db.refresh(link)
    assert link.is_active is False
    assert link.error_code == "UNKNOWN_ERROR"


def test_pending_expiration_only_annotates(db, link, make_service):
    make_service().receive({"webhook_type": "ITEM", "webhook_code": "PENDING_EXPIRATION", "item_id": "item-1"})

    db.refresh(link)
    assert link.is_active is True
    assert link.error_code == "PENDING_EXPIRATION"


def test_permission_revoked_deactivates(db, link, make_service):
    make_service().receive({"webhook_type": "ITEM", "webhook_code": "USER_PERMISSION_REVOKED", "item_id": "item-1"})

    db.refresh(link)
    assert link.is_active is False
    assert link.error_code == "USER_PERMISSION_REVOKED"


def test_unhandled_codes_change_nothing(db, link, make_service):
    for payload in [
        {"webhook_type": "ITEM", "webhook_code": "WEBHOOK_UPDATE_ACKNOWLEDGED", "item_id": "item-1"},
        {"webhook_type": "TRANSACTIONS", "webhook_code": "RECURRING_TRANSACTIONS_UPDATE", "item_id": "item-1"},
        {"webhook_type": "AUTH", "webhook_code": "AUTOMATICALLY_VERIFIED", "item_id": "item-1"},
    ]:
        assert make_service().receive(payload) == {"acknowledged": True}

    db.refresh(link)
    assert link.is_active is True
    assert link.error_code is None


def test_sync_failure_is_acknowledged_with_error(db, link, make_service):
    feed = MockPlaidFeed(pages={None: FeedTransientError("upstream 503")})

    response = make_service(feed).receive({
        "webhook_type": "TRANSACTIONS",
        "webhook_code": "SYNC_UPDATES_AVAILABLE",
        "item_id": "item-1",
    })

    assert response["acknowledged"] is True
    assert "upstream 503" in response["error"]


def test_overlapping_sync_is_acknowledged(db, link, link_lock, redis_client, make_service):
    redis_client.set(f"plaid_sync_lock:{link.id}", "held-elsewhere")
    feed = MockPlaidFeed()

    response = make_service(feed).receive({
        "webhook_type": "TRANSACTIONS",
        "webhook_code": "SYNC_UPDATES_AVAILABLE",
        "item_id": "item-1",
    })

    assert response["acknowledged"] is True
    assert "already running" in response["error"]
    assert feed.calls == []


class UnreachableRedis:
    def set(self, *args, **kwargs):
        raise redis.exceptions.ConnectionError("redis down")

    def get(self, *args, **kwargs):
        raise redis.exceptions.ConnectionError("redis down")


def test_lock_outage_is_acknowledged(db, link, catalog_cache):
    feed = MockPlaidFeed()
    service = WebhookService(
        db,
        lambda: feed,
        LinkLock(redis_client=UnreachableRedis()),
        catalog_cache,
        clock=fixed_clock,
    )

    response = service.receive({
        "webhook_type": "TRANSACTIONS",
        "webhook_code": "SYNC_UPDATES_AVAILABLE",
        "item_id": "item-1",
    })

    assert response["acknowledged"] is True
    assert "redis down" in response["error"]
    assert feed.calls == []
    assert feed.closed is True


def test_store_outage_during_link_lookup_is_acknowledged(link, make_service, monkeypatch):
    service = make_service()

    def broken_lookup(item_id):
        raise OperationalError("SELECT plaid_items", {}, Exception("database is down"))

    monkeypatch.setattr(service, "_find_link", broken_lookup)

    response = service.receive({"webhook_type": "ITEM", "webhook_code": "ERROR", "item_id": "item-1"})

    assert response["acknowledged"] is True
    assert "database is down" in response["error"]
