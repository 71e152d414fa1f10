"""
Entry-point orchestration shared by the HTTP routes and the webhook receiver.

Each function takes its collaborators (session, feed, lock, catalog cache,
clock) as arguments; nothing here reaches for module-level state.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from subtracker.errors import FeedError, SyncError
from subtracker.integrations.base import TransactionFeed
from subtracker.models import PlaidLink
from subtracker.services.catalog_cache import CatalogCache
from subtracker.services.decision_policy import SubscriptionDecisionPolicy
from subtracker.services.link_lock import LinkLock
from subtracker.services.subscription_detector import SubscriptionDetector, utcnow
from subtracker.services.sync_service import SyncResult, SyncService

logger = logging.getLogger(__name__)


@dataclass
class LinkSyncOutcome:
    sync: SyncResult
    subscriptions_detected: int = 0
    suggestions_created: int = 0


def run_detection(
    db: Session,
    user_id: str,
    catalog_cache: CatalogCache,
    clock: Callable[[], datetime] = utcnow,
    min_transactions: Optional[int] = None,
) -> Dict[str, int]:
    """
    Detect subscriptions for a user and apply the decision policy.

    Returns:
        {"detected": results scored, "created": subscriptions created,
         "updated": price refreshes, "suggested": suggestions created}
    """
    catalog = catalog_cache.get_entries(db)

    kwargs = {}
    if min_transactions is not None:
        kwargs["min_transactions"] = min_transactions

    detector = SubscriptionDetector(db, user_id, catalog, clock=clock, **kwargs)
    results = detector.detect()

    summary = SubscriptionDecisionPolicy(db, user_id, clock=clock).apply(results)

    logger.info(
        f"[DETECTION] User {user_id}: {len(results)} detected, {summary.created} created, "
        f"{summary.updated} updated, {summary.suggested} suggested, {summary.discarded} discarded"
    )
    return {
        "detected": len(results),
        "created": summary.created,
        "updated": summary.updated,
        "suggested": summary.suggested,
    }


def run_link_sync(
    db: Session,
    feed: TransactionFeed,
    link_id,
    lock: LinkLock,
    catalog_cache: CatalogCache,
    clock: Callable[[], datetime] = utcnow,
    cursor: Optional[str] = None,
    page_size: Optional[int] = None,
    detect_subscriptions: bool = True,
) -> LinkSyncOutcome:
    """
    Sync one link under its single-flight lock, then optionally run detection
    for the link's user.

    Sync errors propagate. A detection failure after a successful sync is
    logged and reported as zero detections; the synced transactions stay.
    """
    service = SyncService(db, feed, clock=clock, catalog=catalog_cache.get_entries(db))
    link = service.get_link(link_id)

    with lock.hold(str(link.id)):
        result = service.sync(link.id, cursor=cursor, page_size=page_size)

    outcome = LinkSyncOutcome(sync=result)
    if not detect_subscriptions:
        return outcome

    try:
        detection = run_detection(db, link.user_id, catalog_cache, clock=clock)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[SYNC] Post-sync detection failed for link {link.id}: {e}")
        return outcome

    outcome.subscriptions_detected = detection["created"]
    outcome.suggestions_created = detection["suggested"]
    return outcome


@dataclass
class LinkAccountOutcome:
    link: PlaidLink
    sync: Optional[LinkSyncOutcome] = None
    sync_error: Optional[str] = None


def link_account(
    db: Session,
    feed: TransactionFeed,
    user_id: str,
    public_token: str,
    lock: LinkLock,
    catalog_cache: CatalogCache,
    clock: Callable[[], datetime] = utcnow,
    institution_name: Optional[str] = None,
    institution_id: Optional[str] = None,
    initial_sync: bool = True,
) -> LinkAccountOutcome:
    """
    Exchange the Link public token, store the link and optionally pull its
    first pages.

    Exchange failures propagate. A failed initial sync leaves the link stored
    and is reported in sync_error; the next webhook or sync call picks it up.
    """
    exchanged = feed.exchange_public_token(public_token)

    link = SyncService(db, clock=clock).register_link(
        user_id,
        exchanged["item_id"],
        exchanged["access_token"],
        institution_name=institution_name,
        institution_id=institution_id,
    )
    outcome = LinkAccountOutcome(link=link)
    if not initial_sync:
        return outcome

    try:
        outcome.sync = run_link_sync(db, feed, link.id, lock, catalog_cache, clock=clock)
    except (SyncError, FeedError) as e:
        db.rollback()
        logger.warning(f"[SYNC] Initial sync for link {link.id} failed: {e}")
        outcome.sync_error = str(e)
        db.refresh(link)

    return outcome
