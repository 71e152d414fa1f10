"""
Plaid webhook receiver.

Plaid retries any delivery that does not get a 2xx, so every payload is
acknowledged, including ones for unknown items and ones whose handling failed.
Failures are logged and reported back in the "error" field.

Documentation: https://plaid.com/docs/api/webhooks/
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, ValidationError
from sqlalchemy.orm import Session

from subtracker.errors import FeedError, SyncError
from subtracker.integrations.base import TransactionFeed
from subtracker.models import PlaidLink
from subtracker.services.catalog_cache import CatalogCache
from subtracker.services.link_lock import LinkLock
from subtracker.services.pipeline import run_link_sync
from subtracker.services.subscription_detector import utcnow
from subtracker.services.sync_service import SyncService

logger = logging.getLogger(__name__)


SYNC_WEBHOOK_CODES = {
    "SYNC_UPDATES_AVAILABLE",
    "INITIAL_UPDATE",
    "HISTORICAL_UPDATE",
    "DEFAULT_UPDATE",
}


class PlaidWebhookError(BaseModel):
    model_config = ConfigDict(extra="allow")

    error_code: Optional[str] = None
    error_message: Optional[str] = None


class PlaidWebhookPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    webhook_type: str
    webhook_code: str
    item_id: Optional[str] = None
    error: Optional[PlaidWebhookError] = None
    removed_transactions: List[str] = []


class WebhookService:
    """Dispatches Plaid webhooks to the sync engine and link bookkeeping."""

    def __init__(
        self,
        db: Session,
        feed_factory: Callable[[], TransactionFeed],
        lock: LinkLock,
        catalog_cache: CatalogCache,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.feed_factory = feed_factory
        self.lock = lock
        self.catalog_cache = catalog_cache
        self.clock = clock

    def _find_link(self, item_id: Optional[str]) -> Optional[PlaidLink]:
        if not item_id:
            return None
        return self.db.query(PlaidLink).filter(PlaidLink.item_id == item_id).first()

    def receive(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            webhook = PlaidWebhookPayload.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"[WEBHOOK] Ignoring malformed payload: {e.error_count()} validation error(s)")
            return {"acknowledged": True, "error": "malformed payload"}

        logger.info(
            f"[WEBHOOK] Received {webhook.webhook_type}/{webhook.webhook_code} for item {webhook.item_id}"
        )

        try:
            link = self._find_link(webhook.item_id)
            if not link:
                logger.warning(f"[WEBHOOK] No link found for item {webhook.item_id}")
                return {"acknowledged": True}

            if webhook.webhook_type == "TRANSACTIONS":
                self._handle_transactions(link, webhook)
            elif webhook.webhook_type == "ITEM":
                self._handle_item(link, webhook)
            else:
                logger.info(f"[WEBHOOK] Unhandled webhook type: {webhook.webhook_type}")
        except (SyncError, FeedError) as e:
            self.db.rollback()
            logger.error(
                f"[WEBHOOK] Failed handling {webhook.webhook_type}/{webhook.webhook_code} "
                f"for item {webhook.item_id}: {e}"
            )
            return {"acknowledged": True, "error": str(e)}
        except Exception as e:
            # e.g. Redis or database outages
            self.db.rollback()
            logger.exception(
                f"[WEBHOOK] Unexpected error handling {webhook.webhook_type}/{webhook.webhook_code} "
                f"for item {webhook.item_id}"
            )
            return {"acknowledged": True, "error": f"{type(e).__name__}: {e}"}

        return {"acknowledged": True}

    def _handle_transactions(self, link: PlaidLink, webhook: PlaidWebhookPayload) -> None:
        code = webhook.webhook_code

        if code in SYNC_WEBHOOK_CODES:
            feed = self.feed_factory()
            try:
                outcome = run_link_sync(
                    self.db,
                    feed,
                    link.id,
                    self.lock,
                    self.catalog_cache,
                    clock=self.clock,
                )
            finally:
                feed.close()
            logger.info(
                f"[WEBHOOK] Synced link {link.id}: +{outcome.sync.added} ~{outcome.sync.modified} "
                f"-{outcome.sync.removed}, {outcome.subscriptions_detected} subscription(s) created"
            )
        elif code == "TRANSACTIONS_REMOVED":
            service = SyncService(self.db, clock=self.clock)
            removed = service.remove_transactions(link, webhook.removed_transactions)
            self.db.commit()
            logger.info(f"[WEBHOOK] Removed {removed} transaction(s) for link {link.id}")
        else:
            logger.info(f"[WEBHOOK] Unhandled TRANSACTIONS code: {code}")

    def _handle_item(self, link: PlaidLink, webhook: PlaidWebhookPayload) -> None:
        code = webhook.webhook_code
        service = SyncService(self.db, clock=self.clock)

        if code == "ERROR":
            error_code = (webhook.error.error_code if webhook.error else None) or "UNKNOWN_ERROR"
            service.deactivate_link(link, error_code)
        elif code == "PENDING_EXPIRATION":
            service.annotate_link(link, "PENDING_EXPIRATION")
        elif code == "USER_PERMISSION_REVOKED":
            service.deactivate_link(link, "USER_PERMISSION_REVOKED")
        elif code == "WEBHOOK_UPDATE_ACKNOWLEDGED":
            logger.info(f"[WEBHOOK] Webhook URL update acknowledged for link {link.id}")
        else:
            logger.info(f"[WEBHOOK] Unhandled ITEM code: {code}")
