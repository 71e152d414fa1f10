"""
Service for incrementally syncing a linked account's transactions.

Pages are pulled from the feed one at a time. Each page's records are
committed before the cursor is advanced, so a crash leaves the stored cursor
pointing at a page that has already been applied, and replaying it is a no-op.
"""
import os
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional, Tuple
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from subtracker.errors import (
    CursorConflictError,
    FeedCredentialError,
    FeedError,
    LinkCredentialError,
    LinkInactiveError,
    LinkNotFoundError,
    LinkOwnershipError,
)
from subtracker.integrations.base import RawFeedPage, TransactionData, TransactionFeed
from subtracker.models import PlaidLink, Transaction
from subtracker.services.catalog_matcher import CatalogEntry, CatalogMatcher
from subtracker.services.subscription_detector import utcnow

logger = logging.getLogger(__name__)


# Records pulled by one invocation before it stops and reports has_more
SYNC_MAX_RECORDS = int(os.getenv("SYNC_MAX_RECORDS", "5000"))
SYNC_DEFAULT_PAGE_SIZE = int(os.getenv("SYNC_PAGE_SIZE", "100"))


@dataclass
class SyncResult:
    added: int = 0
    modified: int = 0
    removed: int = 0
    quarantined: int = 0
    next_cursor: Optional[str] = None
    has_more: bool = False
    pages: int = 0


class SyncService:
    """Service for syncing one link's transactions from a cursor-based feed."""

    def __init__(
        self,
        db: Session,
        feed: Optional[TransactionFeed] = None,
        clock: Callable[[], datetime] = utcnow,
        catalog: Optional[List[CatalogEntry]] = None,
        max_records: int = SYNC_MAX_RECORDS,
    ):
        self.db = db
        self.feed = feed
        self.clock = clock
        self.matcher = CatalogMatcher(catalog) if catalog else None
        self.max_records = max_records

    def get_link(self, link_id) -> PlaidLink:
        link = self.db.query(PlaidLink).filter(PlaidLink.id == _to_uuid(link_id)).first()
        if not link:
            raise LinkNotFoundError(f"Link {link_id} not found")
        return link

    def deactivate_link(self, link: PlaidLink, error_code: str) -> None:
        """Mark the link unusable until the user re-authenticates."""
        link.is_active = False
        link.error_code = error_code
        self.db.commit()
        logger.warning(f"[SYNC] Link {link.id} deactivated: {error_code}")

    def annotate_link(self, link: PlaidLink, error_code: str) -> None:
        """Record a link-health note without deactivating it."""
        link.error_code = error_code
        self.db.commit()
        logger.info(f"[SYNC] Link {link.id} annotated: {error_code}")

    def register_link(
        self,
        user_id: str,
        item_id: str,
        access_token: str,
        institution_name: Optional[str] = None,
        institution_id: Optional[str] = None,
    ) -> PlaidLink:
        """
        Store a newly linked item, or refresh an existing one after the user
        re-authenticates through Link.

        Re-linking replaces the access token, reactivates the link and clears
        its error code. The sync cursor is kept.

        Raises:
            LinkOwnershipError: if the item belongs to another user
        """
        link = self.db.query(PlaidLink).filter(PlaidLink.item_id == item_id).first()

        if link:
            if link.user_id != user_id:
                raise LinkOwnershipError(f"Item {item_id} is linked to another user")
            link.access_token = access_token
            link.is_active = True
            link.error_code = None
            if institution_name:
                link.institution_name = institution_name
            if institution_id:
                link.institution_id = institution_id
            self.db.commit()
            self.db.refresh(link)
            logger.info(f"[SYNC] Re-linked item {item_id} as link {link.id}")
            return link

        link = PlaidLink(
            user_id=user_id,
            item_id=item_id,
            access_token=access_token,
            institution_name=institution_name or "Unknown Bank",
            institution_id=institution_id,
            is_active=True,
        )
        self.db.add(link)
        self.db.commit()
        self.db.refresh(link)
        logger.info(f"[SYNC] Linked item {item_id} for user {user_id} as link {link.id}")
        return link

    def _match_service_id(self, merchant_name: str) -> Optional[UUID]:
        if not self.matcher:
            return None
        match = self.matcher.match(merchant_name)
        # Only exact pattern hits are tagged at ingestion time
        if match.service and match.score >= 100:
            return match.service.id
        return None

    def _upsert_transaction(self, link: PlaidLink, data: TransactionData) -> str:
        """
        Insert or update one transaction by external id.

        Returns "inserted", "updated" or "unchanged".
        """
        values = {
            "account_id": data.account_id,
            "amount": data.amount.quantize(Decimal("0.01")),
            "iso_currency_code": data.iso_currency_code,
            "date": data.date,
            "merchant_name": data.merchant_name[:255],
            "category": list(data.category),
            "pending": data.pending,
            "matched_service_id": self._match_service_id(data.merchant_name),
        }

        existing = self.db.query(Transaction).filter(
            Transaction.external_id == data.external_id
        ).first()

        if existing:
            changed = False
            for field_name, value in values.items():
                if getattr(existing, field_name) != value:
                    setattr(existing, field_name, value)
                    changed = True
            return "updated" if changed else "unchanged"

        self.db.add(Transaction(
            user_id=link.user_id,
            link_id=link.id,
            external_id=data.external_id,
            **values,
        ))
        return "inserted"

    def remove_transactions(self, link: PlaidLink, external_ids: List[str]) -> int:
        """Delete exactly the given transaction ids for this link. Does not commit."""
        if not external_ids:
            return 0
        return self.db.query(Transaction).filter(
            Transaction.link_id == link.id,
            Transaction.external_id.in_(list(external_ids)),
        ).delete(synchronize_session=False)

    def _apply_page(self, link: PlaidLink, page: RawFeedPage) -> Tuple[int, int, int, int]:
        """
        Write one page. Failing records are logged and skipped so the rest of
        the page still lands.

        Returns (added, modified, removed, quarantined).
        """
        added = modified = quarantined = 0

        for raw in list(page.added) + list(page.modified):
            try:
                data = self.feed.normalize_transaction(raw)
            except ValidationError as e:
                quarantined += 1
                logger.warning(
                    f"[SYNC] Quarantined malformed transaction "
                    f"{raw.get('transaction_id') if isinstance(raw, dict) else raw!r}: "
                    f"{e.error_count()} validation error(s)"
                )
                continue

            try:
                with self.db.begin_nested():
                    outcome = self._upsert_transaction(link, data)
            except SQLAlchemyError as e:
                logger.error(f"[SYNC] Failed to persist transaction {data.external_id}: {e}")
                continue

            if outcome == "inserted":
                added += 1
            elif outcome == "updated":
                modified += 1

        removed = 0
        if page.removed:
            try:
                with self.db.begin_nested():
                    removed = self.remove_transactions(link, page.removed)
            except SQLAlchemyError as e:
                logger.error(f"[SYNC] Failed to remove {len(page.removed)} transactions: {e}")

        return added, modified, removed, quarantined

    def _advance_cursor(self, link: PlaidLink, expected: Optional[str], new_cursor: str) -> None:
        """Compare-and-set the stored cursor, then commit."""
        query = self.db.query(PlaidLink).filter(PlaidLink.id == link.id)
        if expected is None:
            query = query.filter(PlaidLink.sync_cursor.is_(None))
        else:
            query = query.filter(PlaidLink.sync_cursor == expected)

        now = self.clock()
        updated = query.update(
            {
                PlaidLink.sync_cursor: new_cursor,
                PlaidLink.last_synced_at: now,
                PlaidLink.updated_at: now,
            },
            synchronize_session=False,
        )
        if updated == 0:
            self.db.rollback()
            raise CursorConflictError(f"Cursor for link {link.id} moved during sync")

        self.db.commit()

    def sync(
        self,
        link_id,
        cursor: Optional[str] = None,
        page_size: Optional[int] = None,
    ) -> SyncResult:
        """
        Pull pages until the feed reports no more changes or the record cap is hit.

        Args:
            link_id: PlaidLink id
            cursor: Starting cursor; only honoured when the link has none stored
            page_size: Records requested per page

        Raises:
            LinkNotFoundError, LinkInactiveError, LinkCredentialError,
            CursorConflictError; feed transient errors propagate unchanged
        """
        if self.feed is None:
            raise FeedError("No transaction feed configured")

        link = self.get_link(link_id)
        if not link.is_active:
            raise LinkInactiveError(str(link.id), link.error_code)

        stored_cursor = link.sync_cursor
        if cursor and stored_cursor and cursor != stored_cursor:
            logger.warning(
                f"[SYNC] Ignoring caller cursor for link {link.id}; stored cursor wins (no rewind)"
            )
            cursor = stored_cursor
        elif not cursor:
            cursor = stored_cursor

        page_size = page_size or SYNC_DEFAULT_PAGE_SIZE
        access_token = link.access_token
        result = SyncResult(next_cursor=cursor)
        records_seen = 0

        logger.info(f"[SYNC] Starting sync for link {link.id} (cursor={'set' if cursor else 'none'})")

        while True:
            try:
                page = self.feed.fetch_sync_page(access_token, cursor=cursor, count=page_size)
            except FeedCredentialError as e:
                self.deactivate_link(link, e.error_code)
                raise LinkCredentialError(str(link.id), e.error_code) from e

            added, modified, removed, quarantined = self._apply_page(link, page)
            self.db.commit()

            self._advance_cursor(link, stored_cursor, page.next_cursor)
            stored_cursor = page.next_cursor
            cursor = page.next_cursor

            result.added += added
            result.modified += modified
            result.removed += removed
            result.quarantined += quarantined
            result.next_cursor = page.next_cursor
            result.has_more = page.has_more
            result.pages += 1

            records_seen += len(page.added) + len(page.modified) + len(page.removed)

            if not page.has_more:
                break
            if records_seen >= self.max_records:
                logger.info(
                    f"[SYNC] Record cap {self.max_records} reached for link {link.id}; "
                    f"caller should re-invoke to continue"
                )
                break

        logger.info(
            f"[SYNC] Link {link.id}: +{result.added} ~{result.modified} -{result.removed} "
            f"(quarantined {result.quarantined}, pages {result.pages}, has_more={result.has_more})"
        )
        return result


def _to_uuid(value) -> Optional[UUID]:
    """Safely parse a UUID-like value."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (ValueError, TypeError):
        return None
