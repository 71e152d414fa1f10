"""
Sync routes for linked Plaid items.
"""
import logging
from uuid import UUID

import httpx
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from subtracker.database import get_db
from subtracker.deps import get_catalog_cache, get_clock, get_feed_client, get_link_lock
from subtracker.errors import (
    CursorConflictError,
    FeedError,
    FeedTransientError,
    LinkInactiveError,
    LinkNotFoundError,
    LinkOwnershipError,
    SyncInProgressError,
)
from subtracker.integrations.base import TransactionFeed
from subtracker.models import PlaidLink, Transaction
from subtracker.schemas import (
    LinkCreate,
    LinkCreateResponse,
    LinkStatusResponse,
    LinkTokenRequest,
    LinkTokenResponse,
    SyncRequest,
    SyncResponse,
)
from subtracker.services.catalog_cache import CatalogCache
from subtracker.services.link_lock import LinkLock
from subtracker.services.pipeline import LinkSyncOutcome, link_account, run_link_sync

logger = logging.getLogger(__name__)

router = APIRouter()


def _link_status(db: Session, link: PlaidLink) -> LinkStatusResponse:
    transaction_count = db.query(func.count(Transaction.id)).filter(
        Transaction.link_id == link.id
    ).scalar() or 0

    return LinkStatusResponse(
        id=link.id,
        institution_name=link.institution_name,
        is_active=link.is_active,
        error_code=link.error_code,
        has_cursor=bool(link.sync_cursor),
        last_synced_at=link.last_synced_at,
        transaction_count=transaction_count,
    )


def _sync_response(outcome: LinkSyncOutcome) -> SyncResponse:
    return SyncResponse(
        transactions_added=outcome.sync.added,
        transactions_modified=outcome.sync.modified,
        transactions_removed=outcome.sync.removed,
        transactions_quarantined=outcome.sync.quarantined,
        subscriptions_detected=outcome.subscriptions_detected,
        next_cursor=outcome.sync.next_cursor,
        has_more=outcome.sync.has_more,
    )


@router.post("", response_model=SyncResponse)
def sync_link(
    request: SyncRequest,
    db: Session = Depends(get_db),
    feed: TransactionFeed = Depends(get_feed_client),
    lock: LinkLock = Depends(get_link_lock),
    catalog_cache: CatalogCache = Depends(get_catalog_cache),
    clock=Depends(get_clock),
):
    """
    Pull new, modified and removed transactions for a link.

    Stops after the per-call record cap; when has_more is true the caller
    should call again. Subscription detection runs afterwards unless
    detect_subscriptions is false.
    """
    try:
        outcome = run_link_sync(
            db,
            feed,
            request.link_id,
            lock,
            catalog_cache,
            clock=clock,
            cursor=request.cursor,
            page_size=request.page_size,
            detect_subscriptions=request.detect_subscriptions,
        )
    except LinkNotFoundError:
        raise HTTPException(status_code=404, detail="Link not found")
    except LinkInactiveError as e:
        raise HTTPException(
            status_code=409,
            detail=f"Link is inactive ({e.error_code or 'unknown'}); re-authentication required",
        )
    except (SyncInProgressError, CursorConflictError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except (FeedError, httpx.HTTPError) as e:
        logger.error(f"[SYNC] Upstream failure syncing link {request.link_id}: {e}")
        raise HTTPException(status_code=502, detail=f"Upstream feed error: {e}")

    return _sync_response(outcome)


@router.post("/link-token", response_model=LinkTokenResponse)
def create_link_token(
    request: LinkTokenRequest,
    feed: TransactionFeed = Depends(get_feed_client),
):
    """Create a Plaid Link token so the client can start linking an account."""
    try:
        token = feed.create_link_token(request.user_id)
    except FeedError as e:
        logger.error(f"[SYNC] Link token creation failed for user {request.user_id}: {e}")
        raise HTTPException(status_code=502, detail=f"Upstream feed error: {e}")

    return LinkTokenResponse(**token)


@router.post("/links", response_model=LinkCreateResponse, status_code=201)
def create_link(
    request: LinkCreate,
    db: Session = Depends(get_db),
    feed: TransactionFeed = Depends(get_feed_client),
    lock: LinkLock = Depends(get_link_lock),
    catalog_cache: CatalogCache = Depends(get_catalog_cache),
    clock=Depends(get_clock),
):
    """
    Exchange the public token from Plaid Link and store the linked item.

    Linking an item the user already has (re-authentication) reactivates it.
    The initial sync runs unless initial_sync is false; if it fails the link
    is still created and the failure is returned in sync_error.
    """
    try:
        outcome = link_account(
            db,
            feed,
            request.user_id,
            request.public_token,
            lock,
            catalog_cache,
            clock=clock,
            institution_name=request.institution_name,
            institution_id=request.institution_id,
            initial_sync=request.initial_sync,
        )
    except LinkOwnershipError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except FeedTransientError as e:
        logger.error(f"[SYNC] Upstream failure exchanging public token: {e}")
        raise HTTPException(status_code=502, detail=f"Upstream feed error: {e}")
    except FeedError as e:
        logger.warning(f"[SYNC] Public token exchange rejected: {e}")
        raise HTTPException(status_code=400, detail=f"Token exchange failed: {e}")

    return LinkCreateResponse(
        link=_link_status(db, outcome.link),
        sync=_sync_response(outcome.sync) if outcome.sync else None,
        sync_error=outcome.sync_error,
    )


@router.get("/links/{link_id}", response_model=LinkStatusResponse)
def get_link_status(
    link_id: UUID,
    db: Session = Depends(get_db),
):
    """Report link health: active flag, last error, cursor presence and stored transaction count."""
    link = db.query(PlaidLink).filter(PlaidLink.id == link_id).first()
    if not link:
        raise HTTPException(status_code=404, detail="Link not found")

    return _link_status(db, link)
