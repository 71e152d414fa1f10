"""
Webhook routes. Plaid posts item and transaction events here.
"""
from typing import Any, Callable, Dict

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from subtracker.database import get_db
from subtracker.deps import get_catalog_cache, get_clock, get_feed_factory, get_link_lock
from subtracker.integrations.base import TransactionFeed
from subtracker.schemas import WebhookAck
from subtracker.services.catalog_cache import CatalogCache
from subtracker.services.link_lock import LinkLock
from subtracker.services.webhook_service import WebhookService

router = APIRouter()


@router.post("/plaid", response_model=WebhookAck, response_model_exclude_none=True)
def receive_plaid_webhook(
    payload: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    feed_factory: Callable[[], TransactionFeed] = Depends(get_feed_factory),
    lock: LinkLock = Depends(get_link_lock),
    catalog_cache: CatalogCache = Depends(get_catalog_cache),
    clock=Depends(get_clock),
):
    """
    Receive a Plaid webhook.

    Always answers 200 so Plaid does not redeliver; handling failures are
    logged and echoed in the "error" field.
    """
    service = WebhookService(db, feed_factory, lock, catalog_cache, clock=clock)
    return service.receive(payload)
