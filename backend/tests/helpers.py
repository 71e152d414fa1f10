"""
Test doubles and builders shared across the test modules.
"""
from datetime import date, datetime
from typing import Dict, List, Optional, Union

from subtracker.integrations.base import RawFeedPage, TransactionData, TransactionFeed
from subtracker.integrations.plaid_client import parse_plaid_transaction


FIXED_NOW = datetime(2025, 6, 30, 12, 0, 0)
USER_ID = "user-1"


def fixed_clock() -> datetime:
    return FIXED_NOW


class MockPlaidFeed(TransactionFeed):
    """
    Scripted feed. `pages` maps the requested cursor (None for the first call)
    to a page or to an exception to raise. `default_page` is served for any
    cursor not in `pages`. `exchange_result` is what the token exchange returns
    (or raises).
    """

    def __init__(
        self,
        pages: Optional[Dict[Optional[str], Union[RawFeedPage, Exception]]] = None,
        default_page: Optional[RawFeedPage] = None,
    ):
        self.pages = pages or {}
        self.default_page = default_page
        self.calls: List[Dict] = []
        self.closed = False
        self.exchange_result: Union[Dict[str, str], Exception] = {
            "access_token": "access-sandbox-new",
            "item_id": "item-new",
        }
        self.exchanged_tokens: List[str] = []
        self.link_token_users: List[str] = []

    def fetch_sync_page(self, access_token: str, cursor: Optional[str] = None, count: int = 100) -> RawFeedPage:
        self.calls.append({"access_token": access_token, "cursor": cursor, "count": count})
        page = self.pages.get(cursor, self.default_page)
        if page is None:
            return RawFeedPage(next_cursor=cursor or "", has_more=False)
        if isinstance(page, Exception):
            raise page
        return page

    def normalize_transaction(self, raw: dict) -> TransactionData:
        return parse_plaid_transaction(raw)

    def create_link_token(self, user_id: str, webhook_url: Optional[str] = None) -> dict:
        self.link_token_users.append(user_id)
        return {"link_token": f"link-sandbox-{user_id}", "expiration": "2025-07-01T12:00:00Z"}

    def exchange_public_token(self, public_token: str) -> dict:
        if isinstance(self.exchange_result, Exception):
            raise self.exchange_result
        self.exchanged_tokens.append(public_token)
        return dict(self.exchange_result)

    def close(self) -> None:
        self.closed = True


def plaid_txn(
    transaction_id: str,
    name: str,
    amount: float,
    on: date,
    /,
    account_id: str = "acc-1",
    **extra,
) -> dict:
    """Build a Plaid-shaped transaction object."""
    raw = {
        "transaction_id": transaction_id,
        "account_id": account_id,
        "amount": amount,
        "iso_currency_code": "USD",
        "date": on.isoformat(),
        "merchant_name": name,
        "name": name.upper(),
        "category": ["Service", "Subscription"],
        "pending": False,
    }
    raw.update(extra)
    return raw
