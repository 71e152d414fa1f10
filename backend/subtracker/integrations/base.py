"""
Base interface for transaction feeds.

Provider payloads are parsed into TransactionData at this boundary. Anything
that fails validation is quarantined by the sync service instead of being
written to the store.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from decimal import Decimal
import datetime as dt
from pydantic import BaseModel, Field, field_validator


class TransactionData(BaseModel):
    """Canonical transaction record."""
    external_id: str = Field(min_length=1)
    account_id: str = Field(min_length=1)
    amount: Decimal  # Positive = money out (Plaid convention)
    iso_currency_code: Optional[str] = None
    date: dt.date
    merchant_name: str = Field(min_length=1)
    category: List[str] = []
    pending: bool = False

    @field_validator("merchant_name")
    @classmethod
    def _strip_merchant(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("merchant_name must not be blank")
        return value


class RawFeedPage(BaseModel):
    """One page of a cursor-based sync, before record-level validation."""
    added: List[dict] = []
    modified: List[dict] = []
    removed: List[str] = []
    next_cursor: str
    has_more: bool = False


class TransactionFeed(ABC):
    """Abstract base class for cursor-paginated transaction feeds."""

    @abstractmethod
    def fetch_sync_page(
        self,
        access_token: str,
        cursor: Optional[str] = None,
        count: int = 100,
    ) -> RawFeedPage:
        """Fetch one page of changes after `cursor`."""
        pass

    @abstractmethod
    def normalize_transaction(self, raw: dict) -> TransactionData:
        """Convert a provider-specific transaction into TransactionData."""
        pass

    @abstractmethod
    def create_link_token(self, user_id: str, webhook_url: Optional[str] = None) -> Dict[str, Any]:
        """Start the provider's account-linking flow for a user."""
        pass

    @abstractmethod
    def exchange_public_token(self, public_token: str) -> Dict[str, str]:
        """Exchange a linking-flow token for {"access_token", "item_id"}."""
        pass

    def close(self) -> None:
        """Release any underlying connections."""
        pass
