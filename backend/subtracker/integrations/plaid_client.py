"""
Plaid transaction feed client.
Thin wrapper over /transactions/sync plus the two calls of the Link flow
(/link/token/create, /item/public_token/exchange). Webhooks are received by
the API, not here.

Documentation: https://plaid.com/docs/api/products/transactions/#transactionssync

Error handling:
    - Item errors that require the user to re-authenticate raise FeedCredentialError.
    - Network failures, 5xx responses and rate limits raise FeedTransientError.
    - No retries are performed here; callers retry from outside.
"""
import logging
import os
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from subtracker.errors import FeedCredentialError, FeedError, FeedTransientError
from subtracker.integrations.base import RawFeedPage, TransactionData, TransactionFeed

logger = logging.getLogger(__name__)


PLAID_ENV_URLS = {
    "sandbox": "https://sandbox.plaid.com",
    "development": "https://development.plaid.com",
    "production": "https://production.plaid.com",
}

# Item errors after which the stored access token is useless until re-auth.
CREDENTIAL_ERROR_CODES = {
    "ITEM_LOGIN_REQUIRED",
    "INVALID_CREDENTIALS",
    "INVALID_ACCESS_TOKEN",
    "INVALID_MFA",
    "INVALID_UPDATED_USERNAME",
    "INVALID_UPDATED_PASSWORD",
    "INSUFFICIENT_CREDENTIALS",
    "ITEM_LOCKED",
    "ITEM_NOT_FOUND",
    "USER_PERMISSION_REVOKED",
    "ACCESS_NOT_GRANTED",
    "USER_SETUP_REQUIRED",
}

TRANSIENT_ERROR_TYPES = {"API_ERROR", "INSTITUTION_ERROR", "RATE_LIMIT_EXCEEDED"}

MAX_PAGE_SIZE = 500

PLAID_CLIENT_NAME = os.getenv("PLAID_CLIENT_NAME", "Subtracker")
PLAID_COUNTRY_CODES = [c.strip() for c in os.getenv("PLAID_COUNTRY_CODES", "US").split(",") if c.strip()]
PLAID_WEBHOOK_URL = os.getenv("PLAID_WEBHOOK_URL")


class PlaidClient(TransactionFeed):
    """Feed client for Plaid's cursor-based transaction sync."""

    def __init__(
        self,
        client_id: str,
        secret: str,
        environment: str = "sandbox",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize the Plaid client.

        Args:
            client_id: Plaid client id
            secret: Plaid secret for the chosen environment
            environment: sandbox, development or production
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used to stub the network in tests)
        """
        if environment not in PLAID_ENV_URLS:
            raise ValueError(f"Unknown Plaid environment: {environment}")

        self.client_id = client_id
        self.secret = secret
        self.environment = environment

        self.client = httpx.Client(
            base_url=PLAID_ENV_URLS[environment],
            timeout=timeout,
            transport=transport,
            headers={
                "User-Agent": "Subtracker/0.1",
                "Content-Type": "application/json",
            }
        )

    @classmethod
    def from_env(cls) -> "PlaidClient":
        """Build a client from PLAID_CLIENT_ID / PLAID_SECRET / PLAID_ENV."""
        client_id = os.getenv("PLAID_CLIENT_ID")
        secret = os.getenv("PLAID_SECRET")
        if not client_id or not secret:
            raise FeedError(
                "Plaid credentials not configured. Set PLAID_CLIENT_ID and PLAID_SECRET."
            )
        return cls(client_id, secret, environment=os.getenv("PLAID_ENV", "sandbox"))

    def close(self) -> None:
        self.client.close()

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        body = {"client_id": self.client_id, "secret": self.secret, **payload}

        try:
            response = self.client.post(path, json=body)
        except httpx.TransportError as e:
            logger.error(f"[PLAID] Network error calling {path}: {e}")
            raise FeedTransientError(f"Network error calling Plaid {path}: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 400:
            self._raise_for_error(path, response.status_code, data)

        return data

    @staticmethod
    def _raise_for_error(path: str, status_code: int, data: Dict[str, Any]) -> None:
        error_type = data.get("error_type") or ""
        error_code = data.get("error_code") or "UNKNOWN_ERROR"
        message = data.get("error_message") or f"Plaid {path} failed with HTTP {status_code}"

        if error_code in CREDENTIAL_ERROR_CODES:
            logger.warning(f"[PLAID] Credential error on {path}: {error_code}")
            raise FeedCredentialError(error_code, message)

        if status_code >= 500 or status_code == 429 or error_type in TRANSIENT_ERROR_TYPES:
            logger.warning(f"[PLAID] Transient error on {path}: {error_type}/{error_code}")
            raise FeedTransientError(f"{error_code}: {message}")

        logger.error(f"[PLAID] Request error on {path}: {error_type}/{error_code} {message}")
        raise FeedError(f"{error_code}: {message}")

    def fetch_sync_page(
        self,
        access_token: str,
        cursor: Optional[str] = None,
        count: int = 100,
    ) -> RawFeedPage:
        payload: Dict[str, Any] = {
            "access_token": access_token,
            "count": max(1, min(count, MAX_PAGE_SIZE)),
        }
        if cursor:
            payload["cursor"] = cursor

        data = self._post("/transactions/sync", payload)

        removed = [
            entry["transaction_id"]
            for entry in data.get("removed") or []
            if isinstance(entry, dict) and entry.get("transaction_id")
        ]

        try:
            return RawFeedPage(
                added=data.get("added") or [],
                modified=data.get("modified") or [],
                removed=removed,
                next_cursor=data.get("next_cursor") or (cursor or ""),
                has_more=bool(data.get("has_more", False)),
            )
        except ValidationError as e:
            raise FeedError(f"Malformed /transactions/sync response: {e}") from e

    def create_link_token(self, user_id: str, webhook_url: Optional[str] = None) -> Dict[str, Any]:
        """
        Start the Link flow for a user.

        Returns:
            {"link_token": str, "expiration": str | None}
        """
        payload: Dict[str, Any] = {
            "user": {"client_user_id": user_id},
            "client_name": PLAID_CLIENT_NAME,
            "products": ["transactions"],
            "country_codes": PLAID_COUNTRY_CODES,
            "language": "en",
        }
        webhook_url = webhook_url or PLAID_WEBHOOK_URL
        if webhook_url:
            payload["webhook"] = webhook_url

        data = self._post("/link/token/create", payload)
        if not data.get("link_token"):
            raise FeedError("Malformed /link/token/create response: missing link_token")

        return {"link_token": data["link_token"], "expiration": data.get("expiration")}

    def exchange_public_token(self, public_token: str) -> Dict[str, str]:
        """
        Trade the public token Link hands the client for a long-lived access token.

        Returns:
            {"access_token": str, "item_id": str}
        """
        data = self._post("/item/public_token/exchange", {"public_token": public_token})
        if not data.get("access_token") or not data.get("item_id"):
            raise FeedError("Malformed /item/public_token/exchange response")

        logger.info(f"[PLAID] Exchanged public token for item {data['item_id']}")
        return {"access_token": data["access_token"], "item_id": data["item_id"]}

    def normalize_transaction(self, raw: dict) -> TransactionData:
        return parse_plaid_transaction(raw)


def parse_plaid_transaction(raw: dict) -> TransactionData:
    """
    Convert a Plaid transaction object into TransactionData.

    Raises:
        pydantic.ValidationError: if required fields are missing or malformed
    """
    category = raw.get("category")
    if not category:
        pfc = raw.get("personal_finance_category") or {}
        category = [c for c in (pfc.get("primary"), pfc.get("detailed")) if c]

    return TransactionData(
        external_id=raw.get("transaction_id") or "",
        account_id=raw.get("account_id") or "",
        amount=raw.get("amount"),
        iso_currency_code=raw.get("iso_currency_code") or raw.get("unofficial_currency_code"),
        date=raw.get("date"),
        merchant_name=raw.get("merchant_name") or raw.get("name") or "",
        category=category or [],
        pending=bool(raw.get("pending", False)),
    )
