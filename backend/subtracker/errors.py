"""
Exceptions raised by the feed client and the sync / detection services.
Routes translate these into HTTP responses.
"""
from typing import Optional


class FeedError(Exception):
    """Base error for transaction feed failures."""


class FeedCredentialError(FeedError):
    """The provider rejected the link's credentials; the user must re-authenticate."""

    def __init__(self, error_code: str, message: Optional[str] = None):
        self.error_code = error_code
        super().__init__(message or error_code)


class FeedTransientError(FeedError):
    """Network failure or provider outage. Safe to retry from outside."""


class SyncError(Exception):
    """Base error for sync failures."""


class LinkNotFoundError(SyncError):
    pass


class LinkInactiveError(SyncError):
    def __init__(self, link_id: str, error_code: Optional[str] = None):
        self.link_id = link_id
        self.error_code = error_code
        super().__init__(f"Link {link_id} is inactive ({error_code or 'no error code'})")


class LinkCredentialError(LinkInactiveError):
    """Raised after the sync service has deactivated a link because of a credential error."""


class SyncInProgressError(SyncError):
    def __init__(self, link_id: str):
        self.link_id = link_id
        super().__init__(f"A sync is already running for link {link_id}")


class CursorConflictError(SyncError):
    """The stored cursor moved while this sync was running."""


class SuggestionStateError(Exception):
    """A suggestion was reviewed when it was no longer pending."""


class LinkOwnershipError(SyncError):
    """The provider item is already linked to a different user."""
