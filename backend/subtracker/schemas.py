from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from uuid import UUID


# Sync Schemas
class SyncRequest(BaseModel):
    link_id: UUID
    cursor: Optional[str] = None
    page_size: Optional[int] = Field(default=None, ge=1, le=500)
    detect_subscriptions: bool = True


class SyncResponse(BaseModel):
    transactions_added: int
    transactions_modified: int
    transactions_removed: int
    transactions_quarantined: int = 0
    subscriptions_detected: int = 0
    next_cursor: Optional[str] = None
    has_more: bool = False


class LinkStatusResponse(BaseModel):
    id: UUID
    institution_name: Optional[str] = None
    is_active: bool
    error_code: Optional[str] = None
    has_cursor: bool
    last_synced_at: Optional[datetime] = None
    transaction_count: int


class LinkTokenRequest(BaseModel):
    user_id: str = Field(min_length=1)


class LinkTokenResponse(BaseModel):
    link_token: str
    expiration: Optional[str] = None


class LinkCreate(BaseModel):
    user_id: str = Field(min_length=1)
    public_token: str = Field(min_length=1)
    institution_name: Optional[str] = None
    institution_id: Optional[str] = None
    initial_sync: bool = True


class LinkCreateResponse(BaseModel):
    link: LinkStatusResponse
    sync: Optional[SyncResponse] = None
    sync_error: Optional[str] = None


# Webhook Schemas
class WebhookAck(BaseModel):
    acknowledged: bool = True
    error: Optional[str] = None


# Subscription Schemas
class DetectRequest(BaseModel):
    user_id: str = Field(min_length=1)
    min_transactions: Optional[int] = Field(default=None, ge=2)


class DetectResponse(BaseModel):
    detected: int
    created: int
    suggested: int
    message: str


class SubscriptionResponse(BaseModel):
    id: UUID
    user_id: str
    service_id: Optional[UUID] = None
    service_name: str
    price: Decimal
    billing_cycle: str
    status: str
    detected_from: str
    created_at: datetime
    updated_at: datetime
    cancelled_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SuggestionResponse(BaseModel):
    id: UUID
    user_id: str
    service_id: Optional[UUID] = None
    merchant_name: str
    confidence_score: int
    suggested_amount: Decimal
    suggested_billing_cycle: str
    transaction_count: int
    detection_metadata: Optional[dict] = None
    status: str
    reviewed_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SuggestionReviewRequest(BaseModel):
    user_id: str = Field(min_length=1)


class SuggestionList(BaseModel):
    suggestions: List[SuggestionResponse]
    total: int
