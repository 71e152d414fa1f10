"""
SQLAlchemy models for linked bank feeds, synced transactions, the service
catalog, and the subscriptions detected from them.
"""
import uuid
from datetime import datetime
from sqlalchemy import (
    Column,
    String,
    Boolean,
    Date,
    DateTime,
    Numeric,
    Text,
    Integer,
    ForeignKey,
    Index,
    UniqueConstraint,
    JSON,
    Uuid,
)
from sqlalchemy.orm import relationship

from subtracker.database import Base


SUBSCRIPTION_STATUSES = ("active", "cancelled")
SUGGESTION_STATUSES = ("pending", "accepted", "rejected")
BILLING_CYCLES = ("weekly", "monthly", "quarterly", "yearly")
DETECTION_SOURCES = ("manual", "plaid")


class PlaidLink(Base):
    """
    A user's authorized connection to one institution through Plaid.
    Also carries the sync cursor for /transactions/sync; only the sync
    service writes sync_cursor.
    """
    __tablename__ = "plaid_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=False, index=True)
    item_id = Column(String(255), nullable=False, unique=True)  # Plaid's item id
    access_token = Column(Text, nullable=False)  # Opaque; provided by the secret store
    institution_name = Column(String(255))
    institution_id = Column(String(255), nullable=True)
    sync_cursor = Column(Text, nullable=True)
    last_synced_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    error_code = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    transactions = relationship("Transaction", back_populates="link", passive_deletes=True)

    __table_args__ = (
        Index("idx_plaid_items_user", "user_id"),
    )


class StreamingService(Base):
    """Static catalog of known paid services and their merchant patterns."""
    __tablename__ = "streaming_services"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False, unique=True)
    base_price = Column(Numeric(10, 2), nullable=True)
    merchant_patterns = Column(JSON, nullable=False, default=list)  # ["NETFLIX", "Netflix.com"]
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Transaction(Base):
    """
    A transaction pulled from the feed. external_id is Plaid's transaction_id
    and is the identity used for modify/remove events.
    Amounts keep Plaid's sign convention: positive is money leaving the account.
    """
    __tablename__ = "transactions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=False, index=True)
    link_id = Column(Uuid, ForeignKey("plaid_items.id", ondelete="CASCADE"), nullable=False, index=True)
    external_id = Column(String(255), nullable=False)
    account_id = Column(String(255), nullable=False)  # Plaid account id
    amount = Column(Numeric(15, 2), nullable=False)
    iso_currency_code = Column(String(3), nullable=True)
    date = Column(Date, nullable=False, index=True)
    merchant_name = Column(String(255), nullable=False)
    category = Column(JSON, nullable=True)
    pending = Column(Boolean, default=False, nullable=False)
    matched_service_id = Column(Uuid, ForeignKey("streaming_services.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    link = relationship("PlaidLink", back_populates="transactions")

    __table_args__ = (
        Index("idx_transactions_user_date", "user_id", "date"),
        UniqueConstraint("external_id", name="transactions_external_id_unique"),
    )


class UserSubscription(Base):
    """
    A tracked subscription. At most one active row per (user, service);
    the decision policy checks for an existing row before inserting.
    """
    __tablename__ = "user_subscriptions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=False, index=True)
    service_id = Column(Uuid, ForeignKey("streaming_services.id", ondelete="SET NULL"), nullable=True)
    service_name = Column(String(255), nullable=False)  # Denormalized for when service_id is null
    price = Column(Numeric(10, 2), nullable=False)
    billing_cycle = Column(String(20), nullable=False, default="monthly")
    status = Column(String(20), nullable=False, default="active")
    detected_from = Column(String(20), nullable=False, default="manual")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    cancelled_at = Column(DateTime, nullable=True)

    service = relationship("StreamingService")

    __table_args__ = (
        Index("idx_user_subscriptions_user_status", "user_id", "status"),
    )


class SuggestedSubscription(Base):
    """
    A medium-confidence detection waiting for the user to accept or reject it.
    At most one pending row per (user, merchant_name).
    """
    __tablename__ = "suggested_subscriptions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=False, index=True)
    service_id = Column(Uuid, ForeignKey("streaming_services.id", ondelete="SET NULL"), nullable=True)
    merchant_name = Column(String(255), nullable=False)
    confidence_score = Column(Integer, nullable=False)  # 0-100
    suggested_amount = Column(Numeric(10, 2), nullable=False)
    suggested_billing_cycle = Column(String(20), nullable=False, default="monthly")
    transaction_count = Column(Integer, nullable=False, default=0)
    detection_metadata = Column(JSON, nullable=True)
    status = Column(String(20), nullable=False, default="pending")
    reviewed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_suggested_subscriptions_user_status", "user_id", "status"),
    )
