"""
Turns detection results into subscription records.

Tiers:
    >= 80  create an active subscription, or update the price of the existing one
    60-79  create a pending suggestion unless the service is already subscribed
           or a pending or rejected suggestion exists for the merchant
    < 60   nothing is written

Re-running over unchanged transactions writes nothing new.
"""
import os
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from subtracker.errors import SuggestionStateError
from subtracker.models import SuggestedSubscription, UserSubscription
from subtracker.services.subscription_detector import DetectionResult, utcnow

logger = logging.getLogger(__name__)


CONFIDENCE_THRESHOLD_AUTO = int(os.getenv("SUBSCRIPTION_CONFIDENCE_AUTO", "80"))
CONFIDENCE_THRESHOLD_SUGGEST = int(os.getenv("SUBSCRIPTION_CONFIDENCE_SUGGEST", "60"))

# Statuses that block a new suggestion for the same merchant. Rejected
# suggestions stay rejected instead of resurfacing on the next run.
BLOCKING_SUGGESTION_STATUSES = ("pending", "rejected")

DEFAULT_BILLING_CYCLE = "monthly"


@dataclass
class DecisionSummary:
    created: int = 0
    updated: int = 0
    suggested: int = 0
    discarded: int = 0


class SubscriptionDecisionPolicy:
    """Applies the confidence tiers to detection results for one user."""

    def __init__(self, db: Session, user_id: str, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.user_id = user_id
        self.clock = clock

    def _find_active_subscription(
        self,
        service_id: Optional[UUID],
        service_name: str,
    ) -> Optional[UserSubscription]:
        query = self.db.query(UserSubscription).filter(
            UserSubscription.user_id == self.user_id,
            UserSubscription.status == "active",
        )
        if service_id is not None:
            query = query.filter(UserSubscription.service_id == service_id)
        else:
            query = query.filter(
                UserSubscription.service_id.is_(None),
                UserSubscription.service_name == service_name,
            )
        return query.first()

    def _find_blocking_suggestion(self, merchant_name: str) -> Optional[SuggestedSubscription]:
        return self.db.query(SuggestedSubscription).filter(
            SuggestedSubscription.user_id == self.user_id,
            SuggestedSubscription.merchant_name == merchant_name,
            SuggestedSubscription.status.in_(BLOCKING_SUGGESTION_STATUSES),
        ).first()

    def ensure_subscription(
        self,
        service_id: Optional[UUID],
        service_name: str,
        price: Decimal,
        billing_cycle: Optional[str],
    ) -> str:
        """
        Create the active subscription or refresh its price.

        Returns "created", "updated" or "unchanged". Does not commit.
        """
        price = Decimal(price).quantize(Decimal("0.01"))
        existing = self._find_active_subscription(service_id, service_name)

        if existing:
            if Decimal(existing.price).quantize(Decimal("0.01")) != price:
                logger.info(
                    f"[DECISION] Updating price of '{existing.service_name}' "
                    f"for user {self.user_id}: {existing.price} -> {price}"
                )
                existing.price = price
                return "updated"
            return "unchanged"

        self.db.add(UserSubscription(
            user_id=self.user_id,
            service_id=service_id,
            service_name=service_name,
            price=price,
            billing_cycle=billing_cycle or DEFAULT_BILLING_CYCLE,
            status="active",
            detected_from="plaid",
        ))
        logger.info(f"[DECISION] Created subscription '{service_name}' for user {self.user_id}")
        return "created"

    def _suggest(self, result: DetectionResult) -> bool:
        if self._find_active_subscription(result.matched_service_id, result.service_name):
            logger.debug(
                f"[DECISION] Skipping suggestion '{result.service_name}' - already subscribed"
            )
            return False

        if self._find_blocking_suggestion(result.service_name):
            logger.debug(
                f"[DECISION] Skipping suggestion '{result.service_name}' - already pending or rejected"
            )
            return False

        self.db.add(SuggestedSubscription(
            user_id=self.user_id,
            service_id=result.matched_service_id,
            merchant_name=result.service_name,
            confidence_score=result.confidence,
            suggested_amount=result.average_amount,
            suggested_billing_cycle=result.billing_cycle or DEFAULT_BILLING_CYCLE,
            transaction_count=result.transaction_count,
            detection_metadata=result.metadata(),
            status="pending",
        ))
        logger.info(
            f"[DECISION] Suggested '{result.service_name}' "
            f"({result.billing_cycle or 'unclassified'}, {result.confidence}% confidence)"
        )
        return True

    @staticmethod
    def _merge_by_service(results: List[DetectionResult]) -> List[DetectionResult]:
        """
        Keep one result per service. Merchant groups that resolve to the same
        service would otherwise write competing prices on every run; the most
        confident group (then the one with more charges) wins.
        """
        best: Dict[Tuple, DetectionResult] = {}
        for result in results:
            if result.matched_service_id is not None:
                key = ("service", result.matched_service_id)
            else:
                key = ("name", result.service_name)
            current = best.get(key)
            if current is None or (result.confidence, result.transaction_count) > (
                current.confidence,
                current.transaction_count,
            ):
                if current is not None:
                    logger.debug(
                        f"[DECISION] Merging '{current.merchant_name}' into '{result.merchant_name}' "
                        f"for {result.service_name}"
                    )
                best[key] = result
        return sorted(best.values(), key=lambda r: r.confidence, reverse=True)

    def apply(self, results: List[DetectionResult]) -> DecisionSummary:
        summary = DecisionSummary()

        for result in self._merge_by_service(results):
            if result.confidence >= CONFIDENCE_THRESHOLD_AUTO:
                outcome = self.ensure_subscription(
                    result.matched_service_id,
                    result.service_name,
                    result.average_amount,
                    result.billing_cycle,
                )
                if outcome == "created":
                    summary.created += 1
                elif outcome == "updated":
                    summary.updated += 1
                # Keep the existence checks above seeing earlier inserts
                self.db.flush()
            elif result.confidence >= CONFIDENCE_THRESHOLD_SUGGEST:
                if self._suggest(result):
                    summary.suggested += 1
                self.db.flush()
            else:
                summary.discarded += 1

        self.db.commit()
        return summary

    def _get_pending_suggestion(self, suggestion_id: UUID) -> SuggestedSubscription:
        suggestion = self.db.query(SuggestedSubscription).filter(
            SuggestedSubscription.id == suggestion_id,
            SuggestedSubscription.user_id == self.user_id,
        ).first()
        if not suggestion:
            raise LookupError(f"Suggestion {suggestion_id} not found")
        if suggestion.status != "pending":
            raise SuggestionStateError(
                f"Suggestion {suggestion_id} is already {suggestion.status}"
            )
        return suggestion

    def accept_suggestion(self, suggestion_id: UUID) -> UserSubscription:
        """Accept a pending suggestion and make sure the subscription exists."""
        suggestion = self._get_pending_suggestion(suggestion_id)

        self.ensure_subscription(
            suggestion.service_id,
            suggestion.merchant_name,
            suggestion.suggested_amount,
            suggestion.suggested_billing_cycle,
        )
        suggestion.status = "accepted"
        suggestion.reviewed_at = self.clock()
        self.db.flush()

        subscription = self._find_active_subscription(suggestion.service_id, suggestion.merchant_name)
        self.db.commit()
        self.db.refresh(subscription)
        return subscription

    def reject_suggestion(self, suggestion_id: UUID) -> SuggestedSubscription:
        suggestion = self._get_pending_suggestion(suggestion_id)
        suggestion.status = "rejected"
        suggestion.reviewed_at = self.clock()
        self.db.commit()
        self.db.refresh(suggestion)
        return suggestion
