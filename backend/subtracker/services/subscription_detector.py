"""
Subscription pattern detection over a user's synced transactions.

Core approach: group outgoing transactions by normalized merchant, then score
each group on how well it matches a catalog service and how regular its
amounts and payment dates are.

Usage:
    detector = SubscriptionDetector(db, user_id, catalog_entries, clock=utcnow)
    results = detector.detect()
    # read-only; hand results to SubscriptionDecisionPolicy to persist anything
"""
import os
import logging
from typing import Callable, Dict, List, Optional, Tuple
from decimal import Decimal
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from collections import defaultdict
from uuid import UUID

from sqlalchemy.orm import Session

from subtracker.models import Transaction
from subtracker.services.catalog_matcher import CatalogEntry, CatalogMatcher
from subtracker.services.merchant_normalizer import normalize_merchant_name

logger = logging.getLogger(__name__)


# Configuration
LOOKBACK_DAYS = int(os.getenv("SUBSCRIPTION_DETECTION_LOOKBACK_DAYS", "365"))
MIN_TRANSACTIONS = int(os.getenv("SUBSCRIPTION_DETECTION_MIN_TRANSACTIONS", "2"))

# A single payment can never establish recurrence.
ABSOLUTE_MIN_TRANSACTIONS = 2

# Confidence weights. Merchant identity dominates; timing and amount
# regularity corroborate ambiguous names.
MERCHANT_WEIGHT = 0.40
AMOUNT_WEIGHT = 0.25
DATE_PATTERN_WEIGHT = 0.25
COUNT_WEIGHT = 0.10

# Count term saturates at this many corroborating transactions
COUNT_SATURATION = 6

# Standard deviation (in currency units) at which amount consistency hits zero
AMOUNT_STDDEV_SCALE = 2.0

# Mean intervals shorter than this are judged against this floor instead
MIN_INTERVAL_SCALE_DAYS = 30

# Interval consistency ratio above which a classified cycle counts as recurring
RECURRING_CONSISTENCY_THRESHOLD = 0.7

# (label, centre in days, allowed deviation), checked in order
BILLING_CYCLES = (
    ("weekly", 7, 7),
    ("monthly", 30, 7),
    ("quarterly", 90, 14),
    ("yearly", 365, 30),
)


def utcnow() -> datetime:
    return datetime.utcnow()


@dataclass
class DetectionResult:
    """Detection outcome for one merchant group. Never persisted as-is."""
    merchant_name: str
    service_name: str
    matched_service_id: Optional[UUID]
    confidence: int  # 0-100
    merchant_match: float
    amount_consistency: float
    date_pattern_score: float
    billing_cycle: Optional[str]
    average_amount: Decimal
    average_interval_days: float
    transaction_count: int
    is_recurring: bool
    transaction_ids: List[str] = field(default_factory=list)

    def metadata(self) -> dict:
        return {
            "merchantMatch": round(self.merchant_match, 2),
            "amountConsistency": round(self.amount_consistency, 2),
            "datePatternScore": round(self.date_pattern_score, 2),
            "isRecurring": self.is_recurring,
            "averageIntervalDays": round(self.average_interval_days, 2),
        }


def calculate_amount_consistency(amounts: List[float]) -> float:
    """Penalize the spread of amounts against a fixed $2 scale. Returns 0-100."""
    if not amounts:
        return 0.0

    average = sum(amounts) / len(amounts)
    variance = sum((a - average) ** 2 for a in amounts) / len(amounts)
    std_dev = variance ** 0.5

    return max(0.0, 1 - std_dev / AMOUNT_STDDEV_SCALE) * 100


def calculate_interval_stats(dates: List[date]) -> Tuple[float, float]:
    """
    Return (average_interval_days, consistency) for a list of dates.

    consistency = max(0, 1 - stddev / max(mean, 30)), so a tight cadence scores
    near 1 regardless of whether it is weekly or yearly.
    """
    if len(dates) < 2:
        return 0.0, 0.0

    sorted_dates = sorted(dates)
    intervals = [
        (sorted_dates[i] - sorted_dates[i - 1]).days
        for i in range(1, len(sorted_dates))
    ]

    average_interval = sum(intervals) / len(intervals)
    variance = sum((x - average_interval) ** 2 for x in intervals) / len(intervals)
    std_dev = variance ** 0.5

    consistency = max(0.0, 1 - std_dev / max(average_interval, MIN_INTERVAL_SCALE_DAYS))
    return average_interval, consistency


def determine_billing_cycle(average_interval: float) -> Optional[str]:
    for label, centre, tolerance in BILLING_CYCLES:
        if abs(average_interval - centre) <= tolerance:
            return label
    return None


def calculate_confidence(
    merchant_match: float,
    amount_consistency: float,
    date_pattern_score: float,
    transaction_count: int,
) -> int:
    count_score = min(100.0, transaction_count / COUNT_SATURATION * 100)

    confidence = (
        merchant_match * MERCHANT_WEIGHT
        + amount_consistency * AMOUNT_WEIGHT
        + date_pattern_score * DATE_PATTERN_WEIGHT
        + count_score * COUNT_WEIGHT
    )

    return int(round(max(0.0, min(100.0, confidence))))


class SubscriptionDetector:
    """
    Detects recurring payments from transactions.

    Core Algorithm:
    1. Load outgoing transactions inside the lookback window
    2. Group by normalized merchant name, dropping groups below the minimum count
    3. Score each group (merchant match, amount consistency, date pattern, count)
    4. Classify the billing cycle from the mean interval

    The detector never writes; running it repeatedly or in parallel for
    different users is safe.
    """

    def __init__(
        self,
        db: Session,
        user_id: str,
        catalog: List[CatalogEntry],
        clock: Callable[[], datetime] = utcnow,
        lookback_days: int = LOOKBACK_DAYS,
        min_transactions: int = MIN_TRANSACTIONS,
    ):
        """Initialize the SubscriptionDetector."""
        self.db = db
        self.user_id = user_id
        self.matcher = CatalogMatcher(catalog)
        self.clock = clock
        self.lookback_days = lookback_days
        self.min_transactions = max(ABSOLUTE_MIN_TRANSACTIONS, min_transactions or ABSOLUTE_MIN_TRANSACTIONS)

    def _load_transactions(self) -> List[Transaction]:
        window_start = self.clock().date() - timedelta(days=self.lookback_days)
        return (
            self.db.query(Transaction)
            .filter(
                Transaction.user_id == self.user_id,
                Transaction.date >= window_start,
                Transaction.amount > 0,  # Outflows only
            )
            .order_by(Transaction.date.asc())
            .all()
        )

    def group_by_merchant(self, transactions: List[Transaction]) -> Dict[str, List[Transaction]]:
        groups: Dict[str, List[Transaction]] = defaultdict(list)
        for txn in transactions:
            merchant = normalize_merchant_name(txn.merchant_name)
            if merchant:
                groups[merchant].append(txn)
        return groups

    def analyze_group(self, merchant_name: str, transactions: List[Transaction]) -> Optional[DetectionResult]:
        """Score one merchant group. Returns None below the minimum count."""
        if len(transactions) < self.min_transactions:
            return None

        match = self.matcher.match(merchant_name)

        amounts = [abs(float(txn.amount)) for txn in transactions]
        amount_consistency = calculate_amount_consistency(amounts)

        average_interval, consistency = calculate_interval_stats([txn.date for txn in transactions])
        date_pattern_score = consistency * 100
        billing_cycle = determine_billing_cycle(average_interval)
        is_recurring = billing_cycle is not None and consistency > RECURRING_CONSISTENCY_THRESHOLD

        confidence = calculate_confidence(
            match.score,
            amount_consistency,
            date_pattern_score,
            len(transactions),
        )

        average_amount = sum(amounts) / len(amounts)
        sorted_txns = sorted(transactions, key=lambda t: t.date)

        return DetectionResult(
            merchant_name=merchant_name,
            service_name=(match.service.name if match.service else merchant_name)[:255],
            matched_service_id=match.service.id if match.service else None,
            confidence=confidence,
            merchant_match=match.score,
            amount_consistency=amount_consistency,
            date_pattern_score=date_pattern_score,
            billing_cycle=billing_cycle,
            average_amount=Decimal(str(round(average_amount, 2))),
            average_interval_days=average_interval,
            transaction_count=len(transactions),
            is_recurring=is_recurring,
            transaction_ids=[txn.external_id for txn in sorted_txns],
        )

    def detect_in(self, transactions: List[Transaction]) -> List[DetectionResult]:
        """Run detection over an already-loaded transaction list."""
        results: List[DetectionResult] = []
        for merchant_name, group in self.group_by_merchant(transactions).items():
            result = self.analyze_group(merchant_name, group)
            if result:
                results.append(result)

        results.sort(key=lambda r: (r.confidence, r.transaction_count), reverse=True)
        return results

    def detect(self) -> List[DetectionResult]:
        logger.info(f"[SUBSCRIPTION_DETECTOR] Starting detection for user {self.user_id}")

        transactions = self._load_transactions()
        if not transactions:
            logger.info("[SUBSCRIPTION_DETECTOR] No outgoing transactions in window")
            return []

        results = self.detect_in(transactions)

        logger.info(
            f"[SUBSCRIPTION_DETECTOR] {len(results)} merchant groups scored "
            f"from {len(transactions)} transactions"
        )
        for r in results:
            logger.debug(
                f"  - {r.service_name} ({r.merchant_name}): {r.billing_cycle or 'unclassified'}, "
                f"${r.average_amount}, {r.transaction_count} txns, {r.confidence}% confidence"
            )

        return results
