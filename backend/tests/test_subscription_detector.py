"""
Tests for the subscription detector scoring and grouping.
"""
from datetime import date

import pytest

from subtracker.services.catalog_cache import load_catalog
from subtracker.services.subscription_detector import (
    SubscriptionDetector,
    calculate_amount_consistency,
    calculate_confidence,
    calculate_interval_stats,
    determine_billing_cycle,
)
from tests.helpers import USER_ID, fixed_clock


@pytest.mark.parametrize(
    "interval,expected",
    [
        (7, "weekly"),
        (14, "weekly"),
        (30, "monthly"),
        (37, "monthly"),
        (90, "quarterly"),
        (365, "yearly"),
        (60, None),
        (200, None),
    ],
)
def test_billing_cycle_classification(interval, expected):
    assert determine_billing_cycle(interval) == expected


def test_amount_consistency():
    assert calculate_amount_consistency([15.99] * 6) == 100.0
    # population stddev of [10, 14] is 2, which is the zero point
    assert calculate_amount_consistency([10.0, 14.0]) == 0.0
    assert calculate_amount_consistency([]) == 0.0


def test_interval_stats_regular_cadence():
    dates = [date(2025, 1, 1), date(2025, 1, 31), date(2025, 3, 2)]
    average, consistency = calculate_interval_stats(dates)
    assert average == 30.0
    assert consistency == 1.0


def test_interval_stats_needs_two_dates():
    assert calculate_interval_stats([date(2025, 1, 1)]) == (0.0, 0.0)


def test_confidence_is_bounded():
    assert calculate_confidence(100, 100, 100, 50) == 100
    assert calculate_confidence(0, 0, 0, 0) == 0
    for m, a, d, n in [(50, 20, 80, 3), (100, 0, 0, 1), (12.5, 99.9, 3.3, 12)]:
        score = calculate_confidence(m, a, d, n)
        assert 0 <= score <= 100
        assert isinstance(score, int)


def test_six_monthly_netflix_charges_score_high(db, catalog, add_transactions):
    add_transactions("Netflix", [15.99] * 6, date(2025, 1, 1), 30)

    detector = SubscriptionDetector(db, USER_ID, load_catalog(db), clock=fixed_clock)
    results = detector.detect()

    assert len(results) == 1
    result = results[0]
    assert result.service_name == "Netflix"
    assert result.matched_service_id == catalog["Netflix"].id
    assert result.billing_cycle == "monthly"
    assert result.confidence >= 80, f"Expected high confidence, got {result.confidence}"
    assert str(result.average_amount) == "15.99"
    assert result.is_recurring is True
    assert result.transaction_count == 6


def test_single_transaction_never_detected(db, catalog, add_transactions):
    add_transactions("Netflix", [15.99], date(2025, 5, 1), 30)

    detector = SubscriptionDetector(db, USER_ID, load_catalog(db), clock=fixed_clock, min_transactions=1)
    assert detector.detect() == []


def test_inflows_and_old_transactions_are_ignored(db, catalog, add_transactions):
    # Refunds are negative in the Plaid convention
    add_transactions("Netflix", [-15.99, -15.99, -15.99], date(2025, 3, 1), 30)
    # Outside the 365 day lookback window
    add_transactions("Spotify", [10.99, 10.99, 10.99], date(2023, 1, 1), 30)

    detector = SubscriptionDetector(db, USER_ID, load_catalog(db), clock=fixed_clock)
    assert detector.detect() == []


def test_groups_by_normalized_merchant(db, catalog, add_transactions):
    add_transactions("Netflix, Inc.", [15.99, 15.99], date(2025, 3, 1), 30, prefix="a")
    add_transactions("NETFLIX INC.", [15.99, 15.99], date(2025, 5, 1), 30, prefix="b")

    detector = SubscriptionDetector(db, USER_ID, load_catalog(db), clock=fixed_clock)
    results = detector.detect()

    assert len(results) == 1
    assert results[0].merchant_name == "netflix"
    assert results[0].transaction_count == 4


def test_other_users_transactions_are_not_read(db, catalog, add_transactions):
    add_transactions("Netflix", [15.99] * 3, date(2025, 3, 1), 30)

    detector = SubscriptionDetector(db, "someone-else", load_catalog(db), clock=fixed_clock)
    assert detector.detect() == []


def test_results_sorted_by_confidence(db, catalog, add_transactions):
    add_transactions("Corner Bakery", [4.50, 12.00], date(2025, 6, 1), 3)
    add_transactions("Netflix", [15.99] * 6, date(2025, 1, 1), 30)

    detector = SubscriptionDetector(db, USER_ID, load_catalog(db), clock=fixed_clock)
    results = detector.detect()

    assert [r.service_name for r in results][0] == "Netflix"
    assert results[0].confidence >= results[-1].confidence
