#!/usr/bin/env python3
"""
Carpool - Trust Engine Test Suite
Run: pytest test_engine.py

Validates the trust scoring engine without external dependencies (no Neo4j, Redis, etc.).
"""
import math
from datetime import date, timedelta

import pytest

from app.trust.engine import (
    TrustInputs, LicenseFact, InsuranceFact, FetchFailure,
    CategoryStatus, TrustTier, CATEGORIES, MAX_SCORE,
    compute_trust_score, tier_for, status_for,
)

TODAY = date(2026, 3, 15)


def verified_member(**overrides) -> TrustInputs:
    facts = dict(
        email_verified=True,
        phone_verified=True,
        profile_photo_verified=True,
        license=LicenseFact(verified=True, expiry_date=TODAY + timedelta(days=365)),
        insurance=(InsuranceFact(active=True, expiry_date=TODAY + timedelta(days=90)),),
        completed_ride_count=20,
        average_rating=5.0,
        account_age_days=200,
    )
    facts.update(overrides)
    return TrustInputs(**facts)


def earned(inputs: TrustInputs, key: str) -> int:
    return compute_trust_score(inputs, today=TODAY).category(key).earned


# ── 1. Category Table ─────────────────────────────────────

def test_caps_sum_to_one_hundred():
    assert MAX_SCORE == 100
    assert [c.key for c in CATEGORIES] == [
        "email", "phone", "profile_photo", "driver_license",
        "vehicle_insurance", "completed_rides", "average_rating", "account_age",
    ]


# ── 2. Score Bounds ───────────────────────────────────────

@pytest.mark.parametrize("inputs", [
    TrustInputs(),
    verified_member(),
    verified_member(completed_ride_count=10_000, average_rating=99.0, account_age_days=10**6),
    TrustInputs(completed_ride_count=-5, average_rating=-3.0, account_age_days=-400),
    TrustInputs(average_rating=math.nan),
    TrustInputs(average_rating=math.inf),
])
def test_total_and_categories_stay_in_bounds(inputs):
    result = compute_trust_score(inputs, today=TODAY)
    assert 0 <= result.score <= 100
    for c in result.categories:
        assert 0 <= c.earned <= c.cap
    assert result.score == sum(c.earned for c in result.categories)


# ── 3. Completed Rides ────────────────────────────────────

@pytest.mark.parametrize("rides,expected", [(0, 0), (1, 1), (7, 7), (15, 15), (16, 15), (500, 15)])
def test_completed_rides_one_point_each(rides, expected):
    assert earned(TrustInputs(completed_ride_count=rides), "completed_rides") == expected


# ── 4. Average Rating ─────────────────────────────────────

@pytest.mark.parametrize("rating,expected", [
    (5.0, 10), (0.0, 0), (3.0, 6), (4.25, 9), (4.24, 8), (2.75, 6), (0.2, 0), (0.25, 1),
])
def test_rating_two_points_per_star_half_up(rating, expected):
    assert earned(TrustInputs(average_rating=rating), "average_rating") == expected


# ── 5. Account Age ────────────────────────────────────────

@pytest.mark.parametrize("days,expected", [(0, 0), (29, 0), (30, 1), (59, 1), (60, 2), (150, 5), (1000, 5)])
def test_account_age_one_point_per_thirty_days(days, expected):
    assert earned(TrustInputs(account_age_days=days), "account_age") == expected


# ── 6. Documents ──────────────────────────────────────────

def test_expired_license_scores_zero_even_if_verified():
    lic = LicenseFact(verified=True, expiry_date=TODAY - timedelta(days=1))
    assert earned(verified_member(license=lic), "driver_license") == 0


def test_license_expiring_today_still_counts():
    lic = LicenseFact(verified=True, expiry_date=TODAY)
    assert earned(verified_member(license=lic), "driver_license") == 20


def test_unverified_or_missing_license_scores_zero():
    pending = LicenseFact(verified=False, expiry_date=TODAY + timedelta(days=30))
    assert earned(verified_member(license=pending), "driver_license") == 0
    assert earned(verified_member(license=None), "driver_license") == 0
    no_expiry = LicenseFact(verified=True, expiry_date=None)
    assert earned(verified_member(license=no_expiry), "driver_license") == 0


def test_any_active_unexpired_policy_counts():
    policies = (
        InsuranceFact(active=False, expiry_date=TODAY + timedelta(days=300)),
        InsuranceFact(active=True, expiry_date=TODAY - timedelta(days=3)),
        InsuranceFact(active=True, expiry_date=TODAY + timedelta(days=3)),
    )
    assert earned(verified_member(insurance=policies), "vehicle_insurance") == 15
    assert earned(verified_member(insurance=policies[:2]), "vehicle_insurance") == 0
    assert earned(verified_member(insurance=()), "vehicle_insurance") == 0


def test_phone_flag_is_taken_as_given():
    assert earned(TrustInputs(phone_verified=True), "phone") == 10
    assert earned(TrustInputs(phone_verified=False), "phone") == 0


# ── 7. Reference Members ──────────────────────────────────

def test_brand_new_member_scores_zero_everything_missing():
    result = compute_trust_score(TrustInputs(), today=TODAY)
    assert result.score == 0
    assert result.tier == TrustTier.GETTING_STARTED
    assert all(c.status == CategoryStatus.MISSING for c in result.categories)
    assert result.is_complete


def test_fully_verified_member_scores_one_hundred():
    result = compute_trust_score(verified_member(), today=TODAY)
    assert result.score == 100
    assert result.tier == TrustTier.EXCELLENT
    assert all(c.status == CategoryStatus.COMPLETE for c in result.categories)


def test_partial_status_between_zero_and_cap():
    result = compute_trust_score(TrustInputs(completed_ride_count=3, average_rating=4.0), today=TODAY)
    assert result.category("completed_rides").status == CategoryStatus.PARTIAL
    assert result.category("average_rating").status == CategoryStatus.PARTIAL
    assert result.category("completed_rides").description.startswith("3 rides completed")


# ── 8. Determinism ────────────────────────────────────────

def test_identical_inputs_give_identical_output():
    inputs = verified_member(completed_ride_count=4, average_rating=3.6)
    first = compute_trust_score(inputs, today=TODAY)
    second = compute_trust_score(inputs, today=TODAY)
    assert first == second
    assert first.to_dict() == second.to_dict()


# ── 9. Fetch Failures ─────────────────────────────────────

def test_license_fetch_failure_marks_category_unknown():
    failure = FetchFailure("driver_license", "timeout")
    result = compute_trust_score(verified_member(license=failure), today=TODAY)

    lic = result.category("driver_license")
    assert lic.unknown is True
    assert lic.earned == 0
    assert lic.status == CategoryStatus.MISSING
    assert result.is_complete is False
    assert result.unknown_categories == ("driver_license",)
    assert result.score == 80


def test_profile_fetch_failure_only_touches_profile_categories():
    failure = FetchFailure("profile", "connection refused")
    result = compute_trust_score(TrustInputs(
        email_verified=failure, phone_verified=failure, profile_photo_verified=failure,
        completed_ride_count=failure, average_rating=failure, account_age_days=failure,
        license=LicenseFact(True, TODAY + timedelta(days=10)),
        insurance=(InsuranceFact(True, TODAY + timedelta(days=10)),),
    ), today=TODAY)

    assert set(result.unknown_categories) == {
        "email", "phone", "profile_photo", "completed_rides", "average_rating", "account_age",
    }
    assert result.score == 35
    assert result.to_dict()["is_complete"] is False


# ── 10. Tiers ─────────────────────────────────────────────

@pytest.mark.parametrize("score,tier", [
    (100, TrustTier.EXCELLENT), (80, TrustTier.EXCELLENT), (79, TrustTier.GOOD),
    (60, TrustTier.GOOD), (59, TrustTier.BUILDING), (40, TrustTier.BUILDING),
    (39, TrustTier.GETTING_STARTED), (0, TrustTier.GETTING_STARTED),
])
def test_tier_thresholds(score, tier):
    assert tier_for(score) == tier


def test_status_for_edges():
    assert status_for(0, 10) == CategoryStatus.MISSING
    assert status_for(1, 10) == CategoryStatus.PARTIAL
    assert status_for(10, 10) == CategoryStatus.COMPLETE


def test_to_dict_shape():
    d = compute_trust_score(verified_member(), today=TODAY).to_dict()
    assert d["score"] == 100
    assert d["max_score"] == 100
    assert d["tier"] == "excellent"
    assert d["tier_message"].startswith("Excellent!")
    assert len(d["categories"]) == 8
    assert d["categories"][0] == {
        "key": "email", "label": "Email Verification", "earned": 10, "cap": 10,
        "status": "complete", "description": "Verified email address", "unknown": False,
    }


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-v"]))
