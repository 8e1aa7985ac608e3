"""
Carpool - Reliability, Eligibility & Badge Tests
Run: pytest test_reliability.py
"""
from datetime import datetime, timedelta, timezone

import pytest

from app.members.model import Profile, ReliabilityRecord, BookingRestriction, to_date, to_datetime
from app.trust.reliability import (
    format_reliability, check_booking_eligibility, reliability_label, MIN_RELIABILITY_TO_BOOK,
)
from app.trust.badges import compute_badges, months_between

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


def restriction(kind="temporary_ban", reason="Too many cancellations", ends_in_days=3, active=True):
    ends_at = NOW + timedelta(days=ends_in_days) if ends_in_days is not None else None
    return BookingRestriction(restriction_type=kind, reason=reason, ends_at=ends_at, is_active=active)


# ── Labels ────────────────────────────────────────────────

@pytest.mark.parametrize("score,label", [
    (100, "Excellent"), (90, "Excellent"), (89, "Good"), (70, "Good"),
    (69, "Fair"), (50, "Fair"), (49, "Needs Improvement"), (0, "Needs Improvement"),
])
def test_reliability_labels(score, label):
    assert reliability_label(score) == label


# ── Formatting ────────────────────────────────────────────

def test_missing_record_shows_new_member_defaults():
    view = format_reliability(None, now=NOW)
    assert view.has_record is False
    assert view.score == 100
    assert view.label == "Excellent"
    assert view.completion_pct == 100.0
    assert view.cancellation_pct == 0.0
    assert view.grace_period["grace_rides_remaining"] == 5
    assert view.warning is None
    assert view.restrictions == []


def test_percentages_round_to_one_decimal():
    record = ReliabilityRecord(
        reliability_score=72, total_rides=3, completed_rides=2, cancelled_rides=1,
        completion_ratio=2 / 3, cancellation_ratio=1 / 3, is_in_grace_period=False,
    )
    view = format_reliability(record, now=NOW)
    assert view.completion_pct == 66.7
    assert view.cancellation_pct == 33.3
    assert view.grace_period is None
    assert view.label == "Good"


def test_warning_banner_pluralises():
    one = format_reliability(ReliabilityRecord(warnings_count=1), now=NOW)
    two = format_reliability(ReliabilityRecord(warnings_count=2), now=NOW)
    assert one.warning["title"] == "1 Active Warning"
    assert two.warning["title"] == "2 Active Warnings"


def test_only_restrictions_in_force_are_listed():
    restrictions = [
        restriction(kind="temporary_ban", ends_in_days=2),
        restriction(kind="review_required", reason="Manual review", ends_in_days=None),
        restriction(kind="warning", ends_in_days=-1),
        restriction(kind="warning", active=False),
    ]
    view = format_reliability(ReliabilityRecord(), restrictions, now=NOW)

    assert [r.title for r in view.restrictions] == ["Temporary Ban", "Review Required"]
    assert view.restrictions[0].ends_on == "2026-03-17"
    assert view.restrictions[1].ends_on is None
    assert view.to_dict()["restrictions"][1]["reason"] == "Manual review"


# ── Booking Eligibility ───────────────────────────────────

def test_new_member_is_eligible():
    result = check_booking_eligibility(None, [], now=NOW)
    assert result.is_eligible is True
    assert result.reliability_score == 100
    assert result.reason == "New user - eligible"


def test_restrictions_win_over_good_score():
    result = check_booking_eligibility(
        ReliabilityRecord(reliability_score=95),
        [restriction(reason="No-show"), restriction(reason="Late cancel")],
        now=NOW,
    )
    assert result.is_eligible is False
    assert result.active_restrictions == 2
    assert result.reason == "Active restrictions: No-show; Late cancel"


def test_expired_restriction_does_not_block():
    result = check_booking_eligibility(
        ReliabilityRecord(reliability_score=80), [restriction(ends_in_days=-1)], now=NOW,
    )
    assert result.is_eligible is True
    assert result.reason == "Eligible to book"


def test_low_score_blocks_booking():
    result = check_booking_eligibility(ReliabilityRecord(reliability_score=MIN_RELIABILITY_TO_BOOK - 1), [], now=NOW)
    assert result.is_eligible is False
    assert result.reason == "Reliability score too low (minimum 30 required)"

    at_threshold = check_booking_eligibility(ReliabilityRecord(reliability_score=MIN_RELIABILITY_TO_BOOK), [], now=NOW)
    assert at_threshold.is_eligible is True


# ── Badges ────────────────────────────────────────────────

def badge_map(profile, reliability_score=0):
    return {b.id: b.earned for b in compute_badges(profile, reliability_score, now=NOW)}


def test_badge_order_and_new_member():
    badges = compute_badges(Profile(id="u1", created_at=NOW), now=NOW)
    assert [b.id for b in badges] == [
        "email_verified", "phone_verified", "id_verified", "photo_verified",
        "trusted_member", "veteran", "super_driver", "reliable",
    ]
    assert not any(b.earned for b in badges)


def test_phone_badge_needs_number_on_file():
    assert badge_map(Profile(id="u1", phone_verified=True))["phone_verified"] is False
    assert badge_map(Profile(id="u1", phone="+15550100", phone_verified=True))["phone_verified"] is True


def test_activity_badges():
    profile = Profile(
        id="u1",
        average_rating=4.6,
        total_rides_offered=30,
        total_rides_taken=25,
        rides_as_driver_completed=50,
        created_at=datetime(2025, 9, 30, tzinfo=timezone.utc),
    )
    earned = badge_map(profile, reliability_score=90)
    assert earned["trusted_member"] is True
    assert earned["veteran"] is True
    assert earned["super_driver"] is True
    assert earned["reliable"] is True


def test_trusted_member_needs_good_rating():
    profile = Profile(id="u1", average_rating=3.9, total_rides_taken=40)
    assert badge_map(profile)["trusted_member"] is False


def test_months_between_uses_calendar_months():
    assert months_between(datetime(2025, 9, 30, tzinfo=timezone.utc), NOW) == 6
    assert months_between(datetime(2025, 10, 1, tzinfo=timezone.utc), NOW) == 5


# ── Model Helpers ─────────────────────────────────────────

def test_profile_from_node_derives_ride_count_and_age():
    profile = Profile.from_node({
        "id": "u1",
        "email": "a@example.com",
        "total_rides_offered": 4,
        "total_rides_taken": 3,
        "created_at": "2026-01-14T12:00:00Z",
        "average_rating": None,
    })
    assert profile.completed_rides == 7
    assert profile.average_rating == 0.0
    assert profile.account_age_days(NOW) == 60


def test_date_helpers_accept_strings():
    assert to_date("2027-05-01") == datetime(2027, 5, 1).date()
    assert to_date("") is None
    assert to_datetime("2026-03-15T12:00:00").tzinfo is not None


def test_reliability_record_from_partial_node_keeps_defaults():
    record = ReliabilityRecord.from_node({"reliability_score": 42, "warnings_count": 1})
    assert record.reliability_score == 42
    assert record.completion_ratio == 1.0
    assert record.grace_rides_remaining == 5
